from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
import logging
import os
import subprocess


class CommandError(RuntimeError):
    pass


LOGGER = logging.getLogger("junie_gitlab.shell")
_MASK = "****"


def preview_text(text: str, *, limit: int = 200) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def mask_secrets(text: str, secrets: tuple[str, ...]) -> str:
    masked = text
    for secret in secrets:
        if secret:
            masked = masked.replace(secret, _MASK)
    return masked


def run(
    argv: list[str],
    *,
    cwd: Path | None = None,
    input_text: str | None = None,
    env: Mapping[str, str] | None = None,
    secrets: tuple[str, ...] = (),
    check: bool = True,
) -> str:
    """Run a command and return its stdout.

    ``env`` is layered on top of the current process environment. Any value in
    ``secrets`` is masked in log lines and in the raised ``CommandError``.
    """
    proc_env = None
    if env:
        proc_env = dict(os.environ)
        proc_env.update(env)
    proc = subprocess.run(
        argv,
        cwd=str(cwd) if cwd else None,
        input=input_text,
        env=proc_env,
        text=True,
        capture_output=True,
        check=False,
    )
    if check and proc.returncode != 0:
        command = mask_secrets(" ".join(argv), secrets)
        stdout = mask_secrets(proc.stdout, secrets)
        stderr = mask_secrets(proc.stderr, secrets)
        LOGGER.error(
            "event=command_failed command=%s exit_code=%s stderr=%s stdout=%s",
            command,
            proc.returncode,
            preview_text(stderr),
            preview_text(stdout),
        )
        raise CommandError(
            "Command failed\n"
            f"cmd: {command}\n"
            f"exit: {proc.returncode}\n"
            f"stdout:\n{stdout}\n"
            f"stderr:\n{stderr}"
        )
    return proc.stdout
