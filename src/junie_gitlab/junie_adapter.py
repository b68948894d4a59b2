from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import json
import logging
from typing import cast

from junie_gitlab.agent_adapter import AgentAdapter, AgentResult
from junie_gitlab.observability import log_event
from junie_gitlab.shell import run


LOGGER = logging.getLogger("junie_gitlab.junie_adapter")
JUNIE_PACKAGE = "@jetbrains/junie-cli"
DEFAULT_CACHE_DIR = Path("/junieCache")
TASK_ENV_VAR = "EJ_TASK"


@dataclass(frozen=True)
class JunieConfig:
    api_key: str = field(repr=False)
    version: str | None = None
    model: str | None = None
    cache_dir: Path = DEFAULT_CACHE_DIR


class JunieAdapter(AgentAdapter):
    def __init__(self, config: JunieConfig) -> None:
        self._config = config

    def install(self) -> None:
        package = JUNIE_PACKAGE
        if self._config.version:
            package = f"{JUNIE_PACKAGE}@{self._config.version}"
        log_event(LOGGER, "agent_install_started", package=package)
        output = run(["npm", "i", "-g", package])
        log_event(LOGGER, "agent_install_finished", package=package, output=output.strip())

    def run_task(self, *, prompt: str, cwd: Path) -> AgentResult:
        self._config.cache_dir.mkdir(parents=True, exist_ok=True)
        cmd = [
            "junie",
            f"--auth={self._config.api_key}",
            f"--cache-dir={self._config.cache_dir}",
            "--output-format=json",
        ]
        if self._config.model:
            cmd.append(f"--model={self._config.model}")

        log_event(
            LOGGER,
            "agent_run_started",
            model=self._config.model,
            prompt_length=len(prompt),
        )
        try:
            raw = run(
                cmd,
                cwd=cwd,
                env={TASK_ENV_VAR: prompt},
                secrets=(self._config.api_key,),
            )
        except Exception as exc:  # noqa: BLE001
            log_event(LOGGER, "agent_run_failed", error_type=type(exc).__name__)
            raise

        LOGGER.debug("Full agent output: %s", raw.strip())
        payload = _parse_json_payload(raw)
        result = AgentResult(
            outcome=_optional_output_text(payload.get("result")),
            task_name=_optional_output_text(payload.get("taskName")),
        )
        log_event(
            LOGGER,
            "agent_run_finished",
            task_name=result.task_name,
            has_outcome=result.outcome is not None,
        )
        return result


def _parse_json_payload(raw: str) -> dict[str, object]:
    text = raw.strip()
    if text.startswith("```"):
        lines = text.splitlines()
        if lines and lines[0].startswith("```"):
            lines = lines[1:]
        if lines and lines[-1].startswith("```"):
            lines = lines[:-1]
        text = "\n".join(lines).strip()
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"Junie output is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise RuntimeError("Junie output must be a JSON object")
    return cast(dict[str, object], payload)


def _optional_output_text(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        normalized = value.strip()
    elif isinstance(value, dict | list):
        normalized = json.dumps(value)
    else:
        normalized = str(value)
    return normalized or None
