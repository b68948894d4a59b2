from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import logging

from junie_gitlab.config import CiServerConfig
from junie_gitlab.models import FileStatus
from junie_gitlab.observability import log_event
from junie_gitlab.shell import run


LOGGER = logging.getLogger("junie_gitlab.git_ops")
_STAGE_EXCLUDES: tuple[str, ...] = (":!*.orig", ":!*.rej", ":!*.class", ":!.junie")


@dataclass(frozen=True)
class GitIdentity:
    name: str = "Junie"
    email: str = "Junie@jetbrains.com"


class GitWorkspace:
    """Git operations on the job's checkout for a single run.

    Identity and push-remote setup happen lazily, at most once per instance.
    """

    def __init__(
        self,
        repo_dir: Path,
        *,
        ci_server: CiServerConfig,
        gitlab_token: str,
        identity: GitIdentity = GitIdentity(),
    ) -> None:
        self.repo_dir = repo_dir
        self._ci_server = ci_server
        self._gitlab_token = gitlab_token
        self._identity = identity
        self._identity_configured = False
        self._remote_configured = False

    def checkout_new_branch(self, branch: str) -> None:
        self._ensure_identity()
        log_event(LOGGER, "git_checkout_new_branch", branch=branch)
        self._git("checkout", "-b", branch)

    def checkout_remote_branch(self, branch: str) -> None:
        self._ensure_identity()
        self._ensure_remote()
        log_event(LOGGER, "git_checkout_remote_branch", branch=branch)
        self._git("fetch", "origin", branch)
        self._git("checkout", branch)

    def stage_all(self) -> None:
        self._ensure_identity()
        pathspecs = ["."]
        env_file_pathspec = self._env_file_pathspec()
        if env_file_pathspec is not None:
            pathspecs.append(env_file_pathspec)
        pathspecs.extend(_STAGE_EXCLUDES)
        self._git("add", "-A", "--", *pathspecs)

    def status(self) -> tuple[FileStatus, ...]:
        self._ensure_identity()
        raw = self._git("status", "--porcelain=v1", "-z")
        files = parse_porcelain_status(raw)
        log_event(LOGGER, "git_status", file_count=len(files))
        for entry in files:
            log_event(
                LOGGER,
                "git_status_entry",
                path=entry.path,
                index=entry.index,
                working_dir=entry.working_dir,
            )
        return files

    def stage_changes(self) -> tuple[FileStatus, ...]:
        """Stage everything not excluded and return the files with staged changes."""
        self.stage_all()
        return tuple(entry for entry in self.status() if entry.index not in (" ", "?"))

    def commit(self, message: str) -> None:
        self._ensure_identity()
        log_event(LOGGER, "git_commit", has_message=bool(message.strip()))
        self._git("commit", "-m", message)

    def push(self, branch: str) -> None:
        self._ensure_identity()
        self._ensure_remote()
        log_event(LOGGER, "git_push", branch=branch)
        try:
            self._git("push", "origin", branch)
        except Exception as exc:  # noqa: BLE001
            log_event(LOGGER, "git_push_failed", branch=branch, error_type=type(exc).__name__)
            raise
        log_event(LOGGER, "git_push_completed", branch=branch)

    def _ensure_identity(self) -> None:
        if self._identity_configured:
            return
        safe_directory = self._ci_server.project_dir or str(self.repo_dir)
        self._git("config", "--global", "user.name", self._identity.name)
        self._git("config", "--global", "user.email", self._identity.email)
        self._git("config", "--global", "--add", "safe.directory", safe_directory)
        self._identity_configured = True
        log_event(LOGGER, "git_identity_configured", safe_directory=safe_directory)

    def _ensure_remote(self) -> None:
        if self._remote_configured:
            return
        self._git("remote", "set-url", "origin", self._remote_url())
        self._remote_configured = True
        log_event(
            LOGGER,
            "git_remote_configured",
            host=self._ci_server.host,
            project_path=self._ci_server.project_path,
        )

    def _remote_url(self) -> str:
        protocol = self._ci_server.protocol
        host = self._ci_server.host
        project_path = self._ci_server.project_path
        if not protocol or not host or not project_path:
            raise RuntimeError(
                "Cannot derive git remote: CI_SERVER_PROTOCOL, CI_SERVER_HOST and "
                "CI_PROJECT_PATH are required"
            )
        return f"{protocol}://oauth2:{self._gitlab_token}@{host}/{project_path}.git"

    def _env_file_pathspec(self) -> str | None:
        env_file = self._ci_server.env_file
        if not env_file:
            return None
        path = Path(env_file)
        if path.is_absolute():
            # git rejects pathspecs outside the work tree.
            try:
                path = path.relative_to(self.repo_dir.resolve())
            except ValueError:
                return None
        return f":!{path.as_posix()}"

    def _git(self, *args: str) -> str:
        return run(
            ["git", "-C", str(self.repo_dir), *args],
            secrets=(self._gitlab_token,),
        )


def parse_porcelain_status(raw: str) -> tuple[FileStatus, ...]:
    entries = raw.split("\0")
    files: list[FileStatus] = []
    position = 0
    while position < len(entries):
        entry = entries[position]
        position += 1
        if len(entry) < 4:
            continue
        index, working_dir, path = entry[0], entry[1], entry[3:]
        if index in ("R", "C"):
            # Renames and copies carry the original path as the next entry.
            position += 1
        files.append(FileStatus(path=path, index=index, working_dir=working_dir))
    return tuple(files)
