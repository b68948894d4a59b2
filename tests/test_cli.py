from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from junie_gitlab import cli
from junie_gitlab.config import CliOptions, ConfigError
from junie_gitlab.context import IssueCommentContext
from junie_gitlab.git_ops import GitWorkspace
from junie_gitlab.gitlab_gateway import GitLabGateway
from junie_gitlab.junie_adapter import JunieAdapter
from junie_gitlab.orchestrator import RunResult


def _run_env(tmp_path: Path) -> dict[str, str]:
    return {
        "CI_PROJECT_ID": "42",
        "CI_PROJECT_NAME": "demo",
        "CI_PIPELINE_ID": "900",
        "CI_API_V4_URL": "https://gitlab.example.com/api/v4",
        "CI_DEFAULT_BRANCH": "main",
        "CI_PROJECT_DIR": str(tmp_path),
        "EVENT_KIND": "note",
        "GITLAB_TOKEN_FOR_JUNIE": "glpat",
        "JUNIE_API_KEY": "junie-key",
        "JUNIE_VERSION": "1.2.3",
        "ISSUE_ID": "7",
        "ISSUE_URL": "https://gitlab.example.com/g/demo/-/issues/7",
        "COMMENT_TEXT": "@junie fix it",
        "OBJECT_ID": "55",
    }


def test_build_parser_parses_run_options() -> None:
    parser = cli.build_parser()
    args = parser.parse_args(["run", "-C", "-v", "-p", "be brief", "-M", "append"])
    assert args.command == "run"
    assert args.cleanup is True
    assert args.verbose is True
    assert args.prompt == "be brief"
    assert args.mr_mode == "append"


def test_build_parser_run_defaults() -> None:
    args = cli.build_parser().parse_args(["run"])
    assert args.cleanup is False
    assert args.verbose is False
    assert args.prompt is None
    assert args.mr_mode == "new"


def test_build_parser_parses_init_options() -> None:
    args = cli.build_parser().parse_args(["init", "--verbose", "--force"])
    assert args.command == "init"
    assert args.verbose is True
    assert args.force is True


def test_build_parser_rejects_unknown_mr_mode() -> None:
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["run", "--mr-mode", "rebase"])


def test_main_dispatches_init(monkeypatch: pytest.MonkeyPatch) -> None:
    class FakeParser:
        def parse_args(self) -> SimpleNamespace:
            return SimpleNamespace(command="init", verbose=True, force=True)

    called: dict[str, object] = {}
    monkeypatch.setattr(cli, "build_parser", lambda: FakeParser())
    monkeypatch.setattr(
        cli, "configure_logging", lambda verbose: called.setdefault("verbose", verbose)
    )
    monkeypatch.setattr(cli, "_cmd_init", lambda env, force: called.setdefault("init", force))

    cli.main()
    assert called["verbose"] is True
    assert called["init"] is True


def test_main_dispatches_run(monkeypatch: pytest.MonkeyPatch) -> None:
    class FakeParser:
        def parse_args(self) -> SimpleNamespace:
            return SimpleNamespace(
                command="run", cleanup=True, verbose=False, prompt="extra", mr_mode="append"
            )

    called: dict[str, object] = {}
    monkeypatch.setattr(cli, "build_parser", lambda: FakeParser())
    monkeypatch.setattr(
        cli, "configure_logging", lambda verbose: called.setdefault("verbose", verbose)
    )
    monkeypatch.setattr(cli, "_cmd_run", lambda env, options: called.setdefault("run", options))

    cli.main()
    assert called["verbose"] is False
    assert called["run"] == CliOptions(
        cleanup_after_idle_run=True, mr_mode="append", custom_prompt="extra"
    )


def test_main_unknown_command_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    class FakeParser:
        def parse_args(self) -> SimpleNamespace:
            return SimpleNamespace(command="unknown")

    monkeypatch.setattr(cli, "build_parser", lambda: FakeParser())
    monkeypatch.setattr(cli, "configure_logging", lambda verbose: None)

    with pytest.raises(RuntimeError, match="Unknown command"):
        cli.main()


def test_cmd_init_registers_webhook(monkeypatch: pytest.MonkeyPatch) -> None:
    called: dict[str, object] = {}

    def fake_register(gateway: GitLabGateway, env: object, *, force: bool) -> int:
        called["gateway"] = gateway
        called["force"] = force
        return 5

    monkeypatch.setattr(cli, "register_webhook", fake_register)

    cli._cmd_init(
        {
            "CI_API_V4_URL": "https://gitlab.example.com/api/v4",
            "GITLAB_TOKEN_FOR_JUNIE": "glpat",
        },
        force=False,
    )

    gateway = called["gateway"]
    assert isinstance(gateway, GitLabGateway)
    assert gateway.api_v4_url == "https://gitlab.example.com/api/v4"
    assert gateway.token == "glpat"
    assert called["force"] is False


def test_cmd_init_requires_token() -> None:
    with pytest.raises(ConfigError, match="GITLAB_TOKEN_FOR_JUNIE is required"):
        cli._cmd_init({"CI_API_V4_URL": "https://gitlab.example.com/api/v4"}, force=False)


def test_cmd_run_constructs_task_runner(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    called: dict[str, object] = {}

    class FakeRunner:
        def __init__(
            self,
            context: object,
            *,
            gateway: object,
            git: object,
            agent: object,
        ) -> None:
            called["ctor"] = (context, gateway, git, agent)

        def execute(self) -> RunResult:
            called["executed"] = True
            return RunResult(task_detected=False, reason="no mention")

    monkeypatch.setattr(cli, "TaskRunner", FakeRunner)

    cli._cmd_run(_run_env(tmp_path), CliOptions(custom_prompt="extra"))

    assert called["executed"] is True
    context, gateway, git, agent = called["ctor"]  # type: ignore[misc]
    assert isinstance(context, IssueCommentContext)
    assert context.issue_iid == 7
    assert context.comment_id == 55
    assert context.project.cli_options.custom_prompt == "extra"
    assert isinstance(gateway, GitLabGateway)
    assert gateway.token == "glpat"
    assert isinstance(git, GitWorkspace)
    assert git.repo_dir == tmp_path
    assert isinstance(agent, JunieAdapter)


def test_cmd_run_rejects_unsupported_event(tmp_path: Path) -> None:
    env = _run_env(tmp_path)
    env["EVENT_KIND"] = "push"
    with pytest.raises(ConfigError, match="Unsupported event kind: push"):
        cli._cmd_run(env, CliOptions())
