from __future__ import annotations

import json
from pathlib import Path
import re
from typing import cast

import pytest

from junie_gitlab.agent_adapter import AgentAdapter, AgentResult
from junie_gitlab.config import CliOptions, MrMode
from junie_gitlab.context import (
    ExecutionContext,
    IssueCommentContext,
    MergeRequestCommentContext,
    MergeRequestEventContext,
    ProjectContext,
)
from junie_gitlab.git_ops import GitWorkspace
from junie_gitlab.gitlab_gateway import GitLabGateway
from junie_gitlab.models import CreatedMergeRequest, FileStatus, Issue, MergeRequest
from junie_gitlab.observability import configure_logging
from junie_gitlab.orchestrator import RunResult, TaskRunner
from junie_gitlab.prompts import MR_INTRO_HEADER, STARTED_MESSAGE


def _project(
    *,
    custom_prompt: str | None = None,
    mr_mode: MrMode = "new",
    cleanup: bool = False,
    use_mcp: bool = False,
    default_branch: str | None = "main",
) -> ProjectContext:
    return ProjectContext(
        project_id=42,
        project_name="demo",
        pipeline_id=7,
        api_v4_url="https://gitlab.example.com/api/v4",
        default_branch=default_branch,
        gitlab_token="glpat",
        junie_api_key="key",
        junie_version=None,
        junie_model=None,
        use_mcp=use_mcp,
        bot_tagging_pattern=re.compile("junie", re.IGNORECASE),
        cli_options=CliOptions(
            cleanup_after_idle_run=cleanup, mr_mode=mr_mode, custom_prompt=custom_prompt
        ),
    )


def _issue_context(
    comment: str = "please fix @junie the typo", **kwargs: object
) -> ExecutionContext:
    return IssueCommentContext(
        project=_project(**kwargs),  # type: ignore[arg-type]
        issue_iid=3,
        issue_url="https://gitlab.example.com/g/p/-/issues/3",
        comment_text=comment,
        comment_id=501,
    )


def _mr_comment_context(comment: str = "@junie rename it", **kwargs: object) -> ExecutionContext:
    return MergeRequestCommentContext(
        project=_project(**kwargs),  # type: ignore[arg-type]
        merge_request_iid=11,
        source_branch="feature",
        target_branch="main",
        discussion_id="d1",
        comment_text=comment,
        comment_id=502,
    )


def _mr_event_context(**kwargs: object) -> ExecutionContext:
    return MergeRequestEventContext(
        project=_project(**kwargs),  # type: ignore[arg-type]
        merge_request_iid=12,
        source_branch="feature",
        target_branch="main",
        title="Add widget",
        description="",
        action="update",
        url="https://gitlab.example.com/g/p/-/merge_requests/12",
    )


class FakeGitLab:
    def __init__(self) -> None:
        self.calls: list[tuple[object, ...]] = []

    def get_issue(self, project_id: int, issue_iid: int) -> Issue:
        return Issue(iid=issue_iid, title="Typo in README", description="Fix it.", web_url="u")

    def get_merge_request(self, project_id: int, merge_request_iid: int) -> MergeRequest:
        return MergeRequest(
            iid=merge_request_iid,
            title="Refactor",
            description="MR body",
            web_url="https://mr/11",
            source_branch="feature",
            target_branch="main",
        )

    def post_issue_note(self, project_id: int, issue_iid: int, body: str) -> None:
        self.calls.append(("issue_note", issue_iid, body))

    def award_issue_note_emoji(
        self, project_id: int, issue_iid: int, note_id: int, emoji: str
    ) -> None:
        self.calls.append(("emoji", note_id, emoji))

    def post_merge_request_note(self, project_id: int, merge_request_iid: int, body: str) -> None:
        self.calls.append(("mr_note", merge_request_iid, body))

    def post_merge_request_discussion_note(
        self, project_id: int, merge_request_iid: int, discussion_id: str, body: str
    ) -> None:
        self.calls.append(("discussion_note", discussion_id, body))

    def create_merge_request(
        self,
        project_id: int,
        *,
        source_branch: str,
        target_branch: str,
        title: str,
        description: str,
    ) -> CreatedMergeRequest:
        self.calls.append(("create_mr", source_branch, target_branch, title, description))
        return CreatedMergeRequest(iid=99, web_url="https://mr/99")

    def delete_pipeline(self, project_id: int, pipeline_id: int) -> None:
        self.calls.append(("delete_pipeline", project_id, pipeline_id))


class FakeGit:
    def __init__(self, repo_dir: Path, *, staged: tuple[FileStatus, ...] = ()) -> None:
        self.repo_dir = repo_dir
        self.staged = staged
        self.calls: list[tuple[str, ...]] = []

    def checkout_remote_branch(self, branch: str) -> None:
        self.calls.append(("checkout_remote", branch))

    def checkout_new_branch(self, branch: str) -> None:
        self.calls.append(("checkout_new", branch))

    def stage_changes(self) -> tuple[FileStatus, ...]:
        self.calls.append(("stage",))
        return self.staged

    def commit(self, message: str) -> None:
        self.calls.append(("commit", message))

    def push(self, branch: str) -> None:
        self.calls.append(("push", branch))


class FakeAgent(AgentAdapter):
    def __init__(self, result: AgentResult) -> None:
        self.result = result
        self.installed = 0
        self.prompts: list[str] = []
        self.cwds: list[Path] = []

    def install(self) -> None:
        self.installed += 1

    def run_task(self, *, prompt: str, cwd: Path) -> AgentResult:
        self.prompts.append(prompt)
        self.cwds.append(cwd)
        return self.result


_CHANGED = (FileStatus(path="README.md", index="M", working_dir=" "),)


def _runner(
    context: ExecutionContext,
    tmp_path: Path,
    *,
    staged: tuple[FileStatus, ...] = (),
    result: AgentResult | None = None,
) -> tuple[TaskRunner, FakeGitLab, FakeGit, FakeAgent]:
    gitlab = FakeGitLab()
    git = FakeGit(tmp_path, staged=staged)
    agent = FakeAgent(result or AgentResult(outcome="Fixed the typo.", task_name="Fix typo"))
    runner = TaskRunner(
        context,
        gateway=cast(GitLabGateway, gitlab),
        git=cast(GitWorkspace, git),
        agent=agent,
        clock=lambda: 1700000000.5,
        mcp_home=tmp_path / "home",
    )
    return runner, gitlab, git, agent


def _prompt_text(prompt: str) -> str:
    return cast(str, json.loads(prompt)["textTask"]["text"])


def test_issue_comment_creates_merge_request(tmp_path: Path) -> None:
    runner, gitlab, git, agent = _runner(_issue_context(), tmp_path, staged=_CHANGED)

    result = runner.execute()

    assert result == RunResult(
        task_detected=True,
        outcome="Fixed the typo.",
        task_name="Fix typo",
        created_mr_url="https://mr/99",
    )
    assert agent.installed == 1
    assert agent.cwds == [tmp_path]
    assert _prompt_text(agent.prompts[0]).startswith("Fix it.\n\nplease fix @junie the typo")
    assert git.calls == [
        ("stage",),
        ("checkout_new", "junie-1700000000500"),
        ("commit", "generated changes by Junie: Fix typo"),
        ("push", "junie-1700000000500"),
    ]
    assert gitlab.calls == [
        ("issue_note", 3, STARTED_MESSAGE),
        ("emoji", 501, "thumbsup"),
        (
            "create_mr",
            "junie-1700000000500",
            "main",
            "Typo in README",
            MR_INTRO_HEADER + "Fixed the typo.",
        ),
        ("issue_note", 3, "✅ Junie finished\n\n📝 Merge Request link: https://mr/99"),
    ]


def test_no_mention_skips_cleanup_by_default(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    configure_logging(verbose=False)
    runner, gitlab, git, agent = _runner(_issue_context("thanks everyone"), tmp_path)

    result = runner.execute()

    assert result == RunResult(
        task_detected=False, reason="Comment doesn't contain mention to Junie"
    )
    assert agent.installed == 0
    assert gitlab.calls == []
    assert git.calls == []
    stderr = capsys.readouterr().err
    assert "event=no_task_detected" in stderr
    assert "event=cleanup_skipped" in stderr


def test_no_task_with_cleanup_deletes_pipeline(tmp_path: Path) -> None:
    runner, gitlab, _, agent = _runner(_mr_event_context(cleanup=True), tmp_path)

    result = runner.execute()

    assert result.task_detected is False
    assert result.reason == "MR event action 'update' no custom prompt set"
    assert gitlab.calls == [("delete_pipeline", 42, 7)]
    assert agent.installed == 0


def test_code_review_comment_uses_review_prompt(tmp_path: Path) -> None:
    runner, gitlab, git, agent = _runner(
        _mr_comment_context("@junie code-review please"),
        tmp_path,
        result=AgentResult(outcome="LGTM", task_name=None),
    )

    result = runner.execute()

    assert _prompt_text(agent.prompts[0]).startswith("Your task is to review Merge Request #11")
    assert git.calls[0] == ("checkout_remote", "feature")
    assert result.created_mr_url is None
    assert gitlab.calls[-1] == ("discussion_note", "d1", "✅ Junie finished\n\nLGTM")


def test_append_mode_pushes_to_source_branch(tmp_path: Path) -> None:
    runner, gitlab, git, _ = _runner(
        _mr_comment_context(mr_mode="append"),
        tmp_path,
        staged=_CHANGED,
        result=AgentResult(outcome="Renamed.", task_name=None),
    )

    result = runner.execute()

    assert result.created_mr_url is None
    assert git.calls == [
        ("checkout_remote", "feature"),
        ("stage",),
        ("commit", "generated changes by Junie: task completed"),
        ("push", "feature"),
    ]
    assert not any(call[0] == "create_mr" for call in gitlab.calls)
    assert gitlab.calls == [
        ("discussion_note", "d1", STARTED_MESSAGE),
        ("discussion_note", "d1", "✅ Junie finished\n\nRenamed."),
    ]


def test_append_mode_without_changes_skips_commit(tmp_path: Path) -> None:
    runner, _, git, _ = _runner(_mr_comment_context(mr_mode="append"), tmp_path)
    runner.execute()
    assert git.calls == [("checkout_remote", "feature"), ("stage",)]


def test_append_mode_is_ignored_for_issue_tasks(tmp_path: Path) -> None:
    runner, gitlab, git, _ = _runner(_issue_context(mr_mode="append"), tmp_path, staged=_CHANGED)

    result = runner.execute()

    assert result.created_mr_url == "https://mr/99"
    assert ("checkout_new", "junie-1700000000500") in git.calls
    assert any(call[0] == "create_mr" for call in gitlab.calls)


def test_new_mode_without_changes_reports_no_changes(tmp_path: Path) -> None:
    runner, gitlab, git, _ = _runner(
        _mr_event_context(custom_prompt="Add tests"),
        tmp_path,
        result=AgentResult(outcome=None, task_name=None),
    )

    result = runner.execute()

    assert result.created_mr_url is None
    assert git.calls == [("checkout_remote", "feature"), ("stage",)]
    assert gitlab.calls == [
        ("mr_note", 12, STARTED_MESSAGE),
        ("mr_note", 12, "✅ Junie finished\n\nTask completed. No changes were made."),
    ]


def test_new_mode_targets_merge_request_source_branch(tmp_path: Path) -> None:
    runner, gitlab, _, _ = _runner(
        _mr_event_context(custom_prompt="Add tests"), tmp_path, staged=_CHANGED
    )

    runner.execute()

    create = next(call for call in gitlab.calls if call[0] == "create_mr")
    assert create[1:4] == ("junie-1700000000500", "feature", "Add widget")


def test_missing_default_branch_is_an_error(tmp_path: Path) -> None:
    runner, _, git, _ = _runner(_issue_context(default_branch=None), tmp_path, staged=_CHANGED)

    with pytest.raises(RuntimeError, match="Can't determine target branch"):
        runner.execute()
    assert git.calls == []


def test_use_mcp_writes_config(tmp_path: Path) -> None:
    runner, _, _, agent = _runner(_issue_context(use_mcp=True), tmp_path)

    runner.execute()

    config_path = tmp_path / "home" / ".junie" / "mcp" / "mcp.json"
    assert config_path.exists()
    assert "current project ID: 42" in _prompt_text(agent.prompts[0])


def test_mcp_disabled_writes_nothing(tmp_path: Path) -> None:
    runner, _, _, _ = _runner(_issue_context(), tmp_path)
    runner.execute()
    assert not (tmp_path / "home").exists()


def test_feedback_failures_do_not_stop_the_run(tmp_path: Path) -> None:
    runner, gitlab, _, _ = _runner(_issue_context(), tmp_path, staged=_CHANGED)

    def failing_emoji(project_id: int, issue_iid: int, note_id: int, emoji: str) -> None:
        raise RuntimeError("already awarded")

    gitlab.award_issue_note_emoji = failing_emoji  # type: ignore[method-assign]

    result = runner.execute()

    assert result.created_mr_url == "https://mr/99"
    assert gitlab.calls[-1][0] == "issue_note"
