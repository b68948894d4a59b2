from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
import logging
import time

from junie_gitlab.agent_adapter import AgentAdapter
from junie_gitlab.context import ExecutionContext
from junie_gitlab.feedback import dispatch_feedback
from junie_gitlab.git_ops import GitWorkspace
from junie_gitlab.gitlab_gateway import GitLabGateway
from junie_gitlab.mcp import write_mcp_config
from junie_gitlab.observability import log_event
from junie_gitlab.tasks import (
    MergeRequestCommentTask,
    MergeRequestEventTask,
    Task,
    TaskExtractionFailed,
    extract_task,
)


LOGGER = logging.getLogger("junie_gitlab.orchestrator")
NEW_BRANCH_PREFIX = "junie-"


@dataclass(frozen=True)
class RunResult:
    task_detected: bool
    reason: str | None = None
    outcome: str | None = None
    task_name: str | None = None
    created_mr_url: str | None = None


class TaskRunner:
    """Runs one webhook event end to end: extract, run the agent, publish, report."""

    def __init__(
        self,
        context: ExecutionContext,
        *,
        gateway: GitLabGateway,
        git: GitWorkspace,
        agent: AgentAdapter,
        clock: Callable[[], float] = time.time,
        mcp_home: Path | None = None,
    ) -> None:
        self._context = context
        self._gateway = gateway
        self._git = git
        self._agent = agent
        self._clock = clock
        self._mcp_home = mcp_home

    def execute(self) -> RunResult:
        extracted = extract_task(self._context, self._gateway)
        if isinstance(extracted, TaskExtractionFailed):
            self._handle_no_task(extracted.reason)
            return RunResult(task_detected=False, reason=extracted.reason)
        return self._run_task(extracted)

    def _handle_no_task(self, reason: str) -> None:
        project = self._context.project
        log_event(LOGGER, "no_task_detected", reason=reason)
        if not project.cli_options.cleanup_after_idle_run:
            log_event(LOGGER, "cleanup_skipped", pipeline_id=project.pipeline_id)
            return
        log_event(
            LOGGER,
            "pipeline_cleanup",
            project_id=project.project_id,
            pipeline_id=project.pipeline_id,
        )
        self._gateway.delete_pipeline(project.project_id, project.pipeline_id)

    def _run_task(self, task: Task) -> RunResult:
        project = self._context.project
        self._agent.install()
        log_event(LOGGER, "mcp_mode", use_mcp=project.use_mcp)
        if project.use_mcp:
            write_mcp_config(
                api_v4_url=project.api_v4_url,
                gitlab_token=project.gitlab_token,
                project_id=project.project_id,
                home=self._mcp_home,
            )

        dispatch_feedback(self._gateway, task.start_feedback())

        checkout_branch = task.checkout_branch
        if checkout_branch:
            self._git.checkout_remote_branch(checkout_branch)

        result = self._agent.run_task(
            prompt=task.build_prompt(project.use_mcp), cwd=self._git.repo_dir
        )
        log_event(
            LOGGER,
            "execution_result",
            task_name=result.task_name,
            outcome=result.outcome,
        )
        commit_message = f"generated changes by Junie: {result.task_name or 'task completed'}"

        created_mr_url: str | None = None
        is_merge_request_task = isinstance(task, MergeRequestCommentTask | MergeRequestEventTask)
        if is_merge_request_task and project.cli_options.mr_mode == "append" and checkout_branch:
            self._push_to_branch(checkout_branch, commit_message)
        else:
            target_branch = checkout_branch if is_merge_request_task else project.default_branch
            if not target_branch:
                raise RuntimeError("Can't determine target branch for merge request")
            created_mr_url = self._push_as_merge_request(
                title=task.title(),
                description=task.build_mr_description(result.outcome),
                commit_message=commit_message,
                target_branch=target_branch,
            )

        dispatch_feedback(
            self._gateway,
            task.finish_feedback(result.outcome, result.task_name, created_mr_url),
        )
        log_event(
            LOGGER,
            "run_finished",
            task_type=type(task).__name__,
            created_mr_url=created_mr_url,
        )
        return RunResult(
            task_detected=True,
            outcome=result.outcome,
            task_name=result.task_name,
            created_mr_url=created_mr_url,
        )

    def _push_to_branch(self, branch: str, commit_message: str) -> None:
        staged = self._git.stage_changes()
        if not staged:
            log_event(LOGGER, "no_changes_to_commit", branch=branch)
            return
        self._git.commit(commit_message)
        self._git.push(branch)
        log_event(LOGGER, "changes_pushed", branch=branch, file_count=len(staged), mode="append")

    def _push_as_merge_request(
        self,
        *,
        title: str,
        description: str,
        commit_message: str,
        target_branch: str,
    ) -> str | None:
        staged = self._git.stage_changes()
        if not staged:
            log_event(LOGGER, "no_changes_to_commit", target_branch=target_branch)
            return None

        branch = f"{NEW_BRANCH_PREFIX}{int(self._clock() * 1000)}"
        self._git.checkout_new_branch(branch)
        self._git.commit(commit_message)
        self._git.push(branch)
        log_event(LOGGER, "changes_pushed", branch=branch, file_count=len(staged), mode="new")

        merge_request = self._gateway.create_merge_request(
            self._context.project.project_id,
            source_branch=branch,
            target_branch=target_branch,
            title=title,
            description=description,
        )
        return merge_request.web_url
