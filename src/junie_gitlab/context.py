from __future__ import annotations

from dataclasses import dataclass, field
import logging
import re
from typing import ClassVar, Literal, cast, get_args

from junie_gitlab.config import (
    CI_API_V4_URL,
    CI_PROJECT_ID,
    EVENT_KIND,
    GITLAB_TOKEN_FOR_JUNIE,
    JUNIE_API_KEY,
    CliOptions,
    ConfigError,
    WebhookEnv,
    require_int,
    require_str,
)
from junie_gitlab.observability import log_event


LOGGER = logging.getLogger("junie_gitlab.context")
DEFAULT_TAGGING_PATTERN = "junie"

MergeRequestAction = Literal["open", "update", "reopen", "close", "merge"]
MR_EVENT_ACTIONS: tuple[str, ...] = get_args(MergeRequestAction)


@dataclass(frozen=True)
class ProjectContext:
    project_id: int
    project_name: str
    pipeline_id: int
    api_v4_url: str
    default_branch: str | None
    gitlab_token: str = field(repr=False)
    junie_api_key: str = field(repr=False)
    junie_version: str | None
    junie_model: str | None
    use_mcp: bool
    bot_tagging_pattern: re.Pattern[str]
    cli_options: CliOptions


@dataclass(frozen=True)
class IssueCommentContext:
    is_merge_request: ClassVar[bool] = False

    project: ProjectContext
    issue_iid: int
    issue_url: str
    comment_text: str
    comment_id: int


@dataclass(frozen=True)
class MergeRequestCommentContext:
    is_merge_request: ClassVar[bool] = True

    project: ProjectContext
    merge_request_iid: int
    source_branch: str
    target_branch: str
    discussion_id: str
    comment_text: str
    comment_id: int


@dataclass(frozen=True)
class MergeRequestEventContext:
    is_merge_request: ClassVar[bool] = True

    project: ProjectContext
    merge_request_iid: int
    source_branch: str
    target_branch: str
    title: str
    description: str
    action: MergeRequestAction | str
    url: str


ExecutionContext = IssueCommentContext | MergeRequestCommentContext | MergeRequestEventContext


def build_execution_context(env: WebhookEnv, cli_options: CliOptions) -> ExecutionContext:
    """Normalize the webhook environment into exactly one execution context.

    Raises ConfigError when the environment does not describe a supported event.
    Nothing is sent to GitLab here; the only side effect is one log line.
    """
    project_id = require_int(env.project_id, CI_PROJECT_ID)
    event_kind = require_str(env.event_kind, EVENT_KIND)

    project = ProjectContext(
        project_id=project_id,
        project_name=env.project_name or "unknown",
        pipeline_id=env.pipeline_id or 0,
        api_v4_url=require_str(env.api_v4_url, CI_API_V4_URL),
        default_branch=env.default_branch or None,
        gitlab_token=require_str(env.gitlab_token, GITLAB_TOKEN_FOR_JUNIE),
        junie_api_key=require_str(env.junie_api_key, JUNIE_API_KEY),
        junie_version=env.junie_version or None,
        junie_model=env.junie_model or None,
        use_mcp=env.use_mcp,
        bot_tagging_pattern=_compile_tagging_pattern(env.bot_tagging_pattern),
        cli_options=cli_options,
    )

    context: ExecutionContext
    if event_kind == "note":
        context = _note_context(env, project)
    elif event_kind == "merge_request":
        context = _merge_request_event_context(env, project)
    else:
        raise ConfigError(f"Unsupported event kind: {event_kind}")

    log_event(LOGGER, "execution_context_built", **describe_context(context))
    return context


def describe_context(context: ExecutionContext) -> dict[str, object]:
    project = context.project
    description: dict[str, object] = {
        "context_type": type(context).__name__,
        "project_id": project.project_id,
        "project_name": project.project_name,
        "pipeline_id": project.pipeline_id,
        "default_branch": project.default_branch,
        "junie_version": project.junie_version,
        "junie_model": project.junie_model,
        "use_mcp": project.use_mcp,
        "tagging_pattern": project.bot_tagging_pattern.pattern,
        "mr_mode": project.cli_options.mr_mode,
        "cleanup_after_idle_run": project.cli_options.cleanup_after_idle_run,
        "has_custom_prompt": project.cli_options.custom_prompt is not None,
    }
    if isinstance(context, IssueCommentContext):
        description.update(issue_iid=context.issue_iid, comment_id=context.comment_id)
    elif isinstance(context, MergeRequestCommentContext):
        description.update(
            merge_request_iid=context.merge_request_iid,
            source_branch=context.source_branch,
            target_branch=context.target_branch,
            discussion_id=context.discussion_id,
            comment_id=context.comment_id,
        )
    else:
        description.update(
            merge_request_iid=context.merge_request_iid,
            source_branch=context.source_branch,
            target_branch=context.target_branch,
            action=context.action,
        )
    return description


def _compile_tagging_pattern(raw: str | None) -> re.Pattern[str]:
    pattern = DEFAULT_TAGGING_PATTERN if raw is None else raw
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as exc:
        raise ConfigError(f"JUNIE_BOT_TAGGING_PATTERN is not a valid regex: {exc}") from exc


def _note_context(
    env: WebhookEnv, project: ProjectContext
) -> IssueCommentContext | MergeRequestCommentContext:
    if not env.comment_text or not env.object_id:
        raise ConfigError("Comment text and ID are required for note events")

    # A note carrying both issue and MR fields is treated as an issue comment.
    if env.issue_iid and env.issue_url:
        return IssueCommentContext(
            project=project,
            issue_iid=env.issue_iid,
            issue_url=env.issue_url,
            comment_text=env.comment_text,
            comment_id=env.object_id,
        )
    if (
        env.merge_request_iid
        and env.merge_request_source_branch
        and env.merge_request_target_branch
        and env.discussion_id
    ):
        return MergeRequestCommentContext(
            project=project,
            merge_request_iid=env.merge_request_iid,
            source_branch=env.merge_request_source_branch,
            target_branch=env.merge_request_target_branch,
            discussion_id=env.discussion_id,
            comment_text=env.comment_text,
            comment_id=env.object_id,
        )
    raise ConfigError("Invalid note event: missing issue or MR context")


def _merge_request_event_context(
    env: WebhookEnv, project: ProjectContext
) -> MergeRequestEventContext:
    required: dict[str, object] = {
        "MR_EVENT_ID": env.mr_event_iid,
        "MR_EVENT_SOURCE_BRANCH": env.mr_event_source_branch,
        "MR_EVENT_TARGET_BRANCH": env.mr_event_target_branch,
        "MR_EVENT_TITLE": env.mr_event_title,
        "MR_EVENT_ACTION": env.mr_event_action,
        "MR_EVENT_URL": env.mr_event_url,
    }
    missing = [key for key, value in required.items() if not value]
    if env.mr_event_description is None:
        missing.append("MR_EVENT_DESCRIPTION")
    if missing:
        raise ConfigError(
            "Missing required fields for merge_request event: " + ", ".join(sorted(missing))
        )

    action = cast(str, env.mr_event_action)
    if action not in MR_EVENT_ACTIONS:
        log_event(LOGGER, "merge_request_action_unrecognized", action=action)

    return MergeRequestEventContext(
        project=project,
        merge_request_iid=cast(int, env.mr_event_iid),
        source_branch=cast(str, env.mr_event_source_branch),
        target_branch=cast(str, env.mr_event_target_branch),
        title=cast(str, env.mr_event_title),
        description=cast(str, env.mr_event_description),
        action=action,
        url=cast(str, env.mr_event_url),
    )
