from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Literal


MrMode = Literal["append", "new"]


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class WebhookVariable:
    """An environment variable the bot reads.

    ``template`` is the value the registered webhook fills in from the event
    payload; variables without one come from the CI job itself.
    """

    key: str
    template: str | None = None


JUNIE_WEBHOOK = WebhookVariable("JUNIE_WEBHOOK", "true")
JUNIE_BOT_TAGGING_PATTERN = WebhookVariable("JUNIE_BOT_TAGGING_PATTERN")
JUNIE_VERSION = WebhookVariable("JUNIE_VERSION")
USE_MCP = WebhookVariable("USE_MCP", "true")
JUNIE_MODEL = WebhookVariable("JUNIE_MODEL")

CI_API_V4_URL = WebhookVariable("CI_API_V4_URL")
CI_DEFAULT_BRANCH = WebhookVariable("CI_DEFAULT_BRANCH")
CI_PROJECT_ID = WebhookVariable("CI_PROJECT_ID")
CI_PROJECT_NAME = WebhookVariable("CI_PROJECT_NAME")
CI_PIPELINE_ID = WebhookVariable("CI_PIPELINE_ID")

EVENT_KIND = WebhookVariable("EVENT_KIND", "{{object_kind}}")

GITLAB_TOKEN_FOR_JUNIE = WebhookVariable("GITLAB_TOKEN_FOR_JUNIE")
JUNIE_API_KEY = WebhookVariable("JUNIE_API_KEY")

ISSUE_ID = WebhookVariable("ISSUE_ID", "{{issue.iid}}")
COMMENT_TEXT = WebhookVariable("COMMENT_TEXT", "{{object_attributes.note}}")
ISSUE_URL = WebhookVariable("ISSUE_URL", "{{issue.url}}")

MERGE_REQUEST_ID = WebhookVariable("MERGE_REQUEST_ID", "{{merge_request.iid}}")
MERGE_REQUEST_SOURCE_BRANCH = WebhookVariable(
    "MERGE_REQUEST_SOURCE_BRANCH", "{{merge_request.source_branch}}"
)
MERGE_REQUEST_TARGET_BRANCH = WebhookVariable(
    "MERGE_REQUEST_TARGET_BRANCH", "{{merge_request.target_branch}}"
)
DISCUSSION_ID = WebhookVariable("DISCUSSION_ID", "{{object_attributes.discussion_id}}")

MR_EVENT_ID = WebhookVariable("MR_EVENT_ID", "{{object_attributes.iid}}")
MR_EVENT_SOURCE_BRANCH = WebhookVariable(
    "MR_EVENT_SOURCE_BRANCH", "{{object_attributes.source_branch}}"
)
MR_EVENT_TARGET_BRANCH = WebhookVariable(
    "MR_EVENT_TARGET_BRANCH", "{{object_attributes.target_branch}}"
)
MR_EVENT_TITLE = WebhookVariable("MR_EVENT_TITLE", "{{object_attributes.title}}")
MR_EVENT_DESCRIPTION = WebhookVariable(
    "MR_EVENT_DESCRIPTION", "{{object_attributes.description}}"
)
MR_EVENT_ACTION = WebhookVariable("MR_EVENT_ACTION", "{{object_attributes.action}}")
MR_EVENT_URL = WebhookVariable("MR_EVENT_URL", "{{object_attributes.url}}")

OBJECT_ID = WebhookVariable("OBJECT_ID", "{{object_attributes.id}}")

# Predefined by GitLab CI; used for the push remote and git setup.
CI_SERVER_PROTOCOL = WebhookVariable("CI_SERVER_PROTOCOL")
CI_SERVER_HOST = WebhookVariable("CI_SERVER_HOST")
CI_PROJECT_PATH = WebhookVariable("CI_PROJECT_PATH")
CI_PROJECT_DIR = WebhookVariable("CI_PROJECT_DIR")
ENV_FILE = WebhookVariable("ENV_FILE")

WEBHOOK_VARIABLES: tuple[WebhookVariable, ...] = (
    JUNIE_WEBHOOK,
    JUNIE_BOT_TAGGING_PATTERN,
    JUNIE_VERSION,
    USE_MCP,
    JUNIE_MODEL,
    CI_API_V4_URL,
    CI_DEFAULT_BRANCH,
    CI_PROJECT_ID,
    CI_PROJECT_NAME,
    CI_PIPELINE_ID,
    EVENT_KIND,
    GITLAB_TOKEN_FOR_JUNIE,
    JUNIE_API_KEY,
    ISSUE_ID,
    COMMENT_TEXT,
    ISSUE_URL,
    MERGE_REQUEST_ID,
    MERGE_REQUEST_SOURCE_BRANCH,
    MERGE_REQUEST_TARGET_BRANCH,
    DISCUSSION_ID,
    MR_EVENT_ID,
    MR_EVENT_SOURCE_BRANCH,
    MR_EVENT_TARGET_BRANCH,
    MR_EVENT_TITLE,
    MR_EVENT_DESCRIPTION,
    MR_EVENT_ACTION,
    MR_EVENT_URL,
    OBJECT_ID,
)


@dataclass(frozen=True)
class CliOptions:
    cleanup_after_idle_run: bool = False
    mr_mode: MrMode = "new"
    custom_prompt: str | None = None


@dataclass(frozen=True)
class CiServerConfig:
    protocol: str | None
    host: str | None
    project_path: str | None
    project_dir: str | None
    env_file: str | None


@dataclass(frozen=True)
class WebhookEnv:
    is_junie_webhook: bool
    bot_tagging_pattern: str | None
    junie_version: str | None
    use_mcp: bool
    junie_model: str | None
    api_v4_url: str | None
    default_branch: str | None
    project_id: int | None
    project_name: str | None
    pipeline_id: int | None
    event_kind: str | None
    gitlab_token: str | None = field(repr=False)
    junie_api_key: str | None = field(repr=False)
    issue_iid: int | None
    comment_text: str | None
    issue_url: str | None
    merge_request_iid: int | None
    merge_request_source_branch: str | None
    merge_request_target_branch: str | None
    discussion_id: str | None
    mr_event_iid: int | None
    mr_event_source_branch: str | None
    mr_event_target_branch: str | None
    mr_event_title: str | None
    mr_event_description: str | None
    mr_event_action: str | None
    mr_event_url: str | None
    object_id: int | None
    ci_server: CiServerConfig


def load_webhook_env(environ: Mapping[str, str]) -> WebhookEnv:
    return WebhookEnv(
        is_junie_webhook=_bool_value(environ, JUNIE_WEBHOOK),
        bot_tagging_pattern=_optional_str(environ, JUNIE_BOT_TAGGING_PATTERN),
        junie_version=_optional_str(environ, JUNIE_VERSION),
        use_mcp=_bool_value(environ, USE_MCP),
        junie_model=_optional_str(environ, JUNIE_MODEL),
        api_v4_url=_optional_str(environ, CI_API_V4_URL),
        default_branch=_optional_str(environ, CI_DEFAULT_BRANCH),
        project_id=_optional_int(environ, CI_PROJECT_ID),
        project_name=_optional_str(environ, CI_PROJECT_NAME),
        pipeline_id=_optional_int(environ, CI_PIPELINE_ID),
        event_kind=_optional_str(environ, EVENT_KIND),
        gitlab_token=_optional_str(environ, GITLAB_TOKEN_FOR_JUNIE),
        junie_api_key=_optional_str(environ, JUNIE_API_KEY),
        issue_iid=_optional_int(environ, ISSUE_ID),
        comment_text=_optional_str(environ, COMMENT_TEXT),
        issue_url=_optional_str(environ, ISSUE_URL),
        merge_request_iid=_optional_int(environ, MERGE_REQUEST_ID),
        merge_request_source_branch=_optional_str(environ, MERGE_REQUEST_SOURCE_BRANCH),
        merge_request_target_branch=_optional_str(environ, MERGE_REQUEST_TARGET_BRANCH),
        discussion_id=_optional_str(environ, DISCUSSION_ID),
        mr_event_iid=_optional_int(environ, MR_EVENT_ID),
        mr_event_source_branch=_optional_str(environ, MR_EVENT_SOURCE_BRANCH),
        mr_event_target_branch=_optional_str(environ, MR_EVENT_TARGET_BRANCH),
        mr_event_title=_optional_str(environ, MR_EVENT_TITLE),
        mr_event_description=_optional_str(environ, MR_EVENT_DESCRIPTION),
        mr_event_action=_optional_str(environ, MR_EVENT_ACTION),
        mr_event_url=_optional_str(environ, MR_EVENT_URL),
        object_id=_optional_int(environ, OBJECT_ID),
        ci_server=CiServerConfig(
            protocol=_optional_str(environ, CI_SERVER_PROTOCOL),
            host=_optional_str(environ, CI_SERVER_HOST),
            project_path=_optional_str(environ, CI_PROJECT_PATH),
            project_dir=_optional_str(environ, CI_PROJECT_DIR),
            env_file=_optional_str(environ, ENV_FILE),
        ),
    )


def webhook_template_variables() -> list[dict[str, str]]:
    return [
        {"key": variable.key, "value": variable.template}
        for variable in WEBHOOK_VARIABLES
        if variable.template is not None
    ]


def require_str(value: str | None, variable: WebhookVariable) -> str:
    if not value:
        raise ConfigError(f"{variable.key} is required")
    return value


def require_int(value: int | None, variable: WebhookVariable) -> int:
    if not value:
        raise ConfigError(f"{variable.key} is required")
    return value


def _optional_str(environ: Mapping[str, str], variable: WebhookVariable) -> str | None:
    return environ.get(variable.key)


def _optional_int(environ: Mapping[str, str], variable: WebhookVariable) -> int | None:
    raw = environ.get(variable.key)
    if not raw:
        return None
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise ConfigError(f"{variable.key} must be an integer, got {raw!r}") from exc


def _bool_value(environ: Mapping[str, str], variable: WebhookVariable) -> bool:
    return environ.get(variable.key) == "true"
