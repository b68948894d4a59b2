from __future__ import annotations

import json
import logging

from junie_gitlab.config import (
    CI_API_V4_URL,
    CI_DEFAULT_BRANCH,
    CI_PROJECT_ID,
    GITLAB_TOKEN_FOR_JUNIE,
    JUNIE_WEBHOOK,
    WebhookEnv,
    require_int,
    require_str,
    webhook_template_variables,
)
from junie_gitlab.gitlab_gateway import GitLabGateway
from junie_gitlab.models import ProjectHook
from junie_gitlab.observability import log_event


LOGGER = logging.getLogger("junie_gitlab.webhook_setup")
WEBHOOK_NAME = "Junie"
WEBHOOK_DESCRIPTION = "Junie webhook"


def register_webhook(gateway: GitLabGateway, env: WebhookEnv, *, force: bool = False) -> int:
    """Make sure the project has the bot's pipeline-trigger webhook; return its id.

    An existing hook is left alone unless ``force`` is set, in which case it is
    deleted and created again from the current variable set.
    """
    project_id = require_int(env.project_id, CI_PROJECT_ID)
    gitlab_token = require_str(env.gitlab_token, GITLAB_TOKEN_FOR_JUNIE)
    api_v4_url = require_str(env.api_v4_url, CI_API_V4_URL)
    default_branch = require_str(env.default_branch, CI_DEFAULT_BRANCH)

    existing = find_bot_webhook(gateway.list_project_hooks(project_id))
    if existing is not None:
        log_event(LOGGER, "webhook_found", project_id=project_id, hook_id=existing.hook_id)
        if not force:
            return existing.hook_id
        gateway.delete_project_hook(project_id, existing.hook_id)
        log_event(LOGGER, "webhook_deleted", project_id=project_id, hook_id=existing.hook_id)

    template = json.dumps({"variables": webhook_template_variables()}, indent=2)
    LOGGER.debug("Generated webhook template:\n%s", template)
    created = gateway.create_project_hook(
        project_id,
        build_webhook_payload(
            url=f"{api_v4_url}/projects/{project_id}/pipeline?ref={default_branch}",
            gitlab_token=gitlab_token,
            template=template,
        ),
    )
    log_event(LOGGER, "webhook_created", project_id=project_id, hook_id=created.hook_id)
    return created.hook_id


def find_bot_webhook(hooks: list[ProjectHook]) -> ProjectHook | None:
    for hook in hooks:
        if _is_bot_template(hook):
            return hook
    return None


def build_webhook_payload(*, url: str, gitlab_token: str, template: str) -> dict[str, object]:
    return {
        "url": url,
        "name": WEBHOOK_NAME,
        "description": WEBHOOK_DESCRIPTION,
        "issues_events": True,
        "note_events": True,
        "merge_requests_events": True,
        "push_events": False,
        "token": gitlab_token,
        "enable_ssl_verification": True,
        "custom_headers": [{"key": "Authorization", "value": f"Bearer {gitlab_token}"}],
        "custom_webhook_template": template,
    }


def _is_bot_template(hook: ProjectHook) -> bool:
    if not hook.custom_webhook_template:
        return False
    try:
        parsed = json.loads(hook.custom_webhook_template)
    except json.JSONDecodeError:
        log_event(LOGGER, "webhook_template_unparseable", hook_id=hook.hook_id)
        return False
    if not isinstance(parsed, dict):
        return False
    variables = parsed.get("variables")
    if not isinstance(variables, list):
        return False
    for variable in variables:
        if isinstance(variable, dict) and variable.get("key") == JUNIE_WEBHOOK.key:
            return variable.get("value") == "true"
    return False
