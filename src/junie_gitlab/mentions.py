from __future__ import annotations

import logging
import re

from junie_gitlab.gitlab_gateway import GitLabApiError, GitLabGateway
from junie_gitlab.models import AccessToken
from junie_gitlab.observability import log_event


LOGGER = logging.getLogger("junie_gitlab.mentions")
LITERAL_MENTION = "@junie"
TOKEN_MENTION_PATTERN = re.compile(r"@(project|group)_[-a-zA-Z0-9_]+")
_FORBIDDEN = 403


def has_bot_mention(
    gateway: GitLabGateway, project_id: int, text: str, pattern: re.Pattern[str]
) -> bool:
    """Return whether ``text`` addresses the bot.

    A literal ``@junie`` always counts. Otherwise the text must mention a
    project or group access-token bot user whose token name matches ``pattern``.
    """
    if LITERAL_MENTION in text.lower():
        log_event(LOGGER, "mention_detected", kind="literal")
        return True

    mentions = [match.group(0) for match in TOKEN_MENTION_PATTERN.finditer(text)]
    if not mentions:
        return False

    tokens = collect_access_tokens(gateway, project_id)
    candidates = [
        token
        for token in tokens
        if token.active and not token.revoked and pattern.search(token.name)
    ]
    log_event(
        LOGGER,
        "mention_candidates",
        mention_count=len(mentions),
        token_count=len(tokens),
        candidate_count=len(candidates),
    )
    for token in candidates:
        user = gateway.get_user(token.user_id)
        if any(user.username in mention for mention in mentions):
            log_event(
                LOGGER,
                "mention_detected",
                kind="access_token",
                username=user.username,
                token_name=token.name,
            )
            return True
    return False


def collect_access_tokens(gateway: GitLabGateway, project_id: int) -> list[AccessToken]:
    """Project access tokens plus those of every group up the namespace chain.

    A 403 from a group stops the walk; tokens gathered so far are kept.
    """
    tokens = list(gateway.list_project_access_tokens(project_id))
    project = gateway.get_project(project_id)
    if project.namespace_kind != "group" or project.namespace_id is None:
        return tokens

    visited: set[int] = set()
    group_id: int | None = project.namespace_id
    while group_id is not None and group_id not in visited:
        visited.add(group_id)
        try:
            tokens.extend(gateway.list_group_access_tokens(group_id))
            group_id = gateway.get_group(group_id).parent_id
        except GitLabApiError as exc:
            if exc.status_code != _FORBIDDEN:
                raise
            log_event(LOGGER, "group_walk_forbidden", group_id=group_id, token_count=len(tokens))
            break
    return tokens
