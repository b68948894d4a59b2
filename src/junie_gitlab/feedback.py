from __future__ import annotations

from collections.abc import Iterable
import logging
from typing import assert_never

from junie_gitlab.gitlab_gateway import GitLabGateway
from junie_gitlab.models import (
    FeedbackRequest,
    IssueNote,
    IssueNoteReaction,
    MergeRequestDiscussionNote,
    MergeRequestNote,
)
from junie_gitlab.observability import log_event


LOGGER = logging.getLogger("junie_gitlab.feedback")


def submit_feedback(gateway: GitLabGateway, request: FeedbackRequest) -> None:
    if isinstance(request, IssueNoteReaction):
        gateway.award_issue_note_emoji(
            request.project_id, request.issue_iid, request.note_id, request.emoji
        )
    elif isinstance(request, IssueNote):
        gateway.post_issue_note(request.project_id, request.issue_iid, request.body)
    elif isinstance(request, MergeRequestDiscussionNote):
        gateway.post_merge_request_discussion_note(
            request.project_id,
            request.merge_request_iid,
            request.discussion_id,
            request.body,
        )
    elif isinstance(request, MergeRequestNote):
        gateway.post_merge_request_note(
            request.project_id, request.merge_request_iid, request.body
        )
    else:
        assert_never(request)


def dispatch_feedback(gateway: GitLabGateway, requests: Iterable[FeedbackRequest]) -> int:
    """Submit requests in order; a failed item is logged and the rest still go out.

    Returns the number of requests that were delivered.
    """
    delivered = 0
    for request in requests:
        try:
            submit_feedback(gateway, request)
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "feedback_dispatch_failed",
                request_type=type(request).__name__,
                project_id=request.project_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            continue
        delivered += 1
    return delivered
