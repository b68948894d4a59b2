from __future__ import annotations

from dataclasses import dataclass
import logging

from junie_gitlab.context import (
    ExecutionContext,
    IssueCommentContext,
    MergeRequestCommentContext,
    MergeRequestEventContext,
)
from junie_gitlab.gitlab_gateway import GitLabGateway
from junie_gitlab.mentions import has_bot_mention
from junie_gitlab.models import (
    IssueNote,
    IssueNoteReaction,
    MergeRequestDiscussionNote,
    MergeRequestNote,
)
from junie_gitlab.observability import log_event
from junie_gitlab.prompts import (
    STARTED_EMOJI,
    STARTED_MESSAGE,
    build_code_review_prompt,
    build_issue_comment_task_text,
    build_mcp_note,
    build_merge_request_task_text,
    build_task_payload,
    is_code_review_request,
    render_finished_message,
    render_mr_description,
)


LOGGER = logging.getLogger("junie_gitlab.tasks")
EMPTY_DESCRIPTION = "(empty description)"
NO_MENTION_REASON = "Comment doesn't contain mention to Junie"


@dataclass(frozen=True)
class TaskExtractionFailed:
    reason: str


@dataclass(frozen=True)
class IssueCommentTask:
    context: IssueCommentContext
    issue_title: str
    issue_description: str

    @property
    def checkout_branch(self) -> str | None:
        return None

    def build_prompt(self, use_mcp: bool) -> str:
        context = self.context
        task_text = build_issue_comment_task_text(
            title=self.issue_title,
            description=self.issue_description,
            comment_text=context.comment_text,
            custom_prompt=context.project.cli_options.custom_prompt,
        )
        mcp_note = None
        if use_mcp:
            mcp_note = build_mcp_note(
                project_id=context.project.project_id,
                issue_iid=context.issue_iid,
                comment_id=context.comment_id,
            )
        return build_task_payload(task_text, mcp_note=mcp_note)

    def title(self) -> str:
        return self.issue_title

    def build_mr_description(self, outcome: str | None) -> str:
        return render_mr_description(outcome)

    def start_feedback(self) -> list[IssueNote | IssueNoteReaction]:
        context = self.context
        project_id = context.project.project_id
        return [
            IssueNote(project_id=project_id, issue_iid=context.issue_iid, body=STARTED_MESSAGE),
            IssueNoteReaction(
                project_id=project_id,
                issue_iid=context.issue_iid,
                note_id=context.comment_id,
                emoji=STARTED_EMOJI,
            ),
        ]

    def finish_feedback(
        self, outcome: str | None, task_name: str | None, created_mr_url: str | None
    ) -> list[IssueNote]:
        body = render_finished_message(
            outcome=outcome, task_name=task_name, created_mr_url=created_mr_url
        )
        return [
            IssueNote(
                project_id=self.context.project.project_id,
                issue_iid=self.context.issue_iid,
                body=body,
            )
        ]


@dataclass(frozen=True)
class MergeRequestCommentTask:
    context: MergeRequestCommentContext
    merge_request_title: str
    merge_request_description: str
    merge_request_url: str

    @property
    def checkout_branch(self) -> str | None:
        return self.context.source_branch

    def build_prompt(self, use_mcp: bool) -> str:
        context = self.context
        custom_prompt = context.project.cli_options.custom_prompt
        if is_code_review_request(custom_prompt) or is_code_review_request(context.comment_text):
            task_text = build_code_review_prompt(context.merge_request_iid)
        else:
            task_text = build_merge_request_task_text(
                title=self.merge_request_title,
                description=self.merge_request_description,
                comment_text=context.comment_text,
                custom_prompt=custom_prompt,
            )
        mcp_note = None
        if use_mcp:
            mcp_note = build_mcp_note(
                project_id=context.project.project_id,
                merge_request_iid=context.merge_request_iid,
                comment_id=context.comment_id,
            )
        return build_task_payload(task_text, mcp_note=mcp_note)

    def title(self) -> str:
        return self.merge_request_title

    def build_mr_description(self, outcome: str | None) -> str:
        return render_mr_description(outcome)

    def start_feedback(self) -> list[MergeRequestDiscussionNote]:
        return [self._discussion_note(STARTED_MESSAGE)]

    def finish_feedback(
        self, outcome: str | None, task_name: str | None, created_mr_url: str | None
    ) -> list[MergeRequestDiscussionNote]:
        body = render_finished_message(
            outcome=outcome, task_name=task_name, created_mr_url=created_mr_url
        )
        return [self._discussion_note(body)]

    def _discussion_note(self, body: str) -> MergeRequestDiscussionNote:
        return MergeRequestDiscussionNote(
            project_id=self.context.project.project_id,
            merge_request_iid=self.context.merge_request_iid,
            discussion_id=self.context.discussion_id,
            body=body,
        )


@dataclass(frozen=True)
class MergeRequestEventTask:
    context: MergeRequestEventContext

    @property
    def checkout_branch(self) -> str | None:
        return self.context.source_branch

    def build_prompt(self, use_mcp: bool) -> str:
        context = self.context
        custom_prompt = context.project.cli_options.custom_prompt
        if is_code_review_request(custom_prompt):
            task_text = build_code_review_prompt(context.merge_request_iid)
        else:
            task_text = build_merge_request_task_text(
                title=context.title,
                description=context.description,
                comment_text=None,
                custom_prompt=custom_prompt,
            )
        mcp_note = None
        if use_mcp:
            mcp_note = build_mcp_note(
                project_id=context.project.project_id,
                merge_request_iid=context.merge_request_iid,
            )
        return build_task_payload(task_text, mcp_note=mcp_note)

    def title(self) -> str:
        return self.context.title

    def build_mr_description(self, outcome: str | None) -> str:
        return render_mr_description(outcome)

    def start_feedback(self) -> list[MergeRequestNote]:
        return [self._note(STARTED_MESSAGE)]

    def finish_feedback(
        self, outcome: str | None, task_name: str | None, created_mr_url: str | None
    ) -> list[MergeRequestNote]:
        body = render_finished_message(
            outcome=outcome, task_name=task_name, created_mr_url=created_mr_url
        )
        return [self._note(body)]

    def _note(self, body: str) -> MergeRequestNote:
        return MergeRequestNote(
            project_id=self.context.project.project_id,
            merge_request_iid=self.context.merge_request_iid,
            body=body,
        )


Task = IssueCommentTask | MergeRequestCommentTask | MergeRequestEventTask
TaskExtractionResult = TaskExtractionFailed | Task


def extract_task(context: ExecutionContext, gateway: GitLabGateway) -> TaskExtractionResult:
    """Decide whether the event is work for the agent and gather what the prompt needs."""
    project = context.project
    if isinstance(context, IssueCommentContext):
        if not has_bot_mention(
            gateway, project.project_id, context.comment_text, project.bot_tagging_pattern
        ):
            return TaskExtractionFailed(NO_MENTION_REASON)
        issue = gateway.get_issue(project.project_id, context.issue_iid)
        log_event(LOGGER, "task_extracted", task_type="issue_comment", issue_iid=issue.iid)
        return IssueCommentTask(
            context=context, issue_title=issue.title, issue_description=issue.description
        )

    if isinstance(context, MergeRequestCommentContext):
        if not has_bot_mention(
            gateway, project.project_id, context.comment_text, project.bot_tagging_pattern
        ):
            return TaskExtractionFailed(NO_MENTION_REASON)
        merge_request = gateway.get_merge_request(project.project_id, context.merge_request_iid)
        log_event(
            LOGGER,
            "task_extracted",
            task_type="merge_request_comment",
            merge_request_iid=merge_request.iid,
        )
        description = merge_request.description
        if description is None:
            description = EMPTY_DESCRIPTION
        return MergeRequestCommentTask(
            context=context,
            merge_request_title=merge_request.title,
            merge_request_description=description,
            merge_request_url=merge_request.web_url,
        )

    if isinstance(context, MergeRequestEventContext):
        if not project.cli_options.custom_prompt:
            return TaskExtractionFailed(
                f"MR event action '{context.action}' no custom prompt set"
            )
        log_event(
            LOGGER,
            "task_extracted",
            task_type="merge_request_event",
            merge_request_iid=context.merge_request_iid,
            action=context.action,
        )
        return MergeRequestEventTask(context=context)

    return TaskExtractionFailed(f"Unsupported event: {type(context).__name__}")
