from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Issue:
    iid: int
    title: str
    description: str
    web_url: str


@dataclass(frozen=True)
class MergeRequest:
    iid: int
    title: str
    description: str | None
    web_url: str
    source_branch: str
    target_branch: str


@dataclass(frozen=True)
class CreatedMergeRequest:
    iid: int
    web_url: str


@dataclass(frozen=True)
class AccessToken:
    token_id: int
    name: str
    user_id: int
    active: bool
    revoked: bool


@dataclass(frozen=True)
class User:
    user_id: int
    username: str


@dataclass(frozen=True)
class Project:
    project_id: int
    namespace_id: int | None
    namespace_kind: str | None


@dataclass(frozen=True)
class Group:
    group_id: int
    parent_id: int | None


@dataclass(frozen=True)
class ProjectHook:
    hook_id: int
    url: str
    custom_webhook_template: str | None


@dataclass(frozen=True)
class FileStatus:
    path: str
    index: str
    working_dir: str


@dataclass(frozen=True)
class IssueNoteReaction:
    project_id: int
    issue_iid: int
    note_id: int
    emoji: str


@dataclass(frozen=True)
class IssueNote:
    project_id: int
    issue_iid: int
    body: str


@dataclass(frozen=True)
class MergeRequestDiscussionNote:
    project_id: int
    merge_request_iid: int
    discussion_id: str
    body: str


@dataclass(frozen=True)
class MergeRequestNote:
    project_id: int
    merge_request_iid: int
    body: str


FeedbackRequest = IssueNoteReaction | IssueNote | MergeRequestDiscussionNote | MergeRequestNote
