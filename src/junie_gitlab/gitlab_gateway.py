from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import cast
from urllib.parse import urlencode, urlparse

from junie_gitlab.models import (
    AccessToken,
    CreatedMergeRequest,
    Group,
    Issue,
    MergeRequest,
    Project,
    ProjectHook,
    User,
)
from junie_gitlab.observability import log_event
from junie_gitlab.shell import preview_text, run


LOGGER = logging.getLogger("junie_gitlab.gitlab_gateway")
_PER_PAGE = 100


class GitLabApiError(RuntimeError):
    """A GitLab REST call that did not return a 2xx response."""

    def __init__(self, message: str, *, path: str, status_code: int | None) -> None:
        super().__init__(message)
        self.path = path
        self.status_code = status_code


@dataclass(frozen=True)
class GitLabGateway:
    api_v4_url: str
    token: str = field(repr=False)

    @property
    def hostname(self) -> str:
        parsed = urlparse(self.api_v4_url)
        if not parsed.netloc:
            raise ValueError(f"Invalid GitLab API URL: {self.api_v4_url!r}")
        return parsed.netloc

    def get_issue(self, project_id: int, issue_iid: int) -> Issue:
        payload_obj = self._api_object("GET", f"projects/{project_id}/issues/{issue_iid}", "issue")
        issue = Issue(
            iid=_as_int(payload_obj.get("iid"), field="iid"),
            title=_as_string(payload_obj.get("title")),
            description=_as_string(payload_obj.get("description")),
            web_url=_as_string(payload_obj.get("web_url")),
        )
        log_event(LOGGER, "gitlab_read", endpoint="issue", project_id=project_id, iid=issue.iid)
        return issue

    def get_merge_request(self, project_id: int, merge_request_iid: int) -> MergeRequest:
        payload_obj = self._api_object(
            "GET", f"projects/{project_id}/merge_requests/{merge_request_iid}", "merge request"
        )
        merge_request = MergeRequest(
            iid=_as_int(payload_obj.get("iid"), field="iid"),
            title=_as_string(payload_obj.get("title")),
            description=_as_optional_str(payload_obj.get("description")),
            web_url=_as_string(payload_obj.get("web_url")),
            source_branch=_as_string(payload_obj.get("source_branch")),
            target_branch=_as_string(payload_obj.get("target_branch")),
        )
        log_event(
            LOGGER,
            "gitlab_read",
            endpoint="merge_request",
            project_id=project_id,
            iid=merge_request.iid,
        )
        return merge_request

    def post_issue_note(self, project_id: int, issue_iid: int, body: str) -> None:
        path = f"projects/{project_id}/issues/{issue_iid}/notes"
        try:
            self._api_json("POST", path, payload={"body": body})
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "gitlab_issue_note_failed",
                project_id=project_id,
                issue_iid=issue_iid,
                error_type=type(exc).__name__,
            )
            raise
        log_event(LOGGER, "gitlab_issue_note_posted", project_id=project_id, issue_iid=issue_iid)

    def award_issue_note_emoji(
        self, project_id: int, issue_iid: int, note_id: int, emoji: str
    ) -> None:
        path = f"projects/{project_id}/issues/{issue_iid}/notes/{note_id}/award_emoji"
        self._api_json("POST", path, payload={"name": emoji})
        log_event(
            LOGGER,
            "gitlab_emoji_awarded",
            project_id=project_id,
            issue_iid=issue_iid,
            note_id=note_id,
            emoji=emoji,
        )

    def post_merge_request_note(self, project_id: int, merge_request_iid: int, body: str) -> None:
        path = f"projects/{project_id}/merge_requests/{merge_request_iid}/notes"
        try:
            self._api_json("POST", path, payload={"body": body})
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "gitlab_mr_note_failed",
                project_id=project_id,
                merge_request_iid=merge_request_iid,
                error_type=type(exc).__name__,
            )
            raise
        log_event(
            LOGGER,
            "gitlab_mr_note_posted",
            project_id=project_id,
            merge_request_iid=merge_request_iid,
        )

    def post_merge_request_discussion_note(
        self, project_id: int, merge_request_iid: int, discussion_id: str, body: str
    ) -> None:
        path = (
            f"projects/{project_id}/merge_requests/{merge_request_iid}"
            f"/discussions/{discussion_id}/notes"
        )
        try:
            self._api_json("POST", path, payload={"body": body})
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "gitlab_discussion_note_failed",
                project_id=project_id,
                merge_request_iid=merge_request_iid,
                discussion_id=discussion_id,
                error_type=type(exc).__name__,
            )
            raise
        log_event(
            LOGGER,
            "gitlab_discussion_note_posted",
            project_id=project_id,
            merge_request_iid=merge_request_iid,
            discussion_id=discussion_id,
        )

    def create_merge_request(
        self,
        project_id: int,
        *,
        source_branch: str,
        target_branch: str,
        title: str,
        description: str,
    ) -> CreatedMergeRequest:
        path = f"projects/{project_id}/merge_requests"
        try:
            payload_obj = self._api_object(
                "POST",
                path,
                "merge request",
                payload={
                    "source_branch": source_branch,
                    "target_branch": target_branch,
                    "title": title,
                    "description": description,
                },
            )
            iid = _as_int(payload_obj.get("iid"), field="iid")
            web_url = _as_string(payload_obj.get("web_url"))
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "gitlab_mr_create_failed",
                project_id=project_id,
                source_branch=source_branch,
                target_branch=target_branch,
                error_type=type(exc).__name__,
            )
            raise
        log_event(
            LOGGER,
            "gitlab_mr_created",
            project_id=project_id,
            iid=iid,
            web_url=web_url,
            source_branch=source_branch,
            target_branch=target_branch,
        )
        return CreatedMergeRequest(iid=iid, web_url=web_url)

    def delete_merge_request(self, project_id: int, merge_request_iid: int) -> None:
        self._api_json("DELETE", f"projects/{project_id}/merge_requests/{merge_request_iid}")
        log_event(
            LOGGER,
            "gitlab_mr_deleted",
            project_id=project_id,
            merge_request_iid=merge_request_iid,
        )

    def delete_pipeline(self, project_id: int, pipeline_id: int) -> None:
        self._api_json("DELETE", f"projects/{project_id}/pipelines/{pipeline_id}")
        log_event(
            LOGGER, "gitlab_pipeline_deleted", project_id=project_id, pipeline_id=pipeline_id
        )

    def list_project_access_tokens(self, project_id: int) -> list[AccessToken]:
        items = self._list_paginated(
            f"projects/{project_id}/access_tokens", resource="project_access_tokens"
        )
        return [_parse_access_token(item) for item in items]

    def list_group_access_tokens(self, group_id: int) -> list[AccessToken]:
        items = self._list_paginated(
            f"groups/{group_id}/access_tokens", resource="group_access_tokens"
        )
        return [_parse_access_token(item) for item in items]

    def get_project(self, project_id: int) -> Project:
        payload_obj = self._api_object("GET", f"projects/{project_id}", "project")
        namespace = _as_object_dict(payload_obj.get("namespace")) or {}
        project = Project(
            project_id=_as_int(payload_obj.get("id"), field="id"),
            namespace_id=_as_optional_int(namespace.get("id"), field="namespace.id"),
            namespace_kind=_as_optional_str(namespace.get("kind")),
        )
        log_event(
            LOGGER,
            "gitlab_read",
            endpoint="project",
            project_id=project.project_id,
            namespace_kind=project.namespace_kind,
        )
        return project

    def get_group(self, group_id: int) -> Group:
        payload_obj = self._api_object("GET", f"groups/{group_id}?with_projects=false", "group")
        group = Group(
            group_id=_as_int(payload_obj.get("id"), field="id"),
            parent_id=_as_optional_int(payload_obj.get("parent_id"), field="parent_id"),
        )
        log_event(
            LOGGER,
            "gitlab_read",
            endpoint="group",
            group_id=group.group_id,
            parent_id=group.parent_id,
        )
        return group

    def get_user(self, user_id: int) -> User:
        payload_obj = self._api_object("GET", f"users/{user_id}", "user")
        user = User(
            user_id=_as_int(payload_obj.get("id"), field="id"),
            username=_as_string(payload_obj.get("username")),
        )
        log_event(LOGGER, "gitlab_read", endpoint="user", user_id=user.user_id)
        return user

    def list_project_hooks(self, project_id: int) -> list[ProjectHook]:
        items = self._list_paginated(f"projects/{project_id}/hooks", resource="project_hooks")
        return [_parse_project_hook(item) for item in items]

    def create_project_hook(self, project_id: int, payload: dict[str, object]) -> ProjectHook:
        payload_obj = self._api_object(
            "POST", f"projects/{project_id}/hooks", "project hook", payload=payload
        )
        hook = _parse_project_hook(payload_obj)
        log_event(LOGGER, "gitlab_hook_created", project_id=project_id, hook_id=hook.hook_id)
        return hook

    def delete_project_hook(self, project_id: int, hook_id: int) -> None:
        self._api_json("DELETE", f"projects/{project_id}/hooks/{hook_id}")
        log_event(LOGGER, "gitlab_hook_deleted", project_id=project_id, hook_id=hook_id)

    def _list_paginated(self, path: str, *, resource: str) -> list[dict[str, object]]:
        items: list[dict[str, object]] = []
        page = 1
        while True:
            query = urlencode({"per_page": _PER_PAGE, "page": page})
            payload = self._api_json("GET", f"{path}?{query}")
            if not isinstance(payload, list):
                raise RuntimeError(f"Unexpected GitLab response: expected list for {resource}")
            for item in payload:
                item_obj = _as_object_dict(item)
                if item_obj is not None:
                    items.append(item_obj)
            if len(payload) < _PER_PAGE:
                break
            page += 1
        log_event(LOGGER, "gitlab_read", endpoint=resource, pages=page, count=len(items))
        return items

    def _api_object(
        self,
        method: str,
        path: str,
        resource: str,
        payload: dict[str, object] | None = None,
    ) -> dict[str, object]:
        payload_obj = _as_object_dict(self._api_json(method, path, payload=payload))
        if payload_obj is None:
            raise RuntimeError(f"Unexpected GitLab response: expected object for {resource}")
        return payload_obj

    def _api_json(self, method: str, path: str, payload: dict[str, object] | None = None) -> object:
        method_upper = method.upper()
        cmd = ["glab", "api", "--hostname", self.hostname, "--method", method_upper, "--include"]
        stdin_payload: str | None = None
        if payload is not None:
            cmd.extend(["--header", "Content-Type: application/json", "--input", "-"])
            stdin_payload = json.dumps(payload)
        cmd.append(path)

        raw = run(
            cmd,
            input_text=stdin_payload,
            env={"GITLAB_TOKEN": self.token},
            secrets=(self.token,),
            check=False,
        )
        try:
            status_code, body = _parse_http_response(raw)
        except RuntimeError as exc:
            log_event(
                LOGGER,
                "gitlab_api_failed",
                method=method_upper,
                path=path,
                error=str(exc),
                raw_preview=preview_text(raw, limit=240),
            )
            raise GitLabApiError(
                f"GitLab {method_upper} {path} failed: {exc}", path=path, status_code=None
            ) from exc

        if status_code < 200 or status_code >= 300:
            message = body.strip() or "<empty>"
            log_event(
                LOGGER,
                "gitlab_api_failed",
                method=method_upper,
                path=path,
                status_code=status_code,
                raw_preview=preview_text(message, limit=240),
            )
            raise GitLabApiError(
                f"GitLab {method_upper} {path} failed with status {status_code}: {message}",
                path=path,
                status_code=status_code,
            )
        if not body.strip():
            return None
        return json.loads(body)


def _parse_access_token(item: dict[str, object]) -> AccessToken:
    return AccessToken(
        token_id=_as_int(item.get("id"), field="id"),
        name=_as_string(item.get("name")),
        user_id=_as_int(item.get("user_id"), field="user_id"),
        active=item.get("active") is True,
        revoked=item.get("revoked") is True,
    )


def _parse_project_hook(item: dict[str, object]) -> ProjectHook:
    return ProjectHook(
        hook_id=_as_int(item.get("id"), field="id"),
        url=_as_string(item.get("url")),
        custom_webhook_template=_as_optional_str(item.get("custom_webhook_template")),
    )


def _parse_http_response(raw: str) -> tuple[int, str]:
    """Split ``glab api --include`` output into the final status code and body.

    Interim responses (``100 Continue``, redirects) each print a header block;
    the body follows the last one.
    """
    remaining = raw.replace("\r\n", "\n").lstrip("\n")
    status_line: str | None = None
    while remaining.startswith("HTTP/"):
        head, _, remaining = remaining.partition("\n\n")
        status_line = head.split("\n", 1)[0]
    if status_line is None:
        raise RuntimeError("Unexpected GitLab response: missing HTTP status line")

    code = status_line.partition(" ")[2].split(" ", 1)[0]
    if not code.isdigit():
        raise RuntimeError(f"Unexpected GitLab response status line: {status_line!r}")
    return int(code), remaining


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def _as_optional_str(value: object) -> str | None:
    if value is None or isinstance(value, str):
        return value
    return str(value)


def _as_string(value: object) -> str:
    return _as_optional_str(value) or ""


def _as_int(value: object, *, field: str) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as exc:
            raise RuntimeError(f"Unexpected GitLab response value for {field}: {value}") from exc
    raise RuntimeError(f"Unexpected GitLab response type for {field}")


def _as_optional_int(value: object, *, field: str) -> int | None:
    if value is None:
        return None
    return _as_int(value, field=field)
