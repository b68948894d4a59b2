from __future__ import annotations

import json
import re


CODE_REVIEW_ACTION = "code-review"
CODE_REVIEW_TRIGGER = re.compile(re.escape(CODE_REVIEW_ACTION), re.IGNORECASE)

STARTED_MESSAGE = "Hey, it's Junie by JetBrains! I started processing your request"
FINISHED_PREFIX = "✅ Junie finished\n\n"
NO_CHANGES_MESSAGE = "Task completed. No changes were made."
MR_LINK_PREFIX = "📝 Merge Request link: "
STARTED_EMOJI = "thumbsup"

MR_INTRO_HEADER = (
    "## Hey! This MR was made for you with Junie, the coding agent by JetBrains "
    "Early Access Preview\n\n"
    "It's still learning, developing, and might make mistakes. Please make sure you review "
    "the changes before you accept them.\n"
    "We'd love your feedback: join our Discord to share bugs, ideas: "
    "[here](https://jb.gg/junie/github).\n\n"
)

GIT_OPERATIONS_NOTE = (
    "\n\nIMPORTANT: Do NOT commit or push changes. The system will handle all git operations "
    "(staging, committing, and pushing) automatically."
)
SUMMARY_POSTING_NOTE = (
    "\n\nIMPORTANT: Do NOT post your summary as a comment. The summary will be posted "
    "automatically by the system."
)


def is_code_review_request(text: str | None) -> bool:
    if not text:
        return False
    return CODE_REVIEW_TRIGGER.search(text) is not None


def build_mcp_note(
    *,
    project_id: int,
    issue_iid: int | None = None,
    merge_request_iid: int | None = None,
    comment_id: int | None = None,
) -> str:
    lines = [
        "",
        "Content for MCP usage (if needed):",
        f"current project ID: {project_id}",
    ]
    if issue_iid is not None:
        lines.append(f"current issue ID: {issue_iid}")
    if merge_request_iid is not None:
        lines.append(f"current merge request ID: {merge_request_iid}")
    if comment_id is not None:
        lines.append(f"current comment ID: {comment_id}")
    return "\n".join(lines) + SUMMARY_POSTING_NOTE


def build_task_payload(task_text: str, *, mcp_note: str | None) -> str:
    """Wrap the task text in the JSON shape the Junie CLI reads from its task variable."""
    text = task_text + (mcp_note or "") + GIT_OPERATIONS_NOTE
    return json.dumps({"textTask": {"text": text}})


def build_issue_comment_task_text(
    *, title: str, description: str, comment_text: str, custom_prompt: str | None
) -> str:
    if custom_prompt:
        return f"{custom_prompt}\n\nIssue: {title}\n\n{description}\n\nComment: {comment_text}"
    return f"{description}\n\n{comment_text}"


def build_merge_request_task_text(
    *,
    title: str,
    description: str,
    comment_text: str | None,
    custom_prompt: str | None,
) -> str:
    text = f"Merge request title: {title}\nMerge request description: {description}\n"
    if comment_text is not None:
        text += f"Comment text: {comment_text}\n"
    if custom_prompt:
        return f"{custom_prompt}\n\n{text}"
    return text


def render_finished_message(
    *, outcome: str | None, task_name: str | None, created_mr_url: str | None
) -> str:
    message = FINISHED_PREFIX
    if created_mr_url:
        message += MR_LINK_PREFIX + created_mr_url
    elif outcome:
        if task_name:
            message += f"**Task:** {task_name}\n\n"
        message += outcome
    else:
        message += NO_CHANGES_MESSAGE
    return message.strip()


def render_mr_description(outcome: str | None) -> str:
    return MR_INTRO_HEADER + (outcome or "")


def build_code_review_prompt(merge_request_iid: int) -> str:
    return f"""
Your task is to review Merge Request #{merge_request_iid}:

1. Use the 'gitlab.get_merge_request_diffs' MCP tool with mergeRequestIid={merge_request_iid} to get the diff.
2. Review this diff according to the criteria below.
3. For each specific finding, use the 'gitlab.create_merge_request_thread' MCP tool (if available) to provide feedback directly on the code with suggestions.
4. Once all findings are posted (or if the tool is unavailable), provide your review summary.

Additional instructions:
1. Review ONLY the changed lines against the Core Review Areas below, prioritizing repository style/guidelines adherence and avoiding overcomplication.
2. You may open files or search the project to understand context. Do NOT run tests, build, or make any modifications.
3. Do NOT call 'submit'.
4. Do NOT commit or push changes. The system will handle all git operations automatically.

### Core Review Areas

1. **Adherence with this repository style and guidelines**
   - Naming, formatting, and package structure consistency with existing code and modules.
   - Reuse of existing utilities/patterns; avoiding introduction of new dependencies.

2. **Avoiding overcomplications**
   - Avoid new abstractions, frameworks, premature generalization, or unnecessarily complicated solutions.
   - Avoid touching of unrelated files.
   - Avoid unnecessary indirection (wrappers, flags, configuration) and ensure straightforward control flow.
   - Do not allow duplicate logic.

### If obviously applicable to the CHANGED lines only
- Security: newly introduced unsafe input handling, command execution, or data exposure.
- Performance: unnecessary allocations/loops/heavy work on UI thread introduced by the change.
- Error handling: swallowing exceptions or deviating from existing error-handling patterns.

### Output Format
- If the 'gitlab.create_merge_request_thread' MCP tool is available, use it for each specific finding with inline comments on code lines.
- **To create inline comments on specific lines, use the `position` parameter**:
    - `position.position_type`: Set to "text"
    - `position.base_sha`: Base commit SHA (from diff metadata)
    - `position.head_sha`: Head commit SHA (from diff metadata)
    - `position.start_sha`: Start commit SHA (usually same as base_sha)
    - `position.new_path`: Path to the file (e.g., "src/file.ts")
    - `position.old_path`: Path to the file (usually same as new_path)
    - `position.new_line`: Line number for added/changed lines (green in diff)
    - `position.old_line`: Line number for removed lines (red in diff)
    - Note: For unchanged lines, include both new_line and old_line
- `commentBody`: Your explanation. Use native GitLab suggestions syntax for code changes.
- Once all inline comments are posted, call the 'answer' tool with your review as a bullet point list in the 'full_answer' field.
- If the tool is NOT available, use the fallback format in 'full_answer' only: -`File.ts:Line: Comment`.
- Comment ONLY on lines added in this diff (`+` lines). Do not comment on pre-existing code.
- Keep it concise (15-25 words per comment). No praise, questions, or speculation; omit low-impact nits.
- If unsure whether a comment applies, omit it. If no feedback is warranted, answer `LGTM` only.
- For small changes, max 3 comments; medium 6-8; large 8-12.

Merge Request ID: {merge_request_iid}
""".strip()
