from __future__ import annotations

import json
import logging
import sys
from typing import Final, Literal


_LOGGER_NAME: Final[str] = "junie_gitlab"
_MAX_VALUE_LEN: Final[int] = 120
_FORMAT: Final[str] = "%(asctime)s %(levelname)s %(name)s %(message)s"
_REDACTED: Final[str] = "<redacted>"
_SECRET_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "gitlab_token",
        "junie_api_key",
        "api_key",
        "auth",
        "remote_url",
    }
)
_LOW_VERBOSITY_EVENTS: Final[frozenset[str]] = frozenset(
    {
        "task_extracted",
        "no_task_detected",
        "cleanup_skipped",
        "pipeline_cleanup",
        "agent_install_finished",
        "agent_run_finished",
        "mention_detected",
        "changes_pushed",
        "gitlab_mr_created",
        "no_changes_to_commit",
        "feedback_dispatch_failed",
        "webhook_found",
        "webhook_created",
        "webhook_deleted",
        "run_finished",
    }
)


VerboseMode = Literal["low", "high"]


def configure_logging(verbose: bool) -> None:
    """Route ``junie_gitlab`` logs to stderr.

    A CI job log is the only place anyone will look, so output is always on.
    Without ``verbose`` only warnings and the milestone events pass.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    logger.propagate = False
    logger.handlers.clear()
    mode: VerboseMode = "high" if verbose else "low"

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(logging.Formatter(_FORMAT))
    if mode == "low":
        stream_handler.addFilter(_LowVerbosityFilter())
    logger.addHandler(stream_handler)
    logger.setLevel(logging.INFO)


def log_event(logger: logging.Logger, event: str, **fields: object) -> None:
    logger.info(_build_event_message(event=event, fields=fields))


def _build_event_message(*, event: str, fields: dict[str, object]) -> str:
    parts = [f"event={_normalize_field_value(event)}"]
    for key in sorted(fields.keys()):
        if key in _SECRET_FIELDS and fields[key] is not None:
            parts.append(f"{key}={_REDACTED}")
            continue
        parts.append(f"{key}={_normalize_field_value(fields[key])}")
    return " ".join(parts)


def _normalize_field_value(value: object) -> str:
    if value is None:
        normalized = "null"
    elif isinstance(value, bool):
        normalized = "true" if value else "false"
    elif isinstance(value, int | float):
        normalized = str(value)
    elif isinstance(value, str):
        collapsed = " ".join(value.split())
        if len(collapsed) > _MAX_VALUE_LEN:
            collapsed = f"{collapsed[:_MAX_VALUE_LEN]}..."
        normalized = collapsed if collapsed else "<empty>"
    else:
        normalized = f"<{type(value).__name__}>"

    if any(ch.isspace() for ch in normalized) or "=" in normalized:
        return json.dumps(normalized)
    return normalized


def _extract_event_name(message: str) -> str | None:
    if not message.startswith("event="):
        return None
    first_field = message.split(" ", 1)[0]
    if first_field == "event=":
        return None
    return first_field[len("event=") :]


class _LowVerbosityFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.WARNING:
            return True
        event_name = _extract_event_name(record.getMessage())
        return event_name in _LOW_VERBOSITY_EVENTS
