from __future__ import annotations

import json
import logging
from pathlib import Path

from junie_gitlab.observability import log_event


LOGGER = logging.getLogger("junie_gitlab.mcp")
GITLAB_MCP_PACKAGE = "@zereight/mcp-gitlab"


def mcp_config_path(home: Path | None = None) -> Path:
    return (home or Path.home()) / ".junie" / "mcp" / "mcp.json"


def build_mcp_config(*, api_v4_url: str, gitlab_token: str, project_id: int) -> dict[str, object]:
    return {
        "mcpServers": {
            "gitlab": {
                "command": "npx",
                "args": ["-y", GITLAB_MCP_PACKAGE],
                "env": {
                    "GITLAB_PERSONAL_ACCESS_TOKEN": gitlab_token,
                    "GITLAB_API_URL": api_v4_url,
                    "GITLAB_READ_ONLY_MODE": "false",
                    "USE_GITLAB_WIKI": "false",
                    "USE_MILESTONE": "false",
                    "USE_PIPELINE": "true",
                    "GITLAB_ALLOWED_PROJECT_IDS": str(project_id),
                },
            }
        }
    }


def write_mcp_config(
    *,
    api_v4_url: str,
    gitlab_token: str,
    project_id: int,
    home: Path | None = None,
) -> Path:
    """Write the agent's MCP server config, giving it a GitLab server scoped to one project."""
    path = mcp_config_path(home)
    path.parent.mkdir(parents=True, exist_ok=True)
    config = build_mcp_config(
        api_v4_url=api_v4_url, gitlab_token=gitlab_token, project_id=project_id
    )
    path.write_text(json.dumps(config, indent=2), encoding="utf-8")
    log_event(LOGGER, "mcp_config_written", path=str(path), project_id=project_id)
    return path
