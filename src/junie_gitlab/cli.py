from __future__ import annotations

import argparse
from collections.abc import Mapping
import logging
import os
from pathlib import Path

from junie_gitlab.config import (
    CI_API_V4_URL,
    GITLAB_TOKEN_FOR_JUNIE,
    CliOptions,
    load_webhook_env,
    require_str,
)
from junie_gitlab.context import build_execution_context
from junie_gitlab.git_ops import GitWorkspace
from junie_gitlab.gitlab_gateway import GitLabGateway
from junie_gitlab.junie_adapter import JunieAdapter, JunieConfig
from junie_gitlab.observability import configure_logging, log_event
from junie_gitlab.orchestrator import TaskRunner
from junie_gitlab.webhook_setup import register_webhook


LOGGER = logging.getLogger("junie_gitlab.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="junie-gitlab", description="Run the Junie coding agent from GitLab CI"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser(
        "init", help="Register the project webhook that triggers Junie pipelines"
    )
    init_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose runtime logging to stderr",
    )
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Delete and recreate the webhook if it already exists",
    )

    run_parser = subparsers.add_parser("run", help="Handle the webhook event of this pipeline")
    run_parser.add_argument(
        "-C",
        "--cleanup",
        action="store_true",
        help="Delete the pipeline when the event carries no task",
    )
    run_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose runtime logging to stderr",
    )
    run_parser.add_argument("-p", "--prompt", type=str, help="Custom prompt for Junie")
    run_parser.add_argument(
        "-M",
        "--mr-mode",
        choices=("append", "new"),
        default="new",
        help="Push to the merge request branch (append) or open a new merge request (new)",
    )
    return parser


def main() -> None:
    args = build_parser().parse_args()
    configure_logging(bool(getattr(args, "verbose", False)))

    if args.command == "init":
        _cmd_init(os.environ, force=args.force)
        return
    if args.command == "run":
        _cmd_run(
            os.environ,
            CliOptions(
                cleanup_after_idle_run=args.cleanup,
                mr_mode=args.mr_mode,
                custom_prompt=args.prompt,
            ),
        )
        return

    raise RuntimeError(f"Unknown command: {args.command}")


def _cmd_init(environ: Mapping[str, str], *, force: bool) -> None:
    env = load_webhook_env(environ)
    gateway = GitLabGateway(
        api_v4_url=require_str(env.api_v4_url, CI_API_V4_URL),
        token=require_str(env.gitlab_token, GITLAB_TOKEN_FOR_JUNIE),
    )
    hook_id = register_webhook(gateway, env, force=force)
    log_event(LOGGER, "init_completed", hook_id=hook_id)


def _cmd_run(environ: Mapping[str, str], cli_options: CliOptions) -> None:
    env = load_webhook_env(environ)
    context = build_execution_context(env, cli_options)
    project = context.project
    gateway = GitLabGateway(api_v4_url=project.api_v4_url, token=project.gitlab_token)
    git = GitWorkspace(
        Path(env.ci_server.project_dir or Path.cwd()),
        ci_server=env.ci_server,
        gitlab_token=project.gitlab_token,
    )
    agent = JunieAdapter(
        JunieConfig(
            api_key=project.junie_api_key,
            version=project.junie_version,
            model=project.junie_model,
        )
    )
    result = TaskRunner(context, gateway=gateway, git=git, agent=agent).execute()
    log_event(
        LOGGER,
        "execution_finished",
        task_detected=result.task_detected,
        created_mr_url=result.created_mr_url,
    )
