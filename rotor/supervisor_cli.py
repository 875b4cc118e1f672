"""
Command-line interface for Rotor

    rotor run [WORKSPACE] [-n N] [-m MODEL] [-f TASK_FILE] [-r RUN_ID]
              [--branch NAME] [--pr] [--config PATH] [--verbose]
    rotor thresholds MODEL
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .activity import RunPaths
from .config import ConfigLoader
from .constants import FileNames
from .errors import AgentLaunchError, ConfigError
from .log_utils import setup_colored_logging, setup_file_logging
from .orchestrator import LoopController
from .token_budget import describe_table, thresholds_from_config
from .utils import derive_run_id
from .vcs import GitRepository

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    # Shared options, accepted after any subcommand
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to configuration file (default: search rotor.yaml locations)"
    )
    common.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )

    parser = argparse.ArgumentParser(
        prog="rotor",
        description="Supervise a coding agent across context rotations"
    )
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", parents=[common], help="Run the iteration loop")
    run_parser.add_argument(
        "workspace",
        nargs="?",
        default=".",
        help="Git repository the agent works in (default: current directory)"
    )
    run_parser.add_argument(
        "-n", "--iterations",
        type=int,
        help="Override max iterations from config"
    )
    run_parser.add_argument(
        "-m", "--model",
        type=str,
        help="Override agent model from config"
    )
    run_parser.add_argument(
        "-f", "--task-file",
        type=str,
        help="Task description file given to the agent"
    )
    run_parser.add_argument(
        "-r", "--run-id",
        type=str,
        help="Run identifier (default: derived from the task file name)"
    )
    run_parser.add_argument(
        "--branch",
        type=str,
        help="Create or switch to this branch before the loop"
    )
    run_parser.add_argument(
        "--pr",
        action="store_true",
        default=None,
        help="Push and open a pull request on completion (requires --branch)"
    )

    thresholds_parser = subparsers.add_parser(
        "thresholds", parents=[common], help="Show token thresholds for a model"
    )
    thresholds_parser.add_argument("model", nargs="?", default=None, help="Model identifier")

    return parser


def load_config(args: argparse.Namespace) -> ConfigLoader:
    try:
        loader = ConfigLoader(args.config)
    except FileNotFoundError as e:
        raise ConfigError(str(e)) from e
    if loader.config_path:
        logger.info(f"Loaded configuration from: {loader.config_path}")
    return loader


def cmd_thresholds(args: argparse.Namespace, loader: ConfigLoader) -> int:
    budget = loader.config.token_budget
    if args.model is None:
        for row in describe_table(budget.model_thresholds):
            print(row)
        print(f"(default): warn={budget.default_warn} rotate={budget.default_rotate}")
        return EXIT_OK

    limits = thresholds_from_config(args.model, budget)
    print(f"{args.model}: warn={limits.warn} rotate={limits.rotate} (tier: {limits.tier})")
    return EXIT_OK


def cmd_run(args: argparse.Namespace, loader: ConfigLoader) -> int:
    loader.override_from_args(**{
        'orchestration.max_iterations': args.iterations,
        'agent.model': args.model,
        'orchestration.branch': args.branch,
        'orchestration.open_pr': args.pr,
    })
    config = loader.config

    workspace = Path(args.workspace).resolve()
    if not workspace.is_dir():
        logger.error(f"Workspace does not exist: {workspace}")
        return EXIT_FAILED
    vcs = GitRepository(workspace)
    if not vcs.is_repository():
        logger.error(f"❌ Not a git repository: {workspace}")
        logger.error("   Rotor requires git for state persistence.")
        return EXIT_FAILED

    task_file = args.task_file or config.project.get("task_file")
    run_id = args.run_id or derive_run_id(task_file)
    runs_dir = RunPaths(workspace, run_id, config.orchestration.state_dir).run_dir.parent
    setup_file_logging(run_id, Path(FileNames.SUPERVISOR_LOG).stem, runs_dir,
                       level=getattr(logging, config.logging.file_log_level.upper(), logging.DEBUG))

    controller = LoopController(config, workspace, run_id, task_file=task_file, vcs=vcs)

    remaining = controller.outstanding()
    if remaining == 0:
        print(f"🎉 Already complete: no outstanding work for {controller.label}.")
        return EXIT_OK

    try:
        result = asyncio.run(controller.run())
    except AgentLaunchError as e:
        logger.error(f"❌ {e}")
        return EXIT_FAILED

    print()
    print("=" * 67)
    print(result.message)
    print("=" * 67)
    return EXIT_OK if result.succeeded else EXIT_FAILED


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_FAILED

    setup_colored_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        loader = load_config(args)
        if not args.verbose:
            level = getattr(logging, loader.config.logging.log_level.upper(), logging.INFO)
            setup_colored_logging(level, use_color=loader.config.logging.color)
        if args.command == "thresholds":
            return cmd_thresholds(args, loader)
        return cmd_run(args, loader)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_FAILED
    except KeyboardInterrupt:
        # asyncio.run has already cancelled the iteration, which kills the agent tree
        logger.warning("Interrupted")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
