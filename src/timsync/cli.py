"""Command line interface.

Commands:
    timsync init [path] [--force]
    timsync sync [target] [--dry-run] [--prune] [--json] [--debug] [--log-file]
    timsync help [command]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

from . import __version__
from .config import load_target
from .errors import TimSyncError
from .logger import setup_logging
from .project import Project
from .sync.models import SyncReport
from .sync.pipeline import SyncPipeline
from .sync.reporter import format_dry_run_preview, format_sync_report, report_to_json

logger = logging.getLogger(__name__)


def _stderr_print(message: str) -> None:
    print(message, file=sys.stderr)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="timsync",
        description="Compile a project of markdown, task and style files "
        "and synchronise it with a TIM server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create a project in the current directory
  timsync init

  # Preview what a sync would change
  timsync sync --dry-run

  # Sync to a named target and delete documents removed locally
  timsync sync staging --prune

Connection settings come from .timsync/config.yml, TIMSYNC_* environment
variables (a .env file is loaded) or the command line, in increasing order
of precedence.
        """,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"timsync version {__version__}",
    )
    commands = parser.add_subparsers(dest="command", metavar="command")

    init = commands.add_parser("init", help="Initialize a new project")
    init.add_argument(
        "path", nargs="?", default=".", help="Project directory (default: .)"
    )
    init.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing project configuration",
    )

    sync = commands.add_parser("sync", help="Synchronise the project with TIM")
    sync.add_argument(
        "target",
        nargs="?",
        help="Sync target from the project config (default: 'default')",
    )
    sync.add_argument(
        "--dry-run",
        action="store_true",
        help="Show planned structural changes without applying them",
    )
    sync.add_argument(
        "--prune",
        action="store_true",
        help="Delete managed remote documents no longer in the project",
    )
    sync.add_argument(
        "--json", action="store_true", help="Print the report as JSON"
    )
    sync.add_argument("--host", help="Override the TIM host URL")
    sync.add_argument("--folder-root", help="Override the remote root folder")
    sync.add_argument("--username", help="Override the TIM username")
    sync.add_argument(
        "--password",
        help="Override the TIM password"
        " (visible in process list -- prefer TIMSYNC_PASSWORD)",
    )
    sync.add_argument(
        "--insecure",
        action="store_true",
        help="Skip SSL certificate verification (use only for development)",
    )
    sync.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    sync.add_argument(
        "--debug-format",
        choices=("text", "json"),
        default="text",
        help="Format of debug log output",
    )
    sync.add_argument("--log-file", help="Also write logs to this file")

    help_cmd = commands.add_parser("help", help="Show help for a command")
    help_cmd.add_argument("topic", nargs="?", help="Command to describe")

    return parser


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_init(args: argparse.Namespace) -> int:
    setup_logging()
    project = Project.init(Path(args.path), force=args.force)
    print(f"Initialized timsync project in {project.root}")
    print("Edit .timsync/config.yml to set the sync target.")
    return 0


async def _run_pipeline(pipeline: SyncPipeline, dry_run: bool, prune: bool) -> SyncReport:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, pipeline.abort)
    except (NotImplementedError, RuntimeError):
        # Not available on this platform; Ctrl-C interrupts immediately.
        pass
    try:
        return await pipeline.run(dry_run=dry_run, prune=prune)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


def cmd_sync(args: argparse.Namespace) -> int:
    project = Project.resolve_from_directory(Path.cwd())
    config = project.config
    setup_logging(
        debug=args.debug,
        log_file=args.log_file or config.logging.file,
        debug_format=args.debug_format,
        level=None if args.debug else config.logging.level,
    )

    name = args.target or "default"
    target = load_target(
        name,
        host=args.host,
        folder_root=args.folder_root,
        username=args.username,
        password=args.password,
        insecure=args.insecure,
        yaml_target=config.target(args.target),
        sync_settings=config.sync,
    )
    prune = args.prune or config.sync.prune
    logger.info(
        "Syncing %s to %s/%s%s",
        project.root,
        target.host,
        target.folder_root,
        " (dry run)" if args.dry_run else "",
    )

    pipeline = SyncPipeline(project, target)
    report = asyncio.run(_run_pipeline(pipeline, args.dry_run, prune))

    if args.json:
        print(json.dumps(report_to_json(report), indent=2))
    elif report.dry_run:
        print(format_dry_run_preview(report))
    else:
        print(format_sync_report(report))
    return 0 if report.ok else 1


def cmd_help(parser: argparse.ArgumentParser, topic: str | None) -> int:
    if topic:
        parser.parse_args([topic, "--help"])
    parser.print_help()
    return 0


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    """Parse ``argv`` and run the selected command.

    Returns:
        Process exit code.
    """
    # .env first, so ${VAR} interpolation in config files can use its values
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None or args.command == "help":
        return cmd_help(parser, getattr(args, "topic", None))

    try:
        if args.command == "init":
            return cmd_init(args)
        return cmd_sync(args)
    except TimSyncError as exc:
        logger.debug("Command failed", exc_info=True)
        _stderr_print(f"Error: {exc}")
        return 1


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        _stderr_print("\nInterrupted.")
        sys.exit(130)


if __name__ == "__main__":
    run()
