#!/usr/bin/env python3
"""
Repository archiver: mirror GitHub repositories into xz archives on S3 storage

Copyright 2025 HyperSec

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger
from rich.console import Console
from rich.table import Table
from rich_argparse import ArgumentDefaultsRichHelpFormatter

from .archiver import Archiver
from .base import DestinationCredential, ProgressEvent, RepositorySource
from .config import Settings, load_destinations, select_destinations
from .crypto import CredentialCipher
from .errors import BackupError
from .fetcher import RepositoryFetcher
from .github_manager import GitHubAppManager, StaticTokenSource
from .job_queue import JobQueue
from .jobs import JobState
from .orchestrator import BackupOrchestrator, pick_default_destinations
from .s3_uploader import S3Uploader
from .status import LoggingStatusProjector
from .token_discovery import (
    get_encryption_key,
    get_github_app_credentials,
    get_github_token,
)
from .workspace import WorkspaceManager

console = Console()


class InterceptHandler(logging.Handler):
    """Route standard logging records into loguru"""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(verbose: bool = False, log_file: str = "repo-archiver.log"):
    """Setup console and file logging with loguru"""

    # Remove default loguru handler
    logger.remove()

    log_dir = Path("logs")
    log_dir.mkdir(exist_ok=True)
    log_file_path = log_dir / log_file

    log_level = "DEBUG" if verbose else "INFO"

    console_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<level>{message}</level>"
    )
    logger.add(sys.stderr, format=console_format, level=log_level, colorize=True)

    file_format = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}"
    logger.add(
        log_file_path,
        format=file_format,
        level=log_level,
        rotation="10 MB",
        retention="30 days",
        compression="zip",
        encoding="utf-8",
    )

    # Component loggers use the standard library
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for noisy in ("botocore", "boto3", "urllib3", "s3transfer", "github"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.info("[CONFIG] Logging configured")
    logger.debug(f"Log file: {log_file_path}")

    return logger


def build_source(settings: Settings) -> RepositorySource:
    """GitHub App when configured, otherwise a discovered personal token"""
    app_id, private_key = get_github_app_credentials()
    if app_id and private_key:
        logger.info(f"[CONFIG] Using GitHub App {app_id}")
        return GitHubAppManager(app_id, private_key)

    token = get_github_token(settings.github_host)
    if token:
        logger.info("[CONFIG] Using GitHub token")
        return StaticTokenSource(token)

    raise BackupError(
        "No GitHub credentials found. Set GITHUB_APP_ID/GITHUB_APP_PRIVATE_KEY, "
        "GITHUB_TOKEN, or log in with `gh auth login`."
    )


def build_cipher() -> CredentialCipher:
    key = get_encryption_key()
    if not key:
        raise BackupError("ENCRYPTION_KEY is not set")
    return CredentialCipher(key)


def render_queue(queue: JobQueue) -> Table:
    table = Table(title="Backup jobs")
    table.add_column("Job", style="cyan")
    table.add_column("Target")
    table.add_column("State")
    table.add_column("Result / error")

    styles = {
        JobState.PENDING: "dim",
        JobState.RUNNING: "yellow",
        JobState.COMPLETED: "green",
        JobState.FAILED: "red",
    }
    for job in queue.jobs():
        if job.state is JobState.COMPLETED and job.result is not None:
            detail = job.result.key
        else:
            detail = job.error or (job.last_event.message if job.last_event else "")
        table.add_row(
            job.id,
            job.payload.describe(),
            f"[{styles[job.state]}]{job.state.value}[/{styles[job.state]}]",
            detail,
        )
    return table


def run_backups(
    args: argparse.Namespace,
    settings: Settings,
    destinations: List[DestinationCredential],
) -> int:
    source = build_source(settings)
    uploader = S3Uploader(build_cipher(), namespace=settings.namespace)
    workspace = WorkspaceManager(settings.workspace_root)
    stale = workspace.cleanup_stale()
    if stale:
        logger.info(f"[CLEANUP] Removed {stale} stale workspace(s)")

    orchestrator = BackupOrchestrator(
        source=source,
        uploader=uploader,
        workspace=workspace,
        fetcher=RepositoryFetcher(
            host=settings.github_host,
            clone_timeout=settings.clone_timeout,
            branch_sync_timeout=settings.branch_sync_timeout,
        ),
        archiver=Archiver(timeout=settings.archive_timeout),
        default_destinations=lambda user_id: pick_default_destinations(destinations),
    )
    chosen = select_destinations(destinations, args.use) if args.use else []

    if args.all:
        result = orchestrator.run_all(
            user_id=args.user_id,
            installation_ids=args.installation or [],
            destinations=chosen,
            compression_level=args.compression_level,
        )
        console.print(f"[green]Backup uploaded as[/green] {result.key}")
        return 0

    repositories = [
        source.resolve_repository(full_name, args.installation or [])
        for full_name in args.repos
    ]

    status_line = {"text": "Waiting for worker..."}

    def on_progress(job_id: str, event: ProgressEvent) -> None:
        suffix = f" ({event.progress}%)" if event.progress is not None else ""
        status_line["text"] = f"{job_id}: {event.message}{suffix}"

    queue = JobQueue(
        orchestrator,
        projector=LoggingStatusProjector(),
        progress_sink=on_progress,
        pause_between_jobs=settings.worker_pause,
    )

    if args.group:
        queue.enqueue_group(
            user_id=args.user_id,
            repositories=repositories,
            destination_prefix=args.prefix,
            destinations=chosen,
            compression_level=args.compression_level,
        )
    else:
        for repo in repositories:
            queue.enqueue_single(
                user_id=args.user_id,
                repository=repo,
                destinations=chosen,
                compression_level=args.compression_level,
                destination_prefix=args.prefix,
            )

    with console.status(status_line["text"]) as spinner:
        while not queue.join(timeout=0.5):
            spinner.update(status_line["text"])
    queue.shutdown(wait=False)

    console.print(render_queue(queue))
    status = queue.status()
    logger.info(
        f"[SUMMARY] {status.completed} completed, {status.failed} failed of {status.total} job(s)"
    )
    return 1 if status.failed else 0


def list_backups(destination: DestinationCredential, prefix: str) -> int:
    uploader = S3Uploader(build_cipher())
    token = None
    table = Table(title=f"{destination.name}: {prefix or '/'}")
    table.add_column("Type")
    table.add_column("Name", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Last modified")

    while True:
        page = uploader.list_backups(destination, prefix, continuation_token=token)
        for item in page["items"]:
            size = f"{item['size'] / 1024 / 1024:.2f} MB" if item["size"] is not None else ""
            table.add_row(item["type"], item["name"], size, item["last_modified"] or "")
        token = page["next_token"]
        if not page["has_more"] or not token:
            break

    console.print(table)
    return 0


def run_health_check(destinations: List[DestinationCredential]) -> int:
    logger.info("[HEALTH] Running destination health checks...")
    uploader = S3Uploader(build_cipher())
    healthy = 0
    for destination in destinations:
        if uploader.test_connection(destination):
            logger.info(f"[HEALTH] {destination.name}: connection and permissions OK")
            healthy += 1
        else:
            logger.error(f"[HEALTH] {destination.name}: connection or permission test failed")

    logger.info(f"[HEALTH] Health check complete: {healthy}/{len(destinations)} destinations healthy")
    return 0 if healthy == len(destinations) else 1


def build_parser(settings: Optional[Settings] = None) -> argparse.ArgumentParser:
    settings = settings or Settings()
    parser = argparse.ArgumentParser(
        prog="repo-archiver",
        description="[bold blue]Repository Archiver[/bold blue] - Mirror GitHub repositories into compressed archives on S3-compatible storage",
        epilog="""
[bold green]Examples:[/bold green]
  [dim]# Back up two repositories, one archive each[/dim]
  [yellow]%(prog)s[/yellow] [magenta]org/api org/web[/magenta] [cyan]--destinations[/cyan] destinations.yml

  [dim]# Back up a group of repositories into one archive[/dim]
  [yellow]%(prog)s[/yellow] [magenta]org/api org/web[/magenta] [cyan]--group --prefix[/cyan] backups/team [cyan]--destinations[/cyan] destinations.yml

  [dim]# Browse and download[/dim]
  [yellow]%(prog)s[/yellow] [cyan]--list[/cyan] github-backups/ [cyan]--destinations[/cyan] destinations.yml
  [yellow]%(prog)s[/yellow] [cyan]--download[/cyan] backups/team/org-api.tar.xz [cyan]--destinations[/cyan] destinations.yml
        """,
        formatter_class=ArgumentDefaultsRichHelpFormatter,
    )

    parser.add_argument(
        "repos", nargs="*", metavar="REPO", help="Repositories to back up (owner/name)"
    )

    dest_group = parser.add_argument_group("Destinations")
    dest_group.add_argument(
        "--destinations", metavar="FILE", help="YAML file listing S3 destinations"
    )
    dest_group.add_argument(
        "--use",
        nargs="+",
        metavar="NAME",
        help="Destination names to upload to (default: default-flagged destinations)",
    )

    ops_group = parser.add_argument_group("Backup Operations")
    ops_group.add_argument(
        "--group", action="store_true", help="Back up all REPOs into one archive"
    )
    ops_group.add_argument(
        "--prefix", metavar="PATH", help="Destination key prefix for the archive(s)"
    )
    ops_group.add_argument(
        "--all",
        action="store_true",
        help="Back up every repository of the given installations into one archive",
    )
    ops_group.add_argument("--user-id", default="cli", metavar="ID", help="Owner of the backup")
    ops_group.add_argument(
        "--installation",
        nargs="+",
        metavar="ID",
        help="GitHub App installation id(s) used to resolve repositories",
    )
    ops_group.add_argument(
        "--compression-level",
        type=int,
        choices=range(1, 10),
        default=settings.compression_level,
        metavar="N",
        help="xz compression preset 1-9 (env: COMPRESSION_LEVEL)",
    )

    browse_group = parser.add_argument_group("Browse & Diagnostics")
    browse_group.add_argument("--list", metavar="PREFIX", help="List stored backups under PREFIX")
    browse_group.add_argument(
        "--download", metavar="KEY", help="Print a presigned download URL for KEY"
    )
    browse_group.add_argument(
        "--health", action="store_true", help="Test connectivity to each destination"
    )
    browse_group.add_argument(
        "--encrypt",
        metavar="VALUE",
        help="Encrypt a credential with ENCRYPTION_KEY for the destinations file",
    )

    log_group = parser.add_argument_group("Logging Options")
    log_group.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose logging (DEBUG level)"
    )
    log_group.add_argument(
        "--log-file",
        default=settings.log_file,
        metavar="FILE",
        help="Log file name under logs/ (env: LOG_FILE)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    settings = Settings.from_env()
    parser = build_parser(settings)
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose, log_file=args.log_file)

    try:
        if args.encrypt:
            print(build_cipher().encrypt(args.encrypt))
            return 0

        if not args.destinations:
            parser.error("--destinations is required")
        destinations = load_destinations(args.destinations)
        if not destinations:
            raise BackupError("No S3 configurations found")
        selected = select_destinations(destinations, args.use)

        if args.health:
            return run_health_check(selected)

        if args.list is not None:
            return list_backups(selected[0], args.list)

        if args.download:
            info = S3Uploader(build_cipher()).presigned_download_url(selected[0], args.download)
            console.print(f"[green]{info['file_name']}[/green] (valid {info['expires_in']}s)")
            print(info["download_url"])
            return 0

        if not args.repos and not args.all:
            parser.error("no repositories given (pass REPO arguments or --all)")
        if args.group and not args.prefix:
            parser.error("--group requires --prefix")

        return run_backups(args, settings, destinations)

    except KeyboardInterrupt:
        logger.warning("[ABORT] Interrupted by user")
        return 130
    except (BackupError, ValueError, FileNotFoundError) as e:
        logger.error(f"[ERROR] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
