"""
Command-line interface for the contentflow pipeline.

Usage:
    contentflow run-batch created
    contentflow process-timeouts
    contentflow process-url https://www.youtube.com/watch?v=...
    contentflow process-job 42
    contentflow approve 42
    contentflow health
    contentflow stats
    contentflow daily-summary
    contentflow init-db

Every command prints one JSON object with a `success` field. The exit code is
0 unless the command itself failed (a batch could not be fetched, an invalid
status, an unhealthy collaborator for `health`). Per-job failures are recorded
on the job and do not change the exit code.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Optional

from contentflow.core.config import settings
from contentflow.core.errors import BatchFetchError, JobNotFoundError
from contentflow.core.logging_setup import setup_logging
from contentflow.core.state_machine import JobStatus
from contentflow.services.container import get_orchestrator

logger = logging.getLogger("contentflow")


def _emit(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, ensure_ascii=False, default=str))


def _fail(error: str, **extra: Any) -> int:
    _emit({"success": False, "error": error, **extra})
    return 1


def cmd_run_batch(args: argparse.Namespace) -> int:
    """Run one batch for a status."""
    try:
        status = JobStatus.parse(args.status)
    except ValueError as e:
        return _fail(str(e))

    try:
        result = get_orchestrator().run_batch(status)
    except ValueError as e:
        # terminal status: nothing runs for it
        return _fail(str(e), status=status.value)
    except BatchFetchError as e:
        logger.error("%s", e)
        return _fail(str(e), status=status.value)

    _emit({"success": True, **result.to_dict()})
    return 0


def cmd_process_timeouts(args: argparse.Namespace) -> int:
    try:
        result = get_orchestrator().process_timeouts()
    except BatchFetchError as e:
        logger.error("%s", e)
        return _fail(str(e))
    _emit({"success": True, **result.to_dict()})
    return 0


def _process_single(target: Any) -> int:
    try:
        result = get_orchestrator().process_single_unit(target)
    except JobNotFoundError as e:
        return _fail(str(e))
    except ValueError as e:
        return _fail(str(e))
    _emit({"success": True, "job": result.to_dict()})
    return 0


def cmd_process_url(args: argparse.Namespace) -> int:
    """Create a job for a URL and run initial processing now."""
    return _process_single(args.url)


def cmd_process_job(args: argparse.Namespace) -> int:
    return _process_single(args.job_id)


def cmd_approve(args: argparse.Namespace) -> int:
    store = get_orchestrator().store
    try:
        job = store.get(args.job_id)
    except JobNotFoundError as e:
        return _fail(str(e))
    if job.status != JobStatus.AWAITING_APPROVAL:
        return _fail(f"Job {job.id} is {job.status.value}, not awaiting approval", job_id=job.id)

    job = store.set_approval(job.id, True)
    _emit({"success": True, "job_id": job.id, "status": job.status.value, "approval_flag": job.approval_flag})
    return 0


def cmd_health(args: argparse.Namespace) -> int:
    report = get_orchestrator().check_health()
    _emit({"success": report.healthy, **report.to_dict()})
    return 0 if report.healthy else 1


def cmd_stats(args: argparse.Namespace) -> int:
    """
    Job counts per status from the store, plus this process's counters.

    The counters live in memory, so a fresh CLI process reports zeros; the
    worker that ran the batches is the one that holds them.
    """
    orchestrator = get_orchestrator()
    try:
        by_status = {s.value: n for s, n in orchestrator.store.count_by_status().items()}
    except Exception as e:
        logger.error("Could not count jobs by status: %s", e)
        return _fail(str(e))
    _emit({"success": True, "by_status": by_status, **orchestrator.snapshot().to_dict()})
    return 0


def cmd_daily_summary(args: argparse.Namespace) -> int:
    """Report and reset this process's counters, with the store's status counts."""
    _emit({"success": True, **get_orchestrator().daily_summary()})
    return 0


def cmd_init_db(args: argparse.Namespace) -> int:
    """Create missing tables. Deployments use `alembic upgrade head` instead."""
    from contentflow.db.base import Base
    from contentflow.db.session import engine

    Base.metadata.create_all(bind=engine)
    _emit({"success": True, "tables": sorted(Base.metadata.tables)})
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="contentflow",
        description="Status-driven content pipeline orchestrator",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("--log-file", type=str, help="Log file path")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    p_batch = subparsers.add_parser("run-batch", help="Run the stage handler for every job in a status")
    p_batch.add_argument("status", help="Job status, e.g. created or AwaitingApproval")
    p_batch.set_defaults(func=cmd_run_batch)

    p_timeouts = subparsers.add_parser("process-timeouts", help="Warn on and escalate stale approvals")
    p_timeouts.set_defaults(func=cmd_process_timeouts)

    p_url = subparsers.add_parser("process-url", help="Create a job for a URL and process it now")
    p_url.add_argument("url", help="Source content URL")
    p_url.set_defaults(func=cmd_process_url)

    p_job = subparsers.add_parser("process-job", help="Process an existing created job now")
    p_job.add_argument("job_id", type=int)
    p_job.set_defaults(func=cmd_process_job)

    p_approve = subparsers.add_parser("approve", help="Approve a job awaiting approval")
    p_approve.add_argument("job_id", type=int)
    p_approve.set_defaults(func=cmd_approve)

    p_health = subparsers.add_parser("health", help="Probe every collaborator")
    p_health.set_defaults(func=cmd_health)

    p_stats = subparsers.add_parser("stats", help="Show job counts per status and this process's counters")
    p_stats.set_defaults(func=cmd_stats)

    p_summary = subparsers.add_parser("daily-summary", help="Report, notify and reset this process's counters")
    p_summary.set_defaults(func=cmd_daily_summary)

    p_init = subparsers.add_parser("init-db", help="Create database tables")
    p_init.set_defaults(func=cmd_init_db)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    level = "DEBUG" if args.verbose else settings.log_level
    setup_logging(level, log_file=args.log_file)

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
