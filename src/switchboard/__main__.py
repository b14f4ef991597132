"""Entry point: python -m switchboard

Without arguments the daemon runs until SIGINT/SIGTERM. The ``chronos`` and
``tasks`` subcommands are thin adapters over the service layer for inspecting
and managing the local store.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from switchboard.chronos.service import ChronosService
from switchboard.chronos.types import ChronosError, CreateJobInput, ScheduleParseError
from switchboard.infrastructure.clock import iso
from switchboard.infrastructure.database import AppDatabase
from switchboard.infrastructure.logger import install_loop_exception_handler, logger
from switchboard.tasks.service import TaskManager
from switchboard.tasks.types import TaskFilters


async def main() -> None:
    from switchboard.app import Orchestrator

    orchestrator = Orchestrator()

    # Handle graceful shutdown
    shutdown_event = asyncio.Event()

    def signal_handler() -> None:
        logger.info("Received shutdown signal")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    install_loop_exception_handler(loop)
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await orchestrator.start()

        # Wait for shutdown signal
        await shutdown_event.wait()
    except KeyboardInterrupt:
        pass
    finally:
        await orchestrator.shutdown()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="switchboard", description="Task orchestration daemon")
    sub = parser.add_subparsers(dest="command")

    chronos = sub.add_parser("chronos", help="Manage scheduled jobs")
    chronos_sub = chronos.add_subparsers(dest="action", required=True)

    ls = chronos_sub.add_parser("list", help="List jobs")
    ls.add_argument("--enabled", action="store_true", help="Only enabled jobs")

    add = chronos_sub.add_parser("add", help="Create a job")
    add.add_argument("prompt")
    add.add_argument("--type", dest="schedule_type", choices=["once", "cron", "interval"], required=True)
    add.add_argument("--schedule", required=True, help='e.g. "every 30 minutes", "0 9 * * 1-5", "tomorrow at 9am"')
    add.add_argument("--timezone")
    add.add_argument("--notify", nargs="*", default=[], help="Channels to notify (default: all)")

    for action in ("enable", "disable", "delete"):
        p = chronos_sub.add_parser(action, help=f"{action.capitalize()} a job")
        p.add_argument("job_id")

    preview = chronos_sub.add_parser("preview", help="Show the next occurrences of a schedule")
    preview.add_argument("--type", dest="schedule_type", choices=["once", "cron", "interval"], required=True)
    preview.add_argument("--schedule", required=True)
    preview.add_argument("--timezone")

    tasks = sub.add_parser("tasks", help="Inspect delegated tasks")
    tasks_sub = tasks.add_subparsers(dest="action", required=True)

    tls = tasks_sub.add_parser("list", help="List recent tasks")
    tls.add_argument("--status")
    tls.add_argument("--session")
    tls.add_argument("--limit", type=int, default=20)

    show = tasks_sub.add_parser("show", help="Show one task")
    show.add_argument("task_id")

    cancel = tasks_sub.add_parser("cancel", help="Cancel a task that has not finished")
    cancel.add_argument("task_id")

    return parser


def run_chronos(args: argparse.Namespace, service: ChronosService) -> int:
    if args.action == "list":
        for job in service.list_jobs(enabled=True if args.enabled else None):
            state = "on " if job.enabled else "off"
            print(f"{job.id}  {state}  {job.schedule_type:<8} {job.schedule_expression:<24} next={iso(job.next_run_at)}  {job.prompt[:60]}")
        return 0

    if args.action == "add":
        job = service.create_job(CreateJobInput(
            prompt=args.prompt,
            schedule_type=args.schedule_type,
            schedule_expression=args.schedule,
            timezone=args.timezone,
            created_by="cli",
            notify_channels=args.notify,
        ))
        print(f"Created job {job.id} (next run {iso(job.next_run_at)})")
        return 0

    if args.action == "enable":
        job = service.enable_job(args.job_id)
        print(f"Enabled job {job.id} (next run {iso(job.next_run_at)})")
        return 0

    if args.action == "disable":
        service.disable_job(args.job_id)
        print(f"Disabled job {args.job_id}")
        return 0

    if args.action == "delete":
        if not service.delete_job(args.job_id):
            print(f"Job not found: {args.job_id}", file=sys.stderr)
            return 1
        print(f"Deleted job {args.job_id}")
        return 0

    result = service.preview(args.schedule, args.schedule_type, args.timezone)
    print(result.schedule.human_readable)
    for occurrence in result.next_occurrences:
        print(f"  {iso(occurrence)}")
    return 0


def run_tasks(args: argparse.Namespace, manager: TaskManager) -> int:
    if args.action == "list":
        filters = TaskFilters(status=args.status, session_id=args.session, limit=args.limit)
        for task in manager.list_tasks(filters):
            print(f"{task.id}  {task.agent:<8} {task.status:<17} notify={task.notify_status:<7} {task.input[:60]}")
        return 0

    if args.action == "show":
        task = manager.get(args.task_id)
        if not task:
            print(f"Task not found: {args.task_id}", file=sys.stderr)
            return 1
        print(task.model_dump_json(indent=2))
        return 0

    if not manager.cancel(args.task_id):
        print(f"Task {args.task_id} not found or already finished", file=sys.stderr)
        return 1
    print(f"Cancelled task {args.task_id}")
    return 0


def run_command(args: argparse.Namespace, db: AppDatabase) -> int:
    try:
        if args.command == "chronos":
            return run_chronos(args, ChronosService(db.chronos_repo))
        return run_tasks(args, TaskManager(db.task_repo))
    except (ChronosError, ScheduleParseError, ValueError) as err:
        print(f"Error: {err}", file=sys.stderr)
        return 1


def run(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    if args.command is None:
        try:
            asyncio.run(main())
        except KeyboardInterrupt:
            pass
        return

    db = AppDatabase()
    db.init()
    try:
        code = run_command(args, db)
    finally:
        db.close()
    sys.exit(code)


if __name__ == "__main__":
    run()
