"""saga-admin: diagnose and repair sagas, or run a standalone worker.

    saga-admin diagnose <saga_id>
    saga-admin clear-queue
    saga-admin force-fail <saga_id> [--reason TEXT]
    saga-admin requeue <saga_id>
    saga-admin delete <saga_id>
    saga-admin worker

clear-queue only empties the job queue. Sagas that were generating at the
time stay stuck until they are requeued or force-failed.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from saga_pipeline.config import Settings, settings as default_settings
from saga_pipeline.errors import AlreadyTerminal, NotFound, QueueUnavailable
from saga_pipeline.factory import build_generator, build_queue, build_store
from saga_pipeline.jobs.worker import SagaWorker
from saga_pipeline.logging_config import configure_logging
from saga_pipeline.services.diagnostics import (
    ClearQueueReport,
    DeleteResult,
    DiagnosisReport,
    RecoveryResult,
    SagaDiagnostics,
)

logger = logging.getLogger(__name__)


def format_diagnosis(report: DiagnosisReport) -> str:
    saga = report.saga
    lines = [
        f"Saga {saga.id}",
        f"  source:        {saga.source_id}",
        f"  status:        {saga.status.value}",
        f"  progress:      {saga.progress_percent}%",
        f"  current step:  {saga.current_step}",
        f"  pages:         {len(saga.pages)}/{saga.total_pages if saga.total_pages is not None else '?'}",
        f"  created at:    {saga.created_at.isoformat()}",
        f"  updated at:    {saga.updated_at.isoformat()} ({report.seconds_since_update}s ago)",
        "",
        "Queue: " + ", ".join(f"{state}={n}" for state, n in report.queue_counts.items()),
    ]
    if report.job is None:
        lines.append("  no job found for this saga")
    else:
        job = report.job
        lines += [
            f"  job {job.id} (matched by {report.matched_by})",
            f"    state:          {job.state.value}",
            f"    saga id:        {job.data.saga_id}",
            f"    attempts made:  {job.attempts_made}",
            f"    failed reason:  {job.failed_reason or 'n/a'}",
        ]
        if len(report.related_jobs) > 1:
            others = ", ".join(f"{j.id}:{j.state.value}" for j in report.related_jobs if j.id != job.id)
            lines.append(f"    other jobs:     {others}")
    lines += ["", f"Verdict: {report.verdict.upper()}" + (" (stuck)" if report.stuck else "")]
    for recommendation in report.recommendations:
        lines.append(f"  - {recommendation}")
    return "\n".join(lines)


def format_clear(report: ClearQueueReport) -> str:
    before = ", ".join(f"{state}={n}" for state, n in report.before.items())
    lines = [f"Before: {before}", f"Removed {report.removed} job(s)"]
    if report.failed_active:
        lines.append(f"Failed active job(s) before removal: {', '.join(report.failed_active)}")
    lines.append("Saga records were not modified; requeue or force-fail stuck sagas.")
    return "\n".join(lines)


def format_delete(result: DeleteResult) -> str:
    line = f"Deleted saga {result.saga_id}"
    if result.removed_jobs:
        line += f" and job(s) {', '.join(result.removed_jobs)}"
    return line


def format_recovery(action: str, result: RecoveryResult) -> str:
    lines = [f"{action}: saga {result.saga.id} is now {result.saga.status.value}"]
    if result.affected_jobs:
        lines.append(f"  jobs affected: {', '.join(result.affected_jobs)}")
    if result.new_job_id:
        lines.append(f"  new job: {result.new_job_id}")
    return "\n".join(lines)


async def _run_admin(args: argparse.Namespace, settings: Settings) -> str:
    store = build_store(settings)
    queue = build_queue(settings)
    diagnostics = SagaDiagnostics(store, queue, stuck_threshold_seconds=settings.stuck_threshold_seconds)
    try:
        if args.command == "diagnose":
            return format_diagnosis(await diagnostics.diagnose(args.saga_id))
        if args.command == "clear-queue":
            return format_clear(await diagnostics.clear_queue())
        if args.command == "force-fail":
            return format_recovery("force-fail", await diagnostics.force_fail(args.saga_id, args.reason))
        if args.command == "requeue":
            return format_recovery("requeue", await diagnostics.requeue(args.saga_id))
        if args.command == "delete":
            return format_delete(await diagnostics.delete(args.saga_id))
        raise ValueError(f"Unknown command {args.command}")
    finally:
        await queue.close()


async def _run_worker(settings: Settings) -> None:
    worker = SagaWorker(
        build_queue(settings),
        build_store(settings),
        build_generator(settings),
        poll_interval=settings.worker_poll_interval_seconds,
        owns_queue=True,
    )
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    async with worker:
        await stop.wait()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="saga-admin", description=__doc__.splitlines()[0])
    sub = parser.add_subparsers(dest="command", required=True)

    diagnose = sub.add_parser("diagnose", help="Cross-check a saga against the job queue")
    diagnose.add_argument("saga_id")

    sub.add_parser("clear-queue", help="Remove every job from the queue")

    force_fail = sub.add_parser("force-fail", help="Mark a saga failed, keeping its pages")
    force_fail.add_argument("saga_id")
    force_fail.add_argument("--reason", default="Force-failed by operator")

    requeue = sub.add_parser("requeue", help="Reset a saga to pending and enqueue it again")
    requeue.add_argument("saga_id")

    delete = sub.add_parser("delete", help="Delete a saga and the jobs that reference it")
    delete.add_argument("saga_id")

    sub.add_parser("worker", help="Run a worker process until interrupted")
    return parser


def main(argv: Optional[List[str]] = None, settings: Settings = default_settings) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(settings.log_level)

    if args.command == "worker":
        asyncio.run(_run_worker(settings))
        return 0

    try:
        output = asyncio.run(_run_admin(args, settings))
    except NotFound as exc:
        print(f"Not found: {exc}", file=sys.stderr)
        return 1
    except QueueUnavailable as exc:
        print(f"Job queue unavailable: {exc}", file=sys.stderr)
        return 1
    except AlreadyTerminal as exc:
        print(f"Nothing to do: {exc}", file=sys.stderr)
        return 1
    print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
