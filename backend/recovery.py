"""Recover analysis jobs that got stuck or were never picked up.

    python backend/recovery.py --minutes 10 [--dry-run]
"""

import argparse
import asyncio
import datetime
import logging
from dataclasses import dataclass, field

from sqlalchemy import select, update

from config import RECOVERY_SWEEP_INTERVAL, STUCK_ANALYSIS_MINUTES, setup_logging
from database import async_session
from job_queue import build_analysis_queue
from models import ANALYSIS_PENDING, ANALYSIS_PROCESSING, InterviewSession

log = logging.getLogger("gennie.recovery")

PENDING_BATCH_LIMIT = 10


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


@dataclass
class SweepReport:
    dry_run: bool = False
    reset: list[str] = field(default_factory=list)
    requeued: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.reset) + len(self.requeued)


async def reset_stuck_sessions(
    enqueue,
    minutes: int = STUCK_ANALYSIS_MINUTES,
    dry_run: bool = False,
    session_factory=async_session,
    now: datetime.datetime | None = None,
) -> list[str]:
    """Sessions in processing longer than ``minutes`` go back to pending and are re-enqueued."""
    cutoff = (now or _utcnow()) - datetime.timedelta(minutes=minutes)
    async with session_factory() as db:
        result = await db.execute(
            select(InterviewSession.id)
            .where(
                InterviewSession.analysis_status == ANALYSIS_PROCESSING,
                InterviewSession.updated_at < cutoff,
            )
            .order_by(InterviewSession.updated_at)
        )
        stuck = list(result.scalars().all())
        if dry_run:
            for session_id in stuck:
                log.info("[DRY RUN] Would reset: %s", session_id)
            return stuck

        reset: list[str] = []
        for session_id in stuck:
            res = await db.execute(
                update(InterviewSession)
                .where(
                    InterviewSession.id == session_id,
                    InterviewSession.analysis_status == ANALYSIS_PROCESSING,
                )
                .values(analysis_status=ANALYSIS_PENDING)
            )
            if res.rowcount == 1:
                reset.append(session_id)
        await db.commit()

    for session_id in reset:
        enqueue(session_id)
        log.info("Reset and re-queued stuck session %s", session_id)
    return reset


async def requeue_stale_pending(
    enqueue,
    minutes: int = STUCK_ANALYSIS_MINUTES,
    dry_run: bool = False,
    limit: int = PENDING_BATCH_LIMIT,
    session_factory=async_session,
    now: datetime.datetime | None = None,
) -> list[str]:
    """Finished interviews whose analysis is still pending after twice the stuck threshold."""
    cutoff = (now or _utcnow()) - datetime.timedelta(minutes=minutes * 2)
    async with session_factory() as db:
        result = await db.execute(
            select(InterviewSession.id)
            .where(
                InterviewSession.analysis_status == ANALYSIS_PENDING,
                InterviewSession.status == "completed",
                InterviewSession.updated_at < cutoff,
            )
            .order_by(InterviewSession.updated_at)
            .limit(limit)
        )
        stale = list(result.scalars().all())

    if dry_run:
        for session_id in stale:
            log.info("[DRY RUN] Would re-queue pending: %s", session_id)
        return stale
    for session_id in stale:
        enqueue(session_id)
        log.info("Re-queued pending session %s", session_id)
    return stale


async def sweep(
    enqueue,
    minutes: int = STUCK_ANALYSIS_MINUTES,
    dry_run: bool = False,
    session_factory=async_session,
    now: datetime.datetime | None = None,
) -> SweepReport:
    report = SweepReport(dry_run=dry_run)
    report.reset = await reset_stuck_sessions(enqueue, minutes, dry_run, session_factory, now)
    report.requeued = await requeue_stale_pending(
        enqueue, minutes, dry_run, session_factory=session_factory, now=now,
    )
    if report.total:
        log.info(
            "Recovery sweep: %d stuck, %d pending %s",
            len(report.reset), len(report.requeued),
            "would be processed" if dry_run else "processed",
        )
    return report


async def periodic_sweep(enqueue, interval: float = RECOVERY_SWEEP_INTERVAL, minutes: int = STUCK_ANALYSIS_MINUTES):
    while True:
        await asyncio.sleep(interval)
        try:
            await sweep(enqueue, minutes)
        except Exception:
            log.exception("Recovery sweep failed")


async def _run(args) -> SweepReport:
    queue = build_analysis_queue()
    if not args.dry_run:
        queue.start()
    try:
        report = await sweep(queue.enqueue, minutes=args.minutes, dry_run=args.dry_run)
        if not args.dry_run and report.total:
            await queue.drain()
    finally:
        await queue.stop()
    return report


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Detect and retry interview analysis jobs stuck in processing")
    parser.add_argument(
        "--minutes",
        type=int,
        default=STUCK_ANALYSIS_MINUTES,
        help=f"Minutes before a job counts as stuck (default: {STUCK_ANALYSIS_MINUTES})",
    )
    parser.add_argument("--dry-run", action="store_true", help="Show what would be retried without retrying")
    args = parser.parse_args(argv)

    setup_logging()
    report = asyncio.run(_run(args))

    prefix = "[DRY RUN] " if args.dry_run else ""
    print(f"{prefix}Found {len(report.reset)} stuck in 'processing'")
    for session_id in report.reset:
        print(f"  {prefix}{'Would reset' if args.dry_run else 'Reset and re-queued'}: {session_id}")
    print(f"{prefix}Found {len(report.requeued)} old 'pending' jobs to re-queue")
    for session_id in report.requeued:
        print(f"  {prefix}{'Would re-queue' if args.dry_run else 'Re-queued pending'}: {session_id}")
    if report.total:
        action = "would be processed" if args.dry_run else "processed"
        print(f"{report.total} sessions {action}")
    else:
        print("No stuck jobs found")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
