import asyncio
import datetime

import recovery
from models import InterviewSession
from recovery import SweepReport, periodic_sweep, requeue_stale_pending, reset_stuck_sessions, sweep


def _ago(minutes):
    return recovery._utcnow() - datetime.timedelta(minutes=minutes)


def _session(session_id, analysis_status, minutes_ago, status="completed"):
    return InterviewSession(
        id=session_id,
        status=status,
        analysis_status=analysis_status,
        updated_at=_ago(minutes_ago),
    )


async def test_sweep_resets_stuck_and_requeues_stale(session_factory, add_rows, fetch):
    await add_rows(
        _session("stuck", "processing", 30),
        _session("busy", "processing", 2),
        _session("stale", "pending", 25),
        _session("recent", "pending", 15),
        _session("live", "pending", 60, status="active"),
        _session("failed", "failed", 60),
        _session("done", "completed", 60),
    )
    enqueued = []

    report = await sweep(enqueued.append, minutes=10, session_factory=session_factory)

    assert report.reset == ["stuck"]
    assert report.requeued == ["stale"]
    assert report.total == 2
    assert sorted(enqueued) == ["stale", "stuck"]
    assert (await fetch(InterviewSession, "stuck")).analysis_status == "pending"
    assert (await fetch(InterviewSession, "busy")).analysis_status == "processing"
    assert (await fetch(InterviewSession, "failed")).analysis_status == "failed"


async def test_dry_run_changes_nothing(session_factory, add_rows, fetch):
    await add_rows(_session("stuck", "processing", 30), _session("stale", "pending", 25))
    enqueued = []

    report = await sweep(enqueued.append, minutes=10, dry_run=True, session_factory=session_factory)

    assert report.dry_run
    assert (report.reset, report.requeued) == (["stuck"], ["stale"])
    assert enqueued == []
    assert (await fetch(InterviewSession, "stuck")).analysis_status == "processing"


async def test_pending_requeue_is_batched(session_factory, add_rows):
    await add_rows(*[_session(f"s-{i:02d}", "pending", 60 + i) for i in range(12)])
    enqueued = []

    requeued = await requeue_stale_pending(enqueued.append, minutes=10, session_factory=session_factory)

    assert len(requeued) == 10
    assert requeued[0] == "s-11"
    assert enqueued == requeued


async def test_reset_skips_rows_that_moved_on(session_factory, add_rows):
    await add_rows(_session("stuck", "processing", 30))
    enqueued = []
    fixed_now = recovery._utcnow()

    async with session_factory() as db:
        row = await db.get(InterviewSession, "stuck")
        row.analysis_status = "completed"
        await db.commit()

    assert await reset_stuck_sessions(enqueued.append, 10, session_factory=session_factory, now=fixed_now) == []
    assert enqueued == []


async def test_periodic_sweep_survives_errors(monkeypatch):
    calls = []

    async def flaky_sweep(enqueue, minutes):
        calls.append(minutes)
        if len(calls) == 1:
            raise RuntimeError("database is locked")
        return SweepReport()

    monkeypatch.setattr(recovery, "sweep", flaky_sweep)
    task = asyncio.create_task(periodic_sweep(lambda session_id: None, interval=0, minutes=7))
    for _ in range(20):
        await asyncio.sleep(0)
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    assert len(calls) >= 2
    assert set(calls) == {7}


def test_cli_prints_dry_run_summary(monkeypatch, capsys):
    seen = []

    async def fake_run(args):
        seen.append((args.minutes, args.dry_run))
        return SweepReport(dry_run=True, reset=["abc"], requeued=[])

    monkeypatch.setattr(recovery, "_run", fake_run)

    assert recovery.main(["--minutes", "5", "--dry-run"]) == 0

    out = capsys.readouterr().out
    assert seen == [(5, True)]
    assert "[DRY RUN] Found 1 stuck in 'processing'" in out
    assert "Would reset: abc" in out
    assert "1 sessions would be processed" in out


def test_cli_reports_nothing_to_do(monkeypatch, capsys):
    async def fake_run(args):
        return SweepReport()

    monkeypatch.setattr(recovery, "_run", fake_run)
    recovery.main([])
    assert "No stuck jobs found" in capsys.readouterr().out
