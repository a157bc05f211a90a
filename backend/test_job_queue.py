import asyncio

import pytest

from analysis_job import Ok, TransientError, ValidationFailed
from job_queue import AnalysisQueue, RetryPolicy, build_analysis_queue
from models import InterviewSession


class ScriptedJob:
    def __init__(self, outcome):
        self._outcome = outcome

    async def run(self):
        if callable(self._outcome):
            return await self._outcome()
        return self._outcome


class Script:
    """Hands out one scripted outcome per run, in order."""

    def __init__(self, *outcomes):
        self._outcomes = list(outcomes)
        self.runs: list[str] = []
        self.expected: list[str | None] = []

    def __call__(self, session_id, expected_status=None):
        self.runs.append(session_id)
        self.expected.append(expected_status)
        return ScriptedJob(self._outcomes.pop(0))


class Recorder:
    def __init__(self):
        self.sleeps: list[float] = []
        self.failed: list[tuple[str, int, str]] = []

    async def sleep(self, seconds):
        self.sleeps.append(seconds)

    async def on_failed(self, session_id, attempts, error):
        self.failed.append((session_id, attempts, error))


def _transient(msg="gemini 503"):
    return TransientError(RuntimeError(msg))


async def _run_queue(script, recorder, policy=None, workers=1):
    queue = AnalysisQueue(script, policy=policy or RetryPolicy(), workers=workers,
                          sleep=recorder.sleep, on_failed=recorder.on_failed)
    queue.start()
    return queue


async def test_retries_with_backoff_then_succeeds():
    script = Script(_transient(), _transient(), Ok({"score": 80}))
    recorder = Recorder()
    queue = await _run_queue(script, recorder)

    queue.enqueue("s-1")
    await queue.drain()
    await queue.stop()

    assert script.runs == ["s-1", "s-1", "s-1"]
    assert recorder.sleeps == [30, 60]
    assert recorder.failed == []
    assert [job.attempt for job, _ in queue.outcomes] == [1, 2, 3]


async def test_gives_up_after_all_tries():
    script = Script(_transient(), _transient(), _transient("still down"))
    recorder = Recorder()
    queue = await _run_queue(script, recorder)

    queue.enqueue("s-2")
    await queue.drain()
    await queue.stop()

    assert len(script.runs) == 3
    assert recorder.failed == [("s-2", 3, "still down")]


async def test_validation_failure_is_not_retried():
    script = Script(ValidationFailed("too short"))
    recorder = Recorder()
    queue = await _run_queue(script, recorder)

    queue.enqueue("s-3")
    await queue.drain()
    await queue.stop()

    assert script.runs == ["s-3"]
    assert recorder.sleeps == []
    assert recorder.failed == []


async def test_exception_budget_abandons_early():
    policy = RetryPolicy(tries=5, backoff=(1,), timeout=None, max_exceptions=1)
    script = Script(_transient(), _transient(), Ok({}))
    recorder = Recorder()
    queue = await _run_queue(script, recorder, policy)

    queue.enqueue("s-4")
    await queue.drain()
    await queue.stop()

    assert len(script.runs) == 2
    assert recorder.failed == [("s-4", 2, "gemini 503")]


async def test_timeouts_count_as_attempts_but_not_exceptions():
    async def hang():
        await asyncio.sleep(10)

    policy = RetryPolicy(tries=3, backoff=(0,), timeout=0.01, max_exceptions=0)
    script = Script(hang, hang, hang)
    recorder = Recorder()
    queue = await _run_queue(script, recorder, policy)

    queue.enqueue("s-5")
    await queue.drain()
    await queue.stop()

    assert len(script.runs) == 3
    assert len(recorder.failed) == 1
    assert recorder.failed[0][1] == 3
    assert script.expected == [None, "processing", "processing"]


async def test_backoff_does_not_block_other_jobs():
    release = asyncio.Event()
    slept = []

    async def gated_sleep(seconds):
        slept.append(seconds)
        await release.wait()

    script = Script(_transient(), Ok({"score": 1}), Ok({"score": 2}))
    queue = AnalysisQueue(script, policy=RetryPolicy(), workers=1, sleep=gated_sleep, on_failed=Recorder().on_failed)
    queue.start()

    queue.enqueue("slow")
    queue.enqueue("fast")
    for _ in range(20):
        await asyncio.sleep(0)

    assert script.runs == ["slow", "fast"]
    assert slept == [30]

    release.set()
    await queue.drain()
    await queue.stop()
    assert script.runs == ["slow", "fast", "slow"]


def test_retry_policy_delays():
    policy = RetryPolicy()
    assert (policy.tries, policy.timeout, policy.max_exceptions) == (3, 300, 2)
    assert [policy.delay_for(a) for a in (1, 2, 3, 7)] == [30, 60, 120, 120]
    assert RetryPolicy(backoff=()).delay_for(1) == 0.0


@pytest.mark.parametrize("attempt,exceptions,abandon", [(1, 1, False), (2, 2, False), (3, 2, True), (2, 3, True)])
def test_should_abandon(attempt, exceptions, abandon):
    assert RetryPolicy().should_abandon(attempt, exceptions) is abandon


async def test_queue_runs_real_jobs_against_database(session_factory, add_rows, fetch, make_engine, enricher, good_transcript):
    await add_rows(InterviewSession(id="s-db", status="completed", transcript=good_transcript))
    engine = make_engine(failures=1)
    recorder = Recorder()
    queue = build_analysis_queue(
        session_factory=session_factory,
        scoring_engine=engine,
        enricher=enricher,
        workers=1,
        sleep=recorder.sleep,
    )
    queue.start()

    queue.enqueue("s-db")
    await queue.drain()
    await queue.stop()

    row = await fetch(InterviewSession, "s-db")
    assert row.analysis_status == "completed"
    assert row.analysis_result["score"] == 78
    assert len(engine.calls) == 2
    assert recorder.sleeps == [30]


async def test_queue_marks_session_failed_when_retries_run_out(session_factory, add_rows, fetch, make_engine, enricher, good_transcript):
    await add_rows(InterviewSession(id="s-dead", status="completed", transcript=good_transcript))
    recorder = Recorder()
    queue = build_analysis_queue(
        session_factory=session_factory,
        scoring_engine=make_engine(failures=5),
        enricher=enricher,
        workers=1,
        sleep=recorder.sleep,
    )
    queue.start()

    queue.enqueue("s-dead")
    await queue.drain()
    await queue.stop()

    row = await fetch(InterviewSession, "s-dead")
    assert row.analysis_status == "failed"
    assert row.analysis_result["attempts"] == 3


async def test_retry_after_timeout_reclaims_processing_row(session_factory, add_rows, fetch, make_engine, enricher, good_transcript):
    await add_rows(InterviewSession(id="s-stuck", status="completed", transcript=good_transcript))
    engine = make_engine()
    real_analyze = engine.analyze
    hung = []

    async def hang_first_call(*args):
        if not hung:
            hung.append(True)
            await asyncio.sleep(10)
        return await real_analyze(*args)

    engine.analyze = hang_first_call
    recorder = Recorder()
    queue = build_analysis_queue(
        session_factory=session_factory,
        scoring_engine=engine,
        enricher=enricher,
        workers=1,
        sleep=recorder.sleep,
        policy=RetryPolicy(tries=3, backoff=(0,), timeout=0.05, max_exceptions=0),
    )
    queue.start()

    queue.enqueue("s-stuck")
    await queue.drain()
    await queue.stop()

    row = await fetch(InterviewSession, "s-stuck")
    assert row.analysis_status == "completed"
    assert [job.expected_status for job, _ in queue.outcomes] == [None, "processing"]
