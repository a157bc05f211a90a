import asyncio
import logging
from dataclasses import dataclass

from analysis_job import AnalysisJob, TransientError, mark_permanently_failed
from config import (
    ANALYSIS_BACKOFF,
    ANALYSIS_MAX_EXCEPTIONS,
    ANALYSIS_TIMEOUT,
    ANALYSIS_TRIES,
    ANALYSIS_WORKERS,
)
from database import async_session
from models import ANALYSIS_PROCESSING
from profile_enrichment import ProfileEnricher
from scoring import GeminiScoringEngine

log = logging.getLogger("gennie.queue")


@dataclass(frozen=True)
class RetryPolicy:
    tries: int = ANALYSIS_TRIES
    backoff: tuple[float, ...] = ANALYSIS_BACKOFF
    timeout: float | None = ANALYSIS_TIMEOUT
    max_exceptions: int = ANALYSIS_MAX_EXCEPTIONS

    def delay_for(self, attempt: int) -> float:
        """Delay before the retry that follows ``attempt`` (1-based)."""
        if not self.backoff:
            return 0.0
        return self.backoff[min(attempt, len(self.backoff)) - 1]

    def should_abandon(self, attempt: int, exceptions: int) -> bool:
        return attempt >= self.tries or exceptions > self.max_exceptions


@dataclass(frozen=True)
class QueuedJob:
    session_id: str
    attempt: int = 1
    exceptions: int = 0
    expected_status: str | None = None


class AnalysisQueue:
    """In-process worker pool for analysis jobs.

    ``job_factory(session_id, expected_status)`` builds an object with
    ``async run()`` returning an analysis outcome. Only ``TransientError`` outcomes are retried; a retry
    waits out its backoff in a separate task, so no worker sits idle.
    """

    def __init__(
        self,
        job_factory,
        policy: RetryPolicy | None = None,
        workers: int = ANALYSIS_WORKERS,
        sleep=asyncio.sleep,
        on_failed=mark_permanently_failed,
    ):
        self._job_factory = job_factory
        self.policy = policy or RetryPolicy()
        self._workers = max(1, workers)
        self._sleep = sleep
        self._on_failed = on_failed
        self._queue: asyncio.Queue | None = None
        self._worker_tasks: list[asyncio.Task] = []
        self._delayed: set[asyncio.Task] = set()
        self.outcomes: list[tuple[QueuedJob, object]] = []

    @property
    def running(self) -> bool:
        return bool(self._worker_tasks)

    def start(self):
        if self._worker_tasks:
            return
        if self._queue is None:
            self._queue = asyncio.Queue()
        for i in range(self._workers):
            self._worker_tasks.append(asyncio.create_task(self._worker(i)))
        log.info("event=queue_started workers=%d", self._workers)

    async def stop(self):
        tasks = self._worker_tasks + list(self._delayed)
        self._worker_tasks = []
        self._delayed.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        log.info("event=queue_stopped")

    def enqueue(self, session_id: str, delay: float = 0.0):
        self._put(QueuedJob(session_id), delay)

    async def drain(self):
        """Wait until nothing is queued, running, or waiting out a backoff."""
        while True:
            if self._queue is not None:
                await self._queue.join()
            if not self._delayed:
                if self._queue is None or self._queue.empty():
                    return
                continue
            await asyncio.gather(*list(self._delayed), return_exceptions=True)

    def _put(self, job: QueuedJob, delay: float):
        if self._queue is None:
            self._queue = asyncio.Queue()
        if delay and delay > 0:
            task = asyncio.create_task(self._release_after(job, delay))
            self._delayed.add(task)
            task.add_done_callback(self._delayed.discard)
        else:
            self._queue.put_nowait(job)

    async def _release_after(self, job: QueuedJob, delay: float):
        await self._sleep(delay)
        self._queue.put_nowait(job)

    async def _worker(self, worker_id: int):
        while True:
            job = await self._queue.get()
            try:
                await self._process(job)
            except Exception:
                log.exception("event=worker_error worker=%d session_id=%s", worker_id, job.session_id)
            finally:
                self._queue.task_done()

    async def _process(self, job: QueuedJob):
        timed_out = False
        try:
            job_run = self._job_factory(job.session_id, job.expected_status).run()
            outcome = await asyncio.wait_for(job_run, self.policy.timeout)
        except asyncio.TimeoutError as e:
            timed_out = True
            outcome = TransientError(e)
            log.warning(
                "event=analysis_timeout session_id=%s attempt=%d timeout=%s",
                job.session_id, job.attempt, self.policy.timeout,
            )
        self.outcomes.append((job, outcome))

        if not isinstance(outcome, TransientError):
            log.info("event=job_done session_id=%s attempt=%d outcome=%s", job.session_id, job.attempt, type(outcome).__name__)
            return

        exceptions = job.exceptions if timed_out else job.exceptions + 1
        if self.policy.should_abandon(job.attempt, exceptions):
            error = str(outcome.cause) or type(outcome.cause).__name__
            await self._on_failed(job.session_id, job.attempt, error)
            return

        delay = self.policy.delay_for(job.attempt)
        log.info(
            "event=job_retry session_id=%s attempt=%d next_in=%.0fs",
            job.session_id, job.attempt, delay,
        )
        # A timed-out attempt leaves the row in processing for its retry to reclaim.
        expected = ANALYSIS_PROCESSING if timed_out else None
        self._put(QueuedJob(job.session_id, job.attempt + 1, exceptions, expected), delay)


def build_analysis_queue(session_factory=None, scoring_engine=None, enricher=None, **kwargs) -> AnalysisQueue:
    """Queue wired to the Gemini scoring engine and profile enrichment."""
    session_factory = session_factory or async_session
    scoring_engine = scoring_engine or GeminiScoringEngine()
    enricher = enricher or ProfileEnricher()

    def job_factory(session_id: str, expected_status: str | None = None) -> AnalysisJob:
        return AnalysisJob(
            session_id, scoring_engine, session_factory=session_factory, enricher=enricher,
            expected_status=expected_status,
        )

    async def on_failed(session_id: str, attempts: int, error: str):
        await mark_permanently_failed(session_id, attempts, error, session_factory=session_factory)

    return AnalysisQueue(job_factory, on_failed=on_failed, **kwargs)
