import logging
from dataclasses import dataclass
from typing import Union

from sqlalchemy import select, update

from config import MIN_CANDIDATE_LINES, MIN_TRANSCRIPT_CHARS
from database import async_session
from models import (
    ANALYSIS_COMPLETED,
    ANALYSIS_FAILED,
    ANALYSIS_PENDING,
    ANALYSIS_PROCESSING,
    Candidate,
    Interview,
    InterviewLog,
    InterviewSession,
)
from interview_prompts import DEFAULT_DIFFICULTY, DEFAULT_INTERVIEW_TYPE

log = logging.getLogger("gennie.analysis")

CANDIDATE_LABELS = ("candidate", "user", "human")
RETRYING_REASON = "Analysis hit a temporary problem and will be retried automatically."
CLAIMABLE_STATUSES = (ANALYSIS_PENDING, ANALYSIS_FAILED)


# ── Outcomes ─────────────────────────────────────────────
@dataclass(frozen=True)
class Ok:
    result: dict


@dataclass(frozen=True)
class ValidationFailed:
    reason: str


@dataclass(frozen=True)
class TransientError:
    cause: BaseException


@dataclass(frozen=True)
class Skipped:
    reason: str


AnalysisOutcome = Union[Ok, ValidationFailed, TransientError, Skipped]


# ── Transcript helpers ───────────────────────────────────
def build_transcript_from_logs(logs) -> str:
    return "\n".join(f"{entry.speaker}: {entry.message}" for entry in logs)


def count_candidate_lines(transcript: str) -> int:
    count = 0
    for line in transcript.splitlines():
        lowered = line.lstrip().lower()
        if any(lowered.startswith(f"{label}:") for label in CANDIDATE_LABELS):
            count += 1
    return count


def describe_analysis(session: InterviewSession) -> dict:
    """User-facing analysis status. Never exposes the raw error text."""
    status = session.analysis_status
    result = session.analysis_result or {}
    if status == ANALYSIS_COMPLETED:
        return {
            "status": status,
            "state": "completed",
            "score": result.get("score"),
            "result": result,
        }
    if status == ANALYSIS_FAILED and result.get("retrying"):
        # A queued retry will pick this row up again.
        return {"status": status, "state": "in_progress", "retrying": True, "reason": RETRYING_REASON}
    if status == ANALYSIS_FAILED:
        return {
            "status": status,
            "state": "failed",
            "reason": result.get("reason") or "Analysis could not be completed.",
        }
    return {"status": status, "state": "in_progress"}


async def mark_permanently_failed(session_id: str, attempts: int, error: str, session_factory=async_session):
    """Failure handler once every retry is spent."""
    async with session_factory() as db:
        await db.execute(
            update(InterviewSession)
            .where(
                InterviewSession.id == session_id,
                InterviewSession.analysis_status != ANALYSIS_COMPLETED,
            )
            .values(
                analysis_status=ANALYSIS_FAILED,
                analysis_result={
                    "error": error,
                    "reason": f"Analysis failed after {attempts} attempts. Please retry it manually.",
                    "attempts": attempts,
                },
            )
        )
        await db.commit()
    log.error("event=analysis_abandoned session_id=%s attempts=%d error=%s", session_id, attempts, error)


class AnalysisJob:
    """Scores one finished interview session.

    ``run`` never raises for ordinary failures: it persists the outcome on the
    session row and returns ``Ok``, ``ValidationFailed`` (terminal),
    ``TransientError`` (retryable) or ``Skipped`` (nothing to do).

    A job only claims a ``pending`` or ``failed`` row. ``expected_status``
    overrides that for the queue's retry after a timeout, where the cancelled
    attempt left the row in ``processing``.
    """

    def __init__(
        self,
        session_id: str,
        scoring_engine,
        session_factory=async_session,
        enricher=None,
        min_candidate_lines: int = MIN_CANDIDATE_LINES,
        min_transcript_chars: int = MIN_TRANSCRIPT_CHARS,
        expected_status: str | None = None,
    ):
        self.session_id = session_id
        self.expected_status = expected_status
        self._engine = scoring_engine
        self._session_factory = session_factory
        self._enricher = enricher
        self._min_candidate_lines = min_candidate_lines
        self._min_transcript_chars = min_transcript_chars

    async def run(self) -> AnalysisOutcome:
        async with self._session_factory() as db:
            session = await db.get(InterviewSession, self.session_id)
            if session is None:
                log.warning("event=analysis_skipped session_id=%s reason=not_found", self.session_id)
                return Skipped("session not found")
            if session.analysis_status == ANALYSIS_COMPLETED:
                return Skipped("already completed")
            if self.expected_status is not None:
                observed = self.expected_status
            elif session.analysis_status in CLAIMABLE_STATUSES:
                observed = session.analysis_status
            else:
                log.info("event=analysis_skipped session_id=%s reason=already_processing", self.session_id)
                return Skipped("already processing")
            if not await self._claim(db, observed):
                log.info("event=analysis_skipped session_id=%s reason=claimed_elsewhere", self.session_id)
                return Skipped("claimed by another worker")
            await db.refresh(session)
            log.info("event=analysis_started session_id=%s", self.session_id)

            try:
                outcome = await self._analyze(db, session)
            except Exception as e:
                log.exception("event=analysis_error session_id=%s", self.session_id)
                await db.rollback()
                await self._write_failure(
                    db, {"error": str(e) or type(e).__name__, "reason": RETRYING_REASON, "retrying": True}
                )
                return TransientError(e)

            if isinstance(outcome, Ok):
                await self._enrich(db, session)
            return outcome

    async def _claim(self, db, observed_status: str) -> bool:
        result = await db.execute(
            update(InterviewSession)
            .where(
                InterviewSession.id == self.session_id,
                InterviewSession.analysis_status == observed_status,
            )
            .values(analysis_status=ANALYSIS_PROCESSING)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return result.rowcount == 1

    async def _analyze(self, db, session: InterviewSession) -> AnalysisOutcome:
        transcript = (session.transcript or "").strip()
        if not transcript:
            transcript = await self._rebuild_transcript(db)
            if transcript:
                session.transcript = transcript
                await db.commit()
        if not transcript:
            return await self._reject(db, "No transcript available", "no transcript available")

        candidate_lines = count_candidate_lines(transcript)
        if candidate_lines < self._min_candidate_lines:
            return await self._reject(
                db,
                "Insufficient candidate responses",
                f"Only {candidate_lines} candidate responses were found; at least "
                f"{self._min_candidate_lines} are needed to analyze the interview.",
            )
        if len(transcript) < self._min_transcript_chars:
            return await self._reject(
                db,
                "Transcript too short",
                f"The transcript has {len(transcript)} characters; at least "
                f"{self._min_transcript_chars} are needed to analyze the interview.",
            )

        interview_type, difficulty, template = await self._criteria(db, session)
        job_description = session.job_description or (template.job_description if template else None)
        resume = session.resume or await self._candidate_resume(db, session)

        result = await self._engine.analyze(transcript, job_description, resume, interview_type, difficulty)

        session.analysis_status = ANALYSIS_COMPLETED
        session.analysis_result = result
        await db.commit()
        log.info("event=analysis_completed session_id=%s score=%s", self.session_id, result.get("score"))
        return Ok(result)

    async def _rebuild_transcript(self, db) -> str:
        result = await db.execute(
            select(InterviewLog)
            .where(InterviewLog.interview_session_id == self.session_id)
            .order_by(InterviewLog.created_at, InterviewLog.id)
        )
        return build_transcript_from_logs(result.scalars().all()).strip()

    async def _criteria(self, db, session: InterviewSession):
        template = None
        if session.interview_id:
            template = await db.get(Interview, session.interview_id)
        meta = session.session_metadata or {}
        interview_type = (template.interview_type if template else None) or meta.get("interview_type")
        difficulty = (template.difficulty_level if template else None) or meta.get("difficulty_level")
        return interview_type or DEFAULT_INTERVIEW_TYPE, difficulty or DEFAULT_DIFFICULTY, template

    async def _candidate_resume(self, db, session: InterviewSession) -> str | None:
        if not session.candidate_id:
            return None
        candidate = await db.get(Candidate, session.candidate_id)
        return candidate.resume_text if candidate else None

    async def _reject(self, db, error: str, reason: str) -> ValidationFailed:
        log.warning("event=analysis_rejected session_id=%s error=%s", self.session_id, error)
        await self._write_failure(db, {"error": error, "reason": reason})
        return ValidationFailed(reason)

    async def _write_failure(self, db, payload: dict):
        await db.execute(
            update(InterviewSession)
            .where(
                InterviewSession.id == self.session_id,
                InterviewSession.analysis_status != ANALYSIS_COMPLETED,
            )
            .values(analysis_status=ANALYSIS_FAILED, analysis_result=payload)
            .execution_options(synchronize_session=False)
        )
        await db.commit()

    async def _enrich(self, db, session: InterviewSession):
        if self._enricher is None:
            return
        try:
            await self._enricher.enrich(db, session, session.transcript or "")
        except Exception:
            log.exception("event=enrichment_failed session_id=%s", self.session_id)
            await db.rollback()
