from fastapi import FastAPI, Depends, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from pydantic import BaseModel
from typing import Literal, Optional
import asyncio
import datetime
import json
import logging

from config import ENABLE_RECOVERY_SWEEP, FRONTEND_URL, setup_logging
from database import async_session, get_db, init_db
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
from analysis_job import describe_analysis
from context_search import search_context
from interview_memory import get_session_memory, recall_by_query, remember_candidate_message
from interview_prompts import build_agent_settings
from job_queue import build_analysis_queue
from recovery import periodic_sweep

log = logging.getLogger("gennie.api")

app = FastAPI(title="Gennie Interview API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

analysis_queue = build_analysis_queue()
_background_tasks: list[asyncio.Task] = []


def get_analysis_queue():
    return analysis_queue


def get_session_factory():
    return async_session


@app.on_event("startup")
async def startup():
    setup_logging()
    await init_db()
    analysis_queue.start()
    if ENABLE_RECOVERY_SWEEP:
        _background_tasks.append(asyncio.create_task(periodic_sweep(analysis_queue.enqueue)))


@app.on_event("shutdown")
async def shutdown():
    for task in _background_tasks:
        task.cancel()
    if _background_tasks:
        await asyncio.gather(*_background_tasks, return_exceptions=True)
    _background_tasks.clear()
    await analysis_queue.stop()


async def _get_session_or_404(db: AsyncSession, session_id: str) -> InterviewSession:
    session = await db.get(InterviewSession, session_id)
    if not session:
        raise HTTPException(404, "Session not found")
    return session


def _serialize_session(session: InterviewSession) -> dict:
    return {
        "id": session.id,
        "interview_id": session.interview_id,
        "candidate_id": session.candidate_id,
        "status": session.status,
        "metadata": session.session_metadata or {},
        "has_job_description": bool(session.job_description),
        "has_resume": bool(session.resume),
        "analysis": describe_analysis(session),
        "created_at": session.created_at.isoformat() if session.created_at else None,
    }


# ── Agent Tools ─────────────────────────────────────────

MEMORY_FALLBACK = "I am having trouble accessing my memory right now."


class ContextRequest(BaseModel):
    query: Optional[str] = None
    session_id: Optional[str] = None


@app.post("/api/agent/context")
async def agent_context(body: ContextRequest, db: AsyncSession = Depends(get_db)):
    query = (body.query or "").strip()
    if not query:
        raise HTTPException(400, "Query required")
    log.info("Agent asked: %s%s", query, f" (session: {body.session_id})" if body.session_id else "")
    try:
        context = await search_context(db, query, body.session_id)
    except Exception as e:
        log.error("Context search error: %s", e)
        return {"context": MEMORY_FALLBACK}
    return {"context": context}


class RecallRequest(BaseModel):
    session_id: Optional[str] = None
    query: Optional[str] = None


@app.post("/api/agent/recall")
async def agent_recall(body: RecallRequest, db: AsyncSession = Depends(get_db)):
    if not body.session_id:
        raise HTTPException(400, "Session ID required")
    query = (body.query or "").strip()
    log.info("Memory recall for session %s%s", body.session_id, f" (query: {query})" if query else "")
    try:
        if query:
            recall = await recall_by_query(db, body.session_id, query)
            return {
                "found": recall is not None,
                "recall": recall,
                "instruction": (
                    "The candidate already mentioned this. Do NOT ask again."
                    if recall else "No matching memory found. You may ask about this."
                ),
            }
        facts = await get_session_memory(db, body.session_id)
    except Exception as e:
        log.error("Memory recall error: %s", e)
        return {"covered_topics": [], "facts": {}, "instruction": "Memory system unavailable."}
    covered = list(facts)
    return {
        "covered_topics": covered,
        "facts": facts,
        "instruction": (
            f"Do NOT ask about: {', '.join(covered)}. These are already covered."
            if covered else "No topics covered yet."
        ),
    }


# ── Sessions ────────────────────────────────────────────

class SessionCreate(BaseModel):
    interview_id: Optional[int] = None
    candidate_id: Optional[int] = None
    job_description: Optional[str] = None
    resume: Optional[str] = None
    metadata: Optional[dict] = None


@app.post("/api/sessions")
async def create_session(body: SessionCreate, db: AsyncSession = Depends(get_db)):
    job_description = body.job_description
    if body.interview_id is not None:
        interview = await db.get(Interview, body.interview_id)
        if not interview:
            raise HTTPException(404, "Interview not found")
        job_description = job_description or interview.job_description
    resume = body.resume
    if body.candidate_id is not None:
        candidate = await db.get(Candidate, body.candidate_id)
        if not candidate:
            raise HTTPException(404, "Candidate not found")
        resume = resume or candidate.resume_text

    session = InterviewSession(
        interview_id=body.interview_id,
        candidate_id=body.candidate_id,
        job_description=job_description,
        resume=resume,
        session_metadata=body.metadata or {},
        status="active",
        analysis_status=ANALYSIS_PENDING,
    )
    db.add(session)
    await db.commit()
    await db.refresh(session)
    return {"success": True, "session": _serialize_session(session)}


@app.get("/api/sessions/{session_id}")
async def get_session(session_id: str, db: AsyncSession = Depends(get_db)):
    session = await _get_session_or_404(db, session_id)
    return {"success": True, "session": _serialize_session(session)}


@app.get("/api/sessions/{session_id}/agent-config")
async def agent_config(session_id: str, db: AsyncSession = Depends(get_db)):
    session = await _get_session_or_404(db, session_id)
    ctx = dict(session.session_metadata or {})
    if session.interview_id:
        interview = await db.get(Interview, session.interview_id)
        if interview:
            ctx.setdefault("job_title", interview.title)
            ctx.setdefault("company_name", interview.company_name)
            ctx["interview_type"] = interview.interview_type
            ctx["difficulty_level"] = interview.difficulty_level
            ctx["duration_minutes"] = interview.duration_minutes
            ctx["custom_instructions"] = interview.custom_instructions
    ctx["job_description"] = session.job_description
    ctx["resume"] = session.resume
    return build_agent_settings(ctx)


# ── Transcript Logs ─────────────────────────────────────

class LogCreate(BaseModel):
    speaker: Literal["agent", "candidate", "system"]
    message: str
    metadata: Optional[dict] = None


@app.post("/api/sessions/{session_id}/logs")
async def log_interaction(session_id: str, body: LogCreate, db: AsyncSession = Depends(get_db)):
    await _get_session_or_404(db, session_id)
    if not body.message.strip():
        raise HTTPException(422, "Message must not be empty")
    entry = InterviewLog(
        interview_session_id=session_id,
        speaker=body.speaker,
        message=body.message,
        log_metadata=body.metadata,
    )
    db.add(entry)
    await db.commit()
    entry_id = entry.id
    if body.speaker == "candidate":
        try:
            await remember_candidate_message(db, session_id, body.message)
        except Exception as e:
            log.error("Memory extraction failed for %s: %s", session_id, e)
            await db.rollback()
    return {"success": True, "id": entry_id}


@app.get("/api/sessions/{session_id}/logs")
async def list_logs(session_id: str, db: AsyncSession = Depends(get_db)):
    await _get_session_or_404(db, session_id)
    result = await db.execute(
        select(InterviewLog)
        .where(InterviewLog.interview_session_id == session_id)
        .order_by(InterviewLog.created_at, InterviewLog.id)
    )
    return [
        {
            "id": entry.id,
            "speaker": entry.speaker,
            "message": entry.message,
            "metadata": entry.log_metadata,
            "created_at": entry.created_at.isoformat() if entry.created_at else None,
        }
        for entry in result.scalars().all()
    ]


# ── Session End + Analysis ──────────────────────────────

@app.post("/api/sessions/{session_id}/end")
async def end_session(
    session_id: str,
    db: AsyncSession = Depends(get_db),
    queue=Depends(get_analysis_queue),
):
    session = await _get_session_or_404(db, session_id)
    if session.status == "completed":
        return {"success": True, "already_completed": True}
    session.status = "completed"
    await db.commit()
    queue.enqueue(session_id)
    log.info("Session %s ended, analysis queued", session_id)
    return {"success": True, "already_completed": False}


@app.post("/api/sessions/{session_id}/analyze")
async def trigger_analysis(
    session_id: str,
    db: AsyncSession = Depends(get_db),
    queue=Depends(get_analysis_queue),
):
    session = await _get_session_or_404(db, session_id)
    if session.analysis_status == ANALYSIS_PROCESSING or describe_analysis(session).get("retrying"):
        return {"success": False, "message": "Analysis already in progress"}
    if session.analysis_status == ANALYSIS_COMPLETED:
        return {"success": False, "message": "Analysis already completed"}

    if not (session.transcript or "").strip():
        log_count = await db.scalar(
            select(func.count(InterviewLog.id)).where(InterviewLog.interview_session_id == session_id)
        )
        if not log_count:
            return {"success": False, "message": "No transcript or logs available to analyze"}

    queue.enqueue(session_id)
    return {"success": True, "message": "Analysis queued"}


@app.post("/api/sessions/{session_id}/reset-analysis")
async def reset_analysis(session_id: str, db: AsyncSession = Depends(get_db)):
    session = await _get_session_or_404(db, session_id)
    if session.analysis_status != ANALYSIS_FAILED:
        raise HTTPException(409, f"Only failed analyses can be reset (current: {session.analysis_status})")
    session.analysis_status = ANALYSIS_PENDING
    session.analysis_result = None
    await db.commit()
    return {"success": True, "analysis": describe_analysis(session)}


@app.get("/api/sessions/{session_id}/analysis")
async def get_analysis(session_id: str, db: AsyncSession = Depends(get_db)):
    session = await _get_session_or_404(db, session_id)
    return describe_analysis(session)


# ── Analysis Stream (SSE) ───────────────────────────────

STREAM_POLL_SECONDS = 2.0
STREAM_MAX_ITERATIONS = 90
STREAM_HEARTBEAT_EVERY = 5


def _sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


async def _analysis_events(session_id: str, session_factory, initial: dict):
    yield _sse("status", initial)
    if initial["state"] in ("completed", "failed"):
        yield _sse("done", {"status": initial["status"]})
        return

    last_seen = (initial["status"], initial["state"])
    for i in range(STREAM_MAX_ITERATIONS):
        await asyncio.sleep(STREAM_POLL_SECONDS)
        async with session_factory() as db:
            session = await db.get(InterviewSession, session_id)
            view = describe_analysis(session) if session else None
        if view is None:
            yield _sse("error", {"message": "Session not found"})
            return
        if (view["status"], view["state"]) != last_seen:
            yield _sse("status", view)
            last_seen = (view["status"], view["state"])
        if view["state"] in ("completed", "failed"):
            yield _sse("done", {"status": view["status"]})
            return
        if i % STREAM_HEARTBEAT_EVERY == 0:
            yield _sse("heartbeat", {"time": datetime.datetime.now(datetime.timezone.utc).isoformat()})
    yield _sse("timeout", {"message": "Stream timeout after 3 minutes"})


@app.get("/api/sessions/{session_id}/analysis-stream")
async def analysis_stream(
    session_id: str,
    db: AsyncSession = Depends(get_db),
    session_factory=Depends(get_session_factory),
):
    session = await _get_session_or_404(db, session_id)
    return StreamingResponse(
        _analysis_events(session_id, session_factory, describe_analysis(session)),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
