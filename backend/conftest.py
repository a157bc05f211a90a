import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENABLE_EMBEDDING_SEARCH", "false")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from models import Base

GOOD_TRANSCRIPT = "\n".join([
    "agent: Hi there! I'm Gennie. I'll be conducting your technical assessment today. Shall we start?",
    "candidate: Sure. I'm a backend engineer with six years of experience building Python services, "
    "mostly with FastAPI and Django, deployed on AWS behind a load balancer.",
    "agent: What was the most complex system you have built so far?",
    "candidate: A payments reconciliation pipeline that processed two million transactions per day. "
    "I designed the queueing layer, the retry semantics and the reporting jobs.",
    "agent: How did you handle failures in that pipeline?",
    "candidate: Every step was idempotent, we used a dead letter queue with alerts on lag, and we "
    "replayed failed batches after fixing the root cause.",
    "agent: How do you approach testing?",
    "candidate: Unit tests for the pure logic, integration tests against a real database in CI, and "
    "a small set of end to end checks that run before every deploy.",
    "agent: Thanks, that's all from me.",
])


class FakeScoringEngine:
    def __init__(self, result=None, failures: int = 0, exc: Exception | None = None):
        self.result = result if result is not None else {
            "score": 78,
            "summary": "Solid backend engineer with clear answers.",
            "key_pros": ["Idempotent pipeline design"],
            "key_cons": ["Little frontend exposure"],
            "recommendation": "Hire",
        }
        self.failures = failures
        self.exc = exc or RuntimeError("scoring model unavailable")
        self.calls: list[dict] = []

    async def analyze(self, transcript, job_description, resume, interview_type, difficulty):
        self.calls.append({
            "transcript": transcript,
            "job_description": job_description,
            "resume": resume,
            "interview_type": interview_type,
            "difficulty": difficulty,
        })
        if self.failures > 0:
            self.failures -= 1
            raise self.exc
        return dict(self.result)


class RecordingEnricher:
    def __init__(self, exc: Exception | None = None):
        self.exc = exc
        self.calls: list[tuple[str, str]] = []

    async def enrich(self, db, session, transcript):
        self.calls.append((session.id, transcript))
        if self.exc is not None:
            raise self.exc
        return []


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def add_rows(session_factory):
    async def _add(*rows):
        async with session_factory() as db:
            db.add_all(rows)
            await db.commit()
        return rows[0] if len(rows) == 1 else rows
    return _add


@pytest_asyncio.fixture
async def fetch(session_factory):
    async def _fetch(model, pk):
        async with session_factory() as db:
            return await db.get(model, pk)
    return _fetch


@pytest.fixture
def scoring_engine():
    return FakeScoringEngine()


@pytest.fixture
def enricher():
    return RecordingEnricher()


@pytest.fixture
def good_transcript():
    return GOOD_TRANSCRIPT


@pytest.fixture
def make_engine():
    return FakeScoringEngine


@pytest.fixture
def make_enricher():
    return RecordingEnricher
