import logging
import re

from sqlalchemy import select

from config import ENABLE_EMBEDDING_SEARCH
from context_search import cosine_sim_matrix, _get_embedder, tokenize
from models import InterviewMemory

log = logging.getLogger("gennie.memory")

MAX_CONTENT_CHARS = 500
MAX_SOURCE_CHARS = 1000
MIN_RELEVANCE = 0.5

# topic -> (regex or None, keywords). A message matches a topic when the
# regex hits or any keyword appears as whole words.
TOPIC_PATTERNS: dict[str, tuple[str | None, tuple[str, ...]]] = {
    # screening
    "experience": (
        r"\d+\+?\s*years?\s*(of\s*)?(experience|developer|engineer|working)",
        ("years of experience", "worked for", "been a developer", "been working as"),
    ),
    "work_history": (None, ("worked at", "was with", "my last role", "previous company", "currently at", "current employer")),
    "intro": (None, ("my name is", "i am a", "i'm a", "my background", "about myself", "let me introduce")),
    "work_authorization": (
        r"green\s*card|citizen|h-?1b|visa|\bead\b|\bopt\b|\bcpt\b|permanent\s*resident",
        ("authorized to work", "sponsorship", "work permit"),
    ),
    "location": (r"located in|based in|live in|living in|currently in", ("i live", "my location", "working from", "remote from")),
    "relocation": (None, ("open to relocate", "willing to move", "can relocate", "not willing to relocate", "prefer remote")),
    "availability": (
        r"start\s*(immediately|right away|asap)|\d+\s*weeks?\s*notice|notice\s*period",
        ("can start", "available to start", "two weeks", "one month"),
    ),
    "salary": (
        r"\$\s*\d{2,3}(,\d{3}|\s*k\b)|\b\d{2,3}\s*k\b|\b\d{2,3},\d{3}\b|hundred\s+(and\s+\w+\s+)?thousand",
        ("salary", "compensation", "expecting", "looking for around", "base pay", "total comp"),
    ),
    "timeline": (None, ("decision", "timeline", "making a decision", "need to decide", "by next week")),
    "other_interviews": (None, ("interviewing", "other companies", "other interviews", "talking to", "offer from")),
    # technical
    "technologies": (
        r"\b(react|angular|vue|node|python|java|typescript|javascript|aws|azure|gcp|docker|kubernetes|sql|mongodb|graphql)\b|rest\s*api",
        ("tech stack", "programming", "framework", "language", "database", "cloud"),
    ),
    "architecture": (
        r"microservices|monolith|serverless|event[\s-]*driven|distributed",
        ("architecture", "system design", "scaling", "designed the", "architected"),
    ),
    "projects": (None, ("project", "built", "developed", "implemented", "created", "worked on a", "my biggest")),
    "problem_solving": (None, ("solved", "debugged", "fixed", "optimized", "improved", "reduced", "approach to")),
    "best_practices": (
        r"ci\s*/?\s*cd|unit\s*tests?|\btdd\b|code\s*reviews?|agile|scrum",
        ("testing", "deployment", "version control", "git", "code quality", "documentation"),
    ),
    # behavioral
    "teamwork": (None, ("team", "collaborated", "worked with", "together", "group project", "cross-functional")),
    "conflict": (None, ("disagreement", "conflict", "difficult situation", "tension", "resolved", "compromise")),
    "leadership": (None, ("led", "managed", "mentored", "coached", "supervised", "took ownership", "initiated")),
    "failure": (None, ("failed", "mistake", "learned", "lesson", "wrong", "setback", "challenge")),
    "achievement": (None, ("proud of", "accomplished", "achievement", "succeeded", "award", "recognition")),
    # final
    "motivation": (None, ("passionate about", "enjoy", "love", "motivates me", "excited about", "interested in")),
    "career_goals": (None, ("career", "long term", "five years", "goal", "aspiration", "grow", "future")),
    "culture_fit": (None, ("culture", "values", "work environment", "team dynamics", "company mission")),
    "why_company": (None, ("why this company", "attracted to", "researched", "impressed by", "read about")),
    "questions_asked": (None, ("can i ask", "want to know", "wondering about", "my question is")),
}


def _compile(pattern: str | None, keywords: tuple[str, ...]) -> re.Pattern:
    parts = [rf"\b{re.escape(k)}\b" for k in keywords]
    if pattern:
        parts.insert(0, f"(?:{pattern})")
    return re.compile("|".join(parts), re.IGNORECASE)


_TOPIC_RES = {topic: _compile(pattern, keywords) for topic, (pattern, keywords) in TOPIC_PATTERNS.items()}


def extract_topics(message: str) -> list[str]:
    """Topics a candidate message touches, in table order."""
    return [topic for topic, regex in _TOPIC_RES.items() if regex.search(message or "")]


async def remember_candidate_message(db, session_id: str, message: str) -> list[str]:
    """Store the message under every topic it covers; the first mention of a topic wins."""
    topics = extract_topics(message)
    if not topics:
        return []
    result = await db.execute(
        select(InterviewMemory.topic).where(InterviewMemory.interview_session_id == session_id)
    )
    known = set(result.scalars().all())
    stored = [topic for topic in topics if topic not in known]
    for topic in stored:
        db.add(InterviewMemory(
            interview_session_id=session_id,
            topic=topic,
            content=message[:MAX_CONTENT_CHARS],
            source_message=message[:MAX_SOURCE_CHARS],
        ))
    if stored:
        await db.commit()
        log.info("Stored memory topics for %s: %s", session_id, ", ".join(stored))
    return stored


async def get_session_memory(db, session_id: str) -> dict[str, str]:
    result = await db.execute(
        select(InterviewMemory)
        .where(InterviewMemory.interview_session_id == session_id)
        .order_by(InterviewMemory.id)
    )
    return {memory.topic: memory.content for memory in result.scalars().all()}


def _lexical_scores(query: str, documents: list[str]) -> list[float]:
    q_tokens = tokenize(query)
    if not q_tokens:
        return [0.0] * len(documents)
    return [len(q_tokens & tokenize(doc)) / len(q_tokens) for doc in documents]


def _embedding_scores(query: str, documents: list[str]) -> list[float]:
    embedder = _get_embedder()
    q_emb = embedder.encode([query], convert_to_numpy=True)
    d_emb = embedder.encode(documents, convert_to_numpy=True)
    return [float(s) for s in cosine_sim_matrix(q_emb, d_emb)[0]]


async def recall_by_query(
    db,
    session_id: str,
    query: str,
    use_embeddings: bool = ENABLE_EMBEDDING_SEARCH,
) -> dict | None:
    """Closest stored memory to ``query``, or None below ``MIN_RELEVANCE``."""
    memory = await get_session_memory(db, session_id)
    if not memory:
        return None
    topics = list(memory)
    documents = [f"{topic.replace('_', ' ')}: {memory[topic]}" for topic in topics]

    scores = _lexical_scores(query, documents)
    if use_embeddings:
        try:
            scores = [max(a, b) for a, b in zip(scores, _embedding_scores(query, documents))]
        except Exception as e:
            log.warning("Memory recall fallback to lexical scoring: %s", e)

    best = max(range(len(topics)), key=lambda i: scores[i])
    if scores[best] < MIN_RELEVANCE:
        return None
    return {"topic": topics[best], "content": memory[topics[best]], "relevance": round(scores[best], 2)}
