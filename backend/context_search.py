import logging
import re
import unicodedata

import numpy as np
from sentence_transformers import SentenceTransformer
from sqlalchemy import select

from config import EMBEDDING_MODEL, ENABLE_EMBEDDING_SEARCH
from models import InterviewSession, KnowledgeBase

log = logging.getLogger("gennie.context")

_TOKEN_RE = re.compile(r"[a-z0-9.+#/:-]+")
_STOP = {
    "a", "an", "the", "and", "or", "to", "of", "in", "on", "for", "with", "as", "at", "by",
    "is", "are", "was", "were", "be", "been", "being", "this", "that", "these", "those",
    "what", "how", "do", "does", "you", "your", "we", "our", "i", "me", "my", "it", "about",
}
RRF_K = 60
_EMBEDDER = None


def _get_embedder():
    global _EMBEDDER
    if _EMBEDDER is None:
        _EMBEDDER = SentenceTransformer(EMBEDDING_MODEL)
    return _EMBEDDER


def normalize(s: str) -> str:
    s = unicodedata.normalize("NFKD", s.lower())
    return "".join(ch for ch in s if not unicodedata.combining(ch))


def tokenize(s: str) -> set[str]:
    tokens = (tok.strip(".:-/") for tok in _TOKEN_RE.findall(normalize(s)))
    return {tok for tok in tokens if len(tok) > 1 and tok not in _STOP}


def split_passages(title: str, text: str, max_len: int = 800) -> list[str]:
    passages: list[str] = []
    for block in re.split(r"\n\s*\n", text or ""):
        block = block.strip()
        if not block:
            continue
        while len(block) > max_len:
            cut = block.rfind(". ", 0, max_len)
            cut = cut + 1 if cut > 0 else max_len
            passages.append(f"[{title}] {block[:cut].strip()}")
            block = block[cut:].strip()
        if block:
            passages.append(f"[{title}] {block}")
    return passages


def cosine_sim_matrix(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    a_norm = a / (np.linalg.norm(a, axis=1, keepdims=True) + 1e-12)
    b_norm = b / (np.linalg.norm(b, axis=1, keepdims=True) + 1e-12)
    return a_norm @ b_norm.T


def lexical_ranking(query: str, passages: list[str]) -> list[int]:
    """Indices of passages sharing at least one query token, best first."""
    q_tokens = tokenize(query)
    if not q_tokens:
        return []
    scored = []
    for i, passage in enumerate(passages):
        overlap = len(q_tokens & tokenize(passage))
        if overlap:
            scored.append((overlap / len(q_tokens), i))
    scored.sort(key=lambda item: (-item[0], item[1]))
    return [i for _, i in scored]


def embedding_ranking(query: str, passages: list[str], threshold: float = 0.3) -> list[int]:
    embedder = _get_embedder()
    q_emb = embedder.encode([query], convert_to_numpy=True)
    p_emb = embedder.encode(passages, convert_to_numpy=True)
    sims = cosine_sim_matrix(q_emb, p_emb)[0]
    order = np.argsort(-sims)
    return [int(i) for i in order if float(sims[i]) >= threshold]


def fuse_rankings(rankings: list[list[int]], k: int = RRF_K) -> list[int]:
    """Reciprocal rank fusion."""
    scores: dict[int, float] = {}
    for ranking in rankings:
        for rank, idx in enumerate(ranking, start=1):
            scores[idx] = scores.get(idx, 0.0) + 1.0 / (k + rank)
    return sorted(scores, key=lambda idx: (-scores[idx], idx))


def rank_passages(query: str, passages: list[str], limit: int = 3, use_embeddings: bool = ENABLE_EMBEDDING_SEARCH) -> list[str]:
    if not passages:
        return []
    rankings = [lexical_ranking(query, passages)]
    if use_embeddings:
        try:
            rankings.append(embedding_ranking(query, passages))
        except Exception as e:
            log.warning("Embedding search fallback to lexical ranking: %s", e)
    return [passages[i] for i in fuse_rankings(rankings)[:limit]]


async def gather_passages(db, session_id: str | None = None) -> list[str]:
    passages: list[str] = []
    if session_id:
        session = await db.get(InterviewSession, session_id)
        if session is not None:
            passages += split_passages("Job description", session.job_description or "")
            passages += split_passages("Candidate resume", session.resume or "")
    result = await db.execute(select(KnowledgeBase).order_by(KnowledgeBase.id))
    for entry in result.scalars().all():
        passages += split_passages(entry.title, entry.content)
    return passages


async def search_context(db, query: str, session_id: str | None = None, limit: int = 3) -> str:
    passages = await gather_passages(db, session_id)
    top = rank_passages(query, passages, limit=limit)
    log.info("Context search query=%r passages=%d hits=%d", query[:120], len(passages), len(top))
    return "\n\n".join(top)
