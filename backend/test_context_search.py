import context_search
from context_search import (
    fuse_rankings,
    lexical_ranking,
    rank_passages,
    search_context,
    split_passages,
    tokenize,
)
from models import InterviewSession, KnowledgeBase


def test_tokenize_drops_stopwords_and_accents():
    assert tokenize("What is the Café's Python/C++ policy?") == {"cafe", "python/c++", "policy"}


def test_split_passages_by_paragraph_and_length():
    text = "First paragraph.\n\nSecond one here.\n\n" + "Sentence number one. " * 60
    passages = split_passages("Handbook", text, max_len=200)
    assert passages[0] == "[Handbook] First paragraph."
    assert passages[1] == "[Handbook] Second one here."
    assert all(len(p) <= 200 + len("[Handbook] ") for p in passages)
    assert len(passages) > 3


def test_lexical_ranking_orders_by_overlap():
    passages = ["Dental benefits are great", "Remote work and dental benefits", "Parking is free"]
    assert lexical_ranking("remote dental benefits", passages) == [1, 0]
    assert lexical_ranking("the and of", passages) == []


def test_fuse_rankings_rewards_agreement():
    assert fuse_rankings([[0, 1, 2], [1, 2]]) == [1, 2, 0]
    assert fuse_rankings([[3, 1]]) == [3, 1]


def test_embedding_failure_falls_back_to_lexical(monkeypatch):
    def broken():
        raise OSError("model download failed")

    monkeypatch.setattr(context_search, "_get_embedder", broken)
    passages = ["Parking is free", "Remote work twice a week"]
    assert rank_passages("remote work", passages, use_embeddings=True) == ["Remote work twice a week"]


def test_rank_passages_limits_results():
    passages = [f"benefit number {i}" for i in range(10)]
    assert len(rank_passages("benefit", passages, limit=3, use_embeddings=False)) == 3
    assert rank_passages("benefit", [], use_embeddings=False) == []


async def test_search_context_uses_session_and_knowledge_base(session_factory, add_rows):
    await add_rows(
        KnowledgeBase(title="Benefits", content="Health insurance and a yearly learning budget."),
        InterviewSession(id="s-ctx", job_description="We need a Kubernetes operator expert.",
                         resume="Built Terraform modules."),
    )

    async with session_factory() as db:
        hit = await search_context(db, "kubernetes experience", "s-ctx")
        kb_hit = await search_context(db, "learning budget", None)
        miss = await search_context(db, "kubernetes experience", None)

    assert hit == "[Job description] We need a Kubernetes operator expert."
    assert kb_hit.startswith("[Benefits]")
    assert miss == ""
