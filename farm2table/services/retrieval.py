# =============================================
# File: farm2table/services/retrieval.py
# Purpose: Embedding similarity ranking over the produce catalog and the
#          knowledge base, with a lexical fallback when embeddings fail
# =============================================
from __future__ import annotations

import os
import re
from typing import Callable, List, Optional, Sequence

from loguru import logger

from ..interfaces import EmbeddingProvider, KnowledgeRepository, ProduceRepository
from ..schemas import KnowledgeEntry, ProduceFilters, ProduceRecord, ScoredKnowledge, ScoredProduce
from ..utils import metrics, slog
from ..utils.errors import ProviderError, ProviderUnavailable
from ..utils.vectors import cosine_similarity

DEFAULT_TOP_K = int(os.getenv("SEARCH_TOP_K", "5"))
KNOWLEDGE_TOP_K = int(os.getenv("REC_KNOWLEDGE_TOP_K", "3"))

_TOKEN_RE = re.compile(r"[\w-]+")

# (query, candidates) -> fallback list
LexicalFallback = Callable[[str, Sequence[ProduceRecord]], List[ProduceRecord]]


# ---------------------------------------------------------------------
# Lexical matching
# ---------------------------------------------------------------------

def _query_tokens(query: str) -> List[str]:
    return [t for t in _TOKEN_RE.findall((query or "").lower()) if len(t) >= 3]


def _lexical_filter(query: str, items: Sequence, fields: Callable[[object], Sequence[Optional[str]]]) -> List:
    """
    Plain substring match: the whole query first, then any query token
    (3+ chars). Keeps input order.
    """
    q = " ".join((query or "").lower().split())
    if not q:
        return []

    def haystack(item) -> str:
        return " ".join(f.lower() for f in fields(item) if f)

    hits = [it for it in items if q in haystack(it)]
    if hits:
        return hits
    tokens = _query_tokens(q)
    if not tokens:
        return []
    return [it for it in items if any(t in haystack(it) for t in tokens)]


def lexical_produce_match(query: str, candidates: Sequence[ProduceRecord]) -> List[ProduceRecord]:
    return _lexical_filter(query, candidates, lambda p: (p.name, p.description, p.category))


def lexical_knowledge_match(query: str, entries: Sequence[KnowledgeEntry]) -> List[KnowledgeEntry]:
    return _lexical_filter(query, entries, lambda k: (k.title, k.content, " ".join(k.tags)))


def _rank_by_similarity(query_vec: Sequence[float], items: Sequence, vector_of: Callable) -> List[tuple]:
    scored = [(it, cosine_similarity(query_vec, vector_of(it))) for it in items if vector_of(it)]
    # sorted() is stable: equal scores keep insertion order
    return sorted(scored, key=lambda pair: pair[1], reverse=True)


# ---------------------------------------------------------------------
# Produce ranking
# ---------------------------------------------------------------------

class SimilarityRanker:
    """Top-K produce for a free-text query, scored by cosine similarity."""

    def __init__(self, repository: ProduceRepository, embedder: EmbeddingProvider) -> None:
        self.repository = repository
        self.embedder = embedder

    def rank(
        self,
        query: str,
        filters: Optional[ProduceFilters] = None,
        top_k: int = DEFAULT_TOP_K,
        fallback: Optional[LexicalFallback] = None,
    ) -> List[ScoredProduce]:
        filters = filters or ProduceFilters()
        top_k = max(0, int(top_k))
        if top_k == 0:
            return []

        try:
            query_vec = self.embedder.embed(query)
        except (ProviderUnavailable, ProviderError) as e:
            return self.lexical(query, filters, top_k, fallback, reason=type(e).__name__)

        candidates = self.repository.find_candidates(filters)
        ranked = _rank_by_similarity(query_vec, candidates, lambda p: p.embedding)
        logger.info(f"[rank] candidates={len(candidates)} scored={len(ranked)} top_k={top_k}")
        return [
            ScoredProduce(**record.model_dump(), embedding=record.embedding, similarity=sim)
            for record, sim in ranked[:top_k]
        ]

    def lexical(
        self,
        query: str,
        filters: Optional[ProduceFilters] = None,
        top_k: int = DEFAULT_TOP_K,
        fallback: Optional[LexicalFallback] = None,
        reason: str = "lexical",
    ) -> List[ScoredProduce]:
        """Filter-then-substring path used when no query embedding is available."""
        candidates = self.repository.find_candidates(filters or ProduceFilters())
        matches = (fallback or lexical_produce_match)(query, candidates)
        metrics.record_fallback("rank")
        slog.log_fallback("rank", reason, qhash=slog.qhash(query), hits=len(matches))
        logger.warning(f"[rank] fallback=lexical reason={reason} hits={len(matches)}")
        return [
            ScoredProduce(**record.model_dump(), embedding=record.embedding, similarity=None)
            for record in matches[:top_k]
        ]


# ---------------------------------------------------------------------
# Knowledge base ranking
# ---------------------------------------------------------------------

class KnowledgeRetriever:
    """Same ranking over active knowledge entries; grounds narratives only."""

    def __init__(self, repository: KnowledgeRepository, embedder: EmbeddingProvider) -> None:
        self.repository = repository
        self.embedder = embedder

    def search(self, query: str, category: Optional[str] = None, top_k: int = KNOWLEDGE_TOP_K) -> List[ScoredKnowledge]:
        top_k = max(0, int(top_k))
        if top_k == 0:
            return []
        entries = self.repository.find_active(category)
        try:
            query_vec = self.embedder.embed(query)
        except (ProviderUnavailable, ProviderError) as e:
            matches = lexical_knowledge_match(query, entries)
            metrics.record_fallback("knowledge")
            slog.log_fallback("knowledge", type(e).__name__, hits=len(matches))
            return [
                ScoredKnowledge(**k.model_dump(), embedding=k.embedding, similarity=None)
                for k in matches[:top_k]
            ]

        ranked = _rank_by_similarity(query_vec, entries, lambda k: k.embedding)
        return [
            ScoredKnowledge(**k.model_dump(), embedding=k.embedding, similarity=sim)
            for k, sim in ranked[:top_k]
        ]
