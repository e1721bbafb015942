# =============================================
# File: farm2table/services/container.py
# Purpose: Wire providers, repositories and services once per process;
#          routers receive them through the `get_services` dependency
# =============================================
from __future__ import annotations

import random
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from ..db.repo import SqlConversationStore, SqlKnowledgeRepository, SqlProduceRepository, engine as default_engine
from ..interfaces import EmbeddingProvider, TextCompletionProvider
from ..utils.embeddings import build_embedding_provider
from .catalog import CatalogWriter
from .conversations import ConversationAnalyticsService
from .generation import OpenAICompletionProvider
from .pricing import PricingEngine
from .recommender import RecommendationComposer
from .retrieval import KnowledgeRetriever, SimilarityRanker
from .trends import MarketTrendSynthesizer


@dataclass
class Services:
    produce: SqlProduceRepository
    knowledge_repo: SqlKnowledgeRepository
    conversations: SqlConversationStore
    embedder: EmbeddingProvider
    completer: TextCompletionProvider
    ranker: SimilarityRanker
    knowledge: KnowledgeRetriever
    recommender: RecommendationComposer
    pricing: PricingEngine
    trends: MarketTrendSynthesizer
    catalog: CatalogWriter
    analytics: ConversationAnalyticsService


def build_services(
    bind=None,
    embedder: Optional[EmbeddingProvider] = None,
    completer: Optional[TextCompletionProvider] = None,
    rng: Optional[random.Random] = None,
    today=None,
    use_ai_trends: Optional[bool] = None,
) -> Services:
    bind = bind or default_engine
    embedder = embedder or build_embedding_provider()
    completer = completer or OpenAICompletionProvider()

    produce = SqlProduceRepository(bind)
    knowledge_repo = SqlKnowledgeRepository(bind)
    conversations = SqlConversationStore(bind)
    ranker = SimilarityRanker(produce, embedder)
    knowledge = KnowledgeRetriever(knowledge_repo, embedder)
    return Services(
        produce=produce,
        knowledge_repo=knowledge_repo,
        conversations=conversations,
        embedder=embedder,
        completer=completer,
        ranker=ranker,
        knowledge=knowledge,
        recommender=RecommendationComposer(ranker, knowledge, completer, conversations),
        pricing=PricingEngine(produce, completer, rng=rng, today=today),
        trends=MarketTrendSynthesizer(produce, completer, today=today, use_ai=use_ai_trends),
        catalog=CatalogWriter(produce, knowledge_repo, embedder, completer),
        analytics=ConversationAnalyticsService(conversations),
    )


@lru_cache(maxsize=1)
def get_services() -> Services:
    """FastAPI dependency; tests swap it via app.dependency_overrides."""
    return build_services()
