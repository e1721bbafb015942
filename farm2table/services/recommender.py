# =============================================
# File: farm2table/services/recommender.py
# Purpose: Contextual recommendations: history + semantic produce matches +
#          knowledge snippets -> one completion, persisted as a conversation turn
# =============================================
from __future__ import annotations

import asyncio
import os
import time
from typing import List, Optional, Sequence, Tuple

from loguru import logger

from ..interfaces import ConversationStore, TextCompletionProvider
from ..schemas import (
    ConversationContext,
    ConversationMetadata,
    ConversationTurn,
    PriceRange,
    ProduceFilters,
    RecommendationResult,
    ScoredKnowledge,
    ScoredProduce,
    UserContext,
)
from ..utils import metrics, slog
from ..utils.errors import ProviderError, ProviderUnavailable, ValidationError
from ..utils.prompting import RECOMMEND_SYSTEM, build_recommend_prompt
from .retrieval import KnowledgeRetriever, SimilarityRanker

REC_TOP_K = int(os.getenv("REC_TOP_K", "3"))
REC_KNOWLEDGE_TOP_K = int(os.getenv("REC_KNOWLEDGE_TOP_K", "3"))
REC_HISTORY_LIMIT = int(os.getenv("REC_HISTORY_LIMIT", "5"))
REC_MAX_TOKENS = int(os.getenv("REC_MAX_TOKENS", "200"))
RETRIEVAL_TIMEOUT_S = float(os.getenv("RECOMMEND_RETRIEVAL_TIMEOUT_SECONDS", "8"))
COMPLETION_TIMEOUT_S = float(os.getenv("RECOMMEND_COMPLETION_TIMEOUT_SECONDS", "12"))

APOLOGY_MESSAGE = (
    "I'm having trouble finding recommendations right now. Please try again in a moment."
)


def _distinct(values: Sequence[Optional[str]]) -> List[str]:
    out: List[str] = []
    for v in values:
        if v and v not in out:
            out.append(v)
    return out


def derive_metadata(recommendations: Sequence[ScoredProduce], response_time_ms: Optional[int] = None,
                    model_used: Optional[str] = None) -> ConversationMetadata:
    """Computed from the ranked records only; no model call."""
    prices = [r.price for r in recommendations]
    return ConversationMetadata(
        produce_ids=[r.id for r in recommendations if r.id is not None],
        categories=_distinct([r.category for r in recommendations]),
        price_range=PriceRange(min=min(prices), max=max(prices)) if prices else None,
        farming_methods=_distinct([r.farming_method for r in recommendations]),
        seasons=_distinct([r.season for r in recommendations]),
        response_time_ms=response_time_ms,
        model_used=model_used,
    )


class RecommendationComposer:
    def __init__(
        self,
        ranker: SimilarityRanker,
        knowledge: KnowledgeRetriever,
        completer: TextCompletionProvider,
        conversations: ConversationStore,
        top_k: int = REC_TOP_K,
        knowledge_top_k: int = REC_KNOWLEDGE_TOP_K,
        history_limit: int = REC_HISTORY_LIMIT,
        retrieval_timeout: float = RETRIEVAL_TIMEOUT_S,
        completion_timeout: float = COMPLETION_TIMEOUT_S,
    ) -> None:
        self.ranker = ranker
        self.knowledge = knowledge
        self.completer = completer
        self.conversations = conversations
        self.top_k = top_k
        self.knowledge_top_k = knowledge_top_k
        self.history_limit = history_limit
        self.retrieval_timeout = retrieval_timeout
        self.completion_timeout = completion_timeout

    async def _retrieve(self, question: str, filters: ProduceFilters) -> Tuple[List[ScoredProduce], List[ScoredKnowledge]]:
        """Produce and knowledge lookups are independent; run them side by side."""
        try:
            produce, knowledge = await asyncio.wait_for(
                asyncio.gather(
                    asyncio.to_thread(self.ranker.rank, question, filters, self.top_k),
                    asyncio.to_thread(self.knowledge.search, question, None, self.knowledge_top_k),
                ),
                timeout=self.retrieval_timeout,
            )
            return produce, knowledge
        except asyncio.TimeoutError:
            logger.warning(f"[recommend] retrieval timed out after {self.retrieval_timeout}s")
            produce = await asyncio.to_thread(self.ranker.lexical, question, filters, self.top_k, None, "timeout")
            return produce, []

    async def recommend(
        self,
        question: str,
        user_context: Optional[UserContext] = None,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> RecommendationResult:
        if not question or not question.strip():
            raise ValidationError("question")
        question = question.strip()
        user_context = user_context or UserContext()
        t0 = time.perf_counter()

        history = await asyncio.to_thread(
            self.conversations.recent_turns, user_id, session_id, self.history_limit
        )
        # only questions are replayed; responses would blow up the prompt
        previous_questions = [t.question for t in history]
        ctx = ConversationContext(
            **user_context.model_dump(),
            user_id=user_id,
            session_id=session_id,
            previous_questions=previous_questions,
        )
        method = "semantic_search_with_context" if (history or not user_context.is_empty()) else "semantic_search"

        filters = ProduceFilters(location=user_context.location, season=user_context.season)
        produce, knowledge = await self._retrieve(question, filters)

        prompt = build_recommend_prompt(question, ctx, produce, knowledge)
        try:
            narrative = await asyncio.wait_for(
                asyncio.to_thread(self.completer.complete, RECOMMEND_SYSTEM, prompt, REC_MAX_TOKENS, 0.7),
                timeout=self.completion_timeout,
            )
        except (ProviderUnavailable, ProviderError, asyncio.TimeoutError) as e:
            reason = type(e).__name__
            metrics.record_fallback("recommend")
            slog.log_fallback("recommend", reason, qhash=slog.qhash(question))
            logger.warning(f"[recommend] completion failed ({reason}); returning apology")
            return RecommendationResult(
                narrative=APOLOGY_MESSAGE,
                recommendations=[],
                used_history=previous_questions,
                history=history,
                method=method,
            )

        latency_ms = int((time.perf_counter() - t0) * 1000)
        model = self.completer.model_name
        metadata = derive_metadata(produce, response_time_ms=latency_ms, model_used=model)
        turn = ConversationTurn(
            question=question,
            response=narrative,
            user_id=user_id,
            session_id=session_id,
            context=ctx,
            metadata=metadata,
        )
        await asyncio.to_thread(self.conversations.append, turn)
        metrics.record_model(model)
        logger.info(
            f"[recommend] user={user_id} session={session_id} picks={len(produce)} "
            f"knowledge={len(knowledge)} history={len(history)} latency_ms={latency_ms}"
        )
        return RecommendationResult(
            narrative=narrative,
            recommendations=produce,
            used_history=previous_questions,
            history=history,
            method=method,
            model_used=model,
        )
