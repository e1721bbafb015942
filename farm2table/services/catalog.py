# =============================================
# File: farm2table/services/catalog.py
# Purpose: Write path for listings and knowledge entries: description
#          authoring, embedding text, vector storage and stale-vector refresh
# =============================================
from __future__ import annotations

from typing import Dict, List, Optional

from loguru import logger

from ..interfaces import EmbeddingProvider, KnowledgeRepository, ProduceRepository, TextCompletionProvider
from ..schemas import KnowledgeEntry, ProduceRecord
from ..utils import metrics, slog
from ..utils.embedding_text import (
    apply_producer_defaults,
    compose_embedding_text,
    description_context,
    fallback_description,
)
from ..utils.errors import DimensionMismatch, ProviderError, ProviderUnavailable, ValidationError
from ..utils.prompting import DESCRIPTION_SYSTEM, build_description_prompt, knowledge_embedding_text


class CatalogWriter:
    def __init__(
        self,
        produce: ProduceRepository,
        knowledge: KnowledgeRepository,
        embedder: EmbeddingProvider,
        completer: TextCompletionProvider,
    ) -> None:
        self.produce = produce
        self.knowledge = knowledge
        self.embedder = embedder
        self.completer = completer

    @property
    def _embedding_model(self) -> Optional[str]:
        return getattr(self.embedder, "model", None) or getattr(self.embedder, "model_name", None)

    def _embed(self, text: str, component: str) -> List[float]:
        """Vector for `text`, or [] when the provider is down (lexical-only until refreshed)."""
        try:
            vec = self.embedder.embed(text)
        except (ProviderUnavailable, ProviderError) as e:
            metrics.record_fallback(component)
            slog.log_fallback(component, type(e).__name__)
            logger.warning(f"[{component}] embedding failed ({type(e).__name__}); storing empty vector")
            return []
        if len(vec) != self.embedder.dimension:
            raise DimensionMismatch(f"expected {self.embedder.dimension} dims, got {len(vec)}")
        return vec

    def _describe(self, record: ProduceRecord) -> Optional[str]:
        try:
            text = self.completer.complete(
                DESCRIPTION_SYSTEM, build_description_prompt(description_context(record)),
                max_tokens=200, temperature=0.7,
            )
        except (ProviderUnavailable, ProviderError) as e:
            metrics.record_fallback("describe")
            slog.log_fallback("describe", type(e).__name__)
            return None
        return text.strip() or None

    # ---- produce ----

    def create_produce(self, data: ProduceRecord, producer_id: int) -> ProduceRecord:
        if not data.name or not data.name.strip():
            raise ValidationError("name")
        if data.price <= 0:
            raise ValidationError("price", "price must be positive")
        if data.quantity <= 0:
            raise ValidationError("quantity", "quantity must be positive")

        producer = self.produce.get_producer(producer_id)
        record = apply_producer_defaults(data.model_copy(update={"producer_id": producer_id}), producer)

        ai_generated = False
        if not record.description:
            generated = self._describe(record)
            ai_generated = generated is not None
            record = record.model_copy(update={"description": generated or fallback_description(record)})

        text = compose_embedding_text(record)
        vec = self._embed(text, "catalog")
        record = record.model_copy(update={"embedding": vec, "embedding_text": text})
        saved = self.produce.add(record, embedding_model=self._embedding_model if vec else None,
                                 ai_generated_description=ai_generated)
        logger.info(f"[catalog] produce id={saved.id} name={saved.name!r} ai_description={ai_generated} "
                    f"embedded={bool(vec)}")
        return saved

    # ---- knowledge ----

    def create_knowledge_entry(self, title: str, content: str, category: str,
                               tags: Optional[List[str]] = None) -> KnowledgeEntry:
        for field, value in (("title", title), ("content", content), ("category", category)):
            if not value or not value.strip():
                raise ValidationError(field)
        tags = [t.strip() for t in (tags or []) if t and t.strip()]
        vec = self._embed(knowledge_embedding_text(title, content, tags), "knowledge")
        entry = self.knowledge.add(KnowledgeEntry(
            title=title.strip(), content=content.strip(), category=category.strip(), tags=tags, embedding=vec,
        ))
        logger.info(f"[catalog] knowledge id={entry.id} category={entry.category!r} embedded={bool(vec)}")
        return entry

    # ---- refresh ----

    def refresh_embeddings(self, force: bool = False, produce: bool = True, knowledge: bool = True) -> Dict[str, int]:
        """
        Recompute vectors whose source text changed (or that are empty).
        Provider failures are counted and skipped; the next run retries them.
        """
        counts = {"produce_updated": 0, "knowledge_updated": 0, "skipped": 0, "failed": 0}

        if produce:
            for rec in self.produce.all_records():
                text = compose_embedding_text(rec)
                if not force and rec.embedding and rec.embedding_text == text:
                    counts["skipped"] += 1
                    continue
                vec = self._embed(text, "refresh")
                if not vec:
                    counts["failed"] += 1
                    continue
                self.produce.update_embedding(rec.id, vec, text)
                counts["produce_updated"] += 1

        if knowledge:
            for entry in self.knowledge.all_entries():
                if not force and entry.embedding:
                    counts["skipped"] += 1
                    continue
                vec = self._embed(knowledge_embedding_text(entry.title, entry.content, entry.tags), "refresh")
                if not vec:
                    counts["failed"] += 1
                    continue
                self.knowledge.update_embedding(entry.id, vec)
                counts["knowledge_updated"] += 1

        logger.info(f"[refresh] {counts}")
        return counts
