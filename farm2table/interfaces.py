# =============================================
# File: farm2table/interfaces.py
# Purpose: Narrow contracts the core needs from its collaborators
# =============================================
from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol, Sequence

from .schemas import (
    ConversationTurn,
    KnowledgeEntry,
    ProduceFilters,
    ProduceRecord,
    ProducerInfo,
)


class EmbeddingProvider(Protocol):
    """text -> fixed-length vector. Raises ProviderUnavailable / ProviderError."""

    @property
    def dimension(self) -> int: ...

    def embed(self, text: str) -> List[float]: ...


class TextCompletionProvider(Protocol):
    """prompt -> free text. Raises ProviderUnavailable / ProviderError."""

    @property
    def available(self) -> bool: ...

    @property
    def model_name(self) -> str: ...

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        json_mode: bool = False,
    ) -> str: ...


class ProduceRepository(Protocol):
    def find_candidates(self, filters: ProduceFilters) -> List[ProduceRecord]: ...

    def find_recent_comparable(self, name: str, category: str, limit: int = 20) -> List[ProduceRecord]: ...

    def find_active_listings(
        self, category: Optional[str] = None, location: Optional[str] = None, limit: int = 50
    ) -> List[ProduceRecord]: ...

    def find_by_producer(self, producer_id: int) -> List[ProduceRecord]: ...

    def get(self, produce_id: int) -> ProduceRecord: ...

    def get_producer(self, producer_id: int) -> ProducerInfo: ...

    def add(self, record: ProduceRecord) -> ProduceRecord: ...

    def update_embedding(self, produce_id: int, embedding: Sequence[float], embedding_text: str) -> None: ...

    def all_records(self) -> List[ProduceRecord]: ...


class KnowledgeRepository(Protocol):
    def find_active(self, category: Optional[str] = None) -> List[KnowledgeEntry]: ...

    def add(self, entry: KnowledgeEntry) -> KnowledgeEntry: ...

    def update_embedding(self, entry_id: int, embedding: Sequence[float]) -> None: ...

    def all_entries(self) -> List[KnowledgeEntry]: ...


class ConversationStore(Protocol):
    def recent_turns(
        self, user_id: Optional[str] = None, session_id: Optional[str] = None, limit: int = 5
    ) -> List[ConversationTurn]: ...

    def append(self, turn: ConversationTurn) -> ConversationTurn: ...

    def turns_since(self, start: datetime, user_id: Optional[str] = None) -> List[ConversationTurn]: ...
