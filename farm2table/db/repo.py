# =============================================
# File: farm2table/db/repo.py
# Purpose: DB bootstrap (engine from DB_URL, default SQLite) and the SQLModel-backed
#          repositories: produce catalog, knowledge base, conversation store.
# =============================================
from __future__ import annotations

import os
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, or_
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, col, create_engine, select

from ..schemas import (
    ConversationContext,
    ConversationMetadata,
    ConversationTurn,
    KnowledgeEntry,
    ProduceFilters,
    ProduceRecord,
    ProducerInfo,
)
from ..utils.embedding_text import apply_producer_defaults
from ..utils.errors import NotFound
from .models import AIConversation, KnowledgeBase, Produce, Producer

DB_URL = os.getenv("DB_URL", "sqlite:///./farm2table.db")


def make_engine(url: str = DB_URL, echo: bool = False):
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection, otherwise every thread sees an empty DB
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **kwargs)
    return create_engine(url, echo=echo)


engine = make_engine()


def init_db(bind=None) -> None:
    SQLModel.metadata.create_all(bind or engine)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _icontains(column, value: str):
    """Case-insensitive substring match; `column` may be any SQL expression."""
    return column.ilike(f"%{_escape_like(value.strip())}%", escape="\\")


def _effective(item_column, producer_column):
    # item-level value wins over the producer default, as in _to_record
    return func.coalesce(item_column, producer_column)


def _to_record(row: Produce, producer: Optional[Producer]) -> ProduceRecord:
    record = ProduceRecord(
        id=row.id,
        name=row.name,
        description=row.description,
        price=row.price,
        quantity=row.quantity,
        unit=row.unit,
        category=row.category,
        sub_category=row.sub_category,
        season=row.season,
        farming_method=row.farming_method,
        location=row.location,
        nutritional_highlights=list(row.nutritional_highlights or []),
        common_uses=list(row.common_uses or []),
        preparation_tips=row.preparation_tips,
        storage_instructions=row.storage_instructions,
        shelf_life=row.shelf_life,
        embedding=list(row.description_embedding or []),
        embedding_text=row.embedding_text,
        producer_id=row.producer_id,
        is_active=row.is_active,
        created_at=row.created_at,
    )
    if producer is None:
        return record
    return apply_producer_defaults(record, _to_producer(producer))


def _to_producer(row: Producer) -> ProducerInfo:
    return ProducerInfo(id=row.id, name=row.name, location=row.location, farming_method=row.farming_method)


class SqlProduceRepository:
    """Produce listings joined with their producer, flattened to ProduceRecord."""

    def __init__(self, bind=None) -> None:
        self.engine = bind or engine

    def _base(self):
        return select(Produce, Producer).join(Producer, col(Produce.producer_id) == col(Producer.id), isouter=True)

    def _fetch(self, stmt) -> List[ProduceRecord]:
        with Session(self.engine) as session:
            rows: Sequence[Tuple[Produce, Optional[Producer]]] = session.exec(stmt).all()
            return [_to_record(p, prod) for p, prod in rows]

    def find_candidates(self, filters: ProduceFilters) -> List[ProduceRecord]:
        stmt = self._base().where(col(Produce.quantity) > filters.min_quantity)
        if filters.active_only:
            stmt = stmt.where(col(Produce.is_active).is_(True))
        if filters.category:
            stmt = stmt.where(_icontains(Produce.category, filters.category))
        if filters.season:
            stmt = stmt.where(or_(_icontains(Produce.season, filters.season),
                                  col(Produce.season).ilike("year-round")))
        if filters.farming_method:
            stmt = stmt.where(_icontains(_effective(Produce.farming_method, Producer.farming_method),
                                         filters.farming_method))
        if filters.location:
            stmt = stmt.where(_icontains(_effective(Produce.location, Producer.location), filters.location))
        if filters.max_price is not None:
            stmt = stmt.where(col(Produce.price) <= filters.max_price)
        # insertion order: the ranker's stable tie-break depends on it
        stmt = stmt.order_by(col(Produce.created_at), col(Produce.id))
        return self._fetch(stmt)

    def find_recent_comparable(self, name: str, category: str, limit: int = 20) -> List[ProduceRecord]:
        clauses = []
        if name and name.strip():
            clauses.append(_icontains(Produce.name, name))
        if category and category.strip():
            clauses.append(_icontains(Produce.category, category))
        if not clauses:
            return []
        stmt = (
            self._base()
            .where(or_(*clauses))
            .where(col(Produce.is_active).is_(True))
            .where(col(Produce.quantity) > 0)
            .order_by(col(Produce.created_at).desc(), col(Produce.id).desc())
            .limit(limit)
        )
        return self._fetch(stmt)

    def find_active_listings(self, category: Optional[str] = None, location: Optional[str] = None,
                             limit: int = 50) -> List[ProduceRecord]:
        stmt = self._base().where(col(Produce.is_active).is_(True)).where(col(Produce.quantity) > 0)
        if category:
            stmt = stmt.where(_icontains(Produce.category, category))
        if location:
            stmt = stmt.where(_icontains(_effective(Produce.location, Producer.location), location))
        stmt = stmt.order_by(col(Produce.created_at).desc(), col(Produce.id).desc()).limit(limit)
        return self._fetch(stmt)

    def find_by_producer(self, producer_id: int) -> List[ProduceRecord]:
        stmt = (
            self._base()
            .where(col(Produce.producer_id) == producer_id)
            .where(col(Produce.is_active).is_(True))
            .order_by(col(Produce.created_at).desc(), col(Produce.id).desc())
        )
        return self._fetch(stmt)

    def all_records(self) -> List[ProduceRecord]:
        return self._fetch(self._base().order_by(col(Produce.id)))

    def get(self, produce_id: int) -> ProduceRecord:
        with Session(self.engine) as session:
            row = session.get(Produce, produce_id)
            if row is None:
                raise NotFound(f"Produce {produce_id} not found")
            producer = session.get(Producer, row.producer_id) if row.producer_id is not None else None
            return _to_record(row, producer)

    def get_producer(self, producer_id: int) -> ProducerInfo:
        with Session(self.engine) as session:
            row = session.get(Producer, producer_id)
            if row is None:
                raise NotFound(f"Producer {producer_id} not found")
            return _to_producer(row)

    def add_producer(self, producer: ProducerInfo) -> ProducerInfo:
        with Session(self.engine) as session:
            row = Producer(name=producer.name, location=producer.location, farming_method=producer.farming_method)
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_producer(row)

    def add(self, record: ProduceRecord, embedding_model: Optional[str] = None,
            ai_generated_description: bool = False) -> ProduceRecord:
        with Session(self.engine) as session:
            row = Produce(
                name=record.name,
                description=record.description,
                price=record.price,
                quantity=record.quantity,
                unit=record.unit,
                category=record.category,
                sub_category=record.sub_category,
                season=record.season,
                farming_method=record.farming_method,
                location=record.location,
                nutritional_highlights=list(record.nutritional_highlights),
                common_uses=list(record.common_uses),
                preparation_tips=record.preparation_tips,
                storage_instructions=record.storage_instructions,
                shelf_life=record.shelf_life,
                description_embedding=list(record.embedding),
                embedding_text=record.embedding_text,
                embedding_model=embedding_model,
                ai_generated_description=ai_generated_description,
                is_active=record.is_active,
                producer_id=record.producer_id,
            )
            if record.created_at is not None:
                row.created_at = record.created_at
            session.add(row)
            session.commit()
            session.refresh(row)
            producer = session.get(Producer, row.producer_id) if row.producer_id is not None else None
            return _to_record(row, producer)

    def update_embedding(self, produce_id: int, embedding: Sequence[float], embedding_text: str,
                         embedding_model: Optional[str] = None) -> None:
        with Session(self.engine) as session:
            row = session.get(Produce, produce_id)
            if row is None:
                raise NotFound(f"Produce {produce_id} not found")
            row.description_embedding = list(embedding)
            row.embedding_text = embedding_text
            if embedding_model:
                row.embedding_model = embedding_model
            session.add(row)
            session.commit()


def _to_entry(row: KnowledgeBase) -> KnowledgeEntry:
    return KnowledgeEntry(
        id=row.id,
        title=row.title,
        content=row.content,
        category=row.category,
        tags=list(row.tags or []),
        embedding=list(row.embedding or []),
        is_active=row.is_active,
        created_at=row.created_at,
    )


class SqlKnowledgeRepository:
    def __init__(self, bind=None) -> None:
        self.engine = bind or engine

    def find_active(self, category: Optional[str] = None) -> List[KnowledgeEntry]:
        stmt = select(KnowledgeBase).where(col(KnowledgeBase.is_active).is_(True))
        if category:
            stmt = stmt.where(col(KnowledgeBase.category).ilike(_escape_like(category.strip()), escape="\\"))
        stmt = stmt.order_by(col(KnowledgeBase.created_at), col(KnowledgeBase.id))
        with Session(self.engine) as session:
            return [_to_entry(r) for r in session.exec(stmt).all()]

    def recent(self, limit: int = 10) -> List[KnowledgeEntry]:
        stmt = (
            select(KnowledgeBase)
            .where(col(KnowledgeBase.is_active).is_(True))
            .order_by(col(KnowledgeBase.created_at).desc(), col(KnowledgeBase.id).desc())
            .limit(limit)
        )
        with Session(self.engine) as session:
            return [_to_entry(r) for r in session.exec(stmt).all()]

    def all_entries(self) -> List[KnowledgeEntry]:
        with Session(self.engine) as session:
            return [_to_entry(r) for r in session.exec(select(KnowledgeBase).order_by(col(KnowledgeBase.id))).all()]

    def add(self, entry: KnowledgeEntry) -> KnowledgeEntry:
        with Session(self.engine) as session:
            row = KnowledgeBase(
                title=entry.title,
                content=entry.content,
                category=entry.category,
                tags=list(entry.tags),
                embedding=list(entry.embedding),
                is_active=entry.is_active,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_entry(row)

    def update_embedding(self, entry_id: int, embedding: Sequence[float]) -> None:
        with Session(self.engine) as session:
            row = session.get(KnowledgeBase, entry_id)
            if row is None:
                raise NotFound(f"Knowledge entry {entry_id} not found")
            row.embedding = list(embedding)
            session.add(row)
            session.commit()


def _read_blob(row: AIConversation, field: str, model):
    raw = getattr(row, field)
    if not raw:
        return model()
    try:
        return model.model_validate_json(raw)
    except PydanticValidationError as e:
        # legacy rows may carry free-form blobs; keep the turn, drop the blob
        logger.warning(f"[conversations] id={row.id} unreadable {field}: {e}")
        return model()


def _to_turn(row: AIConversation) -> ConversationTurn:
    return ConversationTurn(
        id=row.id,
        question=row.question,
        response=row.response,
        user_id=row.user_id,
        session_id=row.session_id,
        context=_read_blob(row, "context_json", ConversationContext),
        metadata=_read_blob(row, "metadata_json", ConversationMetadata),
        created_at=row.created_at,
    )


class SqlConversationStore:
    def __init__(self, bind=None) -> None:
        self.engine = bind or engine

    def recent_turns(self, user_id: Optional[str] = None, session_id: Optional[str] = None,
                     limit: int = 5) -> List[ConversationTurn]:
        clauses = []
        if user_id:
            clauses.append(col(AIConversation.user_id) == user_id)
        if session_id:
            clauses.append(col(AIConversation.session_id) == session_id)
        if not clauses:
            return []
        stmt = (
            select(AIConversation)
            .where(or_(*clauses))
            .order_by(col(AIConversation.created_at).desc(), col(AIConversation.id).desc())
            .limit(limit)
        )
        with Session(self.engine) as session:
            return [_to_turn(r) for r in session.exec(stmt).all()]

    def turns_since(self, start: datetime, user_id: Optional[str] = None) -> List[ConversationTurn]:
        stmt = select(AIConversation).where(col(AIConversation.created_at) >= start)
        if user_id:
            stmt = stmt.where(col(AIConversation.user_id) == user_id)
        stmt = stmt.order_by(col(AIConversation.created_at).desc(), col(AIConversation.id).desc())
        with Session(self.engine) as session:
            return [_to_turn(r) for r in session.exec(stmt).all()]

    def append(self, turn: ConversationTurn) -> ConversationTurn:
        with Session(self.engine) as session:
            row = AIConversation(
                question=turn.question,
                response=turn.response,
                user_id=turn.user_id,
                session_id=turn.session_id,
                context_json=turn.context.model_dump_json(),
                metadata_json=turn.metadata.model_dump_json(),
            )
            if turn.created_at is not None:
                row.created_at = turn.created_at
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_turn(row)
