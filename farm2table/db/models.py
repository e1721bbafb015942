# =============================================
# File: farm2table/db/models.py
# Purpose: SQLModel ORM definitions: producers, produce listings (with stored
#          embeddings), knowledge base entries and AI conversation turns.
# =============================================

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import JSON, Column, DateTime, Text
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    # naive UTC to match the plain DateTime columns
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Producer(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    location: Optional[str] = None
    farming_method: Optional[str] = None


class Produce(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    description: Optional[str] = Field(default=None, sa_column=Column(Text))
    price: float
    quantity: float = 0
    unit: str = "kg"
    category: Optional[str] = Field(default=None, index=True)
    sub_category: Optional[str] = None
    season: Optional[str] = None
    farming_method: Optional[str] = None
    location: Optional[str] = None
    nutritional_highlights: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    common_uses: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    preparation_tips: Optional[str] = None
    storage_instructions: Optional[str] = None
    shelf_life: Optional[str] = None
    description_embedding: List[float] = Field(default_factory=list, sa_column=Column(JSON))
    embedding_text: Optional[str] = Field(default=None, sa_column=Column(Text))
    embedding_model: Optional[str] = None
    ai_generated_description: bool = False
    is_active: bool = True
    producer_id: Optional[int] = Field(default=None, foreign_key="producer.id")
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))


class KnowledgeBase(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    content: str = Field(sa_column=Column(Text))
    category: str = Field(index=True)
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    embedding: List[float] = Field(default_factory=list, sa_column=Column(JSON))
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))


class AIConversation(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    question: str = Field(sa_column=Column(Text))
    response: str = Field(sa_column=Column(Text))
    user_id: Optional[str] = Field(default=None, index=True)
    session_id: Optional[str] = Field(default=None, index=True)
    # JSON text; typed only at the repository boundary
    context_json: Optional[str] = Field(default=None, sa_column=Column(Text))
    metadata_json: Optional[str] = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False, index=True))
