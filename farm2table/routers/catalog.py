# =============================================
# File: farm2table/routers/catalog.py
# Purpose: Producer-side writes (listings, knowledge entries) and knowledge search
# =============================================
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from farm2table.schemas import KnowledgeEntry, ProduceRecord, ScoredKnowledge
from farm2table.services.container import Services, get_services
from farm2table.utils.errors import ValidationError

router = APIRouter(tags=["catalog"])


class ProduceCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    producer_id: int = Field(..., alias="producerId")
    name: Optional[str] = None
    price: Optional[float] = None
    quantity: Optional[float] = None
    unit: str = "kg"
    description: Optional[str] = None
    category: Optional[str] = None
    sub_category: Optional[str] = Field(None, alias="subCategory")
    season: Optional[str] = None
    farming_method: Optional[str] = Field(None, alias="farmingMethod")
    location: Optional[str] = None
    nutritional_highlights: List[str] = Field(default_factory=list, alias="nutritionalHighlights")
    common_uses: List[str] = Field(default_factory=list, alias="commonUses")
    preparation_tips: Optional[str] = Field(None, alias="preparationTips")
    storage_instructions: Optional[str] = Field(None, alias="storageInstructions")
    shelf_life: Optional[str] = Field(None, alias="shelfLife")


class KnowledgeCreate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class KnowledgeSearchResponse(BaseModel):
    results: List[ScoredKnowledge] = Field(default_factory=list)
    entries: List[KnowledgeEntry] = Field(default_factory=list)
    count: int


@router.post("/produce", response_model=ProduceRecord)
def post_produce(req: ProduceCreate, services: Services = Depends(get_services)) -> ProduceRecord:
    for field in ("name", "price", "quantity"):
        if getattr(req, field) in (None, ""):
            raise ValidationError(field)
    data = ProduceRecord(**req.model_dump(exclude={"producer_id"}))
    return services.catalog.create_produce(data, req.producer_id)


@router.get("/knowledge", response_model=KnowledgeSearchResponse)
def get_knowledge(
    q: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    limit: int = Query(10, ge=1, le=50),
    services: Services = Depends(get_services),
) -> KnowledgeSearchResponse:
    if q and q.strip():
        results = services.knowledge.search(q.strip(), category or None, top_k=limit)
        return KnowledgeSearchResponse(results=results, count=len(results))
    entries = services.knowledge_repo.recent(limit)
    return KnowledgeSearchResponse(entries=entries, count=len(entries))


@router.post("/knowledge", response_model=KnowledgeEntry)
def post_knowledge(req: KnowledgeCreate, services: Services = Depends(get_services)) -> KnowledgeEntry:
    return services.catalog.create_knowledge_entry(req.title or "", req.content or "", req.category or "", req.tags)
