# =============================================
# File: farm2table/routers/search.py
# Purpose: POST /produce/search: semantic produce search
# =============================================
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from farm2table.schemas import ProduceFilters, ScoredProduce
from farm2table.services.container import Services, get_services
from farm2table.utils import slog
from farm2table.utils.errors import Farm2TableError, ValidationError

router = APIRouter(tags=["search"])


class SearchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # optional here so a missing query is a 400 {error, field}, not a 422
    query: Optional[str] = None
    limit: int = Field(10, ge=1, le=50)
    filters: ProduceFilters = Field(default_factory=ProduceFilters)


class SearchResponse(BaseModel):
    results: List[ScoredProduce]
    query: str
    count: int
    method: str


@router.post("/produce/search", response_model=SearchResponse)
def post_search(req: SearchRequest, request: Request, services: Services = Depends(get_services)) -> SearchResponse:
    if not req.query or not req.query.strip():
        raise ValidationError("query")
    query = req.query.strip()
    request.state.log_context = {"qhash": slog.qhash(query)}
    try:
        results = services.ranker.rank(query, req.filters, top_k=req.limit)
    except Farm2TableError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))

    lexical = any(r.similarity is None for r in results)
    method = "lexical_fallback" if lexical else "semantic_search"
    request.state.log_context.update({"hits": len(results), "method": method})
    return SearchResponse(results=results, query=query, count=len(results), method=method)
