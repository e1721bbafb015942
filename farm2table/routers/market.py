# =============================================
# File: farm2table/routers/market.py
# Purpose: AI market overview (GET) and per-product analysis (POST)
# =============================================
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from farm2table.schemas import MarketAnalysis
from farm2table.services.container import Services, get_services

router = APIRouter(prefix="/ai", tags=["market"])


class MarketAnalysisRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    produce_name: Optional[str] = Field(None, alias="produceName")
    category: Optional[str] = None
    location: Optional[str] = None
    analysis_type: str = Field("comprehensive", alias="analysisType")


@router.get("/market-analysis", response_model=MarketAnalysis)
def get_market_overview(
    category: Optional[str] = Query(None),
    location: Optional[str] = Query(None),
    services: Services = Depends(get_services),
) -> MarketAnalysis:
    """Market overview; `source="unavailable"` when the AI backend cannot answer."""
    return services.trends.market_overview(category or None, location or None)


@router.post("/market-analysis", response_model=MarketAnalysis)
def post_market_analysis(req: MarketAnalysisRequest, services: Services = Depends(get_services)) -> MarketAnalysis:
    return services.trends.analyze_market(req.produce_name or "", req.category, req.location, req.analysis_type)
