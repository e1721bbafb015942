# =============================================
# File: farm2table/routers/pricing.py
# Purpose: Pricing assistant endpoints: analyze, market trends, producer insights
# =============================================
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from farm2table.schemas import MarketTrends, PricingInsights, PricingSnapshot
from farm2table.services.container import Services, get_services
from farm2table.utils.errors import Farm2TableError, ValidationError

router = APIRouter(prefix="/pricing", tags=["pricing"])


class PricingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    produce_name: Optional[str] = Field(None, alias="produceName")
    category: Optional[str] = None
    location: Optional[str] = None
    farming_method: Optional[str] = Field(None, alias="farmingMethod")
    season: Optional[str] = None
    quantity: Optional[float] = Field(None, ge=0)


@router.post("/analyze", response_model=PricingSnapshot)
def post_analyze(req: PricingRequest, request: Request, services: Services = Depends(get_services)) -> PricingSnapshot:
    if not req.produce_name or not req.produce_name.strip():
        raise ValidationError("produce_name")
    if not req.category or not req.category.strip():
        raise ValidationError("category")
    request.state.log_context = {"produce": req.produce_name, "category": req.category}
    try:
        return services.pricing.analyze_pricing(
            req.produce_name,
            req.category,
            location=req.location or "Philippines",
            farming_method=req.farming_method or "Conventional",
            season=req.season or "Year-round",
            quantity=50 if req.quantity is None else req.quantity,
        )
    except Farm2TableError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/trends", response_model=MarketTrends)
def get_trends(
    category: Optional[str] = Query(None),
    location: Optional[str] = Query(None),
    services: Services = Depends(get_services),
) -> MarketTrends:
    try:
        return services.trends.market_trends(category or None, location or None)
    except Farm2TableError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/insights/{producer_id}", response_model=PricingInsights)
def get_insights(producer_id: int, services: Services = Depends(get_services)) -> PricingInsights:
    return services.pricing.pricing_insights(producer_id)
