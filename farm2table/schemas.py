# =============================================
# File: farm2table/schemas.py
# Purpose: Typed view structs shared by repositories, services and routers
# =============================================
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------- Catalog ----------

class ProducerInfo(BaseModel):
    """Producer-level defaults used to backfill a listing."""
    id: Optional[int] = None
    name: str
    location: Optional[str] = None
    farming_method: Optional[str] = None


class ProduceRecord(BaseModel):
    """Flattened produce listing, producer fields denormalized in."""
    id: Optional[int] = None
    name: str
    description: Optional[str] = None
    price: float
    quantity: float = 0
    unit: str = "kg"
    category: Optional[str] = None
    sub_category: Optional[str] = None
    season: Optional[str] = None
    farming_method: Optional[str] = None
    location: Optional[str] = None
    nutritional_highlights: List[str] = Field(default_factory=list)
    common_uses: List[str] = Field(default_factory=list)
    preparation_tips: Optional[str] = None
    storage_instructions: Optional[str] = None
    shelf_life: Optional[str] = None
    # vectors are large; never serialized to API clients
    embedding: List[float] = Field(default_factory=list, exclude=True)
    embedding_text: Optional[str] = None
    producer_id: Optional[int] = None
    producer: Optional[str] = None
    producer_location: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None


class ScoredProduce(ProduceRecord):
    # None when the record came from the lexical fallback
    similarity: Optional[float] = None


class ProduceFilters(BaseModel):
    """Coarse repository filters; string filters are case-insensitive substrings."""
    model_config = ConfigDict(populate_by_name=True)

    category: Optional[str] = None
    season: Optional[str] = None
    farming_method: Optional[str] = Field(default=None, alias="farmingMethod")
    location: Optional[str] = None
    max_price: Optional[float] = Field(default=None, alias="maxPrice")
    active_only: bool = True
    # listings must have quantity strictly above this
    min_quantity: float = 0


# ---------- Knowledge base ----------

class KnowledgeEntry(BaseModel):
    id: Optional[int] = None
    title: str
    content: str
    category: str
    tags: List[str] = Field(default_factory=list)
    embedding: List[float] = Field(default_factory=list, exclude=True)
    is_active: bool = True
    created_at: Optional[datetime] = None


class ScoredKnowledge(KnowledgeEntry):
    similarity: Optional[float] = None


# ---------- Conversations ----------

class UserContext(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    location: Optional[str] = None
    season: Optional[str] = None
    preferences: List[str] = Field(default_factory=list, alias="userPreferences")
    dietary_restrictions: List[str] = Field(default_factory=list, alias="dietaryRestrictions")
    cooking_skill: Optional[str] = Field(default=None, alias="cookingSkill")

    def is_empty(self) -> bool:
        return not (
            self.location or self.season or self.preferences
            or self.dietary_restrictions or self.cooking_skill
        )


class ConversationContext(UserContext):
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    previous_questions: List[str] = Field(default_factory=list)


class PriceRange(BaseModel):
    min: float
    max: float


class ConversationMetadata(BaseModel):
    produce_ids: List[int] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    price_range: Optional[PriceRange] = None
    farming_methods: List[str] = Field(default_factory=list)
    seasons: List[str] = Field(default_factory=list)
    response_time_ms: Optional[int] = None
    model_used: Optional[str] = None


class ConversationTurn(BaseModel):
    id: Optional[int] = None
    question: str
    response: str
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    context: ConversationContext = Field(default_factory=ConversationContext)
    metadata: ConversationMetadata = Field(default_factory=ConversationMetadata)
    created_at: Optional[datetime] = None


class RecommendationResult(BaseModel):
    narrative: str
    recommendations: List[ScoredProduce] = Field(default_factory=list)
    used_history: List[str] = Field(default_factory=list)
    history: List[ConversationTurn] = Field(default_factory=list)
    method: Literal["semantic_search", "semantic_search_with_context"] = "semantic_search"
    # set only when the narrative came from the model
    model_used: Optional[str] = None


# ---------- Pricing ----------

class MarketTrend(BaseModel):
    direction: Literal["increasing", "decreasing", "stable"]
    percentage: float
    timeframe: str


class CompetitorAnalysis(BaseModel):
    average_price: int
    competitor_count: int
    your_position: Literal["below", "average", "above"]


class SeasonalFactors(BaseModel):
    is_in_season: bool
    seasonal_multiplier: float
    seasonal_note: str


class DemandIndicators(BaseModel):
    search_volume: Literal["high", "medium", "low"]
    recent_orders: int
    popularity_score: int


class PricingSnapshot(BaseModel):
    suggested_price: int
    price_range: PriceRange
    confidence: Literal["high", "medium", "low"]
    reasoning: str
    market_trends: MarketTrend
    competitor_analysis: CompetitorAnalysis
    seasonal_factors: SeasonalFactors
    demand_indicators: DemandIndicators


# ---------- Market trends ----------

class PricePoint(BaseModel):
    date: str
    price: float
    volume: int


class SeasonalPoint(BaseModel):
    month: str
    average_price: float
    volume: int


class TrendSeries(BaseModel):
    produce: str
    category: str
    current_price: float
    price_history: List[PricePoint]
    trend: Literal["up", "down", "stable"]
    trend_percentage: float
    seasonal_pattern: List[SeasonalPoint]
    market_insight: Optional[str] = None
    recommendations: List[str] = Field(default_factory=list)


class MarketTrends(BaseModel):
    trends: List[TrendSeries] = Field(default_factory=list)
    timestamp: datetime
    filters: Dict[str, Optional[str]] = Field(default_factory=dict)
    # "ai" / "synthesized" when every series came from one path, else "mixed"
    source: Literal["ai", "synthesized", "mixed"] = "synthesized"


class MarketAnalysis(BaseModel):
    """AI market overview or per-product analysis; empty when unavailable."""
    subject: str
    analysis: Dict[str, Any] = Field(default_factory=dict)
    summary: Optional[str] = None
    confidence: Optional[Literal["high", "medium", "low"]] = None
    trends: List[TrendSeries] = Field(default_factory=list)
    source: Literal["ai", "unavailable"] = "unavailable"
    timestamp: datetime


class PricingInsights(BaseModel):
    producer_id: int
    total_listings: int
    average_price: float
    price_range: PriceRange
    categories: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


# ---------- Conversation analytics ----------

class CountItem(BaseModel):
    key: str
    count: int


class DailyCount(BaseModel):
    date: str
    count: int


class ConversationAnalytics(BaseModel):
    time_range: Literal["7d", "30d", "90d"]
    total_conversations: int
    average_response_time_ms: int
    active_users: int
    top_questions: List[CountItem] = Field(default_factory=list)
    popular_categories: List[CountItem] = Field(default_factory=list)
    recent_conversations: List[ConversationTurn] = Field(default_factory=list)
    conversation_trends: List[DailyCount] = Field(default_factory=list)
