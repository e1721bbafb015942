# =============================================
# File: farm2table/services/pricing.py
# Purpose: Suggested price, range, confidence and market signals for a
#          producer's item: repository statistics + fixed multiplier rules,
#          with a model-authored rationale on top
# =============================================
from __future__ import annotations

import math
import random
from datetime import date
from typing import Callable, List, Optional, Sequence

from loguru import logger

from ..interfaces import ProduceRepository, TextCompletionProvider
from ..schemas import (
    CompetitorAnalysis,
    DemandIndicators,
    MarketTrend,
    PriceRange,
    PricingInsights,
    PricingSnapshot,
    ProduceRecord,
    SeasonalFactors,
)
from ..utils import metrics, slog
from ..utils.embedding_text import CURRENCY_UNIT, format_price
from ..utils.errors import ProviderError, ProviderUnavailable, ValidationError
from ..utils.prompting import PRICING_SYSTEM, build_pricing_prompt

COMPARABLE_LIMIT = 20
TREND_WINDOW = 10
STABLE_THRESHOLD_PCT = 5.0

FARMING_MULTIPLIERS = {"organic": 1.30, "hydroponic": 1.20, "biodynamic": 1.40}

# calendar month -> canonical season
SEASON_MONTHS = {
    "spring": (3, 4, 5),
    "summer": (6, 7, 8),
    "fall": (9, 10, 11),
    "winter": (12, 1, 2),
}
_SEASON_ALIASES = {"autumn": "fall"}

POPULAR_KEYWORDS = ("tomato", "lettuce", "carrot", "spinach", "kale")

PRODUCER_ADVICE = [
    "Consider seasonal pricing adjustments",
    "Monitor competitor prices weekly",
    "Highlight organic/premium qualities in descriptions",
    "Bundle complementary items for better margins",
]


def round_half_up(x: float) -> int:
    # Python's round() is banker's rounding; prices round .5 up
    return int(math.floor(x + 0.5))


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _is_year_round(season: Optional[str]) -> bool:
    return (season or "").strip().lower() in ("year-round", "year round", "yearround")


def season_for_month(month: int) -> str:
    for name, months in SEASON_MONTHS.items():
        if month in months:
            return name
    raise ValueError(f"invalid month: {month}")


def _in_season(season: str, month: int) -> bool:
    key = season.strip().lower()
    key = _SEASON_ALIASES.get(key, key)
    return season_for_month(month) == key


def seasonal_multiplier(season: str, month: int) -> float:
    if _is_year_round(season):
        return 1.0
    return 0.90 if _in_season(season, month) else 1.20


def seasonal_note(season: str, month: int) -> str:
    if _is_year_round(season):
        return "Available year-round with stable pricing"
    if _in_season(season, month):
        return "Peak season - expect higher demand and competitive pricing"
    return "Off-season - premium pricing due to limited availability"


def farming_multiplier(farming_method: str) -> float:
    return FARMING_MULTIPLIERS.get((farming_method or "").strip().lower(), 1.0)


def quantity_multiplier(quantity: float) -> float:
    if quantity > 50:
        return 0.95
    if quantity < 10:
        return 1.10
    return 1.0


def market_trend(prices: Sequence[float]) -> MarketTrend:
    """
    Compare the newest window of listings against the next-older window.
    `prices` must be ordered newest first.
    """
    recent = list(prices[:TREND_WINDOW])
    older = list(prices[TREND_WINDOW:2 * TREND_WINDOW])
    timeframe = f"last {len(recent) + len(older)} listings"
    older_avg = _mean(older)
    if not recent or not older or older_avg == 0:
        return MarketTrend(direction="stable", percentage=0.0, timeframe=timeframe)

    change = (_mean(recent) - older_avg) / older_avg * 100
    if abs(change) < STABLE_THRESHOLD_PCT:
        return MarketTrend(direction="stable", percentage=abs(change), timeframe=timeframe)
    direction = "increasing" if change > 0 else "decreasing"
    return MarketTrend(direction=direction, percentage=change, timeframe=timeframe)


def competitor_position(suggested_price: float, average_price: float) -> str:
    if suggested_price < average_price * 0.9:
        return "below"
    if suggested_price > average_price * 1.1:
        return "above"
    return "average"


def confidence_for(count: int) -> str:
    if count >= 10:
        return "high"
    if count >= 5:
        return "medium"
    return "low"


def _location_prefix(location: Optional[str]) -> str:
    return (location or "").split(",")[0].strip().lower()


def closest_matches(listings: Sequence[ProduceRecord], category: str, location: str,
                    farming_method: str) -> List[ProduceRecord]:
    """Listings sharing the requested farming method, location prefix or category."""
    method = (farming_method or "").strip().lower()
    cat = (category or "").strip().lower()
    prefix = _location_prefix(location)

    def agrees(p: ProduceRecord) -> bool:
        if method and (p.farming_method or "").lower() == method:
            return True
        if prefix and prefix in (p.location or "").lower():
            return True
        return bool(cat) and (p.category or "").lower() == cat

    return [p for p in listings if agrees(p)]


class PricingEngine:
    """
    Deterministic pricing rules over repository statistics.

    `rng` feeds the demand placeholders (search volume for unknown names,
    recent orders, popularity jitter) until real demand telemetry exists;
    `today` supplies the calendar month. Both are injectable so tests can
    pin them.
    """

    def __init__(
        self,
        repository: ProduceRepository,
        completer: TextCompletionProvider,
        rng: Optional[random.Random] = None,
        today: Optional[Callable[[], date]] = None,
        currency_unit: str = CURRENCY_UNIT,
    ) -> None:
        self.repository = repository
        self.completer = completer
        self.rng = rng or random.Random()
        self.today = today or date.today
        self.currency_unit = currency_unit

    # ---- demand placeholders ----

    def search_volume(self, name: str) -> str:
        lowered = (name or "").lower()
        if any(k in lowered for k in POPULAR_KEYWORDS):
            return "high"
        return "medium" if self.rng.random() > 0.5 else "low"

    def popularity_score(self, competitor_count: int, average_price: float) -> int:
        competitor_score = min(competitor_count / 20, 1) * 50
        price_score = 30 if 50 < average_price < 200 else 20
        jitter = self.rng.random() * 20
        return round_half_up(competitor_score + price_score + jitter)

    # ---- rationale ----

    def _fallback_reasoning(self, suggested: float, average: float, count: int, farming_method: str,
                            season: str) -> str:
        if count == 0:
            return (
                "No comparable listings are active right now, so there is no market baseline for this item. "
                "Set an introductory price and revisit once similar produce is listed."
            )
        return (
            f"Based on {count} comparable listing(s) averaging {format_price(round(average, 2))} "
            f"{self.currency_unit}, a {farming_method.lower()} {season.lower()} item is suggested at about "
            f"{round_half_up(suggested)} {self.currency_unit}."
        )

    def _reasoning(self, prompt: str) -> Optional[str]:
        try:
            text = self.completer.complete(PRICING_SYSTEM, prompt, max_tokens=300, temperature=0.3)
        except (ProviderUnavailable, ProviderError) as e:
            metrics.record_fallback("pricing")
            slog.log_fallback("pricing", type(e).__name__)
            logger.warning(f"[pricing] rationale unavailable ({type(e).__name__}); using template")
            return None
        metrics.record_model(self.completer.model_name)
        return text.strip() or None

    # ---- main entry ----

    def analyze_pricing(
        self,
        name: str,
        category: str,
        location: str = "Philippines",
        farming_method: str = "Conventional",
        season: str = "Year-round",
        quantity: float = 50,
    ) -> PricingSnapshot:
        if not name or not name.strip():
            raise ValidationError("produce_name")
        if not category or not category.strip():
            raise ValidationError("category")
        name, category = name.strip(), category.strip()

        listings = self.repository.find_recent_comparable(name, category, limit=COMPARABLE_LIMIT)
        prices = [p.price for p in listings]
        average_price = _mean(prices)
        min_price = min(prices) if prices else 0.0
        max_price = max(prices) if prices else 0.0
        exact = closest_matches(listings, category, location, farming_method)
        exact_average_price = _mean([p.price for p in exact]) if exact else average_price

        prompt = build_pricing_prompt(
            name, category, location, farming_method, season, quantity,
            average_price, min_price, max_price, exact_average_price, len(listings),
            currency_unit=self.currency_unit,
        )
        reasoning = self._reasoning(prompt)

        month = self.today().month
        season_mult = seasonal_multiplier(season, month)
        suggested = exact_average_price if exact_average_price > 0 else average_price
        suggested *= farming_multiplier(farming_method)
        suggested *= season_mult
        suggested *= quantity_multiplier(quantity)

        if reasoning is None:
            reasoning = self._fallback_reasoning(suggested, average_price, len(listings), farming_method, season)

        snapshot = PricingSnapshot(
            suggested_price=round_half_up(suggested),
            price_range=PriceRange(min=round_half_up(suggested * 0.85), max=round_half_up(suggested * 1.15)),
            confidence=confidence_for(len(listings)),
            reasoning=reasoning,
            market_trends=market_trend(prices),
            competitor_analysis=CompetitorAnalysis(
                average_price=round_half_up(average_price),
                competitor_count=len(listings),
                your_position=competitor_position(suggested, average_price),
            ),
            seasonal_factors=SeasonalFactors(
                is_in_season=season_mult <= 1.0,
                seasonal_multiplier=season_mult,
                seasonal_note=seasonal_note(season, month),
            ),
            demand_indicators=DemandIndicators(
                search_volume=self.search_volume(name),
                # placeholder until order telemetry is wired in
                recent_orders=self.rng.randrange(20),
                popularity_score=self.popularity_score(len(listings), average_price),
            ),
        )
        logger.info(
            f"[pricing] name={name!r} comparables={len(listings)} closest={len(exact)} "
            f"suggested={snapshot.suggested_price} confidence={snapshot.confidence}"
        )
        return snapshot

    def pricing_insights(self, producer_id: int) -> PricingInsights:
        self.repository.get_producer(producer_id)  # NotFound for unknown producers
        listings = self.repository.find_by_producer(producer_id)
        prices = [p.price for p in listings]
        categories: List[str] = []
        for p in listings:
            if p.category and p.category not in categories:
                categories.append(p.category)
        return PricingInsights(
            producer_id=producer_id,
            total_listings=len(listings),
            average_price=_mean(prices),
            price_range=PriceRange(min=min(prices) if prices else 0.0, max=max(prices) if prices else 0.0),
            categories=categories,
            recommendations=list(PRODUCER_ADVICE),
        )
