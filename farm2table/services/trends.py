# =============================================
# File: farm2table/services/trends.py
# Purpose: Per-product market trend series from current listings, AI-enriched
#          when available, plus AI market overview / per-product analysis
# =============================================
from __future__ import annotations

import hashlib
import math
import os
import random
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from loguru import logger

from ..interfaces import ProduceRepository, TextCompletionProvider
from ..schemas import MarketAnalysis, MarketTrends, PricePoint, ProduceRecord, SeasonalPoint, TrendSeries
from ..utils import metrics, slog
from ..utils.errors import ProviderError, ProviderUnavailable, ValidationError
from ..utils.prompting import (
    ANALYSIS_SYSTEM,
    OVERVIEW_SYSTEM,
    TREND_SYSTEM,
    build_analysis_prompt,
    build_overview_prompt,
    build_trend_prompt,
)
from .generation import complete_json, str_list
from .pricing import STABLE_THRESHOLD_PCT, round_half_up

LISTING_LIMIT = 50
TOP_GROUPS = 10
HISTORY_DAYS = 30
MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
ANALYSIS_CONFIDENCE = ("high", "medium", "low")
# whole-request budget for AI trend calls; late groups are synthesized
TRENDS_TIMEOUT_S = float(os.getenv("MARKET_TRENDS_TIMEOUT_SECONDS", "15"))

_TREND_EXECUTOR = ThreadPoolExecutor(max_workers=TOP_GROUPS, thread_name_prefix="trend-call")


def _env_flag(name: str, default: str = "1") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _seeded_rng(name: str) -> random.Random:
    digest = hashlib.sha256(name.strip().lower().encode("utf-8")).hexdigest()
    return random.Random(int(digest[:16], 16))


# ---------------------------------------------------------------------
# Synthesized series
# ---------------------------------------------------------------------

def synthesize_history(name: str, current_price: float, end: date, days: int = HISTORY_DAYS,
                       rng: Optional[random.Random] = None) -> List[PricePoint]:
    """Random walk backwards from today's price; ±5% per day, floored at 70%."""
    rng = rng or _seeded_rng(name)
    points: List[PricePoint] = []
    price = current_price
    for i in range(days):
        variation = (rng.random() - 0.5) * 0.1
        price = max(price * (1 + variation), current_price * 0.7)
        points.append(PricePoint(
            date=(end - timedelta(days=i)).isoformat(),
            price=round_half_up(price),
            volume=rng.randrange(10, 110),
        ))
    points.reverse()
    return points


def synthesize_seasonal_pattern(average_price: float, rng: random.Random) -> List[SeasonalPoint]:
    return [
        SeasonalPoint(
            month=month,
            average_price=round_half_up(average_price * (0.8 + 0.4 * math.sin(i * math.pi / 6))),
            volume=rng.randrange(50, 250),
        )
        for i, month in enumerate(MONTHS)
    ]


def history_trend(history: List[PricePoint]) -> Tuple[str, float]:
    """Direction from oldest to newest point; under 5% is stable."""
    if len(history) < 2 or history[0].price == 0:
        return "stable", 0.0
    oldest, newest = history[0].price, history[-1].price
    change = (newest - oldest) / oldest * 100
    pct = round_half_up(abs(change))
    if abs(change) < STABLE_THRESHOLD_PCT:
        return "stable", pct
    return ("up" if change > 0 else "down"), pct


def _parse_seasonal_pattern(raw: Any) -> Optional[List[SeasonalPoint]]:
    if not isinstance(raw, list) or len(raw) != 12:
        return None
    try:
        return [
            SeasonalPoint(
                month=str(item.get("month") or MONTHS[i]),
                average_price=float(item.get("average_price", item.get("averagePrice"))),
                volume=int(item.get("volume", 0)),
            )
            for i, item in enumerate(raw)
        ]
    except (AttributeError, TypeError, ValueError):
        return None


# ---------------------------------------------------------------------
# Synthesizer
# ---------------------------------------------------------------------

class _Group:
    def __init__(self, items: List[ProduceRecord]) -> None:
        self.items = items
        prices = [p.price for p in items]
        self.name = items[0].name
        self.category = items[0].category or "Unknown"
        self.current_price = prices[0]
        self.average_price = sum(prices) / len(prices)
        self.suppliers = len({p.producer_id if p.producer_id is not None else p.producer for p in items})


class MarketTrendSynthesizer:
    def __init__(
        self,
        repository: ProduceRepository,
        completer: TextCompletionProvider,
        today: Optional[Callable[[], date]] = None,
        use_ai: Optional[bool] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.repository = repository
        self.completer = completer
        self.today = today or date.today
        self.use_ai = _env_flag("MARKET_TRENDS_AI") if use_ai is None else use_ai
        self.timeout = TRENDS_TIMEOUT_S if timeout is None else timeout

    def _groups(self, category: Optional[str], location: Optional[str]) -> List[_Group]:
        listings = self.repository.find_active_listings(category, location, limit=LISTING_LIMIT)
        by_name: Dict[str, List[ProduceRecord]] = {}
        for p in listings:
            by_name.setdefault(p.name.strip().lower(), []).append(p)
        groups = [_Group(items) for items in by_name.values()]
        # stable: ties keep newest-listing-first order
        groups.sort(key=lambda g: g.suppliers, reverse=True)
        return groups[:TOP_GROUPS]

    def _synthesized(self, g: _Group, end: date) -> TrendSeries:
        rng = _seeded_rng(g.name)
        history = synthesize_history(g.name, g.current_price, end, rng=rng)
        trend, pct = history_trend(history)
        return TrendSeries(
            produce=g.name,
            category=g.category,
            current_price=g.current_price,
            price_history=history,
            trend=trend,
            trend_percentage=pct,
            seasonal_pattern=synthesize_seasonal_pattern(g.average_price, rng),
        )

    def _ai(self, g: _Group, end: date) -> TrendSeries:
        base = self._synthesized(g, end)
        prompt = build_trend_prompt(g.name, g.category, g.current_price, g.average_price, g.suppliers)
        data = complete_json(self.completer, TREND_SYSTEM, prompt, max_tokens=500, temperature=0.3)
        trend = str(data.get("trend", "")).strip().lower()
        if trend not in ("up", "down", "stable"):
            raise ProviderError(f"Unexpected trend value: {data.get('trend')!r}")
        try:
            pct = abs(float(data.get("trend_percentage", data.get("trendPercentage"))))
        except (TypeError, ValueError) as e:
            raise ProviderError("Missing or invalid trend_percentage") from e
        insight = data.get("market_insight", data.get("marketInsight"))
        return base.model_copy(update={
            "trend": trend,
            "trend_percentage": pct,
            "seasonal_pattern": _parse_seasonal_pattern(data.get("seasonal_pattern")) or base.seasonal_pattern,
            "market_insight": str(insight).strip() if insight else None,
            "recommendations": str_list(data.get("recommendations"), limit=4),
        })

    def _ai_series(self, groups: List[_Group], end: date) -> List[Optional[TrendSeries]]:
        """
        One AI call per group, all in flight at once under a shared deadline.
        None marks a group whose call failed or was still pending at the deadline.
        """
        deadline = time.monotonic() + self.timeout
        futures = [_TREND_EXECUTOR.submit(self._ai, g, end) for g in groups]
        out: List[Optional[TrendSeries]] = []
        for g, fut in zip(groups, futures):
            try:
                out.append(fut.result(timeout=max(0.0, deadline - time.monotonic())))
                continue
            except FutureTimeoutError:
                fut.cancel()
                reason = "timeout"
            except (ProviderUnavailable, ProviderError) as e:
                reason = type(e).__name__
            metrics.record_fallback("trends")
            slog.log_fallback("trends", reason, produce=g.name)
            logger.warning(f"[trends] {g.name}: AI trend failed ({reason}); synthesizing")
            out.append(None)
        return out

    def market_trends(self, category: Optional[str] = None, location: Optional[str] = None) -> MarketTrends:
        end = self.today()
        groups = self._groups(category, location)
        use_ai = self.use_ai and self.completer.available and bool(groups)
        ai_series = self._ai_series(groups, end) if use_ai else [None] * len(groups)
        series = [s if s is not None else self._synthesized(g, end) for g, s in zip(groups, ai_series)]
        ai_count = sum(1 for s in ai_series if s is not None)

        if ai_count and ai_count == len(series):
            source = "ai"
        elif ai_count:
            source = "mixed"
        else:
            source = "synthesized"
        if ai_count:
            metrics.record_model(self.completer.model_name)
        logger.info(f"[trends] groups={len(groups)} ai={ai_count} source={source}")
        return MarketTrends(
            trends=series,
            timestamp=_utcnow(),
            filters={"category": category, "location": location},
            source=source,
        )

    def _bounded_json(self, system: str, prompt: str, **kw) -> Dict[str, Any]:
        """complete_json under the trends budget; a late answer counts as a provider error."""
        fut = _TREND_EXECUTOR.submit(complete_json, self.completer, system, prompt, **kw)
        try:
            return fut.result(timeout=self.timeout)
        except FutureTimeoutError as e:
            fut.cancel()
            raise ProviderError(f"No answer within {self.timeout:g}s") from e

    # ---- AI analyses ----

    def market_overview(self, category: Optional[str] = None, location: Optional[str] = None) -> MarketAnalysis:
        trends = self.market_trends(category, location).trends
        subject = category or "all categories"
        try:
            data = self._bounded_json(
                OVERVIEW_SYSTEM, build_overview_prompt(trends[:5], category, location),
                max_tokens=1000, temperature=0.3,
            )
        except (ProviderUnavailable, ProviderError) as e:
            metrics.record_fallback("market_overview")
            slog.log_fallback("market_overview", type(e).__name__)
            return MarketAnalysis(subject=subject, trends=trends, timestamp=_utcnow())

        summary = data.pop("summary", None)
        return MarketAnalysis(
            subject=subject,
            analysis=data,
            summary=str(summary) if summary else None,
            trends=trends,
            source="ai",
            timestamp=_utcnow(),
        )

    def analyze_market(self, produce_name: str, category: Optional[str] = None, location: Optional[str] = None,
                       analysis_type: str = "comprehensive") -> MarketAnalysis:
        if not produce_name or not produce_name.strip():
            raise ValidationError("produce_name")
        produce_name = produce_name.strip()
        trends = self.market_trends(category, location).trends
        needle = produce_name.lower()
        relevant = next(
            (t for t in trends if needle in t.produce.lower() or t.produce.lower() in needle),
            None,
        )
        prompt = build_analysis_prompt(produce_name, category, location, analysis_type, relevant)
        try:
            data = self._bounded_json(ANALYSIS_SYSTEM, prompt, max_tokens=1500, temperature=0.2)
            analysis = data.get("analysis")
            if not isinstance(analysis, dict):
                raise ProviderError("Structured answer has no analysis object")
        except (ProviderUnavailable, ProviderError) as e:
            metrics.record_fallback("market_analysis")
            slog.log_fallback("market_analysis", type(e).__name__, produce=produce_name)
            return MarketAnalysis(subject=produce_name, trends=[relevant] if relevant else [], timestamp=_utcnow())

        confidence = str(data.get("confidence", "")).lower()
        summary = data.get("summary")
        return MarketAnalysis(
            subject=produce_name,
            analysis=analysis,
            summary=str(summary) if summary else None,
            confidence=confidence if confidence in ANALYSIS_CONFIDENCE else None,
            trends=[relevant] if relevant else [],
            source="ai",
            timestamp=_utcnow(),
        )
