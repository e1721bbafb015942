# =============================================
# File: farm2table/utils/prompting.py
# Purpose: System prompts and user-prompt builders for every completion call
# =============================================
from __future__ import annotations

from typing import List, Optional, Sequence

from ..schemas import ConversationContext, ScoredKnowledge, ScoredProduce, TrendSeries
from .embedding_text import CURRENCY_UNIT, format_price
from .sanitize import collapse_ws, sanitize_question, sanitize_snippet

RECOMMEND_SYSTEM = (
    "You are a knowledgeable farm-to-table assistant helping customers find the best fresh produce "
    "for their needs. Recommend only items from the provided list, mention the producers, and explain "
    "why the items fit the customer's context."
)

DESCRIPTION_SYSTEM = (
    "You are an expert farm-to-table copywriter who creates appealing descriptions for fresh produce, "
    "emphasizing quality, nutrition, and local sourcing."
)

PRICING_SYSTEM = (
    "You are a farm-to-table pricing expert who helps producers set competitive prices based on "
    "market data, quality factors, and seasonal trends."
)

TREND_SYSTEM = (
    "You are an agricultural market analyst. Answer ONLY with a JSON object describing the price trend "
    "of one product, based on the market data you are given."
)

OVERVIEW_SYSTEM = (
    "You are a market analyst providing high-level insights about agricultural market conditions. "
    "Answer ONLY with a JSON object."
)

ANALYSIS_SYSTEM = (
    "You are a senior agricultural market analyst. Provide accurate, data-driven insights that help "
    "producers decide on pricing, production timing and market positioning. Answer ONLY with a JSON object."
)


def format_candidate(p: ScoredProduce, currency_unit: str = CURRENCY_UNIT) -> str:
    line = (
        f"{p.name} - {format_price(p.price)} {currency_unit}/{p.unit}, "
        f"{format_price(p.quantity)}{p.unit} available, by {p.producer or 'unknown producer'}"
    )
    extras = [x for x in (p.farming_method, p.location and f"from {p.location}", p.season and f"({p.season})") if x]
    if extras:
        line += " [" + " ".join(extras) + "]"
    return line


def _context_block(ctx: ConversationContext) -> str:
    lines = [
        ctx.preferences and f"Preferences: {', '.join(ctx.preferences)}",
        ctx.location and f"Location: {ctx.location}",
        ctx.season and f"Current season: {ctx.season}",
        ctx.dietary_restrictions and f"Dietary restrictions: {', '.join(ctx.dietary_restrictions)}",
        ctx.cooking_skill and f"Cooking skill: {ctx.cooking_skill}",
    ]
    recent = [sanitize_question(q, 200) for q in ctx.previous_questions[:3] if q]
    if recent:
        lines.append("Previous questions: " + " | ".join(recent))
    return "\n".join(line for line in lines if line)


def build_recommend_prompt(
    question: str,
    ctx: ConversationContext,
    candidates: Sequence[ScoredProduce],
    knowledge: Sequence[ScoredKnowledge],
) -> str:
    produce_list = "\n".join(f"- {format_candidate(p)}" for p in candidates) or "(no matching produce)"
    snippets = "\n".join(
        f"[{i}] {collapse_ws(k.title)}: {sanitize_snippet(k.content)}" for i, k in enumerate(knowledge, start=1)
    )
    context = _context_block(ctx)

    parts = [f'A customer is asking: "{sanitize_question(question)}"']
    if context:
        parts.append(f"Context:\n{context}")
    parts.append(f"Available produce (best semantic matches first):\n{produce_list}")
    if snippets:
        parts.append(f"Background knowledge:\n{snippets}")
    parts.append(
        "Provide a helpful recommendation based on the available produce. Be specific about which items "
        "work best, mention the producers, and respect any dietary restrictions. Keep it conversational "
        "and under 150 words. If nothing matches, suggest the closest alternatives available."
    )
    return "\n\n".join(parts)


def build_description_prompt(context: str) -> str:
    return (
        "Generate a compelling, natural description for this fresh produce item:\n\n"
        f"{context}\n\n"
        "Write a 2-3 sentence description that highlights freshness, unique characteristics "
        "(farming method, season, location), best uses and nutritional benefits. "
        "Keep it under 120 words."
    )


def build_pricing_prompt(
    name: str,
    category: str,
    location: str,
    farming_method: str,
    season: str,
    quantity: float,
    average_price: float,
    min_price: float,
    max_price: float,
    exact_average_price: float,
    competitor_count: int,
    currency_unit: str = CURRENCY_UNIT,
) -> str:
    return (
        "Analyze pricing for this produce item:\n\n"
        f"Product: {name}\nCategory: {category}\nLocation: {location}\n"
        f"Farming Method: {farming_method}\nSeason: {season}\nQuantity Available: {format_price(quantity)}\n\n"
        "Market Data:\n"
        f"- Similar products average price: {average_price:.2f} {currency_unit}\n"
        f"- Price range in market: {min_price:.2f} - {max_price:.2f} {currency_unit}\n"
        f"- Closest matches average: {exact_average_price:.2f} {currency_unit}\n"
        f"- Number of competitors: {competitor_count}\n\n"
        "Consider the farming method premium, seasonal availability, location and market positioning. "
        "Explain the pricing reasoning in 2-3 sentences."
    )


def build_trend_prompt(name: str, category: str, current_price: float, average_price: float,
                       supplier_count: int, currency_unit: str = CURRENCY_UNIT) -> str:
    return (
        f"Product: {name}\nCategory: {category}\n"
        f"Current listing price: {current_price:.2f} {currency_unit}\n"
        f"Average listing price: {average_price:.2f} {currency_unit}\n"
        f"Active suppliers: {supplier_count}\n\n"
        "Return ONLY a JSON object with these fields:\n"
        '  "trend": "up" | "down" | "stable",\n'
        '  "trend_percentage": number (absolute % change over the last 30 days),\n'
        '  "market_insight": string (1-2 sentences),\n'
        '  "recommendations": string[] (2-4 short actions for producers),\n'
        '  "seasonal_pattern": optional array of 12 objects {"month", "average_price", "volume"} from Jan to Dec.'
    )


def _trend_lines(trends: Sequence[TrendSeries], currency_unit: str) -> str:
    return "\n".join(
        f"- {t.produce}: {format_price(t.current_price)} {currency_unit} ({t.trend} {format_price(t.trend_percentage)}%)"
        for t in trends
    ) or "(no listings)"


def build_overview_prompt(trends: Sequence[TrendSeries], category: Optional[str], location: Optional[str],
                          currency_unit: str = CURRENCY_UNIT) -> str:
    return (
        "Provide a market overview for agricultural products.\n\n"
        f"Category: {category or 'All categories'}\nLocation: {location or 'All locations'}\n\n"
        f"Market data:\n{_trend_lines(trends, currency_unit)}\n\n"
        "Return ONLY a JSON object: "
        '{"market_sentiment": "positive|neutral|negative", "key_trends": string[], '
        '"seasonal_opportunities": string[], "risk_factors": string[], '
        '"strategic_recommendations": string[], "summary": string}'
    )


def build_analysis_prompt(produce_name: str, category: Optional[str], location: Optional[str],
                          analysis_type: str, trend: Optional[TrendSeries],
                          currency_unit: str = CURRENCY_UNIT) -> str:
    data = ""
    if trend is not None:
        data = (
            "\nCurrent market data:\n"
            f"- Current price: {format_price(trend.current_price)} {currency_unit}\n"
            f"- Trend: {trend.trend} ({format_price(trend.trend_percentage)}%)\n"
            + (f"- Insight: {trend.market_insight}\n" if trend.market_insight else "")
        )
    return (
        f"Provide a {analysis_type} market analysis for {produce_name}.\n\n"
        f"Category: {category or 'General'}\nLocation: {location or 'All locations'}\n{data}\n"
        "Return ONLY a JSON object with keys: "
        '"analysis" (object with price_analysis, supply_demand, competitive_landscape, '
        'seasonal_patterns, risk_factors, strategic_recommendations), '
        '"summary" (string), "confidence" ("high"|"medium"|"low").'
    )


def knowledge_embedding_text(title: str, content: str, tags: List[str]) -> str:
    return " ".join(x for x in (title, content, " ".join(tags)) if x).strip()
