# =============================================
# File: farm2table/utils/embedding_text.py
# Purpose: Canonical embedding text for a produce listing + producer backfill
# =============================================
from __future__ import annotations

import os
from typing import Optional

from ..schemas import ProduceRecord, ProducerInfo

CURRENCY_UNIT = os.getenv("CURRENCY_UNIT", "pesos")


def format_price(value: float) -> str:
    """100.0 -> '100', 12.5 -> '12.5'."""
    v = float(value)
    if v.is_integer():
        return str(int(v))
    return repr(v)


def apply_producer_defaults(record: ProduceRecord, producer: Optional[ProducerInfo]) -> ProduceRecord:
    """Fill location / farming method / producer name from the producer. Item-level values win."""
    if producer is None:
        return record
    return record.model_copy(
        update={
            "location": record.location or producer.location,
            "farming_method": record.farming_method or producer.farming_method,
            "producer": record.producer or producer.name,
            "producer_id": record.producer_id if record.producer_id is not None else producer.id,
            "producer_location": record.producer_location or producer.location,
        }
    )


def compose_embedding_text(
    record: ProduceRecord,
    generated_description: Optional[str] = None,
    currency_unit: str = CURRENCY_UNIT,
) -> str:
    """
    name, description, location, "<producer> farm", "<price> <currency> per <unit>",
    joined by single spaces with empty parts skipped.

    Must stay a pure function: the stored embedding is only recomputed
    when this string changes.
    """
    description = generated_description if generated_description is not None else record.description
    parts = [
        record.name,
        description,
        record.location,
        f"{record.producer} farm" if record.producer else None,
        f"{format_price(record.price)} {currency_unit} per {record.unit}",
    ]
    return " ".join(p.strip() for p in parts if p and p.strip())


def fallback_description(record: ProduceRecord) -> str:
    producer = record.producer or "a local farm"
    method = record.farming_method or "Locally grown"
    return f"Fresh {record.name} from {producer}. {method} and perfect for your kitchen needs."


def description_context(record: ProduceRecord, currency_unit: str = CURRENCY_UNIT) -> str:
    """Line-per-fact summary fed to the description prompt."""
    lines = [
        f"Product: {record.name}",
        record.category and f"Category: {record.category}",
        record.sub_category and f"Type: {record.sub_category}",
        record.farming_method and f"Farming: {record.farming_method}",
        record.season and f"Season: {record.season}",
        record.location and f"Location: {record.location}",
        f"Price: {format_price(record.price)} {currency_unit}/{record.unit}",
        f"Available: {format_price(record.quantity)}{record.unit}",
        record.producer and f"Producer: {record.producer}",
        record.nutritional_highlights and f"Nutrition: {', '.join(record.nutritional_highlights)}",
        record.common_uses and f"Uses: {', '.join(record.common_uses)}",
    ]
    return "\n".join(line for line in lines if line)
