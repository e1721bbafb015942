# tests/test_trends.py
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import json
import time
from datetime import date

import pytest

from farm2table.schemas import PricePoint, ProducerInfo
from farm2table.services.trends import (
    MarketTrendSynthesizer,
    history_trend,
    synthesize_history,
    synthesize_seasonal_pattern,
)
from farm2table.utils.errors import ValidationError
from farm2table.utils.metrics import snapshot

from conftest import StubCompleter

TODAY = date(2024, 5, 15)


def _ai_reply(system, user):
    return json.dumps({
        "trend": "up",
        "trend_percentage": 12.5,
        "market_insight": "Demand is outpacing supply.",
        "recommendations": ["Raise prices slightly", "Promote freshness"],
    })


def _synth(produce_repo, completer=None, use_ai=False, timeout=None):
    return MarketTrendSynthesizer(produce_repo, completer or StubCompleter(), today=lambda: TODAY, use_ai=use_ai,
                                  timeout=timeout)


def _slow(seconds, reply=None):
    def _reply(system, user):
        time.sleep(seconds)
        return reply(system, user) if reply else "{}"
    return _reply


def _seed(produce_repo, add_listing):
    other = produce_repo.add_producer(ProducerInfo(name="Valley Farm", location="Laguna"))
    add_listing("Heirloom Carrots", 100)
    add_listing("heirloom carrots", 110, producer_id=other.id)
    add_listing("Curly Kale", 70)


def test_groups_by_name_and_ranks_by_supplier_count(produce_repo, add_listing):
    _seed(produce_repo, add_listing)
    result = _synth(produce_repo).market_trends()
    assert result.source == "synthesized"
    assert [t.produce.lower() for t in result.trends] == ["heirloom carrots", "curly kale"]
    carrots = result.trends[0]
    # newest listing sets the current price
    assert carrots.current_price == 110
    assert len(carrots.price_history) == 30
    assert carrots.price_history[-1].date == TODAY.isoformat()
    assert len(carrots.seasonal_pattern) == 12
    assert carrots.seasonal_pattern[0].month == "Jan"


def test_synthesized_path_is_deterministic(produce_repo, add_listing):
    _seed(produce_repo, add_listing)
    a = _synth(produce_repo).market_trends().trends
    b = _synth(produce_repo).market_trends().trends
    assert [t.model_dump() for t in a] == [t.model_dump() for t in b]


def test_history_floor_and_seasonal_curve():
    history = synthesize_history("Curly Kale", 100, TODAY)
    assert all(p.price >= 70 for p in history)
    assert [p.date for p in history] == sorted(p.date for p in history)

    import random
    curve = synthesize_seasonal_pattern(100, random.Random(0))
    # 0.8 + 0.4*sin(i*pi/6): Jan 80, Apr 120, Oct 40
    assert curve[0].average_price == 80
    assert curve[3].average_price == 120
    assert curve[9].average_price == 40


def test_history_trend_compares_oldest_to_newest():
    def pts(*prices):
        return [PricePoint(date=f"2024-05-{i + 1:02d}", price=p, volume=10) for i, p in enumerate(prices)]

    assert history_trend(pts(100, 104)) == ("stable", 4)
    assert history_trend(pts(100, 110)) == ("up", 10)
    assert history_trend(pts(100, 80)) == ("down", 20)


def test_ai_path_has_same_shape(produce_repo, add_listing):
    _seed(produce_repo, add_listing)
    completer = StubCompleter(reply=_ai_reply)
    ai = _synth(produce_repo, completer, use_ai=True).market_trends()
    plain = _synth(produce_repo).market_trends()

    assert ai.source == "ai"
    assert completer.calls[0]["json_mode"] is True
    assert set(ai.trends[0].model_dump()) == set(plain.trends[0].model_dump())
    t = ai.trends[0]
    assert t.trend == "up"
    assert t.trend_percentage == 12.5
    assert t.market_insight == "Demand is outpacing supply."
    assert t.recommendations == ["Raise prices slightly", "Promote freshness"]
    assert len(t.price_history) == 30 and len(t.seasonal_pattern) == 12
    assert snapshot()["model_usage"].get("stub-model") == 1


def test_malformed_ai_answer_degrades_per_group(produce_repo, add_listing):
    _seed(produce_repo, add_listing)

    def reply(system, user):
        return "Sorry, I cannot help with that." if "Curly Kale" in user else _ai_reply(system, user)

    result = _synth(produce_repo, StubCompleter(reply=reply), use_ai=True).market_trends()
    assert result.source == "mixed"
    kale = next(t for t in result.trends if t.produce == "Curly Kale")
    assert kale.market_insight is None
    assert snapshot()["fallbacks"].get("trends") == 1


def test_ai_disabled_when_provider_unavailable(produce_repo, add_listing):
    _seed(produce_repo, add_listing)
    completer = StubCompleter(fail=True)
    result = _synth(produce_repo, completer, use_ai=True).market_trends()
    assert result.source == "synthesized"
    assert completer.calls == []


def test_filters_are_echoed(produce_repo, add_listing):
    _seed(produce_repo, add_listing)
    result = _synth(produce_repo).market_trends(category="veg", location="laguna")
    assert result.filters == {"category": "veg", "location": "laguna"}
    assert [t.produce for t in result.trends] == ["heirloom carrots"]


def test_market_overview_and_analysis(produce_repo, add_listing):
    _seed(produce_repo, add_listing)

    def reply(system, user):
        if "market overview" in user:
            return json.dumps({"market_sentiment": "positive", "key_trends": ["Carrots up"], "summary": "Healthy."})
        return json.dumps({"analysis": {"price_analysis": {"current_trend": "up"}}, "summary": "Good outlook.",
                           "confidence": "HIGH"})

    synth = _synth(produce_repo, StubCompleter(reply=reply))
    overview = synth.market_overview()
    assert overview.source == "ai"
    assert overview.summary == "Healthy."
    assert overview.analysis["market_sentiment"] == "positive"

    analysis = synth.analyze_market("Carrots")
    assert analysis.source == "ai"
    assert analysis.confidence == "high"
    assert analysis.trends and analysis.trends[0].produce.lower() == "heirloom carrots"


def test_analysis_unavailable_without_provider(produce_repo, add_listing):
    _seed(produce_repo, add_listing)
    synth = _synth(produce_repo, StubCompleter(fail=True))
    assert synth.market_overview().source == "unavailable"
    result = synth.analyze_market("Kale")
    assert result.source == "unavailable"
    assert result.analysis == {}

    with pytest.raises(ValidationError):
        synth.analyze_market(" ")


def test_analysis_with_malformed_json_is_unavailable(produce_repo, add_listing):
    _seed(produce_repo, add_listing)
    synth = _synth(produce_repo, StubCompleter(text="{not json"))
    assert synth.analyze_market("Kale").source == "unavailable"


def test_ai_calls_for_groups_run_concurrently(produce_repo, add_listing):
    names = [f"Crop {i}" for i in range(10)]
    for name in names:
        add_listing(name, 80)
    completer = StubCompleter(reply=_slow(0.3, _ai_reply))

    started = time.monotonic()
    result = _synth(produce_repo, completer, use_ai=True, timeout=5).market_trends()
    elapsed = time.monotonic() - started

    assert result.source == "ai"
    assert len(result.trends) == 10 and len(completer.calls) == 10
    # ten 0.3s calls back to back would take 3s
    assert elapsed < 2.0


def test_groups_pending_at_deadline_are_synthesized(produce_repo, add_listing):
    _seed(produce_repo, add_listing)
    started = time.monotonic()
    completer = StubCompleter(reply=_slow(0.5, _ai_reply))
    result = _synth(produce_repo, completer, use_ai=True, timeout=0.05).market_trends()
    elapsed = time.monotonic() - started

    assert result.source == "synthesized"
    assert all(t.market_insight is None for t in result.trends)
    assert snapshot()["fallbacks"].get("trends") == len(result.trends) == 2
    assert elapsed < 0.4


def test_slow_overview_is_unavailable(produce_repo, add_listing):
    _seed(produce_repo, add_listing)
    synth = _synth(produce_repo, StubCompleter(reply=_slow(0.5)), timeout=0.05)
    assert synth.market_overview().source == "unavailable"
    assert snapshot()["fallbacks"].get("market_overview") == 1
