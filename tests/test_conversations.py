# tests/test_conversations.py
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from datetime import datetime, timedelta

import pytest

from farm2table.schemas import ConversationMetadata, ConversationTurn
from farm2table.services.conversations import ConversationAnalyticsService
from farm2table.utils.errors import ValidationError

NOW = datetime(2024, 6, 10, 12, 0, 0)


def _turn(store, question, days_ago, user_id="u1", session_id="s1", categories=(), response_time_ms=100):
    return store.append(ConversationTurn(
        question=question,
        response="answer",
        user_id=user_id,
        session_id=session_id,
        metadata=ConversationMetadata(categories=list(categories), response_time_ms=response_time_ms),
        created_at=NOW - timedelta(days=days_ago),
    ))


@pytest.fixture
def service(conversation_store):
    return ConversationAnalyticsService(conversation_store, now=lambda: NOW)


def test_history_requires_an_identifier(service):
    with pytest.raises(ValidationError) as e:
        service.conversation_history()
    assert e.value.field == "user_id"


def test_history_newest_first_and_limited(service, conversation_store):
    for i in range(4):
        _turn(conversation_store, f"question {i}", days_ago=4 - i)
    _turn(conversation_store, "someone else", days_ago=0, user_id="u2", session_id="s2")

    turns = service.conversation_history(user_id="u1", limit=3)
    assert [t.question for t in turns] == ["question 3", "question 2", "question 1"]

    by_session = service.conversation_history(session_id="s2")
    assert [t.question for t in by_session] == ["someone else"]


def test_analytics_aggregates_window(service, conversation_store):
    _turn(conversation_store, "Best carrots?", 1, categories=["Vegetables"], response_time_ms=100)
    _turn(conversation_store, "best carrots? ", 1, user_id="u2", categories=["Vegetables"], response_time_ms=300)
    _turn(conversation_store, "Sweet fruit?", 2, user_id="u3", categories=["Fruits", "Vegetables"],
          response_time_ms=None)
    _turn(conversation_store, "Too old", 20)

    stats = service.conversation_analytics("7d")
    assert stats.total_conversations == 3
    assert stats.active_users == 3
    assert stats.average_response_time_ms == 200
    assert stats.top_questions[0].key == "best carrots?"
    assert stats.top_questions[0].count == 2
    assert stats.popular_categories[0].key == "Vegetables"
    assert stats.popular_categories[0].count == 3
    assert [d.date for d in stats.conversation_trends] == ["2024-06-08", "2024-06-09"]
    assert [d.count for d in stats.conversation_trends] == [1, 2]
    # same timestamp: later insert first
    assert stats.recent_conversations[0].question == "best carrots? "

    wider = service.conversation_analytics("30d")
    assert wider.total_conversations == 4


def test_analytics_per_user(service, conversation_store):
    _turn(conversation_store, "Best carrots?", 1)
    _turn(conversation_store, "Kale?", 1, user_id="u2")
    stats = service.conversation_analytics("7d", user_id="u2")
    assert stats.total_conversations == 1
    assert stats.active_users == 1


def test_analytics_empty_window(service):
    stats = service.conversation_analytics("90d")
    assert stats.total_conversations == 0
    assert stats.average_response_time_ms == 0
    assert stats.conversation_trends == []


def test_analytics_rejects_unknown_range(service):
    with pytest.raises(ValidationError) as e:
        service.conversation_analytics("1y")
    assert e.value.field == "time_range"
