# =============================================
# File: tests/test_recommender.py
# Purpose: Contextual recommendation flow: ranking + knowledge + history,
#          persisted turn metadata, apology path, caller deadlines
# =============================================
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import time
from datetime import datetime

import pytest

from farm2table.schemas import UserContext
from farm2table.services.recommender import APOLOGY_MESSAGE, RecommendationComposer, derive_metadata
from farm2table.services.retrieval import KnowledgeRetriever, SimilarityRanker
from farm2table.utils.errors import ValidationError
from farm2table.utils.metrics import snapshot

from conftest import StubCompleter, StubEmbedder


def _composer(produce_repo, knowledge_repo, conversation_store, embedder=None, completer=None, **kw):
    embedder = embedder or StubEmbedder()
    return RecommendationComposer(
        SimilarityRanker(produce_repo, embedder),
        KnowledgeRetriever(knowledge_repo, embedder),
        completer or StubCompleter(),
        conversation_store,
        **kw,
    )


def _seed(add_listing, add_knowledge):
    add_listing("Heirloom Carrots", 120, description="Sweet root for soup", season="Winter")
    add_listing("Cherry Tomatoes", 90, description="Bright salad fruit", category="Fruits",
                season="Summer", farming_method="Conventional")
    add_listing("Curly Kale", 70, description="Leafy green for salad", season="Year-round")
    add_knowledge("Carrot soup basics", "Roast carrot before blending the soup.")


@pytest.mark.asyncio
async def test_recommend_persists_turn_with_metadata(produce_repo, knowledge_repo, conversation_store,
                                                     add_listing, add_knowledge):
    _seed(add_listing, add_knowledge)
    completer = StubCompleter(text="Go for the Heirloom Carrots from Sunny Acres.")
    composer = _composer(produce_repo, knowledge_repo, conversation_store, completer=completer, top_k=2)

    result = await composer.recommend("What is good for carrot soup?", UserContext(), "u1", "s1")

    assert result.narrative == "Go for the Heirloom Carrots from Sunny Acres."
    assert result.recommendations[0].name == "Heirloom Carrots"
    assert len(result.recommendations) == 2
    assert result.method == "semantic_search"

    # prompt carries candidates and the knowledge snippet
    prompt = completer.calls[0]["user"]
    assert "Heirloom Carrots - 120" in prompt
    assert "by Sunny Acres" in prompt
    assert "Roast carrot before blending" in prompt

    turns = conversation_store.recent_turns("u1", "s1")
    assert len(turns) == 1
    meta = turns[0].metadata
    assert meta.produce_ids == [r.id for r in result.recommendations]
    assert meta.model_used == "stub-model"
    assert meta.response_time_ms is not None
    assert meta.price_range.min == min(r.price for r in result.recommendations)
    assert snapshot()["model_usage"].get("stub-model") == 1


@pytest.mark.asyncio
async def test_history_questions_feed_next_prompt(produce_repo, knowledge_repo, conversation_store,
                                                  add_listing, add_knowledge):
    _seed(add_listing, add_knowledge)
    completer = StubCompleter()
    composer = _composer(produce_repo, knowledge_repo, conversation_store, completer=completer)

    await composer.recommend("Something for a salad?", None, "u2", None)
    second = await composer.recommend("And for soup?", None, "u2", None)

    assert second.used_history == ["Something for a salad?"]
    assert second.method == "semantic_search_with_context"
    assert len(second.history) == 1
    assert "Previous questions: Something for a salad?" in completer.calls[1]["user"]
    # responses are not replayed
    assert completer.calls[1]["user"].count(completer.text) == 0


@pytest.mark.asyncio
async def test_user_context_filters_and_method(produce_repo, knowledge_repo, conversation_store,
                                               add_listing, add_knowledge):
    _seed(add_listing, add_knowledge)
    completer = StubCompleter()
    composer = _composer(produce_repo, knowledge_repo, conversation_store, completer=completer)
    ctx = UserContext(season="Summer", preferences=["organic"], dietary_restrictions=["vegan"],
                      cooking_skill="beginner")

    result = await composer.recommend("salad ideas", ctx)

    assert {r.name for r in result.recommendations} == {"Cherry Tomatoes", "Curly Kale"}
    assert result.method == "semantic_search_with_context"
    prompt = completer.calls[0]["user"]
    assert "Dietary restrictions: vegan" in prompt
    assert "Cooking skill: beginner" in prompt
    # no ids: nothing to key history on, but the turn is still stored
    assert len(conversation_store.turns_since(datetime(2000, 1, 1))) == 1


@pytest.mark.asyncio
async def test_provider_outage_returns_apology(produce_repo, knowledge_repo, conversation_store,
                                               add_listing, add_knowledge):
    _seed(add_listing, add_knowledge)
    composer = _composer(produce_repo, knowledge_repo, conversation_store,
                         embedder=StubEmbedder(fail=True), completer=StubCompleter(fail=True))

    result = await composer.recommend("carrots", UserContext(), "u3", "s3")

    assert result.narrative == APOLOGY_MESSAGE
    assert result.recommendations == []
    assert conversation_store.recent_turns("u3", "s3") == []
    fallbacks = snapshot()["fallbacks"]
    assert fallbacks.get("rank") == 1
    assert fallbacks.get("recommend") == 1


@pytest.mark.asyncio
async def test_completion_deadline_returns_apology(produce_repo, knowledge_repo, conversation_store,
                                                   add_listing, add_knowledge):
    _seed(add_listing, add_knowledge)

    def slow(system, user):
        time.sleep(0.5)
        return "too late"

    composer = _composer(produce_repo, knowledge_repo, conversation_store,
                         completer=StubCompleter(reply=slow), completion_timeout=0.05)
    result = await composer.recommend("carrots", UserContext(), "u4", None)
    assert result.narrative == APOLOGY_MESSAGE
    assert result.recommendations == []
    assert conversation_store.recent_turns("u4") == []


@pytest.mark.asyncio
async def test_retrieval_deadline_degrades_to_lexical(produce_repo, knowledge_repo, conversation_store,
                                                      add_listing, add_knowledge):
    _seed(add_listing, add_knowledge)

    class SlowEmbedder(StubEmbedder):
        def embed(self, text):
            time.sleep(0.5)
            return super().embed(text)

    completer = StubCompleter()
    composer = _composer(produce_repo, knowledge_repo, conversation_store, embedder=SlowEmbedder(),
                         completer=completer, retrieval_timeout=0.05)
    result = await composer.recommend("carrots", UserContext(), "u5", None)

    assert [r.name for r in result.recommendations] == ["Heirloom Carrots"]
    assert result.recommendations[0].similarity is None
    assert "Background knowledge" not in completer.calls[0]["user"]


@pytest.mark.asyncio
async def test_empty_question_is_rejected(produce_repo, knowledge_repo, conversation_store):
    composer = _composer(produce_repo, knowledge_repo, conversation_store)
    with pytest.raises(ValidationError) as e:
        await composer.recommend("   ")
    assert e.value.field == "question"


def test_derive_metadata_is_distinct_and_ordered(produce_repo, add_listing):
    add_listing("Heirloom Carrots", 120, season="Winter")
    add_listing("Baby Carrots", 80, season="Winter", farming_method="Conventional")
    add_listing("Cherry Tomatoes", 90, category="Fruits", season="Summer")
    records = produce_repo.all_records()

    meta = derive_metadata(records, response_time_ms=12, model_used="m")
    assert meta.categories == ["Vegetables", "Fruits"]
    assert meta.seasons == ["Winter", "Summer"]
    assert meta.farming_methods == ["Organic", "Conventional"]
    assert meta.price_range.min == 80 and meta.price_range.max == 120

    empty = derive_metadata([])
    assert empty.price_range is None and empty.produce_ids == []
