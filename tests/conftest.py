# =============================================
# File: tests/conftest.py
# Purpose: Shared fixtures: file-backed SQLite per test, stub AI providers,
#          pinned clock / random source
# =============================================
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import random
from datetime import date, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from farm2table.db.repo import (
    SqlConversationStore,
    SqlKnowledgeRepository,
    SqlProduceRepository,
    init_db,
    make_engine,
)
from farm2table.schemas import KnowledgeEntry, ProduceRecord, ProducerInfo
from farm2table.services.container import build_services, get_services
from farm2table.utils import metrics
from farm2table.utils.errors import ProviderUnavailable

# Keyword axes for the stub embedder: texts sharing words land close together.
VOCAB = ["carrot", "tomato", "lettuce", "kale", "organic", "soup", "salad", "root", "fruit", "leafy"]


class StubEmbedder:
    """Bag-of-keywords vectors; deterministic and offline."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []
        self.model = "stub-embedding"

    @property
    def dimension(self):
        return len(VOCAB)

    def embed(self, text):
        self.calls.append(text)
        if self.fail:
            raise ProviderUnavailable("embeddings offline")
        t = (text or "").lower()
        return [float(t.count(w)) for w in VOCAB]


class StubCompleter:
    """Returns a canned answer (or the result of `reply(system, user)`)."""

    def __init__(self, text="Try the Heirloom Carrots from Sunny Acres.", fail=False, reply=None):
        self.text = text
        self.fail = fail
        self.reply = reply
        self.calls = []

    @property
    def available(self):
        return not self.fail

    @property
    def model_name(self):
        return "stub-model"

    def complete(self, system_prompt, user_prompt, max_tokens=None, temperature=None, json_mode=False):
        self.calls.append({"system": system_prompt, "user": user_prompt, "json_mode": json_mode})
        if self.fail:
            raise ProviderUnavailable("completions offline")
        if self.reply is not None:
            return self.reply(system_prompt, user_prompt)
        return self.text


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'farm2table_test.db'}")
    init_db(eng)
    return eng


@pytest.fixture
def produce_repo(engine):
    return SqlProduceRepository(engine)


@pytest.fixture
def knowledge_repo(engine):
    return SqlKnowledgeRepository(engine)


@pytest.fixture
def conversation_store(engine):
    return SqlConversationStore(engine)


@pytest.fixture
def embedder():
    return StubEmbedder()


@pytest.fixture
def completer():
    return StubCompleter()


@pytest.fixture
def producer(produce_repo):
    return produce_repo.add_producer(
        ProducerInfo(name="Sunny Acres", location="Benguet, Philippines", farming_method="Organic")
    )


@pytest.fixture
def add_listing(produce_repo, producer, embedder):
    """Insert a listing; embedded with the stub embedder unless `embed=False`."""
    base = datetime(2024, 1, 1, 8, 0, 0)
    counter = {"n": 0}

    def _add(name, price=100.0, embed=True, **fields):
        counter["n"] += 1
        fields.setdefault("quantity", 25)
        fields.setdefault("category", "Vegetables")
        fields.setdefault("producer_id", producer.id)
        fields.setdefault("created_at", base + timedelta(minutes=counter["n"]))
        record = ProduceRecord(name=name, price=price, **fields)
        if embed:
            text = f"{name} {fields.get('description') or ''}"
            record = record.model_copy(update={"embedding": embedder.embed(text), "embedding_text": text})
        return produce_repo.add(record)

    return _add


@pytest.fixture
def add_knowledge(knowledge_repo, embedder):
    def _add(title, content, category="Cooking", tags=None, embed=True):
        tags = tags or []
        vec = embedder.embed(f"{title} {content} {' '.join(tags)}") if embed else []
        return knowledge_repo.add(KnowledgeEntry(title=title, content=content, category=category,
                                                 tags=tags, embedding=vec))

    return _add


@pytest.fixture
def pinned_rng():
    return random.Random(1234)


@pytest.fixture
def today_in():
    """Clock factory: today_in(5) -> callable returning a day in May."""
    def _make(month):
        return lambda: date(2024, month, 15)
    return _make


@pytest.fixture
def services(engine, pinned_rng, today_in):
    return build_services(engine, StubEmbedder(), StubCompleter(), rng=pinned_rng, today=today_in(5),
                          use_ai_trends=False)


@pytest.fixture
def client(services):
    """TestClient wired to the per-test database and stub providers."""
    from farm2table.main import app
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()
