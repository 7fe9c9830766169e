"""
Shared fixtures.

Repositories run against mongomock through a thin async adapter that
mirrors the slice of the motor API the code uses: awaitable collection
methods, plus sync find()/aggregate() returning a cursor with to_list().
"""
import pytest
import datetime as dt
from types import SimpleNamespace
from unittest.mock import AsyncMock
from typing import Any, Dict, List, Optional

import mongomock

from src.config import settings
from src.message_queue.base import JobType
from src.models.feedback import Author, FeedbackContent, RawFeedbackItem, RawItemState
from src.repositories import (
    BoardRepository,
    IdentityRepository,
    PostRepository,
    RawItemRepository,
    SignalRepository,
    SubscriptionRepository,
    SuggestionRepository,
    VoteRepository,
    ensure_indexes,
)
from src.services.notification_service import NotificationService
from src.services.suggestion_service import SuggestionService
from src.utils.circuit_breaker import reset_llm_circuit
from src.utils.llm_client import LLMCompletion


# --- MONGOMOCK ASYNC ADAPTER ---

class _AsyncCursor:
    def __init__(self, cursor):
        self._cursor = cursor

    def sort(self, *args, **kwargs):
        self._cursor = self._cursor.sort(*args, **kwargs)
        return self

    def skip(self, count):
        self._cursor = self._cursor.skip(count)
        return self

    def limit(self, count):
        self._cursor = self._cursor.limit(count)
        return self

    async def to_list(self, length=None):
        docs = list(self._cursor)
        return docs if length is None else docs[:length]


class _AsyncCollection:
    def __init__(self, collection):
        self._collection = collection

    def find(self, *args, **kwargs):
        return _AsyncCursor(self._collection.find(*args, **kwargs))

    def aggregate(self, pipeline, **kwargs):
        return _AsyncCursor(self._collection.aggregate(pipeline, **kwargs))

    def __getattr__(self, name):
        attr = getattr(self._collection, name)
        if not callable(attr):
            return attr

        async def call(*args, **kwargs):
            return attr(*args, **kwargs)

        return call


class _AsyncDatabase:
    def __init__(self, database):
        self._database = database

    def __getitem__(self, name):
        return _AsyncCollection(self._database[name])

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return _AsyncCollection(self._database[name])


@pytest.fixture
async def mongo_db():
    """Fresh in-process database with the production indexes."""
    client = mongomock.MongoClient(tz_aware=True)
    db = _AsyncDatabase(client["feedback_pipeline_test"])
    await ensure_indexes(db)
    return db


# --- PIPELINE TEST DOUBLES ---

class RecordingEnqueuer:
    """JobEnqueuer that records instead of running anything."""

    def __init__(self):
        self.jobs: List[tuple] = []

    async def enqueue_job(self, job_type, payload: Dict[str, Any]) -> str:
        self.jobs.append((JobType(job_type), dict(payload)))
        return f"job-{len(self.jobs)}"

    def of_type(self, job_type: JobType) -> List[Dict[str, Any]]:
        return [payload for recorded, payload in self.jobs if recorded == job_type]


class FakeEmbeddingClient:
    """
    Stand-in for AsyncOpenAI's embeddings API.

    The first keyword found in the (lower-cased) input picks the vector,
    so tests control similarity by choosing wording.
    """

    def __init__(self, keyword_vectors: Dict[str, List[float]], default: Optional[List[float]] = None):
        self.keyword_vectors = keyword_vectors
        self.default = default or [0.0, 0.0, 0.0, 1.0]
        self.inputs: List[str] = []
        self.embeddings = SimpleNamespace(create=self._create)

    async def _create(self, model: str, input: str):
        self.inputs.append(input)
        text = input.lower()
        vector = next(
            (v for keyword, v in self.keyword_vectors.items() if keyword in text),
            self.default,
        )
        return SimpleNamespace(data=[SimpleNamespace(embedding=list(vector))])


def completion(text: str, input_tokens: int = 120, output_tokens: int = 40) -> LLMCompletion:
    return LLMCompletion(
        text=text,
        model="gpt-4o",
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        duration_ms=12.0,
    )


@pytest.fixture
def recording_jobs():
    return RecordingEnqueuer()


@pytest.fixture
def embedding_client_factory():
    return FakeEmbeddingClient


@pytest.fixture
def make_completion():
    return completion


@pytest.fixture
def make_raw_item():
    """Factory for unsaved raw items."""

    def factory(
        text: str = "We really need CSV export for reporting, please add it",
        source_type: str = "intercom",
        external_id: str = "conv_1",
        state: RawItemState = RawItemState.READY_FOR_EXTRACTION,
        source_id: str = "src_intercom",
        **fields: Any,
    ) -> RawFeedbackItem:
        return RawFeedbackItem(
            source_id=source_id,
            source_type=source_type,
            external_id=external_id,
            dedupe_key=RawFeedbackItem.build_dedupe_key(source_type, external_id),
            author=fields.pop("author", Author(email="dana@example.com", name="Dana")),
            content=FeedbackContent(text=text, subject=fields.pop("subject", None)),
            processing_state=state,
            **fields,
        )

    return factory


@pytest.fixture
def minutes_ago():
    def factory(minutes: float) -> dt.datetime:
        return dt.datetime.now(dt.UTC) - dt.timedelta(minutes=minutes)

    return factory


# --- ISOLATION ---

@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """No real model calls, no retry sleeps, a fresh circuit per test."""
    monkeypatch.setattr(settings, "openai_api_key", None)
    monkeypatch.setattr(settings, "retry_min_wait_seconds", 0)
    monkeypatch.setattr(settings, "retry_max_wait_seconds", 0)
    monkeypatch.setattr(settings, "api_key", None)
    monkeypatch.setattr(settings, "attribution_webhook_url", None)
    monkeypatch.setattr(settings, "intercom_access_token", None)
    reset_llm_circuit()
    yield
    reset_llm_circuit()


@pytest.fixture
def attribution_notifier():
    notifier = AsyncMock()
    notifier.notify = AsyncMock(return_value=True)
    return notifier


@pytest.fixture
def stack(mongo_db, attribution_notifier):
    """Repositories plus the suggestion/notification services wired over them."""
    repos = SimpleNamespace(
        raw_items=RawItemRepository(mongo_db),
        signals=SignalRepository(mongo_db),
        suggestions=SuggestionRepository(mongo_db),
        posts=PostRepository(mongo_db),
        boards=BoardRepository(mongo_db),
        votes=VoteRepository(mongo_db),
        subscriptions=SubscriptionRepository(mongo_db),
        identities=IdentityRepository(mongo_db),
    )
    repos.notifications = NotificationService(
        repos.subscriptions, repos.identities, repos.posts, notifier=attribution_notifier
    )
    repos.suggestion_service = SuggestionService(
        repos.suggestions, repos.raw_items, repos.posts, repos.boards, repos.votes, repos.notifications
    )
    return repos
