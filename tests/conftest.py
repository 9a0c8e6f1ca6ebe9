"""Pytest configuration and fixtures for the knowledge assistant tests."""

import hashlib
import time
from typing import AsyncGenerator, List, Optional

import numpy as np
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from assistly.embedder import LocalEmbedder, get_embedder
from assistly.llm import GenerationFailedError
from assistly.main import app as main_app
from assistly.models import MatchCandidate, SourceType
from assistly.rag import KnowledgeAssistant, get_assistant
from assistly.retriever import Retriever
from assistly.vector import VectorSearchClient


# -------------------------------------------------------------------------
# Collaborator fakes
# -------------------------------------------------------------------------


class FakeSentenceModel:
    """Deterministic stand-in for a sentence-transformers model.

    Each whitespace token maps to a fixed pseudo-random vector seeded from its
    hash, so equal texts always produce equal token embeddings.
    """

    def __init__(self, dimension: int = 384):
        self.dimension = dimension
        self.calls = 0

    def encode(self, text, output_value="token_embeddings"):
        self.calls += 1
        tokens = text.lower().split() or [text]
        rows = []
        for token in tokens:
            seed = int(hashlib.md5(token.encode("utf-8")).hexdigest()[:8], 16)
            rows.append(np.random.default_rng(seed).standard_normal(self.dimension))
        return np.vstack(rows)


class FakeSearch(VectorSearchClient):
    """Search client returning a fixed candidate list."""

    def __init__(
        self,
        candidates: Optional[List[MatchCandidate]] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0
    ):
        self.candidates = candidates or []
        self.error = error
        self.delay = delay
        self.calls = []

    def search(self, vector, k):
        self.calls.append((vector, k))
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.candidates)


class FakeCompletion:
    """Completion client returning a fixed answer or failing."""

    def __init__(self, answer: str = "", fail: bool = False):
        self.answer = answer
        self.fail = fail
        self.prompts = []

    async def complete(self, system_prompt: str, user_message: str) -> str:
        self.prompts.append((system_prompt, user_message))
        if self.fail:
            raise GenerationFailedError("completion service unavailable")
        return self.answer


def make_candidate(
    id: str,
    similarity: Optional[float],
    source: SourceType = SourceType.DOC,
    title: Optional[str] = None,
    content: Optional[str] = None
) -> MatchCandidate:
    return MatchCandidate(
        id=id,
        source=source,
        title=f"Title {id}" if title is None else title,
        content=f"Content of {id}" if content is None else content,
        similarity=similarity
    )


# -------------------------------------------------------------------------
# Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
def fake_model() -> FakeSentenceModel:
    return FakeSentenceModel()


@pytest.fixture
def embedder(fake_model: FakeSentenceModel) -> LocalEmbedder:
    """Embedder backed by the deterministic fake model."""
    return LocalEmbedder(model_loader=lambda name: fake_model)


@pytest.fixture
def knowledge_candidates() -> List[MatchCandidate]:
    """A small mixed set of FAQ and document matches."""
    return [
        make_candidate(
            "faq_1", 0.72, SourceType.FAQ,
            title="How many paid leaves does an employee get?",
            content="Employees get 20 paid leaves per calendar year."
        ),
        make_candidate(
            "doc_1", 0.55, SourceType.DOC,
            title="Leave Policy",
            content="Paid leave accrues monthly. Unused leave carries over up to 5 days."
        ),
        make_candidate(
            "faq_2", 0.48, SourceType.FAQ,
            title="Can I carry over unused leave?",
            content="Up to 5 days of unused leave carry over to the next year."
        ),
        make_candidate("doc_2", 0.12, SourceType.DOC, title="Expense Policy",
                       content="Submit expenses within 30 days."),
    ]


@pytest.fixture
def search(knowledge_candidates: List[MatchCandidate]) -> FakeSearch:
    return FakeSearch(knowledge_candidates)


@pytest.fixture
def retriever(embedder: LocalEmbedder, search: FakeSearch) -> Retriever:
    return Retriever(embedder, search, embedding_timeout=5.0, search_timeout=5.0)


@pytest.fixture
def completion() -> FakeCompletion:
    return FakeCompletion(
        answer="Employees get 20 paid leaves per calendar year, and up to 5 unused days carry over."
    )


@pytest.fixture
def assistant(retriever: Retriever, completion: FakeCompletion) -> KnowledgeAssistant:
    return KnowledgeAssistant(retriever, completion)


@pytest.fixture
def app(assistant: KnowledgeAssistant, embedder: LocalEmbedder) -> FastAPI:
    """FastAPI app with the assistant and embedder replaced by test doubles."""
    main_app.dependency_overrides[get_assistant] = lambda: assistant
    main_app.dependency_overrides[get_embedder] = lambda: embedder
    yield main_app
    main_app.dependency_overrides.clear()


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
