"""Tests for local embedding generation."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest
from loguru import logger

from assistly.embedder import (
    EmbeddingUnavailableError,
    InvalidInputError,
    LocalEmbedder,
    knowledge_item_text,
    mean_pool_and_normalize,
)
from assistly.models import Document, FaqEntry
from tests.conftest import FakeSentenceModel


class FixedOutputModel:
    """Model returning the same output for every text."""

    def __init__(self, output):
        self.output = output

    def encode(self, text, output_value="token_embeddings"):
        return self.output


class FailingModel:

    def encode(self, text, output_value="token_embeddings"):
        raise RuntimeError("inference crashed")


class FakeTensor:
    """Minimal object exposing the tensor conversion methods."""

    def __init__(self, values):
        self.values = np.asarray(values)

    def cpu(self):
        return self

    def numpy(self):
        return self.values


class TestEmbed:
    """Tests for single-text embedding."""

    def test_embedding_is_deterministic(self, embedder: LocalEmbedder):
        """Test the same text embeds to identical vectors."""
        first = embedder.embed("How many paid leaves does an employee get?")
        second = embedder.embed("How many paid leaves does an employee get?")

        assert first == second
        assert len(first) == 384

    def test_embedding_is_unit_length(self, embedder: LocalEmbedder):
        vector = embedder.embed("Remote work policy")

        assert np.isclose(np.linalg.norm(vector), 1.0)

    def test_mean_pooling_over_tokens(self):
        """Test token embeddings are averaged before normalization."""
        embedder = LocalEmbedder(dimension=2, model_loader=lambda name: FixedOutputModel([[1.0, 0.0], [0.0, 1.0]]))

        vector = embedder.embed("two tokens")

        assert np.allclose(vector, [np.sqrt(0.5), np.sqrt(0.5)])

    def test_tensor_output_is_converted(self):
        embedder = LocalEmbedder(dimension=2, model_loader=lambda name: FixedOutputModel(FakeTensor([[3.0, 4.0]])))

        assert np.allclose(embedder.embed("text"), [0.6, 0.8])

    @pytest.mark.parametrize("text", ["", "   ", None, 17])
    def test_invalid_input_rejected(self, embedder: LocalEmbedder, text):
        with pytest.raises(InvalidInputError):
            embedder.embed(text)

    def test_model_error_is_unavailable(self):
        embedder = LocalEmbedder(model_loader=lambda name: FailingModel())

        with pytest.raises(EmbeddingUnavailableError):
            embedder.embed("hello")

    def test_load_error_is_unavailable(self):
        def broken_loader(name):
            raise OSError("model files missing")

        embedder = LocalEmbedder(model_loader=broken_loader)

        with pytest.raises(EmbeddingUnavailableError):
            embedder.embed("hello")
        assert not embedder.is_loaded

    def test_non_finite_output_is_unavailable(self):
        embedder = LocalEmbedder(model_loader=lambda name: FixedOutputModel([[np.nan] * 384]))

        with pytest.raises(EmbeddingUnavailableError):
            embedder.embed("hello")

    def test_non_numeric_output_is_unavailable(self):
        with pytest.raises(EmbeddingUnavailableError):
            mean_pool_and_normalize([["a", "b"]])

    def test_dimension_mismatch_is_logged_not_corrected(self):
        """Test a wrong-length vector is returned as is with a warning."""
        messages = []
        handler_id = logger.add(lambda message: messages.append(str(message)), level="WARNING")
        try:
            embedder = LocalEmbedder(dimension=384, model_loader=lambda name: FakeSentenceModel(dimension=10))
            vector = embedder.embed("short vector")
        finally:
            logger.remove(handler_id)

        assert len(vector) == 10
        assert any("Embedding dimension mismatch" in m for m in messages)


class TestModelLoading:
    """Tests for lazy, once-only model loading."""

    def test_model_not_loaded_until_first_embed(self, embedder: LocalEmbedder):
        assert not embedder.is_loaded

        embedder.embed("hello")

        assert embedder.is_loaded

    def test_explicit_load_is_reused_by_embed(self, embedder: LocalEmbedder, fake_model: FakeSentenceModel):
        embedder.load()

        assert embedder.is_loaded
        embedder.embed("hello")
        assert fake_model.calls == 1

    def test_concurrent_first_use_loads_once(self):
        """Test racing first calls share a single model load."""
        loads = []
        lock = threading.Lock()

        def slow_loader(name):
            with lock:
                loads.append(name)
            time.sleep(0.05)
            return FakeSentenceModel()

        embedder = LocalEmbedder(model_loader=slow_loader)

        with ThreadPoolExecutor(max_workers=8) as pool:
            vectors = list(pool.map(embedder.embed, ["paid leave policy"] * 8))

        assert len(loads) == 1
        assert all(v == vectors[0] for v in vectors)


class TestEmbedBatch:

    def test_failed_items_become_none(self, embedder: LocalEmbedder):
        """Test one bad text does not abort the batch and order is kept."""
        vectors = embedder.embed_batch(["hello", "", "world"])

        assert vectors[0] == embedder.embed("hello")
        assert vectors[1] is None
        assert vectors[2] == embedder.embed("world")

    def test_empty_batch(self, embedder: LocalEmbedder):
        assert embedder.embed_batch([]) == []


class TestHelpers:

    def test_faq_text_combines_question_and_answer(self):
        faq = FaqEntry(id="faq_1", question="Is there a dress code?", answer="Business casual.")

        assert knowledge_item_text(faq) == "Is there a dress code?\nBusiness casual."

    def test_document_text_is_representative(self):
        doc = Document(id="doc_1", title="Handbook", content="x" * 2500)

        text = knowledge_item_text(doc)

        assert len(text) == 2000 + 2 + 200
