"""
Local embedding generation with a sentence-transformers model.

This module provides:
- LocalEmbedder: lazily loads one feature-extraction model and turns text
  into mean-pooled, L2-normalized vectors
- Sequential batch embedding with per-item failure isolation
- The text embedded per knowledge item

The loaded model is the one piece of process-wide shared state in the
retrieval core. Loading happens at most once per LocalEmbedder, guarded by a
lock so that concurrent first requests do not load the model twice.

ENVIRONMENT VARIABLES USED:
- EMBEDDING_MODEL: sentence-transformers model name (all-MiniLM-L6-v2)
- EMBEDDING_DIMENSION: expected vector length (384)
"""

import threading
from typing import Any, Callable, List, Optional

import numpy as np
from loguru import logger

from assistly.chunker import representative_text
from assistly.models import Document, FaqEntry, KnowledgeItem
from assistly.utils import AssistlyError, get_config, Timer


class InvalidInputError(AssistlyError):
    """Raised when text to embed is missing or blank."""
    pass


class EmbeddingUnavailableError(AssistlyError):
    """Raised when the embedding model fails or returns unusable output."""
    pass


DEFAULT_MODEL_NAME = "sentence-transformers/all-MiniLM-L6-v2"
DEFAULT_DIMENSION = 384


def load_sentence_transformer(model_name: str) -> Any:
    """Load a sentence-transformers model by name."""
    from sentence_transformers import SentenceTransformer

    return SentenceTransformer(model_name)


def _to_array(output: Any) -> np.ndarray:
    """Convert model output (torch tensor, ndarray or nested lists) to float64."""
    if hasattr(output, "detach"):
        output = output.detach()
    if hasattr(output, "cpu"):
        output = output.cpu()
    if hasattr(output, "numpy"):
        output = output.numpy()
    return np.asarray(output, dtype=np.float64)


def mean_pool_and_normalize(token_embeddings: Any) -> np.ndarray:
    """
    Mean-pool token embeddings and L2-normalize the result.

    Args:
        token_embeddings: Array of shape (tokens, dim); an already pooled
            1-D vector is only normalized

    Returns:
        np.ndarray: Unit-length vector

    Raises:
        EmbeddingUnavailableError: If the output is not a finite numeric array
    """
    try:
        array = _to_array(token_embeddings)
    except (TypeError, ValueError) as e:
        raise EmbeddingUnavailableError(f"Model returned non-numeric output: {e}") from e

    if array.ndim == 2:
        if array.shape[0] == 0:
            raise EmbeddingUnavailableError("Model returned no token embeddings")
        vector = array.mean(axis=0)
    elif array.ndim == 1:
        vector = array
    else:
        raise EmbeddingUnavailableError(f"Unexpected model output shape: {array.shape}")

    if vector.size == 0 or not np.all(np.isfinite(vector)):
        raise EmbeddingUnavailableError("Model returned an empty or non-finite vector")

    norm = np.linalg.norm(vector)
    if norm == 0:
        raise EmbeddingUnavailableError("Model returned a zero vector")

    return vector / norm


class LocalEmbedder:
    """
    Embeds text with a local feature-extraction model.

    The model is loaded on first use and reused for the lifetime of the
    instance. Pass ``model_loader`` to substitute the model (tests use a
    deterministic fake).
    """

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL_NAME,
        dimension: int = DEFAULT_DIMENSION,
        model_loader: Optional[Callable[[str], Any]] = None
    ):
        self.model_name = model_name
        self.dimension = dimension
        self._model_loader = model_loader or load_sentence_transformer
        self._model: Optional[Any] = None
        self._load_lock = threading.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def _get_model(self) -> Any:
        """Return the loaded model, loading it exactly once."""
        if self._model is not None:
            return self._model

        with self._load_lock:
            if self._model is None:
                logger.info("Loading local embedding model", model=self.model_name)
                try:
                    with Timer("embedding_model_load"):
                        self._model = self._model_loader(self.model_name)
                except Exception as e:
                    logger.error("Failed to load embedding model", model=self.model_name, error=str(e))
                    raise EmbeddingUnavailableError(f"Model load failed: {str(e)}") from e
                logger.info("Local embedding model loaded", model=self.model_name)

        return self._model

    def load(self) -> None:
        """Load the model now rather than on the first embed call."""
        self._get_model()

    def embed(self, text: str) -> List[float]:
        """
        Generate an embedding for the given text.

        Args:
            text: Text to embed

        Returns:
            List[float]: Mean-pooled, L2-normalized embedding

        Raises:
            InvalidInputError: If text is not a string or is blank
            EmbeddingUnavailableError: If the model fails or returns unusable output
        """
        if not isinstance(text, str) or not text.strip():
            raise InvalidInputError("Invalid text input for embedding generation")

        model = self._get_model()

        try:
            output = model.encode(text, output_value="token_embeddings")
        except Exception as e:
            logger.error("Embedding model invocation failed", error=str(e), text_length=len(text))
            raise EmbeddingUnavailableError(f"Embedding generation failed: {str(e)}") from e

        vector = mean_pool_and_normalize(output)

        if vector.shape[0] != self.dimension:
            logger.warning(
                "Embedding dimension mismatch",
                expected=self.dimension,
                actual=int(vector.shape[0]),
                model=self.model_name
            )

        logger.debug("Generated embedding", text_length=len(text.strip()), dimension=int(vector.shape[0]))
        return vector.tolist()

    def embed_batch(self, texts: List[str]) -> List[Optional[List[float]]]:
        """
        Embed texts one after another.

        A text that fails to embed yields None in its slot; the rest of the
        batch is still processed and order is preserved.
        """
        embeddings: List[Optional[List[float]]] = []
        failed = 0

        for text in texts:
            try:
                embeddings.append(self.embed(text))
            except AssistlyError as e:
                preview = text[:50] if isinstance(text, str) else repr(text)
                logger.warning("Failed to embed batch item", preview=preview, error=str(e))
                embeddings.append(None)
                failed += 1

        logger.info("Batch embedding completed", total=len(texts), failed=failed)
        return embeddings


def knowledge_item_text(item: KnowledgeItem) -> str:
    """
    Text that represents a knowledge item in the vector space.

    Documents use their representative text (head plus tail for long
    content); FAQ entries combine question and answer.
    """
    if isinstance(item, FaqEntry):
        return f"{item.question}\n{item.answer}"
    if isinstance(item, Document):
        return representative_text(item.content)
    raise TypeError(f"Unsupported knowledge item: {type(item).__name__}")


# Global instance
_embedder: Optional[LocalEmbedder] = None
_embedder_lock = threading.Lock()


def get_embedder() -> LocalEmbedder:
    """
    Get the process-default embedder built from configuration.

    Returns:
        LocalEmbedder: Shared embedder (model loads on first embed call)
    """
    global _embedder
    if _embedder is None:
        with _embedder_lock:
            if _embedder is None:
                config = get_config()
                _embedder = LocalEmbedder(
                    model_name=config["EMBEDDING_MODEL"],
                    dimension=config["EMBEDDING_DIMENSION"]
                )
    return _embedder
