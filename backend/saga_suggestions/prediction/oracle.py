"""Optional, time-bounded semantic similarity oracle."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from threading import Lock
from typing import Protocol

from saga_suggestions.config import Settings, get_settings
from saga_suggestions.errors import OracleTimeoutError
from saga_suggestions.services.embeddings import (
    CachingEmbeddingClient,
    EmbeddingClient,
    HashEmbeddingsClient,
    OpenAIEmbeddingsClient,
    cosine_similarity,
)

logger = logging.getLogger(__name__)

_ORACLE_WORKERS = 4
_executor: ThreadPoolExecutor | None = None
_executor_lock = Lock()


class SemanticOracle(Protocol):
    """Protocol for pluggable description similarity scorers."""

    def similarity(self, left_text: str, right_text: str) -> float:
        """Return a similarity score in [0, 1] for two descriptions."""


class EmbeddingOracle:
    """Scores description similarity with embedding cosine similarity."""

    def __init__(self, client: EmbeddingClient) -> None:
        self.client = client

    def similarity(self, left_text: str, right_text: str) -> float:
        vectors = self.client.embed_texts([left_text, right_text])
        if len(vectors) != 2:
            raise ValueError("Embedding client returned wrong vector count")
        return cosine_similarity(vectors[0], vectors[1])


def build_oracle(settings: Settings | None = None) -> SemanticOracle | None:
    """Return the configured oracle, or None when the feature is disabled."""

    active = settings or get_settings()
    if active.semantic_oracle == "none":
        return None
    if active.semantic_oracle == "openai":
        if not active.openai_api_key:
            logger.warning("oracle.disabled reason=missing_openai_api_key")
            return None
        client: EmbeddingClient = OpenAIEmbeddingsClient(
            api_key=active.openai_api_key,
            model=active.openai_embedding_model,
            base_url=active.openai_base_url,
            timeout_seconds=active.oracle_timeout_seconds,
        )
    else:
        client = HashEmbeddingsClient()
    return EmbeddingOracle(CachingEmbeddingClient(client))


def similarity_with_timeout(
    oracle: SemanticOracle,
    left_text: str,
    right_text: str,
    *,
    timeout_seconds: float,
) -> float:
    """Run one oracle call on the shared pool and bound how long we wait for it."""

    future = _get_executor().submit(oracle.similarity, left_text, right_text)
    try:
        score = float(future.result(timeout=timeout_seconds))
    except FutureTimeoutError as exc:
        future.cancel()
        raise OracleTimeoutError(f"Semantic oracle exceeded {timeout_seconds:.2f}s") from exc
    return max(0.0, min(1.0, score))


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(max_workers=_ORACLE_WORKERS, thread_name_prefix="semantic-oracle")
    return _executor
