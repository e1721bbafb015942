# =============================================
# File: farm2table/utils/embeddings.py
# Purpose: Embedding providers (OpenAI or local sentence-transformers)
# =============================================
from __future__ import annotations

import os
from functools import lru_cache
from typing import List

from loguru import logger
from openai import OpenAI  # OpenAI Python SDK v1

from .errors import ProviderError, ProviderUnavailable

EMBEDDING_BACKEND = os.getenv("EMBEDDING_BACKEND", "openai").lower()
OPENAI_EMBEDDING_MODEL = os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small")
LOCAL_EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "sentence-transformers/all-MiniLM-L6-v2")
EMBEDDING_DIM = int(os.getenv("EMBEDDING_DIM", "1536"))
TIMEOUT_S = float(os.getenv("LLM_TIMEOUT_SECONDS", "4"))


@lru_cache(maxsize=1)
def get_embedding_model(model_name: str = LOCAL_EMBEDDING_MODEL):
    # heavy import (torch); only paid when the local backend is selected
    from sentence_transformers import SentenceTransformer
    return SentenceTransformer(model_name, device="cpu")


class OpenAIEmbeddingProvider:
    """text-embedding-3-small by default (1536 floats)."""

    def __init__(self, model: str = OPENAI_EMBEDDING_MODEL, dimension: int = EMBEDDING_DIM,
                 timeout: float = TIMEOUT_S, client=None) -> None:
        self.model = model
        self._dimension = dimension
        self._timeout = timeout
        self._client = client

    @property
    def dimension(self) -> int:
        return self._dimension

    def _get_client(self):
        if self._client is not None:
            return self._client
        if not os.getenv("OPENAI_API_KEY"):
            raise ProviderUnavailable("OpenAI embeddings are not configured")
        self._client = OpenAI()
        return self._client

    def embed(self, text: str) -> List[float]:
        client = self._get_client()
        try:
            resp = client.embeddings.create(
                model=self.model,
                input=text,
                encoding_format="float",
                timeout=self._timeout,
            )
            vec = list(resp.data[0].embedding)
        except Exception as e:
            logger.warning(f"[embed] backend=openai error={e}")
            raise ProviderError(f"Failed to generate embedding: {e}") from e
        if not vec:
            raise ProviderError("Embedding backend returned an empty vector")
        return vec


class SentenceTransformerEmbeddingProvider:
    """Local CPU embeddings; no API key required."""

    def __init__(self, model_name: str = LOCAL_EMBEDDING_MODEL) -> None:
        self.model_name = model_name

    @property
    def dimension(self) -> int:
        try:
            return int(get_embedding_model(self.model_name).get_sentence_embedding_dimension())
        except Exception as e:
            raise ProviderUnavailable(f"Local embedding model unavailable: {e}") from e

    def embed(self, text: str) -> List[float]:
        try:
            model = get_embedding_model(self.model_name)
        except Exception as e:
            raise ProviderUnavailable(f"Local embedding model unavailable: {e}") from e
        try:
            # model outputs numpy array -> convert to python list for storage
            return model.encode([text], normalize_embeddings=True)[0].tolist()
        except Exception as e:
            logger.warning(f"[embed] backend=local error={e}")
            raise ProviderError(f"Failed to generate embedding: {e}") from e


def build_embedding_provider(backend: str | None = None):
    backend = (backend or EMBEDDING_BACKEND).lower()
    if backend == "local":
        return SentenceTransformerEmbeddingProvider()
    return OpenAIEmbeddingProvider()
