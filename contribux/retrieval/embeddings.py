"""Embedding gateway: text to fixed-dimension vectors with a content-addressed cache.

Supports two providers:
- sentence-transformers (local): BGE models, no API key, default
- OpenAI (remote): text-embedding-3-small, 1536 dimensions

Text is normalized before it is ever dispatched (lower-cased, non-word
characters stripped, whitespace collapsed, capped at ``max_chars``). Batches
are chunked to respect provider limits and fail as a whole: if any chunk
fails, the call fails and nothing from it is cached.
"""

import asyncio
import hashlib
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

import numpy as np

from ..errors import InputTooLarge, InvalidParameter, ProviderError
from ..logging_config import get_logger
from .cache import ResultCache

logger = get_logger(__name__)


@dataclass
class EmbeddingConfig:
    """Configuration for the embedding gateway."""

    # Provider selection: "sentence-transformers" or "openai"
    provider: str = "sentence-transformers"

    # Model selection - quality vs speed tradeoff
    # Best quality: "BAAI/bge-large-en-v1.5" (1024 dim, ~1.3GB)
    # Good quality: "BAAI/bge-base-en-v1.5" (768 dim, ~440MB)
    # Fast: "BAAI/bge-small-en-v1.5" (384 dim, ~130MB)
    # Remote: "text-embedding-3-small" (1536 dim, provider="openai")
    model_name: str = "BAAI/bge-large-en-v1.5"
    dimension: int = 1024

    # Device selection (sentence-transformers only)
    device: str = "auto"  # "auto", "cuda", "mps", "cpu"
    cache_dir: str | None = None
    normalize: bool = True

    # Texts per provider call
    batch_size: int = 64

    # Defensive truncation ceiling applied after normalization
    max_chars: int = 8000
    # Raw inputs above this exceed the provider's token budget (~4 chars/token)
    max_input_chars: int = 32000

    # Embeddings are deterministic per model version
    cache_ttl: float = 6 * 60 * 60

    # Per provider call
    timeout: float = 30.0

    openai_api_key: str | None = None


class EmbeddingProvider(ABC):
    """Raw text-to-vector provider wrapped by the gateway."""

    model_name: str
    dimension: int

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of already-normalized texts."""


class SentenceTransformerProvider(EmbeddingProvider):
    """Local sentence-transformers model, loaded lazily on first use."""

    def __init__(self, config: EmbeddingConfig):
        self.config = config
        self.model_name = config.model_name
        self.dimension = config.dimension
        self._model = None

    def _get_device(self) -> str:
        """Determine best available device."""
        if self.config.device != "auto":
            return self.config.device

        try:
            import torch

            if torch.cuda.is_available():
                return "cuda"
            elif torch.backends.mps.is_available():
                return "mps"
        except ImportError:
            pass
        return "cpu"

    def _load_model(self):
        """Lazy load the embedding model."""
        if self._model is not None:
            return

        from sentence_transformers import SentenceTransformer

        self._model = SentenceTransformer(
            self.config.model_name,
            device=self._get_device(),
            cache_folder=self.config.cache_dir,
        )
        logger.info("Loaded embedding model %s", self.config.model_name)

    def _encode(self, texts: list[str]) -> list[list[float]]:
        self._load_model()
        embeddings = self._model.encode(
            texts,
            normalize_embeddings=self.config.normalize,
            convert_to_numpy=True,
            batch_size=self.config.batch_size,
            show_progress_bar=False,
        )
        return embeddings.tolist()

    async def embed(self, texts: list[str]) -> list[list[float]]:
        return await asyncio.to_thread(self._encode, texts)


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embeddings API."""

    def __init__(self, config: EmbeddingConfig):
        from openai import AsyncOpenAI

        if not config.openai_api_key:
            raise ValueError("OPENAI_API_KEY not set. Set it in environment or .env file.")
        self.model_name = config.model_name
        self.dimension = config.dimension
        self._client = AsyncOpenAI(api_key=config.openai_api_key, max_retries=0)

    async def embed(self, texts: list[str]) -> list[list[float]]:
        response = await self._client.embeddings.create(
            input=texts,
            model=self.model_name,
            dimensions=self.dimension,
        )
        return [item.embedding for item in sorted(response.data, key=lambda d: d.index)]


def create_provider(config: EmbeddingConfig) -> EmbeddingProvider:
    """Instantiate the provider named in the config."""
    if config.provider == "sentence-transformers":
        return SentenceTransformerProvider(config)
    if config.provider == "openai":
        return OpenAIEmbeddingProvider(config)
    raise ValueError(f"Unknown embedding provider: {config.provider}")


class EmbeddingGateway:
    """Embedding service with normalization, chunked batching and caching.

    Usage:
        gateway = EmbeddingGateway(create_provider(config), config, cache)
        vector = await gateway.embed("add typescript support")
        vectors = await gateway.embed_batch(["first text", "second text"])
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        config: EmbeddingConfig | None = None,
        cache: ResultCache | None = None,
    ):
        self.provider = provider
        self.config = config or EmbeddingConfig()
        self._cache = cache or ResultCache()
        self._provider_calls = 0
        self._cache_hits = 0

    @property
    def dimension(self) -> int:
        return self.provider.dimension

    def normalize(self, text: str) -> str:
        """Normalize text for embedding and cache addressing.

        Raises:
            InputTooLarge: raw text exceeds the provider's input budget
        """
        if len(text) > self.config.max_input_chars:
            raise InputTooLarge(
                f"Text of {len(text)} characters exceeds the {self.config.max_input_chars} "
                "character embedding budget",
                length=len(text),
                limit=self.config.max_input_chars,
            )
        text = text.lower()
        text = re.sub(r"[^\w\s]", " ", text)
        text = re.sub(r"\s+", " ", text).strip()
        return text[: self.config.max_chars]

    def _cache_key(self, normalized: str) -> str:
        digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()
        return f"embedding:{self.provider.model_name}:{digest}"

    async def embed(self, text: str) -> list[float]:
        """Embed a single text."""
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed many texts, reusing cached vectors.

        Returns:
            One vector per input text, in input order

        Raises:
            InputTooLarge: any text exceeds the input budget (nothing is dispatched)
            ProviderError: any chunk failed; no partial results are returned
        """
        if not texts:
            return []

        normalized = [self.normalize(t) for t in texts]
        if any(not n for n in normalized):
            raise InvalidParameter("Cannot embed text that is empty after normalization")

        vectors: dict[str, list[float]] = {}
        for text in dict.fromkeys(normalized):
            cached = await self._cache.get(self._cache_key(text))
            if cached is not None:
                vectors[text] = cached
                self._cache_hits += 1

        pending = [t for t in dict.fromkeys(normalized) if t not in vectors]
        fresh: dict[str, list[float]] = {}
        size = self.config.batch_size
        for start in range(0, len(pending), size):
            chunk = pending[start:start + size]
            for text, vector in zip(chunk, await self._embed_chunk(chunk)):
                fresh[text] = vector

        # Only cache once every chunk has succeeded
        for text, vector in fresh.items():
            await self._cache.set(self._cache_key(text), vector, self.config.cache_ttl)
        vectors.update(fresh)

        return [list(vectors[t]) for t in normalized]

    async def _embed_chunk(self, chunk: list[str]) -> list[list[float]]:
        self._provider_calls += 1
        try:
            result = await asyncio.wait_for(self.provider.embed(chunk), timeout=self.config.timeout)
        except asyncio.TimeoutError as e:
            raise ProviderError(
                f"Embedding provider timed out after {self.config.timeout}s"
            ) from e
        except ProviderError:
            raise
        except Exception as e:
            logger.error("Embedding provider failed: %s", e, exc_info=True)
            raise ProviderError(f"Embedding provider failed: {e}") from e

        if not isinstance(result, list) or len(result) != len(chunk):
            raise ProviderError(
                f"Provider returned {len(result) if isinstance(result, list) else 'no'} "
                f"vectors for {len(chunk)} texts"
            )
        vectors = []
        for vector in result:
            array = np.asarray(vector, dtype=np.float64)
            if array.ndim != 1 or array.shape[0] != self.dimension:
                raise ProviderError(
                    f"Provider returned a vector of shape {array.shape}, expected ({self.dimension},)"
                )
            if not np.all(np.isfinite(array)):
                raise ProviderError("Provider returned non-finite vector values")
            vectors.append(array.tolist())
        return vectors

    def cache_stats(self) -> dict:
        """Get cache statistics."""
        return {
            "cache_hits": self._cache_hits,
            "provider_calls": self._provider_calls,
            "model_name": self.provider.model_name,
            "dimension": self.dimension,
        }
