"""Process configuration assembled from ``CONTRIBUX_*`` environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from .ranking.ranker import RankerConfig, RankingWeights
from .retrieval.bm25 import BM25Config
from .retrieval.cache import CacheConfig
from .retrieval.embeddings import EmbeddingConfig
from .retrieval.hybrid import HybridConfig
from .retrieval.vectorstore import VectorStoreConfig

DATA_DIR = Path.home() / ".contribux"


def _env(name: str, default: str | None = None) -> str | None:
    return os.environ.get(f"CONTRIBUX_{name}", default)


def _env_float(name: str, default: float) -> float:
    value = _env(name)
    return float(value) if value not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    value = _env(name)
    return int(value) if value not in (None, "") else default


@dataclass
class Settings:
    """All component configurations for one process."""

    db_path: str = str(DATA_DIR / "contribux.db")
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    bm25: BM25Config = field(default_factory=BM25Config)
    vectorstore: VectorStoreConfig = field(default_factory=VectorStoreConfig)
    repository_bm25: BM25Config = field(default_factory=lambda: BM25Config(neutral_sort_key="stars"))
    repository_vectorstore: VectorStoreConfig = field(
        default_factory=lambda: VectorStoreConfig(collection_name="repositories")
    )
    hybrid: HybridConfig = field(default_factory=HybridConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    ranker: RankerConfig = field(default_factory=RankerConfig)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the environment, falling back to defaults.

        Raises:
            ValueError: a variable is malformed or the ranking weights are invalid
        """
        data_dir = Path(_env("DATA_DIR", str(DATA_DIR)))

        provider = _env("EMBEDDING_PROVIDER", "sentence-transformers")
        if provider == "openai":
            embedding = EmbeddingConfig(
                provider="openai",
                model_name=_env("EMBEDDING_MODEL", "text-embedding-3-small"),
                dimension=_env_int("EMBEDDING_DIMENSION", 1536),
                openai_api_key=os.environ.get("OPENAI_API_KEY"),
            )
        else:
            embedding = EmbeddingConfig(
                provider=provider,
                model_name=_env("EMBEDDING_MODEL", EmbeddingConfig.model_name),
                dimension=_env_int("EMBEDDING_DIMENSION", EmbeddingConfig.dimension),
                device=_env("EMBEDDING_DEVICE", "auto"),
            )
        embedding.batch_size = _env_int("EMBEDDING_BATCH_SIZE", embedding.batch_size)
        embedding.timeout = _env_float("EMBEDDING_TIMEOUT", embedding.timeout)

        weights = RankingWeights(
            skill_match=_env_float("WEIGHT_SKILL_MATCH", RankingWeights.skill_match),
            difficulty_match=_env_float("WEIGHT_DIFFICULTY_MATCH", RankingWeights.difficulty_match),
            impact=_env_float("WEIGHT_IMPACT", RankingWeights.impact),
            popularity=_env_float("WEIGHT_POPULARITY", RankingWeights.popularity),
            freshness=_env_float("WEIGHT_FRESHNESS", RankingWeights.freshness),
            diversity=_env_float("WEIGHT_DIVERSITY", RankingWeights.diversity),
        )

        return cls(
            db_path=_env("DB_PATH", str(data_dir / "contribux.db")),
            embedding=embedding,
            bm25=BM25Config(persist_path=str(data_dir / "lexical_index.pkl")),
            vectorstore=VectorStoreConfig(
                persist_directory=str(data_dir / "chroma"),
                dimension=embedding.dimension,
            ),
            repository_bm25=BM25Config(
                persist_path=str(data_dir / "lexical_repositories.pkl"),
                neutral_sort_key="stars",
            ),
            repository_vectorstore=VectorStoreConfig(
                persist_directory=str(data_dir / "chroma"),
                collection_name="repositories",
                dimension=embedding.dimension,
            ),
            hybrid=HybridConfig(
                lexical_weight=_env_float("LEXICAL_WEIGHT", HybridConfig.lexical_weight),
                vector_weight=_env_float("VECTOR_WEIGHT", HybridConfig.vector_weight),
                similarity_threshold=_env_float("SIMILARITY_THRESHOLD", HybridConfig.similarity_threshold),
                lexical_timeout=_env_float("LEXICAL_TIMEOUT", HybridConfig.lexical_timeout),
                vector_timeout=_env_float("VECTOR_TIMEOUT", HybridConfig.vector_timeout),
                cache_ttl=_env_float("SEARCH_CACHE_TTL", HybridConfig.cache_ttl),
            ),
            cache=CacheConfig(redis_url=_env("REDIS_URL") or None),
            ranker=RankerConfig(weights=weights),
        )
