"""SQLite store for repositories, opportunities and user profiles."""

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite
import numpy as np

from ..errors import DimensionMismatch
from ..logging_config import get_logger
from ..models.opportunities import (
    DifficultyLevel,
    Opportunity,
    OpportunityMetadata,
    OpportunityState,
    Repository,
    UserProfile,
)

logger = get_logger(__name__)


def _encode_embedding(embedding: list[float] | None) -> bytes | None:
    """Half-precision blob; halves storage at negligible recall cost."""
    if embedding is None:
        return None
    return np.asarray(embedding, dtype=np.float16).tobytes()


def _decode_embedding(blob: bytes | None) -> list[float] | None:
    if blob is None:
        return None
    return np.frombuffer(blob, dtype=np.float16).astype(np.float32).tolist()


class _ConnectionPool:
    """Simple async SQLite connection pool with WAL mode."""

    def __init__(self, db_path: Path, size: int = 5):
        self._db_path = db_path
        self._size = size
        self._pool: asyncio.Queue[aiosqlite.Connection] = asyncio.Queue(maxsize=size)
        self._initialized = False

    async def init(self):
        """Create pool connections with WAL mode.

        The journal mode is switched once on the first connection; the others
        pick it up from the database file.
        """
        opened: list[aiosqlite.Connection] = []
        try:
            for i in range(self._size):
                conn = await aiosqlite.connect(self._db_path)
                opened.append(conn)
                conn.row_factory = aiosqlite.Row
                async with conn.execute("PRAGMA busy_timeout=5000") as cursor:
                    await cursor.fetchone()
                if i == 0:
                    async with conn.execute("PRAGMA journal_mode=WAL") as cursor:
                        await cursor.fetchone()
                await self._pool.put(conn)
        except Exception:
            while not self._pool.empty():
                self._pool.get_nowait()
            for conn in opened:
                await conn.close()
            raise
        self._initialized = True

    @asynccontextmanager
    async def acquire(self):
        """Acquire a connection from the pool."""
        conn = await self._pool.get()
        try:
            yield conn
        finally:
            await self._pool.put(conn)

    async def close(self):
        """Close all pooled connections."""
        while not self._pool.empty():
            conn = await self._pool.get()
            await conn.close()
        self._initialized = False


class OpportunityDatabase:
    """Durable store of the search corpus.

    Opportunities are never deleted; they move to ``closed`` or ``stale`` and
    drop out of the searchable set.
    """

    def __init__(self, db_path: str = "contribux.db", embedding_dimension: int | None = None):
        self.db_path = Path(db_path)
        self.embedding_dimension = embedding_dimension
        self._pool: _ConnectionPool | None = None

    async def connect(self) -> None:
        """Connect to the database and create tables if needed."""
        if self._pool is not None and self._pool._initialized:
            return  # Already connected
        logger.info("Database connecting: %s", self.db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        pool = _ConnectionPool(self.db_path)
        await pool.init()
        self._pool = pool
        async with self._pool.acquire() as conn:
            await self._create_tables(conn)

    async def close(self) -> None:
        """Close all database connections."""
        if self._pool:
            await self._pool.close()
            self._pool = None

    def _check_pool(self) -> _ConnectionPool:
        """Get the active connection pool.

        Raises RuntimeError if not connected.
        """
        if self._pool is None or not self._pool._initialized:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._pool

    async def _create_tables(self, conn: aiosqlite.Connection) -> None:
        """Create database tables if they don't exist."""
        await conn.executescript("""
            CREATE TABLE IF NOT EXISTS repositories (
                id TEXT PRIMARY KEY,
                owner TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT DEFAULT '',
                language TEXT,
                topics TEXT DEFAULT '[]',
                stars INTEGER DEFAULT 0,
                forks INTEGER DEFAULT 0,
                health_score REAL DEFAULT 0.0,
                embedding BLOB,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS opportunities (
                id TEXT PRIMARY KEY,
                repository_id TEXT NOT NULL REFERENCES repositories(id),
                issue_number INTEGER,
                title TEXT NOT NULL,
                description TEXT DEFAULT '',
                url TEXT,
                metadata TEXT DEFAULT '{}',
                difficulty_score INTEGER NOT NULL DEFAULT 5,
                impact_score INTEGER NOT NULL DEFAULT 5,
                embedding BLOB,
                state TEXT NOT NULL DEFAULT 'open',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS user_profiles (
                user_id TEXT PRIMARY KEY,
                skills TEXT DEFAULT '[]',
                interests TEXT DEFAULT '[]',
                difficulty_preference TEXT DEFAULT 'intermediate',
                time_commitment_hours INTEGER
            );

            CREATE INDEX IF NOT EXISTS idx_opportunities_state ON opportunities(state);
            CREATE INDEX IF NOT EXISTS idx_opportunities_repository ON opportunities(repository_id);
        """)
        await conn.commit()

    def _check_dimension(self, embedding: list[float] | None, where: str) -> None:
        if embedding is not None and self.embedding_dimension is not None:
            if len(embedding) != self.embedding_dimension:
                raise DimensionMismatch(self.embedding_dimension, len(embedding), where=where)

    # Repository methods
    async def upsert_repository(self, repository: Repository) -> None:
        """Insert or replace a repository, text and embedding in one statement."""
        self._check_dimension(repository.embedding, f"embedding of repository {repository.id}")
        pool = self._check_pool()
        async with pool.acquire() as conn:
            try:
                await conn.execute(
                    """
                    INSERT OR REPLACE INTO repositories
                        (id, owner, name, description, language, topics, stars, forks,
                         health_score, embedding, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        repository.id,
                        repository.owner,
                        repository.name,
                        repository.description,
                        repository.language,
                        json.dumps(repository.topics),
                        repository.stars,
                        repository.forks,
                        repository.health_score,
                        _encode_embedding(repository.embedding),
                        repository.created_at.isoformat(),
                        repository.updated_at.isoformat(),
                    ),
                )
                await conn.commit()
            except Exception as e:
                await conn.rollback()
                logger.error("DB error in upsert_repository: %s", e, exc_info=True)
                raise

    async def get_repositories(self, ids: list[str]) -> dict[str, Repository]:
        """Fetch repositories by ID. Missing IDs are absent from the result."""
        if not ids:
            return {}
        pool = self._check_pool()
        placeholders = ",".join("?" * len(ids))
        async with pool.acquire() as conn:
            cursor = await conn.execute(
                f"SELECT * FROM repositories WHERE id IN ({placeholders})", tuple(ids)
            )
            rows = await cursor.fetchall()
        return {row["id"]: self._row_to_repository(row) for row in rows}

    async def list_repositories(self) -> list[Repository]:
        pool = self._check_pool()
        async with pool.acquire() as conn:
            cursor = await conn.execute("SELECT * FROM repositories ORDER BY id")
            rows = await cursor.fetchall()
        return [self._row_to_repository(row) for row in rows]

    @staticmethod
    def _row_to_repository(row: aiosqlite.Row) -> Repository:
        return Repository(
            id=row["id"],
            owner=row["owner"],
            name=row["name"],
            description=row["description"] or "",
            language=row["language"],
            topics=json.loads(row["topics"] or "[]"),
            stars=row["stars"] or 0,
            forks=row["forks"] or 0,
            health_score=row["health_score"] or 0.0,
            embedding=_decode_embedding(row["embedding"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    # Opportunity methods
    async def upsert_opportunity(self, opportunity: Opportunity) -> None:
        """Insert or replace an opportunity, text and embedding in one statement."""
        self._check_dimension(opportunity.embedding, f"embedding of opportunity {opportunity.id}")
        pool = self._check_pool()
        async with pool.acquire() as conn:
            try:
                await conn.execute(
                    """
                    INSERT OR REPLACE INTO opportunities
                        (id, repository_id, issue_number, title, description, url, metadata,
                         difficulty_score, impact_score, embedding, state, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        opportunity.id,
                        opportunity.repository_id,
                        opportunity.issue_number,
                        opportunity.title,
                        opportunity.description,
                        opportunity.url,
                        opportunity.metadata.model_dump_json(),
                        opportunity.difficulty_score,
                        opportunity.impact_score,
                        _encode_embedding(opportunity.embedding),
                        opportunity.state.value,
                        opportunity.created_at.isoformat(),
                        opportunity.updated_at.isoformat(),
                    ),
                )
                await conn.commit()
            except Exception as e:
                await conn.rollback()
                logger.error("DB error in upsert_opportunity: %s", e, exc_info=True)
                raise

    async def get_opportunities(self, ids: list[str]) -> dict[str, Opportunity]:
        """Fetch opportunities by ID. Missing IDs are absent from the result."""
        if not ids:
            return {}
        pool = self._check_pool()
        placeholders = ",".join("?" * len(ids))
        async with pool.acquire() as conn:
            cursor = await conn.execute(
                f"SELECT * FROM opportunities WHERE id IN ({placeholders})", tuple(ids)
            )
            rows = await cursor.fetchall()
        return {row["id"]: self._row_to_opportunity(row) for row in rows}

    async def list_opportunities(self, state: OpportunityState | None = OpportunityState.OPEN) -> list[Opportunity]:
        """List opportunities, by default only the searchable (open) ones."""
        pool = self._check_pool()
        async with pool.acquire() as conn:
            if state is None:
                cursor = await conn.execute("SELECT * FROM opportunities ORDER BY id")
            else:
                cursor = await conn.execute(
                    "SELECT * FROM opportunities WHERE state = ? ORDER BY id", (state.value,)
                )
            rows = await cursor.fetchall()
        return [self._row_to_opportunity(row) for row in rows]

    async def mark_state(self, opportunity_id: str, state: OpportunityState) -> bool:
        """Move an opportunity to a new lifecycle state.

        Returns:
            False if the opportunity does not exist
        """
        pool = self._check_pool()
        async with pool.acquire() as conn:
            cursor = await conn.execute(
                "UPDATE opportunities SET state = ?, updated_at = ? WHERE id = ?",
                (state.value, datetime.now(timezone.utc).isoformat(), opportunity_id),
            )
            await conn.commit()
        updated = cursor.rowcount > 0
        if updated:
            logger.info("Opportunity %s marked %s", opportunity_id, state.value)
        return updated

    @staticmethod
    def _row_to_opportunity(row: aiosqlite.Row) -> Opportunity:
        return Opportunity(
            id=row["id"],
            repository_id=row["repository_id"],
            issue_number=row["issue_number"],
            title=row["title"],
            description=row["description"] or "",
            url=row["url"],
            metadata=OpportunityMetadata.model_validate_json(row["metadata"] or "{}"),
            difficulty_score=row["difficulty_score"],
            impact_score=row["impact_score"],
            embedding=_decode_embedding(row["embedding"]),
            state=OpportunityState(row["state"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    # Profile methods
    async def upsert_profile(self, profile: UserProfile) -> None:
        pool = self._check_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT OR REPLACE INTO user_profiles
                    (user_id, skills, interests, difficulty_preference, time_commitment_hours)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    profile.user_id,
                    json.dumps(profile.skills),
                    json.dumps(profile.interests),
                    profile.difficulty_preference.value,
                    profile.time_commitment_hours,
                ),
            )
            await conn.commit()

    async def get_profile(self, user_id: str) -> UserProfile | None:
        """Get a user profile by ID."""
        pool = self._check_pool()
        async with pool.acquire() as conn:
            cursor = await conn.execute(
                "SELECT * FROM user_profiles WHERE user_id = ?", (user_id,)
            )
            row = await cursor.fetchone()
        if not row:
            return None
        return UserProfile(
            user_id=row["user_id"],
            skills=json.loads(row["skills"] or "[]"),
            interests=json.loads(row["interests"] or "[]"),
            difficulty_preference=DifficultyLevel(row["difficulty_preference"]),
            time_commitment_hours=row["time_commitment_hours"],
        )

    async def stats(self) -> dict:
        """Row counts per table and opportunity state."""
        pool = self._check_pool()
        async with pool.acquire() as conn:
            cursor = await conn.execute("SELECT COUNT(*) AS n FROM repositories")
            repositories = (await cursor.fetchone())["n"]
            cursor = await conn.execute(
                "SELECT state, COUNT(*) AS n FROM opportunities GROUP BY state"
            )
            states = {row["state"]: row["n"] for row in await cursor.fetchall()}
            cursor = await conn.execute("SELECT COUNT(*) AS n FROM user_profiles")
            profiles = (await cursor.fetchone())["n"]
        return {
            "repositories": repositories,
            "opportunities": states,
            "user_profiles": profiles,
        }
