"""
CostKitchen - Local Cache Store Bridge

Last-known Dataset persisted as one JSON row in a SQL table (SQLite by
default). Blocking database work runs in a worker thread so the event loop
stays responsive.
"""

import datetime as dt
import logging
from typing import Optional

import anyio
from pydantic import ValidationError
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from costkitchen.bridges.base import LocalCacheStore
from costkitchen.core.config import settings
from costkitchen.core.errors import CacheError
from costkitchen.models.dataset import CacheSnapshot

logger = logging.getLogger(__name__)

CACHE_KEY = "dataset"


def make_engine(url: str) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url)


class SqlCacheStore(LocalCacheStore):
    """
    SQL-backed cache.

    Schema:
        cache_entries(key PRIMARY KEY, user_id, payload JSON, updated_at)
    """

    def __init__(self, url: Optional[str] = None, engine: Optional[Engine] = None):
        self.engine = engine or make_engine(url or settings.CACHE_DB_URL)
        self._initialized = False

    # =========================================================================
    # BLOCKING OPERATIONS (worker thread)
    # =========================================================================

    def _ensure_schema(self) -> None:
        if self._initialized:
            return
        with self.engine.begin() as conn:
            conn.execute(text("""
                CREATE TABLE IF NOT EXISTS cache_entries (
                    key VARCHAR(64) PRIMARY KEY,
                    user_id VARCHAR(255),
                    payload TEXT NOT NULL,
                    updated_at VARCHAR(64) NOT NULL
                )
            """))
        self._initialized = True

    def _save_sync(self, snapshot: CacheSnapshot) -> None:
        self._ensure_schema()
        with self.engine.begin() as conn:
            conn.execute(text("DELETE FROM cache_entries WHERE key = :key"), {"key": CACHE_KEY})
            conn.execute(
                text("""
                    INSERT INTO cache_entries (key, user_id, payload, updated_at)
                    VALUES (:key, :user_id, :payload, :updated_at)
                """),
                {
                    "key": CACHE_KEY,
                    "user_id": snapshot.user_id,
                    "payload": snapshot.model_dump_json(),
                    "updated_at": dt.datetime.now(dt.timezone.utc).isoformat(),
                },
            )

    def _load_sync(self) -> Optional[str]:
        self._ensure_schema()
        with self.engine.connect() as conn:
            row = conn.execute(
                text("SELECT payload FROM cache_entries WHERE key = :key"),
                {"key": CACHE_KEY},
            ).fetchone()
        return row.payload if row else None

    def _clear_sync(self) -> None:
        self._ensure_schema()
        with self.engine.begin() as conn:
            conn.execute(text("DELETE FROM cache_entries"))

    # =========================================================================
    # LocalCacheStore
    # =========================================================================

    async def save(self, snapshot: CacheSnapshot) -> None:
        try:
            await anyio.to_thread.run_sync(self._save_sync, snapshot)
        except SQLAlchemyError as e:
            logger.error(f"[CACHE] Save failed: {e}")
            raise CacheError(f"Cache save failed: {e}") from e
        logger.debug(f"[CACHE] Saved dataset for user={snapshot.user_id}")

    async def load(self, user_id: Optional[str] = None) -> Optional[CacheSnapshot]:
        try:
            payload = await anyio.to_thread.run_sync(self._load_sync)
        except SQLAlchemyError as e:
            logger.error(f"[CACHE] Load failed: {e}")
            raise CacheError(f"Cache load failed: {e}") from e

        if payload is None:
            return None

        try:
            snapshot = CacheSnapshot.model_validate_json(payload)
        except ValidationError as e:
            raise CacheError(f"Cache payload is corrupt: {e}") from e

        if user_id is not None and snapshot.user_id not in (None, user_id):
            logger.info("[CACHE] Ignoring cache owned by another user")
            return None
        return snapshot

    async def clear(self) -> None:
        try:
            await anyio.to_thread.run_sync(self._clear_sync)
        except SQLAlchemyError as e:
            logger.error(f"[CACHE] Clear failed: {e}")
            raise CacheError(f"Cache clear failed: {e}") from e
        logger.info("[CACHE] Cleared")
