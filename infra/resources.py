"""Infrastructure resources: the Postgres engine and the in-process store.

This module is part of the infra layer and must not import from application features.
"""
from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker


class DatabaseResource:
    """Database resource for dependency injection."""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self.engine = None
        self.session_factory = None

    async def init(self):
        """Initialize database connection."""
        self.engine = create_async_engine(
            self.database_url,
            echo=False,
            pool_pre_ping=True,
            pool_recycle=3600,
        )
        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        return self

    def get_session(self) -> AsyncSession:
        """Get database session (synchronous accessor)."""
        if self.session_factory is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self.session_factory()

    async def ping(self) -> None:
        """Verify connectivity and pgvector availability."""
        if self.engine is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        async with self.engine.begin() as conn:
            await conn.execute(text("SET lock_timeout = '4s'"))
            await conn.execute(text("SET statement_timeout = '8s'"))
            await conn.execute(text("SELECT 1"))
            await conn.execute(text("SELECT '[1,0]'::vector <=> '[0,1]'::vector"))

    async def shutdown(self):
        """Shutdown database connection."""
        if self.engine:
            await self.engine.dispose()


class InMemoryDatabase:
    """Process-local tables used by the ``memory`` backend and tests.

    Every store method works on these dicts without awaiting in between, so a
    single call is atomic with respect to other coroutines on the loop.
    """

    def __init__(self):
        self.conversations: Dict[str, Dict[str, Any]] = {}
        self.messages: List[Dict[str, Any]] = []
        self._ids = itertools.count(1)
        self._last_timestamp = datetime.fromtimestamp(0, tz=timezone.utc)

    def next_id(self) -> int:
        return next(self._ids)

    def now(self) -> datetime:
        """Current UTC time, strictly later than any previously returned value."""
        current = datetime.now(timezone.utc)
        if current <= self._last_timestamp:
            current = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = current
        return current

    def reset(self) -> None:
        self.conversations.clear()
        self.messages.clear()
