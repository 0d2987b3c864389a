# src/ra_law_rag/backend/db/engine.py

"""
[职责] 数据库引擎与会话工厂：创建 AsyncEngine / async_sessionmaker，并提供 FastAPI 可注入的 get_session。
[边界] 不定义 ORM Model；不编排事务（repo flush，调用方 commit）；生产 schema 由迁移管理。
[上游关系] config.Settings.RA_LAW_RAG_DATABASE_URL 提供连接串。
[下游关系] sql_store / usage sink / api.deps 使用 sessionmaker；测试可传入内存 sqlite。
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ra_law_rag.config import settings

from .base import Base


def resolve_db_url(override: str | None = None) -> str:
    """
    Priority: explicit override > settings (env/.env) > DATABASE_URL env.
    """
    if override:
        return override
    s_url = str(settings.RA_LAW_RAG_DATABASE_URL or "").strip()
    if s_url:
        return s_url
    env_url = os.getenv("DATABASE_URL", "").strip()
    if env_url:
        return env_url
    raise ValueError("database url is not configured")


def _ensure_sqlite_dir(url: str) -> None:
    u = make_url(url)
    if u.get_backend_name() != "sqlite" or not u.database or u.database == ":memory:":
        return
    parent = os.path.dirname(os.path.abspath(u.database))
    os.makedirs(parent, exist_ok=True)


def create_engine(*, url: str | None = None, echo: bool | None = None) -> AsyncEngine:
    """Create AsyncEngine (aiosqlite for local/tests, asyncpg for PostgreSQL)."""
    db_url = resolve_db_url(url)
    _ensure_sqlite_dir(db_url)
    db_echo = echo if echo is not None else (os.getenv("SQL_ECHO", "0") == "1")
    return create_async_engine(db_url, echo=db_echo, pool_pre_ping=True)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


def dialect_name(engine: AsyncEngine) -> str:
    return engine.dialect.name


# --- global singletons (app runtime) ---
ENGINE: AsyncEngine = create_engine()
SessionLocal: async_sessionmaker[AsyncSession] = create_sessionmaker(ENGINE)


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """async with session_scope() as s: ...  (caller controls commit)"""
    async with SessionLocal() as session:
        yield session


async def init_db(*, engine: AsyncEngine | None = None) -> None:
    """
    Create tables (local/dev/tests). Production uses migrations and the
    stored full-text procedures; SQLite additionally needs db.fts.ensure_sqlite_fts.
    """
    from . import models  # noqa: F401

    eng = engine or ENGINE
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db(*, engine: AsyncEngine | None = None) -> None:
    """Drop all tables. Local/dev/tests only."""
    from . import models  # noqa: F401

    eng = engine or ENGINE
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency."""
    async with SessionLocal() as session:
        yield session
