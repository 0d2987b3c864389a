# playground/conftest.py

"""
[职责] playground 公共 fixture：隔离的 SQLite 引擎/会话（含 FTS5 虚表），以及本地 src 导入路径。
[边界] 不连接真实 PostgreSQL / rerank 服务；每个测试独立临时库，不污染默认 .data 路径。
[上游关系] pytest 自动加载。
[下游关系] sql_gate / service_gate / fastapi_gate 通过 session / session_factory fixture 使用。
"""

from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path
from typing import AsyncIterator

_REPO_ROOT = Path(__file__).resolve().parents[1]
_SRC_ROOT = _REPO_ROOT / "src"
if str(_SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(_SRC_ROOT))  # docstring: ensure local src import

_DEFAULT_DB_DIR = Path(tempfile.mkdtemp(prefix="ra_law_rag_gate_"))
os.environ.setdefault(
    "RA_LAW_RAG_DATABASE_URL",
    f"sqlite+aiosqlite:///{_DEFAULT_DB_DIR / 'default.db'}",
)  # docstring: 模块级 ENGINE 指向临时库

import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker  # noqa: E402

from ra_law_rag.backend.db.engine import create_engine, create_sessionmaker, init_db  # noqa: E402
from ra_law_rag.backend.db.fts import ensure_sqlite_fts  # noqa: E402


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    db_file = tmp_path / "gate.db"  # docstring: 独立临时 sqlite 文件
    eng = create_engine(url=f"sqlite+aiosqlite:///{db_file}", echo=False)
    await init_db(engine=eng)
    try:
        yield eng
    finally:
        await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    factory = create_sessionmaker(engine)
    async with factory() as s:
        await ensure_sqlite_fts(s)  # docstring: FTS 表与触发器须先于数据写入
    return factory


@pytest_asyncio.fixture
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as s:
        yield s
