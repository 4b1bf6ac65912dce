"""数据库初始化和会话管理."""

import logging
from pathlib import Path

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import DatabaseError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

# 注册所有表
from transfront.models import feed, ownership, seen_item  # noqa: F401
from transfront.errors import StateCorruption
from transfront.utils.formatting import utcnow

logger = logging.getLogger(__name__)


def _sqlite_path(database_url: str) -> Path | None:
    """返回 SQLite 数据库文件路径，内存库或其他数据库返回 None."""
    url = make_url(database_url)
    if not url.drivername.startswith("sqlite"):
        return None
    if not url.database or url.database == ":memory:":
        return None
    return Path(url.database)


async def _open(database_url: str) -> async_sessionmaker[AsyncSession]:
    """创建引擎、建表并做完整性检查."""
    db_path = _sqlite_path(database_url)
    if db_path is not None:
        db_path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_async_engine(database_url, echo=False)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
            if engine.dialect.name == "sqlite":
                result = await conn.execute(text("PRAGMA quick_check"))
                status = result.scalar()
                if status != "ok":
                    msg = f"完整性检查失败: {status}"
                    raise StateCorruption(msg)
    except DatabaseError as e:
        await engine.dispose()
        msg = f"数据库无法读取: {e}"
        raise StateCorruption(msg) from e
    except StateCorruption:
        await engine.dispose()
        raise

    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(database_url: str) -> async_sessionmaker[AsyncSession]:
    """
    初始化数据库，创建所有表.

    存储损坏时将原文件改名备份，重新创建一个空库，不让进程崩溃。

    Returns:
        会话工厂
    """
    try:
        return await _open(database_url)
    except StateCorruption as e:
        db_path = _sqlite_path(database_url)
        if db_path is None or not db_path.exists():
            raise

        backup = db_path.with_name(
            f"{db_path.name}.corrupt-{utcnow().strftime('%Y%m%d%H%M%S')}"
        )
        db_path.replace(backup)
        logger.critical(
            f"存储已损坏，已备份到 {backup} 并重新初始化为空库: {e}"
        )
        return await _open(database_url)


async def close_db(session_factory: async_sessionmaker[AsyncSession]) -> None:
    """释放会话工厂绑定的引擎."""
    engine = session_factory.kw.get("bind")
    if engine is not None:
        await engine.dispose()
