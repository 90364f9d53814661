import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncGenerator, Optional, Union

from sqlalchemy import event, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

logger = logging.getLogger(__name__)

DateInput = Union[int, float, datetime, str]


def current_timestamp() -> int:
    return int(time.time())


def to_timestamp(value: Optional[DateInput]) -> Optional[int]:
    """Normalise an epoch number, datetime or ISO-8601 string to epoch seconds.

    Raises ValueError for anything else so callers can report a malformed date.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Malformed date: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise ValueError(f"Malformed date: {value!r}") from e
        return to_timestamp(parsed)
    raise ValueError(f"Malformed date: {value!r}")


def create_session_maker(database_url: str) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    is_sqlite = database_url.startswith("sqlite")
    engine_kwargs: dict[str, Any] = {"echo": False}
    if is_sqlite:
        engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": 20}
        db_path = make_url(database_url).database
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    else:
        engine_kwargs.update(pool_size=10, max_overflow=20, pool_timeout=30, pool_recycle=3600)
    engine = create_async_engine(database_url, **engine_kwargs)

    if is_sqlite:
        install_sqlite_pragmas(engine)

    return engine, async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def install_sqlite_pragmas(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_conn: Any, _connection_record: Any) -> None:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


async def init_db(engine: AsyncEngine) -> None:
    """Create every table registered on the SQLModel metadata."""
    import wins_column.entities  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database schema ready")


@asynccontextmanager
async def get_session(
    session_maker: async_sessionmaker[AsyncSession],
    read_only: bool = False,
) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        try:
            yield session
            if not read_only:
                await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


__all__ = [
    "create_session_maker",
    "current_timestamp",
    "get_session",
    "init_db",
    "to_timestamp",
]
