import logging
import time

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import get_settings

log = logging.getLogger("gatherings.sql")
S = get_settings()


def _log_slow_queries(engine: AsyncEngine, threshold_ms: int) -> None:
    @event.listens_for(engine.sync_engine, "before_cursor_execute")
    def _start(conn, cursor, statement, parameters, context, executemany):
        context._started_at = time.perf_counter()

    @event.listens_for(engine.sync_engine, "after_cursor_execute")
    def _finish(conn, cursor, statement, parameters, context, executemany):
        elapsed_ms = int((time.perf_counter() - getattr(context, "_started_at", time.perf_counter())) * 1000)
        if elapsed_ms >= threshold_ms:
            log.warning("slow_query", extra={"elapsed_ms": elapsed_ms, "sql": statement[:200]})


def build_engine(url: str) -> AsyncEngine:
    # creating the engine does not connect; the memory backend never touches it
    eng = create_async_engine(url, pool_pre_ping=True)
    _log_slow_queries(eng, S.SLOW_QUERY_MS)
    return eng


engine = build_engine(S.DATABASE_URL)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def db_health() -> bool:
    try:
        async with SessionLocal() as db:
            await db.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError):
        return False
