import os

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy import text
from sqlalchemy.pool import NullPool
from .config import settings
from .logger import get_logger

_use_null_pool = bool(os.getenv("PYTEST_CURRENT_TEST")) or (settings.app_env or "").strip().lower() in {"test", "pytest"}
engine = create_async_engine(
    settings.database_url,
    echo=False,
    pool_pre_ping=True,
    poolclass=NullPool if _use_null_pool else None,
)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
log = get_logger("db")

_REQUIRED_TABLES = ("games", "predictions", "alembic_version")


async def _missing_tables(conn) -> list[str]:
    res = await conn.execute(
        text(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema='public' AND table_type='BASE TABLE'
            """
        )
    )
    present = {row.table_name for row in res.fetchall()}
    return [name for name in _REQUIRED_TABLES if name not in present]


async def init_db():
    async with engine.begin() as conn:
        missing = await _missing_tables(conn)
        if not missing:
            return
        msg = f"db schema not initialized (missing: {', '.join(missing)}); run `alembic upgrade head`"
        if (settings.app_env or "").lower() == "dev":
            log.warning(msg)
            return
        raise RuntimeError(msg)


async def get_session():
    async with SessionLocal() as session:
        yield session
