"""Async database engine and session helpers for the relational sink."""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from promosync.core.config import Settings, settings


def build_engine(cfg: Settings = settings, url: str | None = None) -> AsyncEngine:
    """Create the async engine; pool tuning only applies to server databases."""

    url = url or cfg.database_url
    kwargs: dict = {"pool_pre_ping": True, "echo": cfg.DEBUG}
    if not url.startswith("sqlite"):
        kwargs.update(
            pool_size=cfg.DB_POOL_SIZE,
            max_overflow=cfg.DB_MAX_OVERFLOW,
            pool_timeout=cfg.DB_POOL_TIMEOUT,
            pool_recycle=cfg.DB_POOL_RECYCLE,
        )
    return create_async_engine(url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False)
