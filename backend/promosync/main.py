"""Application entry point for the cached promotions read API."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from promosync.api.routes.cache import router as cache_router
from promosync.core.cache import CacheStore
from promosync.core.config import Settings, settings
from promosync.core.logging import setup_logging
from promosync.core.middleware import RequestContextLogMiddleware


def _cors_origins(cfg: Settings) -> list[str]:
    if cfg.ENV == "prod":
        if not cfg.CORS_ALLOWED_ORIGINS:
            raise RuntimeError("CORS_ALLOWED_ORIGINS must be configured for prod")
        return cfg.CORS_ALLOWED_ORIGINS
    return cfg.CORS_ALLOWED_ORIGINS or ["*"]


def create_app(cfg: Settings = settings, cache: Optional[CacheStore] = None) -> FastAPI:
    """Build the app; pass ``cache`` to share a store with an in-process sync."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = cache is None
        app.state.cache = cache or await CacheStore.from_settings(cfg)
        try:
            yield
        finally:
            if owned:
                await app.state.cache.close()

    app = FastAPI(title=cfg.APP_NAME, debug=cfg.DEBUG, lifespan=lifespan)
    if cache is not None:
        app.state.cache = cache

    app.add_middleware(RequestContextLogMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(cfg),
        allow_methods=["GET", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    @app.get("/api/healthz", tags=["system"], summary="Liveness probe")
    def healthz() -> dict[str, str]:
        """Simple liveness probe that load balancers and monitors can call."""

        return {"status": "ok", "cache": app.state.cache.backend}

    app.include_router(cache_router, prefix="/api")
    return app


def build() -> FastAPI:
    setup_logging(settings.LOG_LEVEL, settings.LOG_SERIALIZE)
    return create_app()
