from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings
from .errors import AssessmentError
from .routers import assessment, conversation, health, knowledge, stats
from .services.assessment_pipeline import AssessmentPipeline
from .services.cache_store import CacheStore
from .services.conversation_pipeline import ConversationPipeline
from .services.knowledge_search import KnowledgeService
from .services.performance import PerformanceMonitor
from .services.providers import AIProvider, build_provider
from .services.rate_limit import FixedWindowRateLimiter
from .services.request_batcher import RequestBatcher

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
    logging.getLogger("damage_assessor").setLevel(settings.log_level)


def create_app(
    settings: Optional[Settings] = None,
    *,
    provider: Optional[AIProvider] = None,
    cache: Optional[CacheStore] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        Build the shared provider, cache, batcher and pipelines once per
        process and close the network-backed pieces on shutdown.
        """
        ai_provider = provider or build_provider(settings)
        cache_store = cache or CacheStore.from_settings(settings)
        batcher = RequestBatcher()
        monitor = PerformanceMonitor()
        knowledge_service = KnowledgeService(
            settings=settings,
            cache=cache_store,
            batcher=batcher,
            provider=ai_provider,
            monitor=monitor,
        )

        app.state.settings = settings
        app.state.provider = ai_provider
        app.state.cache = cache_store
        app.state.batcher = batcher
        app.state.monitor = monitor
        app.state.knowledge = knowledge_service
        app.state.assessment = AssessmentPipeline(
            settings=settings,
            cache=cache_store,
            batcher=batcher,
            provider=ai_provider,
            knowledge=knowledge_service,
            monitor=monitor,
        )
        app.state.conversation = ConversationPipeline(
            settings=settings,
            cache=cache_store,
            batcher=batcher,
            provider=ai_provider,
            knowledge=knowledge_service,
            monitor=monitor,
        )
        app.state.api_limiter = FixedWindowRateLimiter(limit=settings.api_rate_limit, window_s=settings.api_rate_window_s)
        app.state.ai_limiter = FixedWindowRateLimiter(limit=settings.ai_rate_limit, window_s=settings.ai_rate_window_s)
        logger.info(
            "app.startup environment=%s provider=%s caching=%s backend=%s",
            settings.environment,
            settings.ai_provider,
            settings.enable_caching,
            settings.cache_backend,
        )

        try:
            yield
        finally:
            await cache_store.close()
            closer = getattr(ai_provider, "aclose", None)
            if callable(closer):
                await closer()

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        debug=settings.debug,
        lifespan=lifespan,
    )

    @app.exception_handler(AssessmentError)
    async def _assessment_error_handler(request: Request, exc: AssessmentError) -> JSONResponse:
        logger.info("http.error path=%s kind=%s status=%s", request.url.path, exc.kind.value, exc.status_code)
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "error": exc.message,
                "error_code": exc.kind.value,
                "details": exc.details,
            },
            headers=exc.headers or None,
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
    )

    # Router registration -------------------------------------------------------
    app.include_router(health.router)
    app.include_router(assessment.router)
    app.include_router(knowledge.router)
    app.include_router(conversation.router)
    app.include_router(stats.router)
    return app


def run() -> None:
    import uvicorn

    settings = Settings.from_env()
    configure_logging(settings)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8000)
