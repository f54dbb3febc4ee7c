"""FastAPI application entry point."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable, Optional, cast

from fastapi import FastAPI, HTTPException, Request
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response
import structlog

from .api.routes import connectors_router, webhooks_router
from .api.utils import success_response
from .config import Settings, load_settings
from .connectors.manager import ConnectorManager
from .core.errors import AppError, app_error_handler, http_exception_handler
from .documents.client import DocumentStoreClient
from .documents.store import DocumentStore, InMemoryDocumentStore
from .github.activities import GithubActivities
from .observability.metrics import get_metrics_registry
from .orchestration.models import SyncOptions
from .store.base import StateStore
from .store.memory import InMemoryStateStore
from .store.redis import RedisStateStore
from .webcrawler.activities import WebCrawlerActivities
from .workflows.client import connect, ensure_search_attributes
from .workflows.worker import SyncWorker

logger = structlog.get_logger(__name__)


async def create_state_store(settings: Settings) -> StateStore:
    if settings.state_store_backend == "redis" and settings.redis_url:
        store = RedisStateStore(settings.redis_url, prefix=settings.state_store_prefix)
        await store.connect()
        return store
    return InMemoryStateStore()


def create_document_store(settings: Settings) -> DocumentStore:
    if settings.document_store_url:
        return DocumentStoreClient(
            settings.document_store_url,
            api_key=settings.document_store_api_key,
            timeout=settings.document_store_timeout_seconds,
            max_attempts=settings.activity_max_attempts,
        )
    logger.warning("document_store_in_memory", app_env=settings.app_env)
    return InMemoryDocumentStore()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Builds stores, the Temporal client, the connector manager and (unless
    workers run as their own process) an embedded worker on startup, and
    tears them down on shutdown. Everything lives on app.state.
    """
    settings = getattr(app.state, "settings", None) or load_settings()
    app.state.settings = settings

    state_store = await create_state_store(settings)
    document_store = create_document_store(settings)
    client = await connect(settings)
    await ensure_search_attributes(client, settings.temporal_namespace)
    github_activities = GithubActivities.from_settings(settings, state_store, document_store)
    webcrawler_activities = WebCrawlerActivities.from_settings(
        settings, state_store, document_store
    )

    worker: Optional[SyncWorker] = None
    worker_task: Optional[asyncio.Future[None]] = None
    if settings.run_embedded_worker:
        worker = SyncWorker(
            client,
            settings,
            github_activities.definitions() + webcrawler_activities.definitions(),
        )
        worker_task = asyncio.ensure_future(worker.start())

    app.state.state_store = state_store
    app.state.document_store = document_store
    app.state.temporal_client = client
    app.state.worker = worker
    app.state.connector_manager = ConnectorManager(
        state_store,
        client,
        settings.temporal_task_queue,
        SyncOptions.from_settings(settings),
        default_max_depth=settings.crawl_max_depth,
        default_max_pages=settings.crawl_max_pages,
    )
    logger.info(
        "connector_sync_started",
        app_env=settings.app_env,
        state_store=settings.state_store_backend,
        task_queue=settings.temporal_task_queue,
        embedded_worker=worker is not None,
    )

    yield

    if worker is not None and worker_task is not None:
        await worker.stop()
        try:
            await worker_task
        except Exception as e:
            logger.error("temporal_worker_failed", error=str(e), error_type=type(e).__name__)
    await github_activities.close()
    await document_store.close()
    await state_store.close()
    logger.info("connector_sync_stopped")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Settings to use instead of loading them from the environment
    """
    app = FastAPI(
        title="Connector Sync",
        version="0.1.0",
        description="Connector sync orchestration for GitHub and website crawls",
        lifespan=lifespan,
    )
    if settings is not None:
        app.state.settings = settings

    app.add_exception_handler(
        AppError,
        cast(Callable[[Request, Exception], Awaitable[Response]], app_error_handler),
    )
    app.add_exception_handler(
        HTTPException,
        cast(Callable[[Request, Exception], Awaitable[Response]], http_exception_handler),
    )

    app.include_router(connectors_router, prefix="/api/v1")
    app.include_router(webhooks_router, prefix="/api/v1")

    @app.get("/health")
    async def health(request: Request) -> dict:
        worker = getattr(request.app.state, "worker", None)
        return success_response(
            {
                "status": "ok",
                "worker": worker.status if worker else "stopped",
            }
        )

    if settings is not None and settings.metrics_enabled:

        @app.get("/metrics", tags=["observability"], summary="Prometheus metrics endpoint")
        async def metrics() -> Response:
            return Response(
                content=generate_latest(get_metrics_registry()),
                media_type=CONTENT_TYPE_LATEST,
            )

        logger.info("prometheus_metrics_endpoint_mounted", path="/metrics")
    return app


def run() -> None:
    import uvicorn

    settings = load_settings()
    app = create_app(settings)
    uvicorn.run(app, host=settings.backend_host, port=settings.backend_port)


if __name__ == "__main__":
    run()
