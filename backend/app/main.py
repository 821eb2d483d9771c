"""FastAPI entry point for the workflow engine.

Run with ``uvicorn app.main:app`` from ``backend/``. Schedules are
normally polled by Celery beat; set ``SCHEDULER_IN_PROCESS=true`` to
poll from the API process instead.
"""

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import health
from api.v1.router import api_v1_router
from app.config import get_settings
from core.logging_config import setup_logging
from core.middleware import RequestContextMiddleware, setup_exception_handlers
from db.database import close_db, init_db
from services.container import get_services

logger = structlog.get_logger(__name__)


def _check_action_coverage(services) -> None:
    missing = services.task_registry.missing_types()
    if missing:
        raise RuntimeError(f"No action implementation for node types: {', '.join(missing)}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging()
    await init_db()

    services = get_services()
    _check_action_coverage(services)

    stop_polling = asyncio.Event()
    poller_task = None
    if settings.SCHEDULER_IN_PROCESS:
        from worker.tasks.schedule_poller import build_poller, run_poll_loop

        poller_task = asyncio.create_task(
            run_poll_loop(build_poller(services), stop_event=stop_polling)
        )

    logger.info(
        "Workflow engine started",
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        node_types=len(services.engine.handled_node_types),
        in_process_scheduler=settings.SCHEDULER_IN_PROCESS,
    )
    try:
        yield
    finally:
        stop_polling.set()
        if poller_task is not None:
            await poller_task
        await close_db()
        logger.info("Workflow engine stopped")


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Workflow scheduler and executor: schedules, business events, "
                    "approvals and execution history.",
        docs_url="/docs" if settings.is_development else None,
        redoc_url=None,
        lifespan=lifespan,
    )

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID", "X-Organization-Id"],
    )
    setup_exception_handlers(app)

    # Unversioned probe for load balancers
    app.include_router(health.router, prefix="/api", tags=["Health"])
    app.include_router(api_v1_router, prefix=settings.API_V1_PREFIX)

    return app


app = create_app()
