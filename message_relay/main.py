import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Mapping, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from message_relay import config
from message_relay.database import (
    build_engine,
    build_session_factory,
    close_db,
    get_db,
    init_db,
)
from message_relay.errors import MessageRelayError
from message_relay.logging_config import configure_logging
from message_relay.providers.provider_router import ProviderRouter
from message_relay.routers.conversations import router as conversations_router
from message_relay.routers.messages import router as messages_router
from message_relay.routers.providers import router as providers_router
from message_relay.routers.webhooks import router as webhooks_router
from message_relay.workers.job_runner import JobRunner
from message_relay.workers.jobs import InMemoryJobScheduler, JobScheduler
from message_relay.workers.message_delivery_worker import DELIVER_MESSAGE_JOB, MessageDeliveryWorker

logger = logging.getLogger(__name__)


def create_app(
    database_url: Optional[str] = None,
    provider_configs: Optional[Mapping[str, Mapping[str, Any]]] = None,
    scheduler: Optional[JobScheduler] = None,
    create_tables: Optional[bool] = None,
    run_jobs: Optional[bool] = None,
    job_poll_interval: Optional[float] = None,
) -> FastAPI:
    """Build the API application.

    Everything the routers need is created in the lifespan and stored on
    ``app.state``; arguments override the environment-driven defaults.

    With the in-memory scheduler, a ``JobRunner`` executes delivery jobs in
    this process unless ``run_jobs`` is false. A custom scheduler is expected
    to run its jobs itself.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # Startup
        configure_logging(config.LOG_LEVEL)
        engine = build_engine(database_url)
        await init_db(
            engine,
            create_tables=config.AUTO_CREATE_TABLES if create_tables is None else create_tables,
        )

        configs = (
            provider_configs
            if provider_configs is not None
            else config.default_provider_configs()
        )
        app.state.engine = engine
        app.state.session_factory = build_session_factory(engine)
        app.state.provider_router = ProviderRouter(configs)
        app.state.scheduler = scheduler or InMemoryJobScheduler()
        app.state.delivery_worker = MessageDeliveryWorker(
            app.state.session_factory, app.state.provider_router, app.state.scheduler
        )
        app.state.job_runner = None
        run_jobs_here = config.RUN_JOBS if run_jobs is None else run_jobs
        if run_jobs_here and isinstance(app.state.scheduler, InMemoryJobScheduler):
            app.state.job_runner = JobRunner(
                app.state.scheduler,
                {DELIVER_MESSAGE_JOB: app.state.delivery_worker.perform},
                poll_interval=job_poll_interval or config.JOB_POLL_INTERVAL,
            )
            await app.state.job_runner.start()
        elif run_jobs_here:
            logger.info("Delivery jobs are executed by the configured scheduler")
        logger.info(
            "Message relay started (env=%s, providers=%s)",
            config.ENV,
            ", ".join(configs) or "none",
        )
        yield
        # Shutdown
        if app.state.job_runner is not None:
            await app.state.job_runner.stop()
        await close_db(engine)

    app = FastAPI(
        title="Message Relay",
        description="Unified messaging API for SMS/MMS and Email",
        version=config.COMMIT_HASH or "dev",
        lifespan=lifespan,
    )

    # Include routers
    app.include_router(
        conversations_router, prefix="/api/conversations", tags=["conversations"]
    )
    app.include_router(messages_router, prefix="/api/messages", tags=["messages"])
    app.include_router(providers_router, prefix="/api/providers", tags=["providers"])
    app.include_router(webhooks_router, prefix="/api/webhooks", tags=["webhooks"])

    @app.exception_handler(MessageRelayError)
    async def message_relay_error_handler(
        request: Request, exc: MessageRelayError
    ) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s on %s: %s", exc.error_code, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.error_code, "message": exc.message, "details": exc.details},
        )

    @app.get("/health")
    async def health_check(db: AsyncSession = Depends(get_db)) -> Dict[str, Optional[str]]:
        """Health check endpoint with database connectivity."""
        try:
            # Test database connection
            result = await db.execute(text("SELECT 1"))
            db_status = "connected" if result.scalar() == 1 else "error"
        except SQLAlchemyError:
            logger.exception("Health check could not reach the database")
            db_status = "disconnected"

        return {
            "status": "healthy" if db_status == "connected" else "degraded",
            "database": db_status,
            "environment": config.ENV,
            "version": config.COMMIT_HASH,
        }

    return app


app = create_app()


# If run directly, start the server
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=config.APP_ADDR, port=config.APP_PORT)
