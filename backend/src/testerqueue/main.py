from contextlib import asynccontextmanager
import asyncio
import atexit
import logging

from fastapi import FastAPI

from testerqueue.api.routes import router as api_router
from testerqueue.config import Settings, load_settings
from testerqueue.promotion import TicketProvisioner
from testerqueue.service import QueueService

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    provisioner: TicketProvisioner | None = None,
) -> FastAPI:
    """Build the application. Settings are resolved at startup if not given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan - startup and shutdown."""
        # Startup: missing mandatory configuration aborts here
        resolved = settings or load_settings()
        logging.basicConfig(level=resolved.log_level)

        service = QueueService(resolved, provisioner=provisioner)
        service.load()
        app.state.service = service
        atexit.register(service.shutdown)
        logger.info(f"✓ Stores loaded from {resolved.data_dir}")

        def on_loop_error(loop, context):
            logger.error(
                f"Unhandled error in event loop: {context.get('message')}",
                exc_info=context.get("exception"),
            )
            service.scheduler.emergency_flush()

        asyncio.get_running_loop().set_exception_handler(on_loop_error)

        scheduler_task = None
        if resolved.scheduler_enabled:
            scheduler_task = asyncio.create_task(service.scheduler.run())
            logger.info("✓ Scheduler running")

        yield

        # Shutdown: stop ticking, then force everything to disk
        logger.info("Shutting down...")
        service.scheduler.stop()
        if scheduler_task is not None:
            await scheduler_task
        service.shutdown()
        atexit.unregister(service.shutdown)
        logger.info("✓ All data saved")

    app = FastAPI(
        title="testerqueue - regional tester queue",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()
