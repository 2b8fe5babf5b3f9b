"""ASGI entry point: ``uvicorn eventsite.main:app``."""

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .cache import cache_manager
from .config import settings
from .db import dispose_engine
from .logger import logger
from .middleware import (
    add_request_id_middleware,
    graceful_shutdown_middleware,
    request_logging_middleware,
    security_headers_middleware,
    set_shutdown_manager,
)
from .monitoring import setup_monitoring
from .routes import limiter, router

STATIC_DIR = Path(__file__).parent / "static"


class GracefulShutdownManager:
    """Counts in-flight requests; shutdown waits for them to drain, up to a timeout."""

    def __init__(self, timeout: float | None = None):
        self.is_shutting_down = False
        self.active_requests = 0
        self.shutdown_timeout = settings.GRACEFUL_SHUTDOWN_TIMEOUT if timeout is None else timeout

    def request_started(self):
        if not self.is_shutting_down:
            self.active_requests += 1

    def request_finished(self):
        self.active_requests -= 1

    async def _drained(self):
        while self.active_requests > 0:
            await asyncio.sleep(0.1)

    async def initiate_shutdown(self) -> bool:
        """Stop taking requests and wait for running ones. False when the timeout cut the wait short."""
        if self.is_shutting_down:
            return True
        self.is_shutting_down = True

        pending = self.active_requests
        if pending <= 0:
            logger.info("Shutdown: no requests in flight")
            return True

        logger.info(f"Shutdown: waiting up to {self.shutdown_timeout}s for {pending} request(s)")
        try:
            await asyncio.wait_for(self._drained(), timeout=self.shutdown_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Shutdown: gave up with {self.active_requests} request(s) still running"
            )
            return False
        logger.info("Shutdown: all requests finished")
        return True


shutdown_manager = GracefulShutdownManager()
set_shutdown_manager(shutdown_manager)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"{settings.APP_NAME} starting ({settings.APP_ENV}); schema and roles come from Alembic")
    if settings.CACHE_ENABLED:
        await cache_manager.connect()

    yield

    await shutdown_manager.initiate_shutdown()
    if settings.CACHE_ENABLED:
        await cache_manager.disconnect()
    await dispose_engine()
    logger.info(f"{settings.APP_NAME} stopped")


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

# Each registration wraps the previous ones: security headers end up outermost,
# and the request id is set before the access log line is written.
app.middleware("http")(graceful_shutdown_middleware)
app.middleware("http")(request_logging_middleware)
app.middleware("http")(add_request_id_middleware)
app.middleware("http")(security_headers_middleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(router)
app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

setup_monitoring(app)
