import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware

from .api.router import router as api_router
from .application.state import configure_migration_state
from .background import default_job_runner
from .background.sweeper import MigrationStateSweeper
from .config import settings
from .database import engine
from .error_handlers import register_exception_handlers
from .infra.redis import get_async_redis_client
from .services.admin.role_hierarchy_cache import default_role_hierarchy_cache
from .utils.health import check_database_connection


def _configure_logging() -> logging.Logger:
    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").upper())
    if not isinstance(level, int):
        level = logging.INFO
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
    root = logging.getLogger("modl")
    root.setLevel(level)
    return root


logger = _configure_logging()

ALLOWED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]
DEFAULT_ALLOWED_HEADERS = "authorization, content-type, x-server-name"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application state_backend=%s", settings.state_backend)
    if settings.debug:
        logger.warning("DEBUG=true, do not use in production")

    redis_client = None
    if settings.state_backend == "redis":
        redis_client = get_async_redis_client(settings.redis_url)
    configure_migration_state(settings, redis_client)
    default_role_hierarchy_cache.ttl_seconds = settings.role_hierarchy_cache_ttl_seconds
    Path(settings.migration_temp_dir).mkdir(parents=True, exist_ok=True)

    sweeper = MigrationStateSweeper(interval_seconds=settings.migration_sweep_interval_seconds)
    await sweeper.start()
    try:
        yield
    finally:
        await sweeper.stop()
        await default_job_runner.stop()
        if redis_client is not None:
            await redis_client.aclose()
        logger.info("Application stopped")


app = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)


class OptionsPreflightMiddleware(BaseHTTPMiddleware):
    """Answer every OPTIONS request with 204; only allowed origins get CORS headers."""

    def __init__(self, app, allowed_origins: list[str]):
        super().__init__(app)
        self.allowed_origins = frozenset(allowed_origins)

    async def dispatch(self, request: Request, call_next):
        if request.method != "OPTIONS":
            return await call_next(request)

        response = Response(status_code=status.HTTP_204_NO_CONTENT)
        origin = request.headers.get("origin")
        if origin in self.allowed_origins:
            response.headers.update(
                {
                    "Access-Control-Allow-Origin": origin,
                    "Access-Control-Allow-Credentials": "true",
                    "Access-Control-Allow-Methods": ", ".join(ALLOWED_METHODS),
                    "Access-Control-Allow-Headers": request.headers.get(
                        "access-control-request-headers", DEFAULT_ALLOWED_HEADERS
                    ),
                    "Access-Control-Max-Age": "600",
                    "Vary": "Origin",
                }
            )
        return response


# Added last, so the preflight middleware runs before CORSMiddleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=ALLOWED_METHODS,
    allow_headers=["*"],
)
app.add_middleware(OptionsPreflightMiddleware, allowed_origins=settings.allowed_origins)

app.include_router(api_router)
register_exception_handlers(app)


@app.get("/health", tags=["health"])
async def healthcheck() -> Response:
    try:
        await check_database_connection(engine)
    except SQLAlchemyError as exc:
        logger.error("Healthcheck database probe failed: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"status": "error"}
        )

    logger.debug("Healthcheck passed")
    return JSONResponse(status_code=status.HTTP_200_OK, content={"status": "ok"})
