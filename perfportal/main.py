import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from perfportal import __version__
from perfportal.api.routes import capabilities, health, metrics, test_runs, upload
from perfportal.core.config import Settings, settings
from perfportal.core.log_buffer import install_log_buffer
from perfportal.db.session import init_db

logger = logging.getLogger("perfportal.startup")

install_log_buffer(
    max_logs=settings.log_buffer_size,
    max_parse_events=settings.log_parse_event_size,
    file_path=settings.log_buffer_file,
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    logger.info(
        "Starting %s %s (environment=%s, port=%s)",
        settings.app_name,
        __version__,
        settings.environment,
        os.getenv("PORT", "unset"),
    )
    logger.info(
        "Uploads stored in %s; JTL limit %d bytes; suffixes %s; percentiles %s",
        settings.ingestion_storage_dir,
        settings.jtl_max_bytes,
        ", ".join(settings.jtl_allowed_suffixes),
        ", ".join(f"{p:g}" for p in settings.percentiles),
    )
    # /health must keep answering while the database is unreachable.
    try:
        init_db()
    except Exception:  # pragma: no cover - startup
        logger.exception("Database initialization failed; continuing without schema setup")
    yield


def _cors_origins(config: Settings) -> list[str]:
    if config.cors_allow_all and config.environment.lower() not in {"prod", "production"}:
        return ["*"]
    return list(config.cors_allowed_origins)


app = FastAPI(title=settings.app_name, version=__version__, lifespan=lifespan)

origins = _cors_origins(settings)
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

for route_module in (health, metrics, capabilities, upload, test_runs):
    app.include_router(route_module.router)


@app.get("/metadata", summary="Service metadata")
def service_metadata() -> dict[str, str]:
    return {"service": settings.app_name, "version": __version__, "environment": settings.environment}
