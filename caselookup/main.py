# caselookup/main.py
import os
import asyncio
import logging
from fastapi import FastAPI, Request
from contextlib import asynccontextmanager

from caselookup.core.config import get_app_settings, load_settings
from caselookup.core.lifespan import lifespan_manager
from caselookup.api.routers import health as health_router, search as search_router, portal_credentials as credentials_router
from caselookup.workers.case_worker import search_queue_worker
from caselookup.db.session import SQLALCHEMY_DATABASE_URL
from caselookup.db.init_db import init_db

initial_settings = load_settings()

log_level_str = os.getenv("LOG_LEVEL", initial_settings.LOG_LEVEL if initial_settings else "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level_str, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app_fastapi: FastAPI):
    logger.info("FastAPI application startup...")
    current_app_settings = get_app_settings()
    logger.info(f"Using database at: {SQLALCHEMY_DATABASE_URL}")

    app_fastapi.state.playwright_instance = None # Initialized in lifespan_manager
    app_fastapi.state.background_worker_tasks = []
    app_fastapi.state.service_ready = False
    app_fastapi.state.shutting_down = False

    init_db()
    async with lifespan_manager(app_fastapi):
        if app_fastapi.state.service_ready:
            for i in range(current_app_settings.SEARCH_WORKER_COUNT):
                task = asyncio.create_task(search_queue_worker(app_fastapi, worker_id=i))
                app_fastapi.state.background_worker_tasks.append(task)
            logger.info(f"Started {len(app_fastapi.state.background_worker_tasks)} search worker(s).")
        else:
            logger.error("Service not ready after lifespan setup. Workers not started.")

        logger.info("FastAPI application startup complete.")
        yield
        logger.info("FastAPI application shutdown...")
    logger.info("FastAPI application shutdown complete.")


app = FastAPI(
    title="Case Lookup API",
    lifespan=app_lifespan,
    openapi_url="/api/v1/openapi.json"
)

app.include_router(health_router.router, prefix="/api/v1", tags=["Health"])
app.include_router(search_router.router, prefix="/api/v1", tags=["Search"])
app.include_router(credentials_router.router, prefix="/api/v1", tags=["Portal Credentials"])


@app.middleware("http")
async def settings_middleware(request: Request, call_next):
    if not hasattr(request.app.state, 'settings') or request.app.state.settings is None:
        logger.debug("Settings middleware: app.state.settings not found or None, ensuring fresh load.")
        request.app.state.settings = get_app_settings()
    response = await call_next(request)
    return response

if __name__ == "__main__":
    import uvicorn
    effective_settings = get_app_settings()
    host = effective_settings.HOST
    port = effective_settings.PORT
    reload_dev = os.getenv("RELOAD_DEV", "false").lower() == "true"
    effective_log_level_str = effective_settings.LOG_LEVEL

    logger.info(f"Starting Uvicorn server on {host}:{port} (Reload: {reload_dev}, LogLevel: {effective_log_level_str})")

    uvicorn.run(
        "caselookup.main:app",
        host=host,
        port=port,
        reload=reload_dev,
        log_level=effective_log_level_str.lower()
    )
