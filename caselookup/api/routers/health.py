# caselookup/api/routers/health.py
from fastapi import APIRouter, Request, status
import logging

logger = logging.getLogger(__name__)
router = APIRouter()

@router.get("/healthz", status_code=status.HTTP_200_OK, summary="Health Check")
async def health_check(request: Request):
    service_is_ready = getattr(request.app.state, "service_ready", False)
    playwright_ok = getattr(request.app.state, "playwright_instance", None) is not None

    if service_is_ready and playwright_ok:
        return {"status": "healthy", "message": "Queues connected and Playwright is initialized."}
    elif service_is_ready and not playwright_ok:
        logger.warning("Health check: queues OK, but Playwright is not initialized (new portal logins will fail).")
        return {"status": "degraded", "message": "Queues connected, but Playwright is not initialized; only cached portal sessions work."}
    else:
        logger.error("Health check: service not ready (queues or configuration failed).")
        return {"status": "unhealthy", "message": "Service not ready."}
