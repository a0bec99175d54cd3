# caselookup/core/lifespan.py
import os
import asyncio
import logging
from contextlib import asynccontextmanager
from playwright.async_api import async_playwright
from caselookup.core.config import get_app_settings, AppSettings
from caselookup.db.session import SessionLocal
from caselookup.services.alert_service import AlertService
from caselookup.services.case_store import CaseStore
from caselookup.services.portal_authenticator import PortalAuthenticator
from caselookup.services.portal_search_client import PortalSearchClient, SearchAttemptMonitor
from caselookup.services.queue_client import QueueClient, create_redis_client
from caselookup.services.record_orchestrator import RecordOrchestrator
from caselookup.services.request_orchestrator import RequestOrchestrator
from caselookup.services.user_agent_client import UserAgentClient
from caselookup.utils.crypto import CredentialCipher

logger = logging.getLogger(__name__)

def wire_services(app, app_settings: AppSettings, queue_client: QueueClient, playwright_instance=None, session_factory=SessionLocal):
    """Builds the service graph and hangs it on app.state."""
    alert_service = AlertService(app_settings)
    user_agents = UserAgentClient(app_settings, session_factory)
    store = CaseStore(session_factory)
    cipher = CredentialCipher.from_settings(app_settings)
    authenticator = PortalAuthenticator(
        playwright_instance, app_settings, session_factory, alert_service, user_agents, cipher
    )
    search_client = PortalSearchClient(app_settings, alert_service, user_agents, monitor=SearchAttemptMonitor())

    app.state.settings = app_settings
    app.state.alert_service = alert_service
    app.state.case_store = store
    app.state.credential_cipher = cipher
    app.state.queue_client = queue_client
    app.state.portal_authenticator = authenticator
    app.state.request_orchestrator = RequestOrchestrator(app_settings, store, queue_client, authenticator, alert_service)
    app.state.record_orchestrator = RecordOrchestrator(
        app_settings, store, queue_client, authenticator, search_client, alert_service
    )

@asynccontextmanager
async def lifespan_manager(app):
    app_settings = get_app_settings()
    logger.info("--- FastAPI App Starting Up (Lifespan Manager) ---")
    app.state.redis = None

    data_loc = os.path.abspath(app_settings.DATA_DIRECTORY)
    if not os.path.exists(data_loc):
        logger.critical(f"CRITICAL: Data directory {data_loc} does not exist and was not created during settings load.")
        app.state.service_ready = False
        yield
        return

    if app_settings.API_ACCESS_KEY == "CONFIG_ERROR_API_KEY_NOT_IN_ENV":
        logger.critical("CRITICAL STARTUP FAILURE: API_ACCESS_KEY not set.")
        app.state.service_ready = False
        yield
        logger.info("--- FastAPI App Shut Down (Lifespan - startup failed due to missing API key) ---")
        return

    logger.info("--- Connecting to Redis (Lifespan) ---")
    try:
        app.state.redis = await create_redis_client(app_settings)
        queue_client = QueueClient.from_settings(app.state.redis, app_settings)
        await queue_client.ensure_groups()
    except Exception as e:
        logger.critical(f"CRITICAL STARTUP FAILURE: Could not initialize work queues: {e}")
        app.state.service_ready = False
        yield
        logger.info("--- FastAPI App Shut Down (Lifespan - queue init failed) ---")
        return

    logger.info("--- Initializing Playwright (Lifespan) ---")
    try:
        app.state.playwright_instance = await async_playwright().start()
        logger.info("--- Playwright Initialized (Lifespan) ---")
    except Exception as e:
        # Cached sessions still work without a browser; only fresh logins fail.
        logger.error(f"Could not initialize Playwright: {e}. New portal logins will fail.")
        app.state.playwright_instance = None

    wire_services(app, app_settings, queue_client, app.state.playwright_instance)
    app.state.service_ready = True

    yield # Application is running

    logger.info("--- FastAPI App Shutting Down (Lifespan Manager) ---")
    app.state.shutting_down = True

    if hasattr(app.state, "background_worker_tasks") and app.state.background_worker_tasks:
        logger.info("Cancelling background workers...")
        for task in app.state.background_worker_tasks:
            if not task.done():
                task.cancel()
        worker_shutdown_timeout = app_settings.PORTAL_REQUEST_TIMEOUT_SECONDS * 2
        try:
            await asyncio.wait_for(
                asyncio.gather(*[t for t in app.state.background_worker_tasks if not t.done()], return_exceptions=True),
                timeout=worker_shutdown_timeout
            )
            logger.info("All background workers cancelled/completed.")
        except asyncio.TimeoutError:
            logger.warning(f"Timeout waiting for background workers to complete shutdown after {worker_shutdown_timeout}s.")
        except Exception as e:
            logger.error(f"Error during background worker shutdown: {e}")

    if app.state.playwright_instance:
        logger.info("Stopping Playwright (Lifespan)...")
        try:
            await app.state.playwright_instance.stop()
            app.state.playwright_instance = None
            logger.info("Playwright stopped (Lifespan).")
        except Exception as e:
            logger.error(f"Error stopping Playwright: {e}")

    if app.state.redis is not None:
        try:
            await app.state.redis.aclose()
            logger.info("Redis connection closed (Lifespan).")
        except Exception as e:
            logger.error(f"Error closing Redis connection: {e}")

    logger.info("--- FastAPI App Shutdown Complete (Lifespan Manager) ---")
