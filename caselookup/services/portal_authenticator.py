# caselookup/services/portal_authenticator.py
import logging
from datetime import timedelta
from typing import Callable, Dict, Optional
import httpx
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from playwright.async_api import Playwright, Page, BrowserContext, Browser, TimeoutError as PlaywrightTimeoutError

from caselookup.core.config import AppSettings, PortalSelectors
from caselookup.db import crud
from caselookup.services.alert_service import AlertService, AlertCategory, Severity
from caselookup.services.user_agent_client import UserAgentClient
from caselookup.utils import playwright_utils
from caselookup.utils.crypto import CredentialCipher, CredentialDecryptionError
from caselookup.utils.common import utcnow, ensure_utc

logger = logging.getLogger(__name__)

MISSING_PORTAL_URL_MESSAGE = "PORTAL_URL environment variable is not set"
NO_CREDENTIALS_MESSAGE = "No portal credentials found for user"
BAD_CREDENTIALS_MESSAGE = "Portal credentials for user are invalid"
UNREADABLE_CREDENTIALS_MESSAGE = "Stored portal credentials could not be decrypted"


class PortalSession(BaseModel):
    success: bool
    cookies: Optional[httpx.Cookies] = None
    message: Optional[str] = None
    user_agent: Optional[str] = None

    class Config:
        arbitrary_types_allowed = True


def default_request_headers(user_agent: str) -> Dict[str, str]:
    return {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
    }


class PortalAuthenticator:
    def __init__(
        self,
        playwright_instance: Optional[Playwright],
        settings: AppSettings,
        session_factory: Callable[[], Session],
        alerts: AlertService,
        user_agents: UserAgentClient,
        cipher: Optional[CredentialCipher] = None,
    ):
        self.playwright = playwright_instance
        self.settings = settings
        self.selectors: PortalSelectors = settings.PORTAL_SELECTORS
        self.session_factory = session_factory
        self.alerts = alerts
        self.user_agents = user_agents
        self.cipher = cipher or CredentialCipher.from_settings(settings)

    def _cached_session(self, db: Session, user_id: str) -> Optional[PortalSession]:
        row = crud.get_user_session(db, user_id)
        if row is None:
            return None
        expires_at = ensure_utc(row.expires_at)
        if expires_at is None or expires_at <= utcnow():
            logger.info(f"[{user_id}] Stored portal session expired at {expires_at}.")
            return None
        return PortalSession(
            success=True, cookies=playwright_utils.cookies_to_jar(row.cookies), user_agent=row.user_agent
        )

    async def get_or_create_session(self, user_id: str, user_agent: Optional[str] = None) -> PortalSession:
        """Reuses the user's stored cookies while they are fresh, otherwise logs in again."""
        resolved_user_agent = self.user_agents.get_user_agent(user_id, user_agent)
        db = self.session_factory()
        try:
            cached = self._cached_session(db, user_id)
            if cached:
                logger.debug(f"[{user_id}] Reusing stored portal session.")
                if not cached.user_agent:
                    cached.user_agent = resolved_user_agent
                return cached

            creds = crud.get_portal_credentials(db, user_id)
            if creds is None:
                return PortalSession(success=False, message=NO_CREDENTIALS_MESSAGE)
            if creds.is_bad:
                return PortalSession(success=False, message=BAD_CREDENTIALS_MESSAGE)

            try:
                password = self.cipher.decrypt(creds.encrypted_password)
            except CredentialDecryptionError as e:
                logger.error(f"[{user_id}] {e}; credentials must be saved again.")
                return PortalSession(success=False, message=UNREADABLE_CREDENTIALS_MESSAGE)

            result = await self.authenticate_with_portal(creds.username, password, resolved_user_agent)
            if not result.success:
                if result.message and self.selectors.LOGIN_INVALID_CREDENTIALS_TEXT in result.message:
                    logger.warning(f"[{user_id}] Portal rejected stored credentials; flagging them as bad.")
                    crud.mark_portal_credentials_bad(db, user_id)
                return result

            expires_at = utcnow() + timedelta(hours=self.settings.SESSION_TTL_HOURS)
            crud.save_user_session(
                db, user_id, playwright_utils.jar_to_cookies(result.cookies), expires_at, resolved_user_agent
            )
            logger.info(f"[{user_id}] New portal session stored until {expires_at.isoformat()}.")
            return result
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[{user_id}] Database error while resolving portal session: {e}", exc_info=True)
            return PortalSession(success=False, message=f"Session storage error: {e}")
        finally:
            db.close()

    async def authenticate_with_portal(self, username: str, password: str, user_agent: str) -> PortalSession:
        portal_url = self.settings.PORTAL_URL
        if not portal_url:
            await self.alerts.report(
                Severity.CRITICAL, AlertCategory.SYSTEM,
                "Missing required environment variable: PORTAL_URL",
                RuntimeError(MISSING_PORTAL_URL_MESSAGE), {"resource": "portal-auth"},
            )
            return PortalSession(success=False, message=MISSING_PORTAL_URL_MESSAGE)
        if self.playwright is None:
            return PortalSession(success=False, message="Browser automation is not initialized")

        browser: Optional[Browser] = None
        context: Optional[BrowserContext] = None
        page: Optional[Page] = None
        timeout_ms = self.settings.LOGIN_TIMEOUT_SECONDS * 1000
        try:
            browser = await playwright_utils.launch_browser(self.playwright)
            context = await browser.new_context(**playwright_utils.context_options(user_agent))
            page = await context.new_page()
            await page.goto(portal_url.rstrip("/") + self.selectors.LOGIN_PATH, wait_until="networkidle", timeout=timeout_ms)

            await page.wait_for_selector(self.selectors.EMAIL_INPUT, timeout=timeout_ms, state="visible")
            await page.fill(self.selectors.EMAIL_INPUT, username)
            await page.fill(self.selectors.PASSWORD_INPUT, password)
            async with page.expect_navigation(wait_until="networkidle", timeout=timeout_ms):
                await page.locator(self.selectors.LOGIN_BUTTON).click()
            logger.info(f"Navigation after login click completed. Current URL: {page.url}")

            content = await page.content()
            if self.selectors.LOGIN_INVALID_CREDENTIALS_TEXT in content:
                return PortalSession(success=False, message=self.selectors.LOGIN_INVALID_CREDENTIALS_TEXT)
            if self.selectors.LOGIN_SUCCESS_TEXT not in content:
                await playwright_utils.safe_screenshot(page, self.settings, "login_no_welcome")
                return PortalSession(success=False, message="Login did not reach an authenticated portal page")

            cookies = await context.cookies()
            logger.info(f"Portal login successful; captured {len(cookies)} cookie(s).")
            return PortalSession(success=True, cookies=playwright_utils.cookies_to_jar(cookies), user_agent=user_agent)
        except PlaywrightTimeoutError as e:
            logger.error(f"Timeout during portal login: {e}")
            if page:
                await playwright_utils.safe_screenshot(page, self.settings, "login_timeout")
            return PortalSession(success=False, message=f"Timed out during portal login: {e}")
        except Exception as e:
            logger.error(f"An error occurred during portal login: {e}", exc_info=True)
            return PortalSession(success=False, message=f"Portal login failed: {e}")
        finally:
            if context:
                try:
                    await context.close()
                except Exception as e:
                    logger.debug(f"Error closing login context: {e}")
            if browser and browser.is_connected():
                try:
                    await browser.close()
                except Exception as e:
                    logger.debug(f"Error closing login browser: {e}")
