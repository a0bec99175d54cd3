# caselookup/services/portal_search_client.py
"""
Two-step Smart Search against the court portal.

The search form is posted with the raw case number, then the results page is
fetched and scanned for case links. A page with no case links means the case
does not exist on the portal; every other failure is a system error and is
alerted.
"""
import time
import logging
from typing import Dict, Optional, Callable
import httpx
from bs4 import BeautifulSoup
from pydantic import BaseModel

from caselookup.core.config import AppSettings, PortalSelectors
from caselookup.services.alert_service import AlertService, AlertCategory, Severity
from caselookup.services.portal_authenticator import PortalSession, default_request_headers, MISSING_PORTAL_URL_MESSAGE
from caselookup.services.user_agent_client import UserAgentClient, SYSTEM_PURPOSE
from caselookup.utils.common import preview_text

logger = logging.getLogger(__name__)

REPEAT_ATTEMPT_WARNING_MS = 100
MONITOR_RETENTION_SECONDS = 5 * 60


class SearchError(BaseModel):
    message: str
    is_system_error: bool


class CaseSearchResult(BaseModel):
    case_id: Optional[str] = None
    error: Optional[SearchError] = None


class SearchAttemptMonitor:
    """
    Remembers when each case number was last searched in this process and warns
    about repeats closer together than 100 ms. Diagnostic only: it knows nothing
    about other processes and never blocks a search.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._last_attempts: Dict[str, float] = {}

    def record_attempt(self, case_number: str, request_tag: str) -> Optional[float]:
        """Returns the gap in milliseconds when a suspiciously close repeat was seen."""
        now = self._clock()
        gap_ms = None
        previous = self._last_attempts.get(case_number)
        if previous is not None:
            elapsed_ms = (now - previous) * 1000
            if elapsed_ms < REPEAT_ATTEMPT_WARNING_MS:
                gap_ms = elapsed_ms
                logger.warning(
                    f"[{request_tag}] Possible duplicate search: {case_number} searched again after {elapsed_ms:.0f}ms "
                    f"(< {REPEAT_ATTEMPT_WARNING_MS}ms)"
                )
        self._last_attempts[case_number] = now

        cutoff = now - MONITOR_RETENTION_SECONDS
        for key in [k for k, t in self._last_attempts.items() if t < cutoff]:
            del self._last_attempts[key]
        return gap_ms

    def __len__(self) -> int:
        return len(self._last_attempts)


def _trace_hooks(request_tag: str) -> Dict[str, list]:
    async def log_request(request: httpx.Request):
        request.extensions["trace_started"] = time.monotonic()
        logger.info(f"[{request_tag}] >>> {request.method} {request.url} headers={dict(request.headers)}")

    async def log_response(response: httpx.Response):
        started = response.request.extensions.get("trace_started", time.monotonic())
        duration_ms = (time.monotonic() - started) * 1000
        logger.info(
            f"[{request_tag}] <<< {response.status_code} {response.request.url} "
            f"({duration_ms:.0f}ms) headers={dict(response.headers)}"
        )

    return {"request": [log_request], "response": [log_response]}


class PortalSearchClient:
    def __init__(
        self,
        settings: AppSettings,
        alerts: AlertService,
        user_agents: Optional[UserAgentClient] = None,
        monitor: Optional[SearchAttemptMonitor] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.selectors: PortalSelectors = settings.PORTAL_SELECTORS
        self.alerts = alerts
        self.user_agents = user_agents
        self.monitor = monitor
        self._transport = transport

    def _resolve_user_agent(self, session: PortalSession) -> str:
        if session.user_agent:
            return session.user_agent
        if self.user_agents:
            return self.user_agents.get_user_agent(SYSTEM_PURPOSE)
        return self.settings.DEFAULT_USER_AGENT

    def _build_client(self, portal_url: str, session: PortalSession, request_tag: str) -> httpx.AsyncClient:
        headers = default_request_headers(self._resolve_user_agent(session))
        headers["Origin"] = portal_url
        headers["Content-Type"] = "application/x-www-form-urlencoded"
        return httpx.AsyncClient(
            cookies=session.cookies,
            headers=headers,
            timeout=self.settings.PORTAL_REQUEST_TIMEOUT_SECONDS,
            follow_redirects=True,
            max_redirects=self.settings.PORTAL_MAX_REDIRECTS,
            event_hooks=_trace_hooks(request_tag) if self.settings.TRACE_PORTAL_HTTP else None,
            transport=self._transport,
        )

    async def _system_error(
        self, message: str, severity: Severity, context: Dict, error: Optional[BaseException] = None
    ) -> CaseSearchResult:
        await self.alerts.report(severity, AlertCategory.PORTAL, message, error, context)
        return CaseSearchResult(error=SearchError(message=message, is_system_error=True))

    def extract_case_id(self, html: str) -> Optional[str]:
        """First case link's id attribute; '' when a case link exists without the attribute, None with no links."""
        soup = BeautifulSoup(html, 'html.parser')
        first_link = soup.select_one(self.selectors.CASE_LINK_SELECTOR)
        if first_link is None:
            return None
        return first_link.get(self.selectors.CASE_ID_ATTRIBUTE) or ""

    async def fetch_case_id(self, case_number: str, session: PortalSession) -> CaseSearchResult:
        request_tag = f"{case_number}-{int(time.time() * 1000)}"
        if self.monitor:
            self.monitor.record_attempt(case_number, request_tag)

        portal_url = (self.settings.PORTAL_URL or "").rstrip("/")
        if not portal_url:
            await self.alerts.report(
                Severity.CRITICAL, AlertCategory.SYSTEM, "Missing required environment variable: PORTAL_URL",
                RuntimeError(MISSING_PORTAL_URL_MESSAGE), {"resource": "case-search"},
            )
            return CaseSearchResult(error=SearchError(message="Portal URL environment variable is not set", is_system_error=True))

        context = {"request_id": request_tag, "case_number": case_number, "resource": "portal-search"}
        try:
            async with self._build_client(portal_url, session, request_tag) as client:
                logger.info(f"[{request_tag}] Searching for case number {case_number}")
                search_started = time.monotonic()
                search_response = await client.post(
                    portal_url + self.selectors.SEARCH_FORM_PATH,
                    data={
                        self.selectors.SEARCH_CRITERIA_FIELD: case_number,
                        self.selectors.SEARCH_CASES_FIELD: "true",
                    },
                )
                search_ms = int((time.monotonic() - search_started) * 1000)
                if search_response.status_code != 200:
                    logger.error(f"[{request_tag}] Search request failed with status {search_response.status_code} ({search_ms}ms)")
                    return await self._system_error(
                        f"Search request failed with status {search_response.status_code}", Severity.ERROR,
                        {**context, "status_code": search_response.status_code, "duration_ms": search_ms,
                         "body_preview": preview_text(search_response.text)},
                    )

                results_started = time.monotonic()
                results_response = await client.get(portal_url + self.selectors.SEARCH_RESULTS_PATH)
                results_ms = int((time.monotonic() - results_started) * 1000)
                if results_response.status_code != 200:
                    logger.error(f"[{request_tag}] Results request failed with status {results_response.status_code} ({results_ms}ms)")
                    return await self._system_error(
                        f"Results request failed with status {results_response.status_code}", Severity.ERROR,
                        {**context, "status_code": results_response.status_code, "duration_ms": results_ms,
                         "body_preview": preview_text(results_response.text)},
                    )

                html = results_response.text
                if self.selectors.SEARCH_TROUBLE_TEXT in html:
                    return await self._system_error(
                        "Smart Search is having trouble processing your search. Please try again later.",
                        Severity.ERROR, {**context, "duration_ms": search_ms + results_ms},
                    )

                case_id = self.extract_case_id(html)
                if case_id is None:
                    logger.info(f"[{request_tag}] No cases found for case number {case_number}")
                    return CaseSearchResult(
                        error=SearchError(message=f"No cases found for case number {case_number}", is_system_error=False)
                    )
                if not case_id:
                    return await self._system_error(
                        f"No case ID found in search results for {case_number}", Severity.ERROR,
                        {**context, "body_preview": preview_text(html)},
                    )

                logger.info(f"[{request_tag}] Found case ID {case_id} for {case_number} ({search_ms + results_ms}ms)")
                return CaseSearchResult(case_id=case_id)
        except httpx.HTTPError as e:
            logger.error(f"[{request_tag}] Error fetching case ID from portal: {e}")
            return await self._system_error(
                f"Error fetching case ID from portal: {e}", Severity.ERROR,
                {**context, "error_type": type(e).__name__}, e,
            )
        except Exception as e:
            logger.error(f"[{request_tag}] Unexpected error fetching case ID from portal: {e}", exc_info=True)
            return await self._system_error(
                f"Error fetching case ID from portal: {e}", Severity.ERROR,
                {**context, "error_type": type(e).__name__}, e,
            )
