# caselookup/services/alert_service.py
import re
import enum
import time
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Callable
import httpx

from caselookup.core.config import AppSettings

logger = logging.getLogger(__name__)

ERROR_CACHE_TTL_SECONDS = 15 * 60
ERROR_REPORT_THRESHOLD = 10
ERROR_REPORT_INTERVAL_SECONDS = 5 * 60
WEBHOOK_TIMEOUT_SECONDS = 10.0


class Severity(str, enum.Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AlertCategory(str, enum.Enum):
    AUTHENTICATION = "AUTH"
    DATABASE = "DB"
    NETWORK = "NET"
    PORTAL = "PORTAL"
    QUEUE = "QUEUE"
    SYSTEM = "SYS"


_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
    Severity.CRITICAL: logging.CRITICAL,
}


def generate_error_key(message: str, category: AlertCategory) -> str:
    normalized = re.sub(r"\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b", "UUID", message, flags=re.IGNORECASE)
    normalized = re.sub(r"\b\d{4}-\d{2}-\d{2}\b", "DATE", normalized)
    normalized = re.sub(r"\b\d{2}:\d{2}:\d{2}\b", "TIME", normalized)
    normalized = re.sub(r"[0-9]{5,}", "NUMBER", normalized)
    normalized = re.sub(r"\s+", " ", normalized).strip()
    return f"{category.value}:{normalized}"


class _ErrorCacheEntry:
    __slots__ = ("count", "first_seen", "last_seen", "last_reported")

    def __init__(self, now: float):
        self.count = 0
        self.first_seen = now
        self.last_seen = now
        self.last_reported: Optional[float] = None


class AlertService:
    """
    Logs failures and forwards the ones worth waking someone for to a webhook.

    Repeats of the same failure (same category and message once ids, dates and
    long numbers are stripped) are counted for 15 minutes. CRITICAL always
    notifies; ERROR notifies on its first occurrence, then at 10 repeats or
    after 5 quiet minutes; WARNING only once 20 repeats pile up.
    Reporting never raises.
    """

    def __init__(
        self,
        settings: AppSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.webhook_url = settings.ALERT_WEBHOOK_URL
        self._transport = transport
        self._clock = clock
        self._cache: Dict[str, _ErrorCacheEntry] = {}

    def _prune(self, now: float) -> None:
        expired = [k for k, v in self._cache.items() if now - v.last_seen > ERROR_CACHE_TTL_SECONDS]
        for key in expired:
            del self._cache[key]

    def _should_notify(self, severity: Severity, entry: _ErrorCacheEntry, now: float) -> bool:
        if severity == Severity.CRITICAL:
            return True
        if severity == Severity.ERROR:
            if entry.last_reported is None:
                return True
            return entry.count >= ERROR_REPORT_THRESHOLD or now - entry.last_reported > ERROR_REPORT_INTERVAL_SECONDS
        if severity == Severity.WARNING:
            return entry.count >= ERROR_REPORT_THRESHOLD * 2
        return False

    async def report(
        self,
        severity: Severity,
        category: AlertCategory,
        message: str,
        error: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Returns True when a notification was sent (or would have been, with no webhook configured)."""
        try:
            detail = f" ({error})" if error else ""
            logger.log(
                _LOG_LEVELS[severity],
                f"[{category.value}] {message}{detail} context={context or {}}",
                exc_info=error if severity in (Severity.ERROR, Severity.CRITICAL) and error else None,
            )

            now = self._clock()
            self._prune(now)
            key = generate_error_key(message, category)
            entry = self._cache.get(key)
            if entry is None:
                entry = self._cache[key] = _ErrorCacheEntry(now)
            entry.count += 1
            entry.last_seen = now

            if not self._should_notify(severity, entry, now):
                return False
            entry.last_reported = now
            await self._send(severity, category, message, entry.count, context)
            return True
        except Exception as e:
            logger.error(f"Alert reporting failed for '{message}': {e}")
            return False

    async def _send(
        self, severity: Severity, category: AlertCategory, message: str, count: int, context: Optional[Dict[str, Any]]
    ) -> None:
        if not self.webhook_url:
            logger.debug(f"No ALERT_WEBHOOK_URL configured; {severity.value} alert kept in logs only.")
            return

        prefix = f"[CaseLookup {self.settings.STAGE}] {severity.value} {category.value}: "
        sanitized = re.sub(r"[^\x20-\x7E]", "", message)[:max(0, 100 - len(prefix))]
        payload = {
            "subject": prefix + (sanitized or "[No message provided]"),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "severity": severity.value,
            "category": category.value,
            "message": message,
            "count": count,
            "context": {k: str(v) for k, v in (context or {}).items()},
            "stage": self.settings.STAGE,
        }
        try:
            async with httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT_SECONDS, transport=self._transport) as client:
                response = await client.post(self.webhook_url, json=payload)
                if response.status_code >= 400:
                    logger.error(f"Alert webhook returned {response.status_code}: {response.text[:200]}")
        except httpx.HTTPError as e:
            logger.error(f"Failed to send alert notification: {e}")

    def for_category(self, category: AlertCategory) -> "CategoryAlerter":
        return CategoryAlerter(self, category)


class CategoryAlerter:
    def __init__(self, service: AlertService, category: AlertCategory):
        self.service = service
        self.category = category

    async def info(self, message: str, context: Optional[Dict[str, Any]] = None) -> bool:
        return await self.service.report(Severity.INFO, self.category, message, None, context)

    async def warn(self, message: str, error: Optional[BaseException] = None, context: Optional[Dict[str, Any]] = None) -> bool:
        return await self.service.report(Severity.WARNING, self.category, message, error, context)

    async def error(self, message: str, error: Optional[BaseException] = None, context: Optional[Dict[str, Any]] = None) -> bool:
        return await self.service.report(Severity.ERROR, self.category, message, error, context)

    async def critical(self, message: str, error: Optional[BaseException] = None, context: Optional[Dict[str, Any]] = None) -> bool:
        return await self.service.report(Severity.CRITICAL, self.category, message, error, context)
