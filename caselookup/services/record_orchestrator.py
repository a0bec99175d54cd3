# caselookup/services/record_orchestrator.py
import enum
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from caselookup.core.config import AppSettings
from caselookup.db.models import FetchStatus
from caselookup.services.alert_service import AlertService, AlertCategory
from caselookup.services.case_status import RecordAction, decide_record_action
from caselookup.services.case_store import CaseStore
from caselookup.services.portal_authenticator import PortalAuthenticator
from caselookup.services.portal_search_client import PortalSearchClient
from caselookup.services.queue_client import QueueClient, QueueType
from caselookup.utils.common import utcnow

logger = logging.getLogger(__name__)


class RecordOutcome(str, enum.Enum):
    ALREADY_RESOLVED = "already_resolved"
    SKIPPED_ACTIVE = "skipped_active"
    SKIPPED_CONTENDED = "skipped_contended"
    AUTH_FAILED = "auth_failed"
    SYSTEM_ERROR = "system_error"
    NOT_FOUND = "not_found"
    FOUND = "found"
    UNHANDLED_ERROR = "unhandled_error"


class RecordOrchestrator:
    """
    Handles one search-queue message.

    The stored status is re-read first because the same message can arrive more
    than once. Every exit acknowledges the message except the two skip paths,
    which leave it for redelivery once the visibility timeout passes.
    """

    def __init__(
        self,
        settings: AppSettings,
        store: CaseStore,
        queues: QueueClient,
        sessions: PortalAuthenticator,
        search_client: PortalSearchClient,
        alerts: AlertService,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.store = store
        self.queues = queues
        self.sessions = sessions
        self.search_client = search_client
        self.alerts = alerts
        self.search_alerts = alerts.for_category(AlertCategory.PORTAL)
        self.auth_alerts = alerts.for_category(AlertCategory.AUTHENTICATION)
        self.queue_alerts = alerts.for_category(AlertCategory.QUEUE)
        self.clock = clock
        self.processing_timeout = timedelta(minutes=settings.PROCESSING_TIMEOUT_MINUTES)

    async def _acknowledge(self, receipt_handle: str, case_number: str) -> bool:
        try:
            await self.queues.acknowledge(receipt_handle, QueueType.SEARCH)
            return True
        except Exception as e:
            await self.queue_alerts.error(
                "Failed to acknowledge search message", e,
                {"case_number": case_number, "receipt_handle": receipt_handle},
            )
            return False

    async def process_case_search_record(
        self, case_number: str, user_id: str, receipt_handle: str, user_agent: Optional[str] = None
    ) -> RecordOutcome:
        log_prefix = f"[{case_number}]"
        logger.info(f"{log_prefix} Processing case search (user: {user_id})")
        try:
            now = self.clock()
            record = self.store.read_one(case_number)
            action = decide_record_action(record, now, self.processing_timeout)

            if action == RecordAction.ALREADY_RESOLVED:
                await self._acknowledge(receipt_handle, case_number)
                logger.info(f"{log_prefix} Already has case id {record.case_id}; search message acknowledged")
                return RecordOutcome.ALREADY_RESOLVED

            if action == RecordAction.SKIP_ACTIVE:
                logger.info(f"{log_prefix} Already being processed since {record.last_updated}; skipping")
                return RecordOutcome.SKIPPED_ACTIVE

            if action in (RecordAction.BEGIN_PROCESSING, RecordAction.RESUME_STALE):
                if action == RecordAction.RESUME_STALE:
                    logger.info(f"{log_prefix} Reprocessing after timeout in 'processing' state (since {record.last_updated})")
                claimed = self.store.compare_and_set(
                    case_number, record.status, record.last_updated,
                    status=FetchStatus.PROCESSING, status_message=None, last_updated=now,
                )
                if not claimed:
                    logger.info(f"{log_prefix} Status changed underneath us; another worker is handling it")
                    return RecordOutcome.SKIPPED_CONTENDED

            session = await self.sessions.get_or_create_session(user_id, user_agent)
            if not session.success or session.cookies is None:
                message = (
                    session.message or "Unknown authentication error"
                    if not session.success
                    else f"No session cookies found for user {user_id}"
                )
                alert_context = {"user_id": user_id, "case_number": case_number}
                alert_message = "Portal authentication failed during case search: " + message
                if self.settings.PORTAL_SELECTORS.LOGIN_INVALID_CREDENTIALS_TEXT in message:
                    await self.auth_alerts.error(alert_message, None, alert_context)
                else:
                    await self.auth_alerts.critical(alert_message, None, alert_context)

                self.store.upsert(case_number, status=FetchStatus.FAILED, status_message=message, last_updated=now)
                await self._acknowledge(receipt_handle, case_number)
                logger.info(f"{log_prefix} Authentication failed for user {user_id}; search message acknowledged")
                return RecordOutcome.AUTH_FAILED

            result = await self.search_client.fetch_case_id(case_number, session)

            if not result.case_id:
                if result.error and result.error.is_system_error:
                    await self.search_alerts.error(
                        "Case search failed with system error: " + result.error.message,
                        RuntimeError(result.error.message),
                        {"user_id": user_id, "case_number": case_number, "resource": "case-search"},
                    )
                    self.store.upsert(
                        case_number, status=FetchStatus.FAILED, status_message=result.error.message, last_updated=now
                    )
                    await self._acknowledge(receipt_handle, case_number)
                    return RecordOutcome.SYSTEM_ERROR

                logger.warning(f"{log_prefix} Case not found for user {user_id}")
                self.store.upsert(case_number, status=FetchStatus.NOT_FOUND, status_message=None, last_updated=now)
                await self._acknowledge(receipt_handle, case_number)
                return RecordOutcome.NOT_FOUND

            self.store.upsert(
                case_number, case_id=result.case_id, status=FetchStatus.FOUND, status_message=None, last_updated=now
            )
            await self._acknowledge(receipt_handle, case_number)
            await self.queues.queue_case_for_data_retrieval(case_number, result.case_id, user_id, user_agent)
            logger.info(f"{log_prefix} Found with case id {result.case_id}; queued for data retrieval")
            return RecordOutcome.FOUND

        except Exception as e:
            message = f"Unhandled error while searching case {case_number}: {e}"
            await self.search_alerts.error(
                "Unhandled error during case search", e, {"case_number": case_number, "user_id": user_id}
            )
            try:
                self.store.upsert(
                    case_number, status=FetchStatus.FAILED, status_message=message, last_updated=self.clock()
                )
            except Exception as save_error:
                logger.error(f"{log_prefix} Failed to save error status: {save_error}")
            await self._acknowledge(receipt_handle, case_number)
            return RecordOutcome.UNHANDLED_ERROR
