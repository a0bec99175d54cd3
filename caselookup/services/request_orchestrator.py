# caselookup/services/request_orchestrator.py
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from caselookup.core.config import AppSettings
from caselookup.db.models import FetchStatus
from caselookup.services.alert_service import AlertService, AlertCategory
from caselookup.services.case_status import CaseRecord, RequestAction, decide_request_action
from caselookup.services.case_store import CaseStore
from caselookup.services.portal_authenticator import PortalAuthenticator
from caselookup.services.queue_client import QueueClient
from caselookup.utils.common import utcnow, normalize_case_number

logger = logging.getLogger(__name__)


def _failed_record(case_number: str, message: str, existing: Optional[CaseRecord] = None) -> CaseRecord:
    return CaseRecord(
        case_number=case_number,
        case_id=existing.case_id if existing else None,
        status=FetchStatus.FAILED,
        status_message=message,
        last_updated=existing.last_updated if existing else None,
    )


class RequestOrchestrator:
    """
    Synchronous side of a case lookup: reconciles the requested case numbers with
    what is stored, queues whatever needs work and answers with the best-known
    state straight away.
    """

    def __init__(
        self,
        settings: AppSettings,
        store: CaseStore,
        queues: QueueClient,
        sessions: PortalAuthenticator,
        alerts: AlertService,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.store = store
        self.queues = queues
        self.sessions = sessions
        self.alerts = alerts.for_category(AlertCategory.QUEUE)
        self.clock = clock

    async def process_case_search_request(
        self, case_numbers: List[str], user_id: str, user_agent: Optional[str] = None
    ) -> Dict[str, CaseRecord]:
        requested = list(dict.fromkeys(normalize_case_number(c) for c in case_numbers if c and c.strip()))
        if not requested:
            return {}

        log_prefix = f"[{user_id}]"
        try:
            session = await self.sessions.get_or_create_session(user_id, user_agent)
            session_ok, session_message = session.success, session.message
        except Exception as e:
            logger.error(f"{log_prefix} Session provider raised: {e}", exc_info=True)
            session_ok, session_message = False, str(e)
        if not session_ok:
            logger.warning(f"{log_prefix} Authentication failed for {len(requested)} requested case(s): {session_message}")
            return {cn: _failed_record(cn, f"Authentication failed: {session_message}") for cn in requested}

        try:
            existing = self.store.read_many(requested)
        except Exception as e:
            logger.error(f"{log_prefix} Could not read stored cases: {e}", exc_info=True)
            return {cn: _failed_record(cn, str(e)) for cn in requested}

        results: Dict[str, CaseRecord] = {}
        to_search: List[str] = []

        for case_number in requested:
            record = existing.get(case_number)
            try:
                action = decide_request_action(record, self.settings.CASE_SUMMARY_VERSION_DATE)
                logger.debug(f"{log_prefix} {case_number}: status={record.status.value if record else 'absent'} -> {action.value}")

                if action == RequestAction.CREATE_AND_SEARCH:
                    results[case_number] = self.store.upsert(case_number, status=FetchStatus.QUEUED)
                    to_search.append(case_number)
                elif action == RequestAction.NONE:
                    results[case_number] = record
                elif action == RequestAction.REFRESH_SUMMARY:
                    logger.info(
                        f"{log_prefix} Case {case_number} is complete but its summary is "
                        f"{'outdated' if record.summary else 'missing'}; treating as found"
                    )
                    results[case_number] = self.store.upsert(
                        case_number, status=FetchStatus.FOUND, status_message=None, last_updated=self.clock()
                    )
                    await self.queues.queue_case_for_data_retrieval(case_number, record.case_id, user_id, user_agent)
                elif action == RequestAction.RETRIEVE:
                    results[case_number] = record
                    await self.queues.queue_case_for_data_retrieval(case_number, record.case_id, user_id, user_agent)
                elif action == RequestAction.SEARCH:
                    if record.status == FetchStatus.COMPLETE:
                        logger.warning(f"{log_prefix} Case {case_number} is complete without a case id; searching again")
                    results[case_number] = record
                    to_search.append(case_number)
            except Exception as e:
                logger.error(f"{log_prefix} Error processing case {case_number}: {e}", exc_info=True)
                results[case_number] = _failed_record(case_number, str(e), record)

        if to_search:
            logger.info(f"{log_prefix} Queueing {len(to_search)} case(s) for search")
            try:
                await self.queues.queue_cases_for_search(to_search, user_id, user_agent)
            except Exception as e:
                await self.alerts.error(
                    "Failed to queue cases for search", e, {"user_id": user_id, "case_count": len(to_search)}
                )
                for case_number in to_search:
                    results[case_number] = _failed_record(
                        case_number, f"Failed to queue case for search: {e}", results.get(case_number)
                    )

        return results
