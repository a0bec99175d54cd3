# caselookup/services/case_status.py
"""
Case status transition rules.

Both orchestrators read a stored CaseRecord and must decide what to do next.
The rules live here as pure functions over a closed FetchStatus enum so every
(status, case id present, summary current) combination is handled explicitly.
"""
import enum
import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from pydantic import BaseModel

from caselookup.db.models import FetchStatus
from caselookup.utils.common import ensure_utc

logger = logging.getLogger(__name__)


class CaseRecord(BaseModel):
    case_number: str
    case_id: Optional[str] = None
    status: FetchStatus = FetchStatus.QUEUED
    status_message: Optional[str] = None
    last_updated: Optional[datetime] = None
    summary: Optional[Dict[str, Any]] = None

    class Config:
        extra = 'ignore'
        from_attributes = True


class RequestAction(str, enum.Enum):
    CREATE_AND_SEARCH = "create_and_search"  # absent: write queued, enqueue search
    NONE = "none"                            # terminal, return as stored
    REFRESH_SUMMARY = "refresh_summary"      # rewrite to found, enqueue data retrieval
    SEARCH = "search"                        # enqueue search, status untouched
    RETRIEVE = "retrieve"                    # enqueue data retrieval, status untouched


class RecordAction(str, enum.Enum):
    ALREADY_RESOLVED = "already_resolved"    # found/complete with case id: ack and stop
    BEGIN_PROCESSING = "begin_processing"    # queued/failed/notFound -> processing
    SKIP_ACTIVE = "skip_active"              # fresh processing: leave message unacknowledged
    RESUME_STALE = "resume_stale"            # abandoned processing -> processing again
    PROCEED = "proceed"                      # no status write needed before searching


def is_summary_current(record: CaseRecord, summary_version_date: datetime) -> bool:
    if not record.summary:
        return False
    last_updated = ensure_utc(record.last_updated)
    if last_updated is None:
        return False
    return last_updated >= ensure_utc(summary_version_date)


def decide_request_action(record: Optional[CaseRecord], summary_version_date: datetime) -> RequestAction:
    if record is None:
        return RequestAction.CREATE_AND_SEARCH

    status = FetchStatus(record.status)
    has_case_id = bool(record.case_id)

    if status == FetchStatus.COMPLETE:
        if not has_case_id:
            return RequestAction.SEARCH
        if is_summary_current(record, summary_version_date):
            return RequestAction.NONE
        return RequestAction.REFRESH_SUMMARY

    if status in (FetchStatus.FOUND, FetchStatus.REPROCESSING):
        return RequestAction.RETRIEVE if has_case_id else RequestAction.SEARCH

    if status in (FetchStatus.NOT_FOUND, FetchStatus.FAILED, FetchStatus.QUEUED, FetchStatus.PROCESSING):
        return RequestAction.SEARCH

    raise ValueError(f"Unhandled case status '{status}' for {record.case_number}")


def is_processing_stale(record: CaseRecord, now: datetime, processing_timeout: timedelta) -> bool:
    last_updated = ensure_utc(record.last_updated)
    if last_updated is None:
        return True
    return ensure_utc(now) - last_updated >= processing_timeout


def decide_record_action(record: Optional[CaseRecord], now: datetime, processing_timeout: timedelta) -> RecordAction:
    """Re-validate a stored record when a search message is delivered (possibly again)."""
    if record is None:
        return RecordAction.PROCEED

    status = FetchStatus(record.status)
    has_case_id = bool(record.case_id)

    if status in (FetchStatus.FOUND, FetchStatus.COMPLETE) and has_case_id:
        return RecordAction.ALREADY_RESOLVED
    if status in (FetchStatus.QUEUED, FetchStatus.FAILED, FetchStatus.NOT_FOUND):
        return RecordAction.BEGIN_PROCESSING
    if status == FetchStatus.PROCESSING:
        if is_processing_stale(record, now, processing_timeout):
            return RecordAction.RESUME_STALE
        return RecordAction.SKIP_ACTIVE
    if status in (FetchStatus.FOUND, FetchStatus.COMPLETE, FetchStatus.REPROCESSING):
        return RecordAction.PROCEED

    raise ValueError(f"Unhandled case status '{status}' for {record.case_number}")
