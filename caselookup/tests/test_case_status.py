import itertools
import pytest
from datetime import datetime, timedelta, timezone

from caselookup.db.models import FetchStatus
from caselookup.services.case_status import (
    CaseRecord, RequestAction, RecordAction,
    decide_request_action, decide_record_action, is_summary_current,
)

CUTOFF = datetime(2025, 4, 1, tzinfo=timezone.utc)
NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
TIMEOUT = timedelta(minutes=5)


def make_record(status, case_id=None, summary_current=None):
    summary, last_updated = None, None
    if summary_current is True:
        summary, last_updated = {"parties": []}, CUTOFF + timedelta(days=1)
    elif summary_current is False:
        summary, last_updated = {"old": True}, CUTOFF - timedelta(days=1)
    return CaseRecord(case_number="22CR000001-590", case_id=case_id, status=status,
                      summary=summary, last_updated=last_updated)


def expected_request_action(status, has_case_id, summary_current):
    if status == FetchStatus.COMPLETE:
        if not has_case_id:
            return RequestAction.SEARCH
        return RequestAction.NONE if summary_current else RequestAction.REFRESH_SUMMARY
    if status in (FetchStatus.FOUND, FetchStatus.REPROCESSING):
        return RequestAction.RETRIEVE if has_case_id else RequestAction.SEARCH
    return RequestAction.SEARCH


@pytest.mark.parametrize(
    "status,has_case_id,summary_current",
    list(itertools.product(list(FetchStatus), [True, False], [True, False, None])),
)
def test_decision_table_covers_every_combination(status, has_case_id, summary_current):
    record = make_record(status, "X1" if has_case_id else None, summary_current)
    action = decide_request_action(record, CUTOFF)
    assert action == expected_request_action(status, has_case_id, bool(summary_current))


def test_absent_record_is_created_and_searched():
    assert decide_request_action(None, CUTOFF) == RequestAction.CREATE_AND_SEARCH


def test_complete_with_summary_but_no_timestamp_is_stale():
    record = CaseRecord(case_number="A", case_id="X1", status=FetchStatus.COMPLETE, summary={"a": 1})
    assert not is_summary_current(record, CUTOFF)
    assert decide_request_action(record, CUTOFF) == RequestAction.REFRESH_SUMMARY


def test_summary_written_exactly_at_cutoff_is_current():
    record = CaseRecord(case_number="A", case_id="X1", status=FetchStatus.COMPLETE,
                        summary={"a": 1}, last_updated=CUTOFF)
    assert is_summary_current(record, CUTOFF)


def test_naive_timestamps_are_read_as_utc():
    record = CaseRecord(case_number="A", case_id="X1", status=FetchStatus.COMPLETE,
                        summary={"a": 1}, last_updated=datetime(2025, 5, 1))
    assert is_summary_current(record, CUTOFF)


@pytest.mark.parametrize("status", [FetchStatus.FOUND, FetchStatus.COMPLETE])
def test_resolved_record_with_case_id_short_circuits(status):
    record = CaseRecord(case_number="A", case_id="X1", status=status)
    assert decide_record_action(record, NOW, TIMEOUT) == RecordAction.ALREADY_RESOLVED


@pytest.mark.parametrize("status", [FetchStatus.QUEUED, FetchStatus.FAILED, FetchStatus.NOT_FOUND])
def test_waiting_statuses_begin_processing(status):
    record = CaseRecord(case_number="A", status=status, last_updated=NOW)
    assert decide_record_action(record, NOW, TIMEOUT) == RecordAction.BEGIN_PROCESSING


def test_processing_four_minutes_fifty_nine_is_skipped():
    record = CaseRecord(case_number="A", status=FetchStatus.PROCESSING,
                        last_updated=NOW - timedelta(minutes=4, seconds=59))
    assert decide_record_action(record, NOW, TIMEOUT) == RecordAction.SKIP_ACTIVE


def test_processing_five_minutes_one_second_is_resumed():
    record = CaseRecord(case_number="A", status=FetchStatus.PROCESSING,
                        last_updated=NOW - timedelta(minutes=5, seconds=1))
    assert decide_record_action(record, NOW, TIMEOUT) == RecordAction.RESUME_STALE


def test_processing_without_timestamp_is_resumed():
    record = CaseRecord(case_number="A", status=FetchStatus.PROCESSING)
    assert decide_record_action(record, NOW, TIMEOUT) == RecordAction.RESUME_STALE


@pytest.mark.parametrize("record", [
    None,
    CaseRecord(case_number="A", status=FetchStatus.FOUND),
    CaseRecord(case_number="A", status=FetchStatus.COMPLETE),
    CaseRecord(case_number="A", status=FetchStatus.REPROCESSING, case_id="X1"),
])
def test_other_records_proceed_without_status_write(record):
    assert decide_record_action(record, NOW, TIMEOUT) == RecordAction.PROCEED
