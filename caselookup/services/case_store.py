# caselookup/services/case_store.py
import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from caselookup.db import crud, models as db_models
from caselookup.services.case_status import CaseRecord
from caselookup.utils.common import ensure_utc

logger = logging.getLogger(__name__)


class CaseStoreError(Exception):
    """Raised when the case table cannot be read or written."""


def to_case_record(db_case: db_models.Case) -> CaseRecord:
    return CaseRecord(
        case_number=db_case.case_number,
        case_id=db_case.case_id,
        status=db_case.status,
        status_message=db_case.status_message,
        last_updated=ensure_utc(db_case.last_updated),
        summary=db_case.summary,
    )


class CaseStore:
    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def read_one(self, case_number: str) -> Optional[CaseRecord]:
        db = self.session_factory()
        try:
            db_case = crud.get_case_by_case_number(db, case_number)
            return to_case_record(db_case) if db_case else None
        except SQLAlchemyError as e:
            raise CaseStoreError(f"Failed to read case {case_number}: {e}") from e
        finally:
            db.close()

    def read_many(self, case_numbers: Iterable[str]) -> Dict[str, CaseRecord]:
        case_numbers = list(case_numbers)
        if not case_numbers:
            return {}
        db = self.session_factory()
        try:
            return {c.case_number: to_case_record(c) for c in crud.get_cases_by_case_numbers(db, case_numbers)}
        except SQLAlchemyError as e:
            raise CaseStoreError(f"Failed to read {len(case_numbers)} cases: {e}") from e
        finally:
            db.close()

    def upsert(self, case_number: str, **fields) -> CaseRecord:
        db = self.session_factory()
        try:
            return to_case_record(crud.upsert_case(db, case_number, fields))
        except SQLAlchemyError as e:
            db.rollback()
            raise CaseStoreError(f"Failed to write case {case_number}: {e}") from e
        finally:
            db.close()

    def compare_and_set(
        self,
        case_number: str,
        expected_status: Optional[str],
        expected_last_updated: Optional[datetime],
        **fields,
    ) -> bool:
        """Write `fields` only if the stored record still has the status/last_updated last read.

        `expected_status=None` means the record must not exist yet. Returns False when
        another writer got there first.
        """
        if isinstance(expected_status, db_models.FetchStatus):
            expected_status = expected_status.value
        db = self.session_factory()
        try:
            return crud.compare_and_set_case(
                db, case_number, expected_status, ensure_utc(expected_last_updated), fields
            )
        except SQLAlchemyError as e:
            db.rollback()
            raise CaseStoreError(f"Conditional write failed for case {case_number}: {e}") from e
        finally:
            db.close()
