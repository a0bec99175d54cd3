# caselookup/db/crud.py
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from caselookup.db import models as db_models
from caselookup.utils import common
from typing import Optional, List, Dict, Any, Iterable
import logging
from datetime import datetime

logger = logging.getLogger(__name__)

# Columns a caller may write through upsert_case; case_number is the key.
CASE_WRITABLE_FIELDS = {"case_id", "status", "status_message", "last_updated", "summary"}

def get_case_by_case_number(db: Session, case_number: str) -> Optional[db_models.Case]:
    return db.query(db_models.Case).filter(
        db_models.Case.case_number == common.normalize_case_number(case_number)
    ).first()

def get_cases_by_case_numbers(db: Session, case_numbers: Iterable[str]) -> List[db_models.Case]:
    keys = {common.normalize_case_number(c) for c in case_numbers}
    if not keys:
        return []
    return db.query(db_models.Case).filter(db_models.Case.case_number.in_(keys)).all()

def _apply_case_fields(db_case: db_models.Case, fields: Dict[str, Any]) -> None:
    for key, value in fields.items():
        if key not in CASE_WRITABLE_FIELDS:
            raise ValueError(f"Unknown case field '{key}'")
        if key == "status" and isinstance(value, db_models.FetchStatus):
            value = value.value
        setattr(db_case, key, value)

def upsert_case(db: Session, case_number: str, fields: Dict[str, Any]) -> db_models.Case:
    """Merge-write: only the given fields change, everything else is left as stored."""
    key = common.normalize_case_number(case_number)
    db_case = db.get(db_models.Case, key)
    if db_case is None:
        db_case = db_models.Case(case_number=key)
        db.add(db_case)
    _apply_case_fields(db_case, fields)
    db.commit()
    db.refresh(db_case)
    return db_case

def compare_and_set_case(
    db: Session,
    case_number: str,
    expected_status: Optional[str],
    expected_last_updated: Optional[datetime],
    fields: Dict[str, Any],
) -> bool:
    """Conditional write: applies `fields` only if the stored status and last_updated still match."""
    key = common.normalize_case_number(case_number)
    query = db.query(db_models.Case).filter(db_models.Case.case_number == key)
    if expected_status is None:
        # Expect no record at all; fall back to an insert that loses to any concurrent creator.
        if query.first() is not None:
            return False
        db_case = db_models.Case(case_number=key)
        _apply_case_fields(db_case, fields)
        db.add(db_case)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return False
        return True

    query = query.filter(db_models.Case.status == expected_status)
    if expected_last_updated is None:
        query = query.filter(db_models.Case.last_updated.is_(None))
    else:
        query = query.filter(db_models.Case.last_updated == expected_last_updated)

    values = {}
    for k, v in fields.items():
        if k not in CASE_WRITABLE_FIELDS:
            raise ValueError(f"Unknown case field '{k}'")
        values[k] = v.value if isinstance(v, db_models.FetchStatus) else v
    updated = query.update(values, synchronize_session=False)
    db.commit()
    return updated == 1

def get_portal_credentials(db: Session, user_id: str) -> Optional[db_models.PortalCredential]:
    return db.query(db_models.PortalCredential).filter(db_models.PortalCredential.user_id == user_id).first()

def save_portal_credentials(db: Session, user_id: str, username: str, encrypted_password: str) -> db_models.PortalCredential:
    db_creds = get_portal_credentials(db, user_id)
    if db_creds is None:
        db_creds = db_models.PortalCredential(user_id=user_id, username=username, encrypted_password=encrypted_password, is_bad=False)
        db.add(db_creds)
    else:
        db_creds.username = username
        db_creds.encrypted_password = encrypted_password
        db_creds.is_bad = False
    db.commit()
    db.refresh(db_creds)
    return db_creds

def mark_portal_credentials_bad(db: Session, user_id: str) -> None:
    db_creds = get_portal_credentials(db, user_id)
    if db_creds:
        db_creds.is_bad = True
        db.commit()

def get_user_session(db: Session, user_id: str) -> Optional[db_models.UserSession]:
    return db.query(db_models.UserSession).filter(db_models.UserSession.user_id == user_id).first()

def save_user_session(
    db: Session, user_id: str, cookies: List[Dict[str, Any]], expires_at: datetime, user_agent: Optional[str] = None
) -> db_models.UserSession:
    db_session_row = get_user_session(db, user_id)
    if db_session_row is None:
        db_session_row = db_models.UserSession(user_id=user_id)
        db.add(db_session_row)
    db_session_row.cookies = cookies
    db_session_row.expires_at = expires_at
    db_session_row.user_agent = user_agent
    db.commit()
    db.refresh(db_session_row)
    return db_session_row

def delete_user_session(db: Session, user_id: str) -> bool:
    db_session_row = get_user_session(db, user_id)
    if db_session_row:
        db.delete(db_session_row)
        db.commit()
        return True
    return False

def get_user_agent(db: Session, user_id: str) -> Optional[str]:
    row = db.query(db_models.UserAgentPreference).filter(db_models.UserAgentPreference.user_id == user_id).first()
    return row.user_agent if row else None

def save_user_agent(db: Session, user_id: str, user_agent: str) -> None:
    row = db.get(db_models.UserAgentPreference, user_id)
    if row is None:
        db.add(db_models.UserAgentPreference(user_id=user_id, user_agent=user_agent))
    else:
        row.user_agent = user_agent
    db.commit()
