# caselookup/db/models.py
from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, JSON
from sqlalchemy.sql import func
from caselookup.db.session import Base
import enum

# --- Enums ---
class FetchStatus(str, enum.Enum):
    # Values are persisted and read by the data-retrieval stage; do not rename.
    QUEUED = "queued"
    PROCESSING = "processing"
    FOUND = "found"
    NOT_FOUND = "notFound"
    FAILED = "failed"
    REPROCESSING = "reprocessing"
    COMPLETE = "complete"


# --- Main Case Table ---
class Case(Base):
    __tablename__ = "cases"

    case_number = Column(String, primary_key=True, index=True) # Upper-cased natural key
    case_id = Column(String, nullable=True) # Portal's internal identifier, kept once learned

    status = Column(String, default=FetchStatus.QUEUED.value, nullable=False)
    status_message = Column(Text, nullable=True)
    last_updated = Column(DateTime(timezone=True), nullable=True)

    # Written by the data-retrieval stage
    summary = Column(JSON, nullable=True)

    def __repr__(self):
        return f"<Case(case_number='{self.case_number}', status='{self.status}', case_id='{self.case_id}')>"


class PortalCredential(Base):
    __tablename__ = "portal_credentials"

    user_id = Column(String, primary_key=True, index=True)
    username = Column(String, nullable=False)
    encrypted_password = Column(String, nullable=False)
    is_bad = Column(Boolean, default=False, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<PortalCredential(user_id='{self.user_id}', is_bad={self.is_bad})>"


class UserSession(Base):
    __tablename__ = "user_sessions"

    user_id = Column(String, primary_key=True, index=True)
    # [{"name": ..., "value": ..., "domain": ..., "path": ...}, ...]
    cookies = Column(JSON, nullable=False)
    user_agent = Column(String, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<UserSession(user_id='{self.user_id}', expires_at='{self.expires_at}')>"


class UserAgentPreference(Base):
    __tablename__ = "user_agents"

    user_id = Column(String, primary_key=True, index=True)
    user_agent = Column(String, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
