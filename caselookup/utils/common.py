import logging
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes even for timezone-aware columns; treat those as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def normalize_case_number(case_number: str) -> str:
    return case_number.strip().upper()

def preview_text(text: Optional[str], max_length: int = 1000) -> str:
    """Trimmed response body for logs and alert context."""
    if not text:
        return ""
    return text[:max_length]
