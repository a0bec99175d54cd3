# caselookup/models_api/search.py
from pydantic import BaseModel, Field
from typing import Dict, List, Optional, Any
from datetime import datetime

class CaseSearchRequest(BaseModel):
    search: str = Field(..., min_length=1, max_length=20000, description="Free text containing one or more case numbers.")
    user_agent: Optional[str] = Field(None, description="Browser user agent to use for portal traffic on behalf of the user.")

class CaseStatusRequest(BaseModel):
    case_numbers: List[str] = Field(..., min_length=1, max_length=100)

class FetchStatusResponse(BaseModel):
    status: str
    message: Optional[str] = None

class CaseResult(BaseModel):
    case_number: str
    case_id: Optional[str] = None
    fetch_status: FetchStatusResponse
    last_updated: Optional[datetime] = None
    summary: Optional[Dict[str, Any]] = None

class CaseSearchResponse(BaseModel):
    results: Dict[str, CaseResult]
