# caselookup/models_api/credentials.py
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

class PortalCredentialsRequest(BaseModel):
    username: str = Field(..., min_length=1, description="Portal login email.")
    password: str = Field(..., min_length=1)

class PortalCredentialsResponse(BaseModel):
    username: str
    is_bad: bool
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
