# caselookup/api/deps.py
from fastapi import Depends, HTTPException, status, Request
from caselookup.db.session import get_db
from caselookup.core.security import get_api_key
from caselookup.services.case_store import CaseStore
from caselookup.services.request_orchestrator import RequestOrchestrator
from caselookup.utils.crypto import CredentialCipher
import logging

logger = logging.getLogger(__name__)

def _require_service(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None or not getattr(request.app.state, "service_ready", False):
        logger.error(f"Request rejected: '{name}' is not available (service not ready).")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is not ready. Check Redis and configuration.",
        )
    return service

def get_request_orchestrator(request: Request) -> RequestOrchestrator:
    return _require_service(request, "request_orchestrator")

def get_case_store(request: Request) -> CaseStore:
    return _require_service(request, "case_store")

def get_credential_cipher(request: Request) -> CredentialCipher:
    cipher = getattr(request.app.state, "credential_cipher", None)
    if cipher is None:
        cipher = CredentialCipher.from_settings(request.app.state.settings)
        request.app.state.credential_cipher = cipher
    return cipher

def get_read_api_key(api_key: str = Depends(get_api_key)):
    return api_key

def get_write_api_key(api_key: str = Depends(get_api_key)):
    return api_key
