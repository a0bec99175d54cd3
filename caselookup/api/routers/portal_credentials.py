# caselookup/api/routers/portal_credentials.py
import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from caselookup.api.deps import get_db, get_write_api_key, get_read_api_key, get_credential_cipher
from caselookup.core.security import get_user_id
from caselookup.db import crud
from caselookup.models_api import credentials as api_models
from caselookup.utils.crypto import CredentialCipher

logger = logging.getLogger(__name__)
router = APIRouter()


@router.put("/portal-credentials", response_model=api_models.PortalCredentialsResponse, status_code=status.HTTP_200_OK)
async def save_portal_credentials(
    payload: api_models.PortalCredentialsRequest,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
    api_key: str = Depends(get_write_api_key),
    cipher: CredentialCipher = Depends(get_credential_cipher),
):
    db_creds = crud.save_portal_credentials(db, user_id, payload.username.strip(), cipher.encrypt(payload.password))
    # New credentials invalidate any session created with the old ones.
    crud.delete_user_session(db, user_id)
    logger.info(f"[{user_id}] Portal credentials saved; cached session cleared.")
    return db_creds


@router.get("/portal-credentials", response_model=api_models.PortalCredentialsResponse, status_code=status.HTTP_200_OK)
async def get_portal_credentials(
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
    api_key: str = Depends(get_read_api_key),
):
    db_creds = crud.get_portal_credentials(db, user_id)
    if db_creds is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No portal credentials stored for this user.")
    return db_creds
