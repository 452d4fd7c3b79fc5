"""
Beneficiary routes - decryption access with a release token.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from heirloom.api.dependencies import raise_http_error
from heirloom.database.session import get_db_session
from heirloom.errors import HeirloomError
from heirloom.services.decryption_access import DecryptionAccessService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/beneficiaries", tags=["beneficiaries"])


class DecryptRequest(BaseModel):
    release_token: str = Field(..., min_length=1)


class DecryptResponse(BaseModel):
    vault_id: str
    beneficiary_id: str
    encrypted_data: Optional[str]
    encryption_salt: Optional[str]
    encryption_iv: Optional[str]
    decryption_count: int
    remaining_attempts: Optional[int]


@router.post("/decrypt", response_model=DecryptResponse)
async def decrypt(body: DecryptRequest, db: Session = Depends(get_db_session)):
    """
    Consume one decryption attempt and return the encrypted payload.

    403 with a machine-readable code when the quota is exhausted.
    """
    try:
        grant = DecryptionAccessService(db).consume(body.release_token)
    except HeirloomError as e:
        raise_http_error(e)

    return DecryptResponse(
        vault_id=grant.vault_id,
        beneficiary_id=grant.beneficiary_id,
        encrypted_data=grant.encrypted_data,
        encryption_salt=grant.encryption_salt,
        encryption_iv=grant.encryption_iv,
        decryption_count=grant.decryption_count,
        remaining_attempts=grant.remaining_attempts,
    )
