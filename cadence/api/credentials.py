"""
Credentials API Routes
Per-owner provider keys. Secrets go in, fingerprints come out.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from cadence.api.deps import get_credential_store, get_owner_id
from cadence.schemas.credential import (
    CredentialListResponse,
    CredentialStatusResponse,
    SaveCredentialRequest,
)
from cadence.services.credentials import CredentialStore

router = APIRouter()


@router.get("", response_model=CredentialListResponse)
async def list_credentials(
    owner_id: str = Depends(get_owner_id),
    store: CredentialStore = Depends(get_credential_store),
):
    """Which providers the caller has configured."""
    return CredentialListResponse(
        credentials=[CredentialStatusResponse.model_validate(s) for s in store.list_statuses(owner_id)]
    )


@router.put("/{provider}", response_model=CredentialStatusResponse)
async def save_credential(
    provider: str,
    request: SaveCredentialRequest,
    owner_id: str = Depends(get_owner_id),
    store: CredentialStore = Depends(get_credential_store),
):
    """Validate, encrypt and store a key (replaces any existing one)."""
    saved = store.save_secret(owner_id, provider, request.api_key, request.config)
    return CredentialStatusResponse.model_validate(saved)


@router.delete("/{provider}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_credential(
    provider: str,
    owner_id: str = Depends(get_owner_id),
    store: CredentialStore = Depends(get_credential_store),
):
    if not store.delete_secret(owner_id, provider):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No {provider} key configured"
        )
