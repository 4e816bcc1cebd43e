"""
Credential Schemas
Pydantic models for the bring-your-own-key settings API.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field


class CredentialStatusResponse(BaseModel):
    """Never carries the secret, only its fingerprint."""
    provider: str
    has_key: bool
    fingerprint: Optional[str] = None
    added_at: Optional[datetime] = None
    config: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class CredentialListResponse(BaseModel):
    credentials: List[CredentialStatusResponse]


class SaveCredentialRequest(BaseModel):
    """
    ``config`` holds the non-secret storage settings:
    bunny needs storage_zone and pull_zone; s3 needs bucket, distribution
    and access_key_id (region and endpoint optional).
    """
    api_key: str = Field(..., min_length=1)
    config: Optional[Dict[str, Any]] = None
