"""
Provider Credential Model
Per-owner, per-provider encrypted secrets (bring-your-own-key).
"""

from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, JSON, UniqueConstraint

from cadence.core.database import Base


class CredentialProvider:
    """Credential provider identifiers."""
    FAL = "fal"
    MINIMAX = "minimax"
    REPLICATE = "replicate"
    BUNNY = "bunny"
    S3 = "s3"

    API_KEYS = (FAL, MINIMAX, REPLICATE)
    STORAGE = (BUNNY, S3)
    ALL = API_KEYS + STORAGE


class ProviderCredential(Base):
    """Encrypted provider secret. Plaintext is never stored."""

    __tablename__ = "provider_credentials"
    __table_args__ = (UniqueConstraint("owner_id", "provider", name="uq_credential_owner_provider"),)

    id = Column(String, primary_key=True)  # cred_xxxx format
    owner_id = Column(String, nullable=False, index=True)
    provider = Column(String, nullable=False)

    encrypted_secret = Column(Text, nullable=False)
    fingerprint = Column(String, nullable=True)  # "...abcd" for display

    # Non-secret storage settings (zone / bucket / distribution / region)
    config = Column(JSON, default=dict)

    added_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<ProviderCredential {self.owner_id}/{self.provider} {self.fingerprint}>"


__all__ = ["CredentialProvider", "ProviderCredential"]
