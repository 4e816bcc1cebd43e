"""
Credential Store
Per-owner provider keys (bring-your-own-key), encrypted with the vault.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from cadence.core.config import get_settings
from cadence.core.database import SessionLocal
from cadence.core.errors import CadenceError, CredentialMissing, ProviderRejected
from cadence.models.credential import CredentialProvider, ProviderCredential
from cadence.services.storage import StorageSettings
from cadence.services.vault import CredentialVault, get_vault, validate_key_format

logger = logging.getLogger(__name__)

DISPLAY_NAMES = {
    CredentialProvider.FAL: "fal.ai",
    CredentialProvider.MINIMAX: "MiniMax",
    CredentialProvider.REPLICATE: "Replicate",
    CredentialProvider.BUNNY: "Bunny.net",
    CredentialProvider.S3: "S3",
}

# Non-secret config each storage provider needs before it is usable
REQUIRED_STORAGE_CONFIG = {
    CredentialProvider.BUNNY: ("storage_zone", "pull_zone"),
    CredentialProvider.S3: ("bucket", "distribution", "access_key_id"),
}


@dataclass
class CredentialStatus:
    provider: str
    has_key: bool
    fingerprint: Optional[str] = None
    added_at: Optional[datetime] = None
    config: Optional[dict] = None


class CredentialStore:
    """
    Reads and writes encrypted provider secrets.

    ``get_secret`` returns None for "not configured" and only raises when a
    stored record fails integrity checks.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = None,
        vault: Optional[CredentialVault] = None,
    ):
        self.session_factory = session_factory or SessionLocal
        self._vault = vault
        self.fingerprint_chars = get_settings().CREDENTIAL_FINGERPRINT_CHARS

    @property
    def vault(self) -> CredentialVault:
        # Built lazily so reads of unset keys never need VAULT_SECRET
        if self._vault is None:
            self._vault = get_vault()
        return self._vault

    def _find(self, db: Session, owner_id: str, provider: str) -> Optional[ProviderCredential]:
        return db.query(ProviderCredential).filter(
            ProviderCredential.owner_id == owner_id,
            ProviderCredential.provider == provider,
        ).first()

    def get_secret(self, owner_id: str, provider: str) -> Optional[str]:
        """Decrypted key, or None if the owner has not configured one."""
        with self.session_factory() as db:
            record = self._find(db, owner_id, provider)
        if record is None or not record.encrypted_secret:
            return None
        return self.vault.decrypt(record.encrypted_secret)

    def require_secret(self, owner_id: str, provider: str) -> str:
        secret = self.get_secret(owner_id, provider)
        if not secret:
            raise CredentialMissing(DISPLAY_NAMES.get(provider, provider))
        return secret

    def get_storage_settings(self, owner_id: str) -> Optional[StorageSettings]:
        """
        Durable storage configured by the owner, or None.

        Bunny is preferred over S3 when both are present. Incomplete
        configurations are treated as absent.
        """
        with self.session_factory() as db:
            records = {
                r.provider: r
                for r in db.query(ProviderCredential).filter(
                    ProviderCredential.owner_id == owner_id,
                    ProviderCredential.provider.in_(CredentialProvider.STORAGE),
                ).all()
            }

        for provider in CredentialProvider.STORAGE:
            record = records.get(provider)
            if record is None:
                continue
            config = record.config or {}
            missing = [k for k in REQUIRED_STORAGE_CONFIG[provider] if not config.get(k)]
            if missing:
                logger.warning(f"[Credentials] {provider} storage for {owner_id} is missing {', '.join(missing)}")
                continue

            secret = self.vault.decrypt(record.encrypted_secret)
            if provider == CredentialProvider.BUNNY:
                return StorageSettings(
                    provider=provider,
                    api_key=secret,
                    zone=config["storage_zone"],
                    distribution=config["pull_zone"],
                )
            return StorageSettings(
                provider=provider,
                api_key=secret,
                zone=config["bucket"],
                distribution=config["distribution"],
                access_key_id=config["access_key_id"],
                region=config.get("region"),
                endpoint=config.get("endpoint"),
            )
        return None

    def storage_settings_or_none(self, owner_id: str) -> Optional[StorageSettings]:
        """``get_storage_settings`` for paths that must not fail on a bad storage record."""
        try:
            return self.get_storage_settings(owner_id)
        except CadenceError as e:
            logger.error(f"[Credentials] Storage settings for {owner_id} unusable: {e.message}")
            return None

    def save_secret(self, owner_id: str, provider: str, secret: str, config: Optional[dict] = None) -> CredentialStatus:
        """Validate, encrypt and upsert an owner's key."""
        if provider not in CredentialProvider.ALL:
            raise ProviderRejected(f"Unknown provider: {provider}")
        if not validate_key_format(provider, secret):
            raise ProviderRejected(f"Invalid {DISPLAY_NAMES.get(provider, provider)} API key format")

        secret = secret.strip()
        config = {k: v for k, v in (config or {}).items() if v not in (None, "")}
        required = REQUIRED_STORAGE_CONFIG.get(provider, ())
        missing = [k for k in required if not config.get(k)]
        if missing:
            raise ProviderRejected(f"Missing {provider} storage settings: {', '.join(missing)}")

        encrypted = self.vault.encrypt(secret)
        fingerprint = CredentialVault.fingerprint(secret, self.fingerprint_chars)

        with self.session_factory() as db:
            record = self._find(db, owner_id, provider)
            if record is None:
                record = ProviderCredential(
                    id=f"cred_{uuid.uuid4().hex[:12]}",
                    owner_id=owner_id,
                    provider=provider,
                )
                db.add(record)
            record.encrypted_secret = encrypted
            record.fingerprint = fingerprint
            record.config = config
            record.updated_at = datetime.utcnow()
            db.commit()
            db.refresh(record)

        logger.info(f"[Credentials] Saved {provider} key {fingerprint} for {owner_id}")
        return CredentialStatus(
            provider=provider,
            has_key=True,
            fingerprint=fingerprint,
            added_at=record.added_at,
            config=config or None,
        )

    def delete_secret(self, owner_id: str, provider: str) -> bool:
        with self.session_factory() as db:
            record = self._find(db, owner_id, provider)
            if record is None:
                return False
            db.delete(record)
            db.commit()
        logger.info(f"[Credentials] Removed {provider} key for {owner_id}")
        return True

    def list_statuses(self, owner_id: str) -> List[CredentialStatus]:
        """One status per known provider, configured or not. Never decrypts."""
        with self.session_factory() as db:
            records = {
                r.provider: r
                for r in db.query(ProviderCredential).filter(ProviderCredential.owner_id == owner_id).all()
            }

        statuses = []
        for provider in CredentialProvider.ALL:
            record = records.get(provider)
            if record is None:
                statuses.append(CredentialStatus(provider=provider, has_key=False))
            else:
                statuses.append(CredentialStatus(
                    provider=provider,
                    has_key=True,
                    fingerprint=record.fingerprint,
                    added_at=record.added_at,
                    config=record.config or None,
                ))
        return statuses


__all__ = ["CredentialStore", "CredentialStatus", "DISPLAY_NAMES"]
