"""
API Dependencies
Common dependencies for FastAPI routes (sessions, owner identity, services).
"""

from typing import Callable, Generator, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from cadence.core.database import SessionLocal
from cadence.services.credentials import CredentialStore
from cadence.services.job_store import JobStore
from cadence.services.jobs import JobService
from cadence.workers.reconciler import Reconciler


def get_session_factory() -> Callable[[], Session]:
    """Session factory the services open their own sessions from."""
    return SessionLocal


def get_db(session_factory: Callable[[], Session] = Depends(get_session_factory)) -> Generator:
    """Get database session."""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


def get_owner_id(x_owner_id: Optional[str] = Header(None)) -> str:
    """Owner identity from the X-Owner-Id header. Authentication happens upstream."""
    owner_id = (x_owner_id or "").strip()
    if not owner_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Owner-Id header"
        )
    return owner_id


def get_job_store(session_factory: Callable[[], Session] = Depends(get_session_factory)) -> JobStore:
    return JobStore(session_factory)


def get_credential_store(session_factory: Callable[[], Session] = Depends(get_session_factory)) -> CredentialStore:
    return CredentialStore(session_factory)


def get_job_service(
    store: JobStore = Depends(get_job_store),
    credentials: CredentialStore = Depends(get_credential_store),
) -> JobService:
    return JobService(store=store, credentials=credentials)


def get_reconciler(
    store: JobStore = Depends(get_job_store),
    credentials: CredentialStore = Depends(get_credential_store),
) -> Reconciler:
    return Reconciler(store=store, credentials=credentials)


__all__ = [
    "get_session_factory",
    "get_db",
    "get_owner_id",
    "get_job_store",
    "get_credential_store",
    "get_job_service",
    "get_reconciler",
]
