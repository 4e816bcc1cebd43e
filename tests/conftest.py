from __future__ import annotations

import pytest

from cadence.core.config import get_settings
from cadence.core.database import build_engine, build_session_factory, init_db
from cadence.core.redis import get_redis_manager
from cadence.services.credentials import CredentialStore
from cadence.services.job_store import JobStore
from cadence.services.providers.registry import get_provider_registry
from cadence.services.vault import CredentialVault, get_vault

TEST_VAULT_SECRET = "test-vault-secret-0123456789"


def _clear_caches() -> None:
    get_settings.cache_clear()
    get_vault.cache_clear()
    get_provider_registry.cache_clear()
    get_redis_manager.cache_clear()


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VAULT_SECRET", TEST_VAULT_SECRET)
    monkeypatch.setenv("VAULT_KDF_ITERATIONS", "1000")
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.setenv("REDIS_URL", "redis://127.0.0.1:1")
    monkeypatch.setenv("MOCK_PROVIDERS", "false")
    monkeypatch.setenv("MOCK_STORAGE", "false")
    monkeypatch.setenv("RECONCILE_JITTER", "0")
    _clear_caches()
    yield
    _clear_caches()


@pytest.fixture()
def session_factory():
    engine = build_engine("sqlite://")
    init_db(bind=engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture()
def store(session_factory) -> JobStore:
    return JobStore(session_factory)


@pytest.fixture()
def vault() -> CredentialVault:
    return CredentialVault(TEST_VAULT_SECRET, iterations=1000)


@pytest.fixture()
def credentials(session_factory, vault) -> CredentialStore:
    return CredentialStore(session_factory, vault=vault)
