"""
Pytest configuration and fixtures for the telephony router tests.

Router tests run against an in-memory repository and mock adapters; the SQL
repository has its own tests against sqlite+aiosqlite.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import replace
from typing import Any

import pytest

from callcenter.telephony.adapters.mock import MockTelephonyAdapter
from callcenter.telephony.circuit_breaker import CircuitBreakerRegistry
from callcenter.telephony.config import TelephonyConfig
from callcenter.telephony.credentials import CredentialCipher
from callcenter.telephony.interface import ProviderName
from callcenter.telephony.records import (
    AuditEntry,
    CallAttemptRecord,
    ProviderConfig,
    utcnow,
)
from callcenter.telephony.registry import ProviderRegistry
from callcenter.telephony.router import TelephonyRouter

TWILIO_CREDS: dict[str, Any] = {"account_sid": "AC_TEST_SID", "auth_token": "twilio-token"}
EXOTEL_CREDS: dict[str, Any] = {
    "account_sid": "exotel-sid",
    "auth_token": "exotel-token",
    "app_id": "exotel-app",
}
VOICEBASE_CREDS: dict[str, Any] = {"api_key": "vb-key"}
CUSTOM_CREDS: dict[str, Any] = {
    "provider_url": "https://voip.example.com",
    "api_key": "custom-key",
    "webhook_secret": "hook-secret",
}


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryProviderConfigRepository:
    def __init__(self) -> None:
        self.configs: dict[str, ProviderConfig] = {}
        self.audit_entries: list[AuditEntry] = []
        self.call_attempts: list[CallAttemptRecord] = []
        self.upserts = 0
        self.failing_tenants: set[str] = set()
        self.fail_listing = False

    async def get_active_config(self, tenant_id: str) -> ProviderConfig | None:
        if tenant_id in self.failing_tenants:
            raise RuntimeError(f"store unavailable for {tenant_id}")
        config = self.configs.get(tenant_id)
        if config is None or not config.is_active:
            return None
        return config

    async def upsert_config(self, config: ProviderConfig) -> ProviderConfig:
        self.upserts += 1
        self.configs[config.tenant_id] = config
        return config

    async def swap_to_backup(
        self,
        tenant_id: str,
        expected_provider: str,
        reason: str,
    ) -> ProviderConfig | None:
        config = self.configs.get(tenant_id)
        if (
            config is None
            or not config.is_active
            or config.provider_name != expected_provider
            or not config.has_backup
        ):
            return None
        assert config.backup_provider_name is not None
        assert config.backup_credentials is not None
        swapped = replace(
            config,
            provider_name=config.backup_provider_name,
            credentials=config.backup_credentials,
            backup_provider_name=None,
            backup_credentials=None,
            error_count=config.error_count + 1,
            last_error=reason,
            updated_at=utcnow(),
        )
        self.configs[tenant_id] = swapped
        return swapped

    async def clear_backup(self, tenant_id: str, provider: str) -> ProviderConfig | None:
        config = self.configs.get(tenant_id)
        if config is None or config.backup_provider_name != provider:
            return None
        cleared = replace(config, backup_provider_name=None, backup_credentials=None)
        self.configs[tenant_id] = cleared
        return cleared

    async def list_active_tenant_ids(self) -> list[str]:
        if self.fail_listing:
            raise RuntimeError("store unavailable")
        return sorted(tid for tid, cfg in self.configs.items() if cfg.is_active)

    async def append_audit_entry(self, entry: AuditEntry) -> None:
        self.audit_entries.append(entry)

    async def append_call_attempt(self, record: CallAttemptRecord) -> None:
        self.call_attempts.append(record)

    async def list_call_attempts(
        self,
        tenant_id: str,
        provider: str | None = None,
        limit: int = 50,
    ) -> Sequence[CallAttemptRecord]:
        records = [
            r
            for r in reversed(self.call_attempts)
            if r.tenant_id == tenant_id and (provider is None or r.provider == provider)
        ]
        return records[:limit]

    async def list_audit_entries(self, tenant_id: str, limit: int = 50) -> Sequence[AuditEntry]:
        entries = [e for e in reversed(self.audit_entries) if e.tenant_id == tenant_id]
        return entries[:limit]


def seed_config(
    repository: InMemoryProviderConfigRepository,
    cipher: CredentialCipher,
    tenant_id: str,
    provider: str,
    credentials: Mapping[str, Any],
    backup_provider: str | None = None,
    backup_credentials: Mapping[str, Any] | None = None,
    failover_threshold: int = 3,
    error_count: int = 0,
) -> ProviderConfig:
    config = ProviderConfig(
        tenant_id=tenant_id,
        provider_name=provider,
        credentials=cipher.encrypt(credentials, context=tenant_id),
        backup_provider_name=backup_provider,
        backup_credentials=(
            cipher.encrypt(backup_credentials, context=tenant_id)
            if backup_credentials is not None
            else None
        ),
        failover_threshold=failover_threshold,
        error_count=error_count,
        tested_at=utcnow(),
        updated_at=utcnow(),
    )
    repository.configs[tenant_id] = config
    return config


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cipher() -> CredentialCipher:
    return CredentialCipher.from_secret("test-credential-secret")


@pytest.fixture
def telephony_config() -> TelephonyConfig:
    return TelephonyConfig(
        test_timeout_seconds=1.0,
        call_timeout_seconds=1.0,
        store_timeout_seconds=1.0,
        breaker_failure_threshold=5,
        breaker_reset_timeout_seconds=60.0,
        health_check_interval_seconds=60.0,
        health_check_concurrency=10,
        default_failover_threshold=3,
        sandbox_mode=False,
        webhook_base_url="https://api.example.com",
    )


@pytest.fixture
def breakers(clock: FakeClock) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(failure_threshold=5, reset_timeout=60.0, clock=clock)


@pytest.fixture
def mock_adapters() -> dict[ProviderName, MockTelephonyAdapter]:
    return {name: MockTelephonyAdapter(name) for name in ProviderName}


@pytest.fixture
def provider_registry(mock_adapters: dict[ProviderName, MockTelephonyAdapter]) -> ProviderRegistry:
    return ProviderRegistry(mock_adapters)


@pytest.fixture
def repository() -> InMemoryProviderConfigRepository:
    return InMemoryProviderConfigRepository()


@pytest.fixture
def telephony_router(
    repository: InMemoryProviderConfigRepository,
    provider_registry: ProviderRegistry,
    cipher: CredentialCipher,
    breakers: CircuitBreakerRegistry,
    telephony_config: TelephonyConfig,
) -> TelephonyRouter:
    return TelephonyRouter(
        repository=repository,
        registry=provider_registry,
        cipher=cipher,
        breakers=breakers,
        config=telephony_config,
    )
