"""Tests for provider health sweeps and the background health monitor."""

from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from callcenter.telephony.adapters.mock import MockTelephonyAdapter
from callcenter.telephony.circuit_breaker import CircuitBreakerRegistry, CircuitState
from callcenter.telephony.config import TelephonyConfig
from callcenter.telephony.credentials import CredentialCipher
from callcenter.telephony.health import ProviderHealthMonitor
from callcenter.telephony.interface import Credentials, ProviderName
from callcenter.telephony.records import AuditAction
from callcenter.telephony.registry import ProviderRegistry
from callcenter.telephony.router import HEALTH_CHECK_FAILOVER_REASON, TelephonyRouter

from conftest import (
    CUSTOM_CREDS,
    EXOTEL_CREDS,
    TWILIO_CREDS,
    VOICEBASE_CREDS,
    InMemoryProviderConfigRepository,
    seed_config,
)

TENANT = "tenant-a"

Adapters = dict[ProviderName, MockTelephonyAdapter]


def _seed_with_backup(
    repository: InMemoryProviderConfigRepository,
    cipher: CredentialCipher,
    failover_threshold: int = 3,
) -> None:
    seed_config(
        repository,
        cipher,
        TENANT,
        "twilio",
        TWILIO_CREDS,
        backup_provider="exotel",
        backup_credentials=EXOTEL_CREDS,
        failover_threshold=failover_threshold,
    )


class TestCheckTenantHealth:
    @pytest.mark.asyncio
    async def test_healthy_provider(
        self,
        telephony_router: TelephonyRouter,
        repository: InMemoryProviderConfigRepository,
        cipher: CredentialCipher,
        mock_adapters: Adapters,
    ) -> None:
        seed_config(repository, cipher, TENANT, "twilio", TWILIO_CREDS)

        result = await telephony_router.check_tenant_health(TENANT)
        status = await telephony_router.get_provider_status(TENANT)

        assert result.healthy is True
        assert result.provider == "twilio"
        assert mock_adapters[ProviderName.TWILIO].credentials_seen == [TWILIO_CREDS]
        assert status.last_health_check_ok is True
        assert status.is_healthy is True

    @pytest.mark.asyncio
    async def test_unhealthy_below_threshold_keeps_provider(
        self,
        telephony_router: TelephonyRouter,
        repository: InMemoryProviderConfigRepository,
        cipher: CredentialCipher,
        mock_adapters: Adapters,
        breakers: CircuitBreakerRegistry,
    ) -> None:
        _seed_with_backup(repository, cipher, failover_threshold=3)
        mock_adapters[ProviderName.TWILIO].configure_connection_failure(True)

        first = await telephony_router.check_tenant_health(TENANT)
        second = await telephony_router.check_tenant_health(TENANT)
        status = await telephony_router.get_provider_status(TENANT)

        assert first.consecutive_unhealthy == 1
        assert second.consecutive_unhealthy == 2
        assert not second.failed_over
        assert repository.configs[TENANT].provider_name == "twilio"
        assert breakers.get(TENANT, "twilio").consecutive_failures == 2
        assert status.is_healthy is False
        assert status.last_health_check_ok is False

    @pytest.mark.asyncio
    async def test_threshold_triggers_failover(
        self,
        telephony_router: TelephonyRouter,
        repository: InMemoryProviderConfigRepository,
        cipher: CredentialCipher,
        mock_adapters: Adapters,
    ) -> None:
        _seed_with_backup(repository, cipher, failover_threshold=2)
        mock_adapters[ProviderName.TWILIO].configure_connection_failure(True)

        await telephony_router.check_tenant_health(TENANT)
        result = await telephony_router.check_tenant_health(TENANT)

        assert result.failed_over is True
        assert result.provider == "twilio"
        config = repository.configs[TENANT]
        assert config.provider_name == "exotel"
        assert config.backup_provider_name is None
        assert config.last_error == HEALTH_CHECK_FAILOVER_REASON

        [audit] = repository.audit_entries
        assert audit.action == AuditAction.PROVIDER_FAILOVER
        assert audit.details["reason"] == HEALTH_CHECK_FAILOVER_REASON

        # The new primary starts with a clean streak.
        after = await telephony_router.check_tenant_health(TENANT)
        assert after.provider == "exotel"
        assert after.healthy is True

    @pytest.mark.asyncio
    async def test_healthy_check_resets_streak(
        self,
        telephony_router: TelephonyRouter,
        repository: InMemoryProviderConfigRepository,
        cipher: CredentialCipher,
        mock_adapters: Adapters,
    ) -> None:
        _seed_with_backup(repository, cipher, failover_threshold=2)
        twilio = mock_adapters[ProviderName.TWILIO]

        twilio.configure_connection_failure(True)
        await telephony_router.check_tenant_health(TENANT)
        twilio.configure_connection_failure(False)
        await telephony_router.check_tenant_health(TENANT)
        twilio.configure_connection_failure(True)
        result = await telephony_router.check_tenant_health(TENANT)

        assert result.consecutive_unhealthy == 1
        assert result.failed_over is False
        assert repository.configs[TENANT].provider_name == "twilio"

    @pytest.mark.asyncio
    async def test_threshold_without_backup_does_not_fail_over(
        self,
        telephony_router: TelephonyRouter,
        repository: InMemoryProviderConfigRepository,
        cipher: CredentialCipher,
        mock_adapters: Adapters,
    ) -> None:
        seed_config(repository, cipher, TENANT, "twilio", TWILIO_CREDS, failover_threshold=1)
        mock_adapters[ProviderName.TWILIO].configure_connection_failure(True)

        result = await telephony_router.check_tenant_health(TENANT)

        assert result.healthy is False
        assert result.failed_over is False
        assert repository.audit_entries == []

    @pytest.mark.asyncio
    async def test_healthy_check_does_not_close_open_breaker(
        self,
        telephony_router: TelephonyRouter,
        repository: InMemoryProviderConfigRepository,
        cipher: CredentialCipher,
        breakers: CircuitBreakerRegistry,
    ) -> None:
        seed_config(repository, cipher, TENANT, "twilio", TWILIO_CREDS)
        breaker = breakers.get(TENANT, "twilio")
        for _ in range(breaker.failure_threshold):
            breaker.record_failure()

        result = await telephony_router.check_tenant_health(TENANT)

        assert result.healthy is True
        assert breaker.current_state() == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_unreadable_credentials_are_unhealthy(
        self,
        telephony_router: TelephonyRouter,
        repository: InMemoryProviderConfigRepository,
        cipher: CredentialCipher,
        mock_adapters: Adapters,
    ) -> None:
        config = seed_config(repository, cipher, TENANT, "twilio", TWILIO_CREDS)
        repository.configs[TENANT] = replace(config, credentials=b"\x01" + b"\x00" * 40)

        result = await telephony_router.check_tenant_health(TENANT)

        assert result.healthy is False
        assert result.error is not None
        assert mock_adapters[ProviderName.TWILIO].connection_tests == 0

    @pytest.mark.asyncio
    async def test_health_check_timeout_is_unhealthy(
        self,
        repository: InMemoryProviderConfigRepository,
        provider_registry: ProviderRegistry,
        cipher: CredentialCipher,
        breakers: CircuitBreakerRegistry,
        mock_adapters: Adapters,
    ) -> None:
        router = TelephonyRouter(
            repository,
            provider_registry,
            cipher,
            breakers,
            TelephonyConfig(test_timeout_seconds=0.05),
        )
        seed_config(repository, cipher, TENANT, "twilio", TWILIO_CREDS)
        mock_adapters[ProviderName.TWILIO].configure_delay(1.0)

        result = await router.check_tenant_health(TENANT)

        assert result.healthy is False
        assert result.error is not None and "timed out" in result.error


class TestHealthCheckAll:
    @pytest.mark.asyncio
    async def test_one_failing_tenant_does_not_stop_the_sweep(
        self,
        telephony_router: TelephonyRouter,
        repository: InMemoryProviderConfigRepository,
        cipher: CredentialCipher,
        mock_adapters: Adapters,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        seed_config(
            repository,
            cipher,
            "tenant-1",
            "twilio",
            TWILIO_CREDS,
            backup_provider="exotel",
            backup_credentials=EXOTEL_CREDS,
            failover_threshold=1,
        )
        seed_config(repository, cipher, "tenant-2", "voicebase", VOICEBASE_CREDS)
        seed_config(repository, cipher, "tenant-3", "custom", CUSTOM_CREDS)

        mock_adapters[ProviderName.TWILIO].configure_connection_failure(True)

        async def explode(credentials: Credentials) -> bool:
            raise RuntimeError("health check crashed")

        monkeypatch.setattr(mock_adapters[ProviderName.VOICEBASE], "check_health", explode)

        results = await telephony_router.health_check_all()

        by_tenant = {r.tenant_id: r for r in results}
        assert set(by_tenant) == {"tenant-1", "tenant-2", "tenant-3"}

        assert by_tenant["tenant-1"].healthy is False
        assert by_tenant["tenant-1"].failed_over is True
        assert repository.configs["tenant-1"].provider_name == "exotel"

        assert by_tenant["tenant-2"].healthy is False
        assert by_tenant["tenant-2"].provider is None
        assert by_tenant["tenant-2"].error == "health check crashed"

        assert by_tenant["tenant-3"].healthy is True
        assert mock_adapters[ProviderName.CUSTOM].connection_tests == 1

    @pytest.mark.asyncio
    async def test_store_error_for_one_tenant_is_reported(
        self,
        telephony_router: TelephonyRouter,
        repository: InMemoryProviderConfigRepository,
        cipher: CredentialCipher,
    ) -> None:
        seed_config(repository, cipher, "tenant-1", "twilio", TWILIO_CREDS)
        seed_config(repository, cipher, "tenant-2", "twilio", TWILIO_CREDS)
        repository.failing_tenants.add("tenant-1")

        results = await telephony_router.health_check_all()

        assert [(r.tenant_id, r.healthy) for r in results] == [
            ("tenant-1", False),
            ("tenant-2", True),
        ]

    @pytest.mark.asyncio
    async def test_empty_sweep(self, telephony_router: TelephonyRouter) -> None:
        assert await telephony_router.health_check_all() == []


class TestProviderHealthMonitor:
    def test_rejects_non_positive_interval(self, telephony_router: TelephonyRouter) -> None:
        with pytest.raises(ValueError):
            ProviderHealthMonitor(telephony_router, interval_seconds=0)

    @pytest.mark.asyncio
    async def test_run_once(
        self,
        telephony_router: TelephonyRouter,
        repository: InMemoryProviderConfigRepository,
        cipher: CredentialCipher,
    ) -> None:
        seed_config(repository, cipher, TENANT, "twilio", TWILIO_CREDS)
        monitor = ProviderHealthMonitor(telephony_router, interval_seconds=60)

        results = await monitor.run_once()

        assert [r.tenant_id for r in results] == [TENANT]
        assert monitor.sweeps == 1

    @pytest.mark.asyncio
    async def test_start_and_stop(
        self,
        telephony_router: TelephonyRouter,
        repository: InMemoryProviderConfigRepository,
        cipher: CredentialCipher,
    ) -> None:
        seed_config(repository, cipher, TENANT, "twilio", TWILIO_CREDS)
        monitor = ProviderHealthMonitor(telephony_router, interval_seconds=0.01)

        monitor.start()
        assert monitor.is_running
        for _ in range(200):
            if monitor.sweeps >= 2:
                break
            await asyncio.sleep(0.01)

        await monitor.stop()

        assert monitor.sweeps >= 2
        assert not monitor.is_running

    @pytest.mark.asyncio
    async def test_loop_survives_failed_sweep(
        self,
        telephony_router: TelephonyRouter,
        repository: InMemoryProviderConfigRepository,
    ) -> None:
        repository.fail_listing = True
        monitor = ProviderHealthMonitor(telephony_router, interval_seconds=0.01)

        monitor.start()
        await asyncio.sleep(0.05)
        still_running = monitor.is_running
        await monitor.stop()

        assert still_running
        assert monitor.sweeps == 0

    @pytest.mark.asyncio
    async def test_stop_without_start(self, telephony_router: TelephonyRouter) -> None:
        monitor = ProviderHealthMonitor(telephony_router)

        await monitor.stop()

        assert not monitor.is_running
