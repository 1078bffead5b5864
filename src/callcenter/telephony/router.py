"""
Tenant telephony router.

Routes inbound and outbound calls to each tenant's active provider, guarded by
a per-(tenant, provider) circuit breaker, with one-shot failover to the
tenant's backup provider. Also owns provider selection, health sweeps and the
status views built on the same state.

Routing protocol for a single request:
1. Load the tenant's active config (NotConfiguredError).
2. Resolve the adapter (UnknownProviderError).
3. If the breaker refuses, skip straight to failover without calling.
4. Decrypt credentials and call the adapter under the call timeout.
5. Success: breaker success, ``success`` attempt record.
6. Failure: breaker failure; with a backup, fail over and retry exactly once
   on the new primary; otherwise ``failure`` record and RoutingFailedError.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

import anyio

from callcenter.shared.exceptions import NotFoundError, ValidationError
from callcenter.shared.logging import get_logger
from callcenter.telephony.catalog import (
    PROVIDER_CATALOG,
    ProviderInfo,
    get_provider_info,
    missing_credential_fields,
)
from callcenter.telephony.circuit_breaker import CircuitBreakerRegistry, CircuitState
from callcenter.telephony.config import TelephonyConfig, get_telephony_config
from callcenter.telephony.credentials import (
    CredentialCipher,
    CredentialFormatError,
    DecryptionError,
)
from callcenter.telephony.exceptions import (
    ActiveProviderDeletionError,
    CircuitOpenError,
    NoBackupAvailableError,
    NotConfiguredError,
    RoutingFailedError,
)
from callcenter.telephony.interface import (
    CallDetail,
    CallDirection,
    CallNotFoundError,
    ConnectionTestResult,
    NormalizedInboundCall,
    OutboundCallRequest,
    OutboundCallResult,
    ProviderConnectionError,
    ProviderName,
    TelephonyProvider,
    TelephonyProviderError,
    VendorPayload,
    WebhookParseError,
)
from callcenter.telephony.records import (
    AttemptOutcome,
    AuditAction,
    AuditEntry,
    CallAttemptRecord,
    ConfigSummary,
    HealthCheckResult,
    ProviderConfig,
    ProviderStatus,
    utcnow,
)
from callcenter.telephony.registry import ProviderRegistry, parse_provider_name
from callcenter.telephony.repository import ProviderConfigRepositoryProtocol

logger = get_logger(__name__)

T = TypeVar("T")

Invoke = Callable[[TelephonyProvider, Mapping[str, Any]], Awaitable[T]]

HEALTH_CHECK_FAILOVER_REASON = "Health check failed"
MANUAL_FAILOVER_REASON = "Manual failover"
MAX_HISTORY_LIMIT = 500


class TelephonyRouter:
    """Per-tenant provider routing with circuit breaking and failover."""

    def __init__(
        self,
        repository: ProviderConfigRepositoryProtocol,
        registry: ProviderRegistry,
        cipher: CredentialCipher,
        breakers: CircuitBreakerRegistry | None = None,
        config: TelephonyConfig | None = None,
    ) -> None:
        self._repository = repository
        self._registry = registry
        self._cipher = cipher
        self._config = config or get_telephony_config()
        self._breakers = breakers or CircuitBreakerRegistry(
            failure_threshold=self._config.breaker_failure_threshold,
            reset_timeout=self._config.breaker_reset_timeout_seconds,
        )
        self._failover_locks: dict[str, asyncio.Lock] = {}
        # Latest health-check verdict per (tenant, provider).
        self._health: dict[tuple[str, str], bool] = {}
        self._unhealthy_streaks: dict[str, int] = {}

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _store(self, operation: Awaitable[T]) -> T:
        with anyio.fail_after(self._config.store_timeout_seconds):
            return await operation

    async def _load_config(self, tenant_id: str) -> ProviderConfig:
        config = await self._store(self._repository.get_active_config(tenant_id))
        if config is None or not config.is_active:
            self._forget_tenant(tenant_id)
            raise NotConfiguredError(tenant_id)
        return config

    def _forget_tenant(self, tenant_id: str) -> None:
        """Drop in-memory state kept for a tenant without an active config."""
        self._unhealthy_streaks.pop(tenant_id, None)
        for key in [k for k in self._health if k[0] == tenant_id]:
            del self._health[key]
        lock = self._failover_locks.get(tenant_id)
        if lock is not None and not lock.locked():
            del self._failover_locks[tenant_id]
        self._breakers.discard_tenant(tenant_id)

    def _tracked_tenant_ids(self) -> set[str]:
        return (
            set(self._failover_locks)
            | set(self._unhealthy_streaks)
            | {tenant_id for tenant_id, _ in self._health}
            | self._breakers.tenant_ids()
        )

    def _decrypt(self, blob: bytes, tenant_id: str) -> dict[str, Any]:
        return self._cipher.decrypt(blob, context=tenant_id)

    def _failover_lock(self, tenant_id: str) -> asyncio.Lock:
        lock = self._failover_locks.get(tenant_id)
        if lock is None:
            lock = self._failover_locks.setdefault(tenant_id, asyncio.Lock())
        return lock

    async def _test_credentials(
        self,
        adapter: TelephonyProvider,
        credentials: Mapping[str, Any],
    ) -> ConnectionTestResult:
        timeout = self._config.test_timeout_seconds
        try:
            with anyio.fail_after(timeout):
                return await adapter.test_connection(credentials)
        except TimeoutError as e:
            raise ProviderConnectionError(
                f"{adapter.provider_name.value} connection test timed out after {timeout:g}s",
                error_code="TIMEOUT",
            ) from e
        except ProviderConnectionError:
            raise
        except TelephonyProviderError as e:
            raise ProviderConnectionError(
                str(e),
                error_code=e.error_code,
                provider_response=e.provider_response,
            ) from e

    async def _invoke(
        self,
        tenant_id: str,
        config: ProviderConfig,
        adapter: TelephonyProvider,
        invoke: Invoke[T],
    ) -> T:
        """Decrypt and call the adapter under the call timeout.

        Timeouts and unexpected adapter exceptions are converted to
        ProviderConnectionError so every failure the caller sees is a typed
        provider or credential error.
        """
        credentials = self._decrypt(config.credentials, tenant_id)
        timeout = self._config.call_timeout_seconds
        try:
            with anyio.fail_after(timeout):
                return await invoke(adapter, credentials)
        except TimeoutError as e:
            raise ProviderConnectionError(
                f"{adapter.provider_name.value} call timed out after {timeout:g}s",
                error_code="TIMEOUT",
            ) from e
        except TelephonyProviderError:
            raise
        except Exception as e:
            logger.exception(
                "Adapter raised an unexpected error",
                extra={"tenant_id": tenant_id, "provider": adapter.provider_name.value},
            )
            raise ProviderConnectionError(
                f"{adapter.provider_name.value} adapter error: {e!r}",
                error_code="ADAPTER_ERROR",
            ) from e

    async def _record_attempt(
        self,
        tenant_id: str,
        provider: str,
        direction: CallDirection,
        outcome: AttemptOutcome,
        external_call_id: str | None = None,
        failure_reason: str | None = None,
    ) -> None:
        record = CallAttemptRecord(
            tenant_id=tenant_id,
            provider=provider,
            direction=direction,
            outcome=outcome,
            external_call_id=external_call_id,
            failure_reason=failure_reason,
        )
        try:
            await self._store(self._repository.append_call_attempt(record))
        except Exception:
            # The call itself already happened; losing a log row must not fail it.
            logger.exception(
                "Failed to append call attempt record",
                extra={"tenant_id": tenant_id, "provider": provider, "outcome": outcome.value},
            )

    async def _audit(
        self,
        tenant_id: str,
        action: AuditAction,
        provider: str,
        details: dict[str, Any],
    ) -> None:
        entry = AuditEntry(tenant_id=tenant_id, action=action, provider=provider, details=details)
        try:
            await self._store(self._repository.append_audit_entry(entry))
        except Exception:
            logger.exception(
                "Failed to append audit entry",
                extra={"tenant_id": tenant_id, "action": action.value},
            )

    async def _failover(self, tenant_id: str, config: ProviderConfig, reason: str) -> ProviderConfig:
        """Promote the backup provider. One-shot: the backup slot is left empty.

        Serialized per tenant; if another request already swapped away from
        ``config.provider_name`` the current config is returned unchanged.
        """
        async with self._failover_lock(tenant_id):
            swapped = await self._store(
                self._repository.swap_to_backup(tenant_id, config.provider_name, reason)
            )
            if swapped is None:
                current = await self._load_config(tenant_id)
                if current.provider_name != config.provider_name:
                    logger.info(
                        "Failover already performed by a concurrent request",
                        extra={
                            "tenant_id": tenant_id,
                            "from_provider": config.provider_name,
                            "provider": current.provider_name,
                        },
                    )
                    return current
                raise NoBackupAvailableError(tenant_id)

            self._unhealthy_streaks.pop(tenant_id, None)
            self._health.pop((tenant_id, config.provider_name), None)

            logger.warning(
                "Provider failover",
                extra={
                    "tenant_id": tenant_id,
                    "from_provider": config.provider_name,
                    "to_provider": swapped.provider_name,
                    "reason": reason,
                    "error_count": swapped.error_count,
                },
            )
            await self._audit(
                tenant_id,
                AuditAction.PROVIDER_FAILOVER,
                swapped.provider_name,
                {
                    "reason": reason,
                    "from_provider": config.provider_name,
                    "to_provider": swapped.provider_name,
                },
            )
            return swapped

    async def _route(
        self,
        tenant_id: str,
        direction: CallDirection,
        invoke: Invoke[T],
        external_call_id: Callable[[T], str],
        prepare: Callable[[TelephonyProvider], None] | None = None,
    ) -> T:
        config = await self._load_config(tenant_id)
        failed_over = False

        while True:
            provider = config.provider_name
            adapter = self._registry.resolve(provider)
            breaker = self._breakers.get(tenant_id, provider)

            last_error: Exception | None = None
            if prepare is not None:
                # Malformed input is the caller's fault: no breaker accounting,
                # and no failover on the first hop.
                try:
                    prepare(adapter)
                except WebhookParseError as e:
                    if not failed_over:
                        raise
                    last_error = e

            if last_error is None and not breaker.is_allowed():
                last_error = CircuitOpenError(tenant_id, provider)

            if last_error is None:
                try:
                    result = await self._invoke(tenant_id, config, adapter, invoke)
                except (TelephonyProviderError, DecryptionError) as e:
                    breaker.record_failure()
                    last_error = e
                except BaseException:
                    # Cancelled mid-call: no outcome, but a half-open trial slot
                    # must not stay taken.
                    breaker.release_trial()
                    raise
                else:
                    breaker.record_success()
                    await self._record_attempt(
                        tenant_id,
                        provider,
                        direction,
                        AttemptOutcome.SUCCESS,
                        external_call_id=external_call_id(result),
                    )
                    logger.info(
                        "Call routed",
                        extra={
                            "tenant_id": tenant_id,
                            "provider": provider,
                            "direction": direction.value,
                            "failed_over": failed_over,
                        },
                    )
                    return result

            assert last_error is not None
            logger.warning(
                "Routing attempt failed",
                extra={
                    "tenant_id": tenant_id,
                    "provider": provider,
                    "direction": direction.value,
                    "error": str(last_error),
                    "breaker_state": breaker.current_state().value,
                },
            )

            if not failed_over and config.has_backup:
                try:
                    new_config = await self._failover(tenant_id, config, str(last_error))
                except NoBackupAvailableError:
                    # Backup removed concurrently; fall through to failure.
                    pass
                else:
                    await self._record_attempt(
                        tenant_id,
                        provider,
                        direction,
                        AttemptOutcome.FAILED_OVER,
                        failure_reason=str(last_error),
                    )
                    config = new_config
                    failed_over = True
                    continue

            await self._record_attempt(
                tenant_id,
                provider,
                direction,
                AttemptOutcome.FAILURE,
                failure_reason=str(last_error),
            )
            raise RoutingFailedError(tenant_id, provider, last_error, failed_over) from last_error

    async def _call_active_provider(self, tenant_id: str, invoke: Invoke[T]) -> T:
        """Single breaker-gated attempt on the active provider, no failover.

        Used for operations on an existing call, whose id only means something
        to the vendor that created it.
        """
        config = await self._load_config(tenant_id)
        provider = config.provider_name
        adapter = self._registry.resolve(provider)
        breaker = self._breakers.get(tenant_id, provider)

        if not breaker.is_allowed():
            raise RoutingFailedError(tenant_id, provider, CircuitOpenError(tenant_id, provider))

        try:
            result = await self._invoke(tenant_id, config, adapter, invoke)
        except CallNotFoundError:
            # Vendor answered; the call id is simply unknown to it.
            breaker.record_success()
            raise
        except (TelephonyProviderError, DecryptionError) as e:
            breaker.record_failure()
            raise RoutingFailedError(tenant_id, provider, e) from e
        except BaseException:
            breaker.release_trial()
            raise
        breaker.record_success()
        return result

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    async def route_inbound(
        self,
        tenant_id: str,
        raw_payload: Mapping[str, Any],
    ) -> NormalizedInboundCall:
        """Normalize an inbound webhook through the tenant's active provider.

        The raw body is parsed into the provider's own payload variant before
        the breaker is consulted; a malformed body raises WebhookParseError.
        """
        payloads: dict[ProviderName, VendorPayload] = {}

        def prepare(adapter: TelephonyProvider) -> None:
            payloads[adapter.provider_name] = adapter.parse_payload(raw_payload)

        async def invoke(
            adapter: TelephonyProvider,
            credentials: Mapping[str, Any],
        ) -> NormalizedInboundCall:
            return await adapter.handle_inbound_call(payloads[adapter.provider_name], credentials)

        return await self._route(
            tenant_id,
            CallDirection.INBOUND,
            invoke,
            lambda call: call.external_call_id,
            prepare=prepare,
        )

    async def route_outbound(
        self,
        tenant_id: str,
        request: OutboundCallRequest,
    ) -> OutboundCallResult:
        """Place an outbound call through the tenant's active provider."""

        async def invoke(
            adapter: TelephonyProvider,
            credentials: Mapping[str, Any],
        ) -> OutboundCallResult:
            return await adapter.initiate_outbound_call(request, credentials)

        return await self._route(
            tenant_id,
            CallDirection.OUTBOUND,
            invoke,
            lambda result: result.external_call_id,
        )

    async def end_call(self, tenant_id: str, external_call_id: str) -> None:
        async def invoke(adapter: TelephonyProvider, credentials: Mapping[str, Any]) -> None:
            await adapter.end_call(external_call_id, credentials)

        await self._call_active_provider(tenant_id, invoke)
        logger.info(
            "Call ended",
            extra={"tenant_id": tenant_id, "external_call_id": external_call_id},
        )

    async def get_call_details(self, tenant_id: str, external_call_id: str) -> CallDetail:
        async def invoke(adapter: TelephonyProvider, credentials: Mapping[str, Any]) -> CallDetail:
            return await adapter.get_call_details(external_call_id, credentials)

        return await self._call_active_provider(tenant_id, invoke)

    # ------------------------------------------------------------------
    # Provider management
    # ------------------------------------------------------------------

    def get_supported_providers(self) -> list[ProviderInfo]:
        return [PROVIDER_CATALOG[name] for name in self._registry]

    def get_provider_schema(self, provider_name: str) -> ProviderInfo:
        return get_provider_info(parse_provider_name(provider_name))

    def _validate_credentials(self, provider_name: str, credentials: Mapping[str, Any]) -> None:
        missing = missing_credential_fields(parse_provider_name(provider_name), credentials)
        if missing:
            raise ValidationError(
                f"Missing required credentials for {provider_name}: {', '.join(missing)}",
                details={"provider": provider_name, "missing_fields": missing},
            )

    async def test_provider_connection(
        self,
        provider_name: str,
        credentials: Mapping[str, Any],
    ) -> ConnectionTestResult:
        """Verify credentials against the vendor without persisting anything."""
        adapter = self._registry.resolve(provider_name)
        self._validate_credentials(provider_name, credentials)
        result = await self._test_credentials(adapter, credentials)
        logger.info(
            "Provider connection test succeeded",
            extra={"provider": adapter.provider_name.value},
        )
        return result

    async def select_provider(
        self,
        tenant_id: str,
        provider_name: str,
        credentials: Mapping[str, Any],
        backup_provider_name: str | None = None,
        backup_credentials: Mapping[str, Any] | None = None,
        failover_threshold: int | None = None,
    ) -> ConfigSummary:
        """Test and persist a tenant's provider choice, replacing any prior config.

        Untested credentials are never written: any test failure rejects the
        whole operation before the repository is touched.
        """
        adapter = self._registry.resolve(provider_name)
        self._validate_credentials(provider_name, credentials)

        backup_adapter: TelephonyProvider | None = None
        if backup_provider_name is not None:
            if backup_credentials is None:
                raise ValidationError(
                    "Backup provider requires backup credentials",
                    details={"backup_provider": backup_provider_name},
                )
            backup_adapter = self._registry.resolve(backup_provider_name)
            self._validate_credentials(backup_provider_name, backup_credentials)
        elif backup_credentials is not None:
            raise ValidationError("Backup credentials given without a backup provider")

        if failover_threshold is not None and failover_threshold < 1:
            raise ValidationError("failover_threshold must be >= 1")

        try:
            sealed = self._cipher.encrypt(credentials, context=tenant_id)
            sealed_backup = (
                self._cipher.encrypt(backup_credentials, context=tenant_id)
                if backup_adapter is not None and backup_credentials is not None
                else None
            )
        except CredentialFormatError as e:
            raise ValidationError(str(e), details={"provider": provider_name}) from e

        await self._test_credentials(adapter, credentials)
        if backup_adapter is not None:
            assert backup_credentials is not None
            await self._test_credentials(backup_adapter, backup_credentials)

        now = utcnow()
        config = ProviderConfig(
            tenant_id=tenant_id,
            provider_name=adapter.provider_name.value,
            credentials=sealed,
            is_active=True,
            backup_provider_name=(
                backup_adapter.provider_name.value if backup_adapter is not None else None
            ),
            backup_credentials=sealed_backup,
            failover_threshold=failover_threshold or self._config.default_failover_threshold,
            error_count=0,
            tested_at=now,
            last_error=None,
            updated_at=now,
        )
        saved = await self._store(self._repository.upsert_config(config))

        self._unhealthy_streaks.pop(tenant_id, None)
        await self._audit(
            tenant_id,
            AuditAction.PROVIDER_SET,
            saved.provider_name,
            {"backup_provider": saved.backup_provider_name},
        )
        logger.info(
            "Provider selected",
            extra={
                "tenant_id": tenant_id,
                "provider": saved.provider_name,
                "backup_provider": saved.backup_provider_name,
            },
        )
        return ConfigSummary.from_config(saved)

    async def get_current_provider(self, tenant_id: str) -> ConfigSummary:
        return ConfigSummary.from_config(await self._load_config(tenant_id))

    async def remove_provider_credentials(self, tenant_id: str, provider_name: str) -> ConfigSummary:
        """Remove stored credentials for a non-active provider (the backup slot)."""
        provider = parse_provider_name(provider_name).value
        config = await self._load_config(tenant_id)

        if config.provider_name == provider:
            raise ActiveProviderDeletionError(tenant_id, provider)
        if config.backup_provider_name != provider:
            raise NotFoundError(
                f"No credentials stored for provider {provider}",
                details={"tenant_id": tenant_id, "provider": provider},
            )

        updated = await self._store(self._repository.clear_backup(tenant_id, provider))
        if updated is None:
            raise NotFoundError(
                f"No credentials stored for provider {provider}",
                details={"tenant_id": tenant_id, "provider": provider},
            )
        await self._audit(tenant_id, AuditAction.BACKUP_REMOVED, provider, {})
        return ConfigSummary.from_config(updated)

    async def trigger_manual_failover(
        self,
        tenant_id: str,
        reason: str = MANUAL_FAILOVER_REASON,
    ) -> ConfigSummary:
        config = await self._load_config(tenant_id)
        if not config.has_backup:
            raise NoBackupAvailableError(tenant_id)
        swapped = await self._failover(tenant_id, config, reason or MANUAL_FAILOVER_REASON)
        return ConfigSummary.from_config(swapped)

    async def get_provider_status(self, tenant_id: str) -> ProviderStatus:
        config = await self._load_config(tenant_id)
        breaker = self._breakers.get(tenant_id, config.provider_name)
        state = breaker.current_state()
        last_health = self._health.get((tenant_id, config.provider_name))
        return ProviderStatus(
            tenant_id=tenant_id,
            provider=config.provider_name,
            is_healthy=state == CircuitState.CLOSED and last_health is not False,
            breaker_state=state,
            consecutive_failures=breaker.consecutive_failures,
            error_count=config.error_count,
            backup_provider=config.backup_provider_name,
            failover_threshold=config.failover_threshold,
            last_error=config.last_error,
            tested_at=config.tested_at,
            last_health_check_ok=last_health,
        )

    async def get_call_history(
        self,
        tenant_id: str,
        provider: str | None = None,
        limit: int = 50,
    ) -> list[CallAttemptRecord]:
        provider_value = parse_provider_name(provider).value if provider else None
        limit = max(1, min(limit, MAX_HISTORY_LIMIT))
        records = await self._store(
            self._repository.list_call_attempts(tenant_id, provider_value, limit)
        )
        return list(records)

    async def get_audit_log(self, tenant_id: str, limit: int = 50) -> list[AuditEntry]:
        """Provider changes for a tenant (select, failover, backup removal), newest first."""
        limit = max(1, min(limit, MAX_HISTORY_LIMIT))
        entries = await self._store(self._repository.list_audit_entries(tenant_id, limit))
        return list(entries)

    async def verify_webhook_signature(
        self,
        tenant_id: str,
        body: bytes,
        signature: str,
        url: str,
    ) -> bool:
        config = await self._load_config(tenant_id)
        adapter = self._registry.resolve(config.provider_name)
        try:
            credentials = self._decrypt(config.credentials, tenant_id)
        except DecryptionError:
            logger.warning(
                "Cannot verify webhook signature: credentials unreadable",
                extra={"tenant_id": tenant_id, "provider": config.provider_name},
            )
            return False
        return adapter.validate_webhook_signature(body, signature, url, credentials)

    # ------------------------------------------------------------------
    # Health checks
    # ------------------------------------------------------------------

    async def check_tenant_health(self, tenant_id: str) -> HealthCheckResult:
        """Check one tenant's active provider and apply breaker/failover logic."""
        config = await self._load_config(tenant_id)
        provider = config.provider_name
        adapter = self._registry.resolve(provider)
        breaker = self._breakers.get(tenant_id, provider)

        healthy = False
        error: str | None = None
        try:
            credentials = self._decrypt(config.credentials, tenant_id)
            with anyio.fail_after(self._config.test_timeout_seconds):
                healthy = await adapter.check_health(credentials)
        except DecryptionError as e:
            error = str(e)
        except TimeoutError:
            error = f"health check timed out after {self._config.test_timeout_seconds:g}s"
        except TelephonyProviderError as e:
            error = str(e)

        self._health[(tenant_id, provider)] = healthy

        if healthy:
            self._unhealthy_streaks.pop(tenant_id, None)
            if breaker.current_state() == CircuitState.CLOSED:
                breaker.record_success()
            return HealthCheckResult(tenant_id=tenant_id, provider=provider, healthy=True)

        breaker.record_failure()
        streak = self._unhealthy_streaks.get(tenant_id, 0) + 1
        self._unhealthy_streaks[tenant_id] = streak
        logger.warning(
            "Provider unhealthy",
            extra={
                "tenant_id": tenant_id,
                "provider": provider,
                "consecutive_unhealthy": streak,
                "failover_threshold": config.failover_threshold,
                "error": error,
            },
        )

        failed_over = False
        if streak >= config.failover_threshold and config.has_backup:
            try:
                await self._failover(tenant_id, config, HEALTH_CHECK_FAILOVER_REASON)
                failed_over = True
            except NoBackupAvailableError:
                logger.warning(
                    "Health-check failover skipped: backup no longer configured",
                    extra={"tenant_id": tenant_id},
                )

        return HealthCheckResult(
            tenant_id=tenant_id,
            provider=provider,
            healthy=False,
            consecutive_unhealthy=streak,
            failed_over=failed_over,
            error=error,
        )

    async def health_check_all(self) -> list[HealthCheckResult]:
        """Check every active tenant with bounded concurrency.

        A failing tenant is logged and reported; it never aborts the sweep.
        """
        tenant_ids = await self._store(self._repository.list_active_tenant_ids())
        for stale in self._tracked_tenant_ids() - set(tenant_ids):
            self._forget_tenant(stale)
        semaphore = asyncio.Semaphore(self._config.health_check_concurrency)

        async def check_one(tenant_id: str) -> HealthCheckResult:
            async with semaphore:
                try:
                    return await self.check_tenant_health(tenant_id)
                except Exception as e:
                    logger.exception(
                        "Health check failed for tenant",
                        extra={"tenant_id": tenant_id},
                    )
                    return HealthCheckResult(
                        tenant_id=tenant_id,
                        provider=None,
                        healthy=False,
                        error=str(e),
                    )

        results = list(await asyncio.gather(*(check_one(t) for t in tenant_ids)))
        logger.info(
            "Health check sweep complete",
            extra={
                "tenants": len(results),
                "unhealthy": sum(1 for r in results if not r.healthy),
                "failovers": sum(1 for r in results if r.failed_over),
            },
        )
        return results
