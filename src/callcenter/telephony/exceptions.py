"""
Errors surfaced by the telephony router to its callers.

Each carries a stable ``code`` so the API boundary can tell "operator must
configure a provider" apart from "vendor outage" and "no backup configured".
"""

from __future__ import annotations

from callcenter.shared.exceptions import AppError, NotFoundError


class TelephonyRoutingError(AppError):
    code = "ROUTING_ERROR"


class NotConfiguredError(TelephonyRoutingError, NotFoundError):
    code = "PROVIDER_NOT_CONFIGURED"

    def __init__(self, tenant_id: str) -> None:
        super().__init__(
            f"No active telephony provider configured for tenant {tenant_id}",
            details={"tenant_id": tenant_id},
        )
        self.tenant_id = tenant_id


class UnknownProviderError(TelephonyRoutingError):
    code = "UNKNOWN_PROVIDER"

    def __init__(self, provider: str) -> None:
        super().__init__(f"Unknown provider: {provider}", details={"provider": provider})
        self.provider = provider


class RoutingFailedError(TelephonyRoutingError):
    """Every permitted attempt failed; wraps the last underlying error."""

    code = "ROUTING_FAILED"

    def __init__(
        self,
        tenant_id: str,
        provider: str,
        last_error: BaseException,
        failed_over: bool = False,
    ) -> None:
        super().__init__(
            f"Routing failed for tenant {tenant_id} via {provider}: {last_error}",
            details={
                "tenant_id": tenant_id,
                "provider": provider,
                "failed_over": failed_over,
            },
        )
        self.tenant_id = tenant_id
        self.provider = provider
        self.last_error = last_error
        self.failed_over = failed_over


class NoBackupAvailableError(TelephonyRoutingError):
    code = "NO_BACKUP_AVAILABLE"

    def __init__(self, tenant_id: str) -> None:
        super().__init__(
            f"No backup provider configured for tenant {tenant_id}",
            details={"tenant_id": tenant_id},
        )
        self.tenant_id = tenant_id


class ActiveProviderDeletionError(TelephonyRoutingError):
    code = "ACTIVE_PROVIDER"

    def __init__(self, tenant_id: str, provider: str) -> None:
        super().__init__(
            f"Cannot delete active provider {provider}",
            details={"tenant_id": tenant_id, "provider": provider},
        )


class CircuitOpenError(TelephonyRoutingError):
    """Breaker refused the attempt; no vendor call was made."""

    code = "CIRCUIT_OPEN"

    def __init__(self, tenant_id: str, provider: str) -> None:
        super().__init__(
            f"Circuit breaker open for {provider}",
            details={"tenant_id": tenant_id, "provider": provider},
        )
        self.provider = provider
