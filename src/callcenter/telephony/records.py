"""
Immutable snapshots exchanged between the router and its repository.

The repository never hands out live ORM rows: every read returns one of these
frozen dataclasses, so a config observed by a request cannot change under it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from callcenter.telephony.circuit_breaker import CircuitState
from callcenter.telephony.interface import CallDirection


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    FAILED_OVER = "failed_over"


class AuditAction(str, Enum):
    PROVIDER_SET = "provider_set"
    PROVIDER_FAILOVER = "provider_failover"
    BACKUP_REMOVED = "backup_removed"


@dataclass(frozen=True)
class ProviderConfig:
    """A tenant's active provider configuration. Credentials stay encrypted."""

    tenant_id: str
    provider_name: str
    credentials: bytes
    is_active: bool = True
    backup_provider_name: str | None = None
    backup_credentials: bytes | None = None
    failover_threshold: int = 3
    error_count: int = 0
    tested_at: datetime | None = None
    last_error: str | None = None
    updated_at: datetime | None = None

    @property
    def has_backup(self) -> bool:
        return self.backup_provider_name is not None and self.backup_credentials is not None


@dataclass(frozen=True)
class ConfigSummary:
    """Non-secret view of a ProviderConfig."""

    tenant_id: str
    provider_name: str
    is_active: bool
    backup_provider_name: str | None
    failover_threshold: int
    error_count: int
    tested_at: datetime | None
    last_error: str | None
    updated_at: datetime | None

    @classmethod
    def from_config(cls, config: ProviderConfig) -> "ConfigSummary":
        return cls(
            tenant_id=config.tenant_id,
            provider_name=config.provider_name,
            is_active=config.is_active,
            backup_provider_name=config.backup_provider_name,
            failover_threshold=config.failover_threshold,
            error_count=config.error_count,
            tested_at=config.tested_at,
            last_error=config.last_error,
            updated_at=config.updated_at,
        )


@dataclass(frozen=True)
class CallAttemptRecord:
    tenant_id: str
    provider: str
    direction: CallDirection
    outcome: AttemptOutcome
    external_call_id: str | None = None
    failure_reason: str | None = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class AuditEntry:
    tenant_id: str
    action: AuditAction
    provider: str
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ProviderStatus:
    tenant_id: str
    provider: str
    is_healthy: bool
    breaker_state: CircuitState
    consecutive_failures: int
    error_count: int
    backup_provider: str | None
    failover_threshold: int
    last_error: str | None = None
    tested_at: datetime | None = None
    last_health_check_ok: bool | None = None


@dataclass(frozen=True)
class HealthCheckResult:
    tenant_id: str
    provider: str | None
    healthy: bool
    consecutive_unhealthy: int = 0
    failed_over: bool = False
    error: str | None = None
