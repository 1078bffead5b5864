"""
Repository for telephony provider configuration and routing logs.

Each operation runs in its own transaction. The failover swap is a single
conditional UPDATE so two concurrent failovers cannot both succeed.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import select, update

from callcenter.shared.database import DatabaseManager
from callcenter.telephony.interface import CallDirection
from callcenter.telephony.models import CallAttemptRow, ProviderAuditLogRow, ProviderConfigRow
from callcenter.telephony.records import (
    AttemptOutcome,
    AuditAction,
    AuditEntry,
    CallAttemptRecord,
    ProviderConfig,
    utcnow,
)


class ProviderConfigRepositoryProtocol(Protocol):
    """Protocol for provider configuration persistence."""

    async def get_active_config(self, tenant_id: str) -> ProviderConfig | None:
        """Get the tenant's active configuration."""
        ...

    async def upsert_config(self, config: ProviderConfig) -> ProviderConfig:
        """Replace the tenant's configuration entirely."""
        ...

    async def swap_to_backup(
        self,
        tenant_id: str,
        expected_provider: str,
        reason: str,
    ) -> ProviderConfig | None:
        """Promote the backup if the active provider is still ``expected_provider``.

        Returns the new configuration, or None when the row no longer matches
        (already swapped, or no backup configured).
        """
        ...

    async def clear_backup(self, tenant_id: str, provider: str) -> ProviderConfig | None:
        """Drop the backup if it is ``provider``; None when nothing matched."""
        ...

    async def list_active_tenant_ids(self) -> list[str]:
        ...

    async def append_audit_entry(self, entry: AuditEntry) -> None:
        ...

    async def append_call_attempt(self, record: CallAttemptRecord) -> None:
        ...

    async def list_call_attempts(
        self,
        tenant_id: str,
        provider: str | None = None,
        limit: int = 50,
    ) -> Sequence[CallAttemptRecord]:
        """Most recent attempts first."""
        ...

    async def list_audit_entries(self, tenant_id: str, limit: int = 50) -> Sequence[AuditEntry]:
        """Most recent entries first."""
        ...


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on round-trip; stored values are always UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_config(row: ProviderConfigRow) -> ProviderConfig:
    return ProviderConfig(
        tenant_id=row.tenant_id,
        provider_name=row.provider_name,
        credentials=bytes(row.credentials),
        is_active=row.is_active,
        backup_provider_name=row.backup_provider_name,
        backup_credentials=(
            bytes(row.backup_credentials) if row.backup_credentials is not None else None
        ),
        failover_threshold=row.failover_threshold,
        error_count=row.error_count,
        tested_at=_aware(row.tested_at),
        last_error=row.last_error,
        updated_at=_aware(row.updated_at),
    )


def _to_attempt(row: CallAttemptRow) -> CallAttemptRecord:
    return CallAttemptRecord(
        tenant_id=row.tenant_id,
        provider=row.provider,
        direction=CallDirection(row.direction),
        outcome=AttemptOutcome(row.outcome),
        external_call_id=row.external_call_id,
        failure_reason=row.failure_reason,
        timestamp=_aware(row.created_at) or utcnow(),
    )


class SqlAlchemyProviderConfigRepository:
    """Provider configuration repository backed by async SQLAlchemy."""

    def __init__(self, db_manager: DatabaseManager) -> None:
        self._db = db_manager

    async def get_active_config(self, tenant_id: str) -> ProviderConfig | None:
        async with self._db.session() as session:
            stmt = select(ProviderConfigRow).where(
                ProviderConfigRow.tenant_id == tenant_id,
                ProviderConfigRow.is_active.is_(True),
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _to_config(row) if row is not None else None

    async def upsert_config(self, config: ProviderConfig) -> ProviderConfig:
        if (config.backup_provider_name is None) != (config.backup_credentials is None):
            raise ValueError("backup provider name and credentials must be set together")

        now = config.updated_at or utcnow()
        async with self._db.session() as session:
            row = await session.get(ProviderConfigRow, config.tenant_id)
            if row is None:
                row = ProviderConfigRow(tenant_id=config.tenant_id, created_at=now)
                session.add(row)
            row.provider_name = config.provider_name
            row.credentials = config.credentials
            row.is_active = config.is_active
            row.backup_provider_name = config.backup_provider_name
            row.backup_credentials = config.backup_credentials
            row.failover_threshold = config.failover_threshold
            row.error_count = config.error_count
            row.tested_at = config.tested_at
            row.last_error = config.last_error
            row.updated_at = now
            await session.flush()
            return _to_config(row)

    async def swap_to_backup(
        self,
        tenant_id: str,
        expected_provider: str,
        reason: str,
    ) -> ProviderConfig | None:
        # SET expressions read pre-update column values, so the backup columns
        # are copied before being cleared.
        stmt = (
            update(ProviderConfigRow)
            .where(
                ProviderConfigRow.tenant_id == tenant_id,
                ProviderConfigRow.is_active.is_(True),
                ProviderConfigRow.provider_name == expected_provider,
                ProviderConfigRow.backup_provider_name.is_not(None),
                ProviderConfigRow.backup_credentials.is_not(None),
            )
            .values(
                provider_name=ProviderConfigRow.backup_provider_name,
                credentials=ProviderConfigRow.backup_credentials,
                backup_provider_name=None,
                backup_credentials=None,
                error_count=ProviderConfigRow.error_count + 1,
                last_error=reason,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                return None
            row = await session.get(ProviderConfigRow, tenant_id, populate_existing=True)
            assert row is not None
            return _to_config(row)

    async def clear_backup(self, tenant_id: str, provider: str) -> ProviderConfig | None:
        stmt = (
            update(ProviderConfigRow)
            .where(
                ProviderConfigRow.tenant_id == tenant_id,
                ProviderConfigRow.backup_provider_name == provider,
            )
            .values(
                backup_provider_name=None,
                backup_credentials=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                return None
            row = await session.get(ProviderConfigRow, tenant_id, populate_existing=True)
            assert row is not None
            return _to_config(row)

    async def list_active_tenant_ids(self) -> list[str]:
        async with self._db.session() as session:
            stmt = (
                select(ProviderConfigRow.tenant_id)
                .where(ProviderConfigRow.is_active.is_(True))
                .order_by(ProviderConfigRow.tenant_id)
            )
            return list((await session.execute(stmt)).scalars().all())

    async def append_audit_entry(self, entry: AuditEntry) -> None:
        async with self._db.session() as session:
            session.add(
                ProviderAuditLogRow(
                    tenant_id=entry.tenant_id,
                    action=entry.action.value,
                    provider=entry.provider,
                    details=dict(entry.details),
                    created_at=entry.timestamp,
                )
            )

    async def append_call_attempt(self, record: CallAttemptRecord) -> None:
        async with self._db.session() as session:
            session.add(
                CallAttemptRow(
                    tenant_id=record.tenant_id,
                    provider=record.provider,
                    direction=record.direction.value,
                    external_call_id=record.external_call_id,
                    outcome=record.outcome.value,
                    failure_reason=record.failure_reason,
                    created_at=record.timestamp,
                )
            )

    async def list_call_attempts(
        self,
        tenant_id: str,
        provider: str | None = None,
        limit: int = 50,
    ) -> Sequence[CallAttemptRecord]:
        async with self._db.session() as session:
            stmt = select(CallAttemptRow).where(CallAttemptRow.tenant_id == tenant_id)
            if provider is not None:
                stmt = stmt.where(CallAttemptRow.provider == provider)
            stmt = stmt.order_by(CallAttemptRow.created_at.desc(), CallAttemptRow.id.desc()).limit(
                limit
            )
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_attempt(row) for row in rows]

    async def list_audit_entries(self, tenant_id: str, limit: int = 50) -> list[AuditEntry]:
        async with self._db.session() as session:
            stmt = (
                select(ProviderAuditLogRow)
                .where(ProviderAuditLogRow.tenant_id == tenant_id)
                .order_by(ProviderAuditLogRow.id.desc())
                .limit(limit)
            )
            rows = (await session.execute(stmt)).scalars().all()
            return [
                AuditEntry(
                    tenant_id=row.tenant_id,
                    action=AuditAction(row.action),
                    provider=row.provider,
                    details=dict(row.details or {}),
                    timestamp=_aware(row.created_at) or utcnow(),
                )
                for row in rows
            ]
