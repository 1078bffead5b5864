"""
API router for tenant telephony provider management and call control.

The tenant is identified by the ``X-Tenant-ID`` header; authentication is
handled upstream of this service.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response, status

from callcenter.shared.logging import get_logger
from callcenter.telephony.config import TelephonyConfig, get_telephony_config
from callcenter.telephony.factory import get_telephony_router
from callcenter.telephony.interface import OutboundCallRequest
from callcenter.telephony.router import TelephonyRouter
from callcenter.telephony.schemas import (
    AuditEntryResponse,
    AuditLogResponse,
    CallAttemptResponse,
    CallDetailResponse,
    CallHistoryResponse,
    ConfigSummaryResponse,
    ConnectionTestRequest,
    ConnectionTestResponse,
    FailoverRequest,
    OutboundCallCreate,
    OutboundCallResponse,
    ProviderInfoResponse,
    ProviderSelectRequest,
    ProviderStatusResponse,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/providers", tags=["providers"])


async def get_tenant_id(
    x_tenant_id: Annotated[str | None, Header(alias="X-Tenant-ID")] = None,
) -> str:
    if not x_tenant_id or not x_tenant_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "TENANT_REQUIRED", "message": "X-Tenant-ID header is required"},
        )
    return x_tenant_id.strip()


TenantId = Annotated[str, Depends(get_tenant_id)]
RouterDep = Annotated[TelephonyRouter, Depends(get_telephony_router)]
ConfigDep = Annotated[TelephonyConfig, Depends(get_telephony_config)]


@router.get(
    "/supported",
    response_model=list[ProviderInfoResponse],
    summary="List supported telephony providers",
)
async def list_supported_providers(telephony: RouterDep) -> list[ProviderInfoResponse]:
    return [
        ProviderInfoResponse.model_validate(info, from_attributes=True)
        for info in telephony.get_supported_providers()
    ]


@router.get(
    "/current",
    response_model=ConfigSummaryResponse,
    summary="Get the tenant's active provider configuration",
)
async def get_current_provider(tenant_id: TenantId, telephony: RouterDep) -> ConfigSummaryResponse:
    summary = await telephony.get_current_provider(tenant_id)
    return ConfigSummaryResponse.model_validate(summary, from_attributes=True)


@router.get(
    "/status",
    response_model=ProviderStatusResponse,
    summary="Get health and circuit breaker status of the active provider",
)
async def get_provider_status(tenant_id: TenantId, telephony: RouterDep) -> ProviderStatusResponse:
    provider_status = await telephony.get_provider_status(tenant_id)
    return ProviderStatusResponse.model_validate(provider_status, from_attributes=True)


@router.get(
    "/history",
    response_model=CallHistoryResponse,
    summary="List recent routing attempts",
)
async def get_call_history(
    tenant_id: TenantId,
    telephony: RouterDep,
    provider: Annotated[str | None, Query(description="Filter by provider")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
) -> CallHistoryResponse:
    records = await telephony.get_call_history(tenant_id, provider=provider, limit=limit)
    items = [CallAttemptResponse.model_validate(r, from_attributes=True) for r in records]
    return CallHistoryResponse(items=items, total=len(items))


@router.get(
    "/audit",
    response_model=AuditLogResponse,
    summary="List provider configuration changes",
)
async def get_audit_log(
    tenant_id: TenantId,
    telephony: RouterDep,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
) -> AuditLogResponse:
    entries = await telephony.get_audit_log(tenant_id, limit=limit)
    items = [AuditEntryResponse.model_validate(e, from_attributes=True) for e in entries]
    return AuditLogResponse(items=items, total=len(items))


@router.post(
    "/test",
    response_model=ConnectionTestResponse,
    summary="Test provider credentials without saving them",
)
async def test_provider_connection(
    body: ConnectionTestRequest,
    telephony: RouterDep,
) -> ConnectionTestResponse:
    result = await telephony.test_provider_connection(body.provider, body.credentials)
    return ConnectionTestResponse(
        success=result.success,
        provider=body.provider.lower(),
        account_metadata=result.account_metadata,
    )


@router.post(
    "/select/{provider}",
    response_model=ConfigSummaryResponse,
    summary="Test and activate a provider for the tenant",
)
async def select_provider(
    provider: str,
    body: ProviderSelectRequest,
    tenant_id: TenantId,
    telephony: RouterDep,
) -> ConfigSummaryResponse:
    summary = await telephony.select_provider(
        tenant_id,
        provider,
        body.credentials,
        backup_provider_name=body.backup_provider,
        backup_credentials=body.backup_credentials,
        failover_threshold=body.failover_threshold,
    )
    return ConfigSummaryResponse.model_validate(summary, from_attributes=True)


@router.put(
    "/failover",
    response_model=ConfigSummaryResponse,
    summary="Promote the backup provider now",
)
async def trigger_failover(
    tenant_id: TenantId,
    telephony: RouterDep,
    body: FailoverRequest | None = None,
) -> ConfigSummaryResponse:
    reason = body.reason if body is not None else "Manual failover"
    summary = await telephony.trigger_manual_failover(tenant_id, reason)
    logger.info("Manual failover requested", extra={"tenant_id": tenant_id, "reason": reason})
    return ConfigSummaryResponse.model_validate(summary, from_attributes=True)


@router.delete(
    "/{provider}/credentials",
    response_model=ConfigSummaryResponse,
    summary="Remove stored credentials for a non-active provider",
)
async def remove_provider_credentials(
    provider: str,
    tenant_id: TenantId,
    telephony: RouterDep,
) -> ConfigSummaryResponse:
    summary = await telephony.remove_provider_credentials(tenant_id, provider)
    return ConfigSummaryResponse.model_validate(summary, from_attributes=True)


@router.get(
    "/{provider}/schema",
    response_model=ProviderInfoResponse,
    summary="Get the credential schema for a provider",
)
async def get_provider_schema(provider: str, telephony: RouterDep) -> ProviderInfoResponse:
    return ProviderInfoResponse.model_validate(
        telephony.get_provider_schema(provider),
        from_attributes=True,
    )


@router.post(
    "/calls",
    response_model=OutboundCallResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place an outbound call through the active provider",
)
async def create_outbound_call(
    body: OutboundCallCreate,
    tenant_id: TenantId,
    telephony: RouterDep,
    telephony_config: ConfigDep,
) -> OutboundCallResponse:
    callback_url = body.callback_url or telephony_config.get_webhook_url(tenant_id)
    result = await telephony.route_outbound(
        tenant_id,
        OutboundCallRequest(
            to_number=body.to_number,
            from_number=body.from_number,
            callback_url=callback_url,
            metadata=body.metadata,
        ),
    )
    return OutboundCallResponse.model_validate(result, from_attributes=True)


@router.get(
    "/calls/{external_call_id}",
    response_model=CallDetailResponse,
    summary="Get vendor-side call details",
)
async def get_call_details(
    external_call_id: str,
    tenant_id: TenantId,
    telephony: RouterDep,
) -> CallDetailResponse:
    detail = await telephony.get_call_details(tenant_id, external_call_id)
    return CallDetailResponse.model_validate(detail, from_attributes=True)


@router.post(
    "/calls/{external_call_id}/end",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Hang up a call",
)
async def end_call(
    external_call_id: str,
    tenant_id: TenantId,
    telephony: RouterDep,
) -> Response:
    await telephony.end_call(tenant_id, external_call_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
