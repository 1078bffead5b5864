"""
Adapter for tenant-hosted ("bring your own") VoIP gateways.

The gateway lives at the tenant-supplied ``provider_url`` and speaks a small
JSON contract under ``/api``. Requests carry ``Authorization: Bearer
<api_key>``; when ``webhook_secret`` is set it is forwarded as
``X-Webhook-Secret`` and inbound webhooks must carry a matching hex
HMAC-SHA256 of the raw body.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Any

import httpx

from callcenter.shared.logging import get_logger
from callcenter.telephony.adapters.base import HttpTelephonyAdapter, as_int
from callcenter.telephony.interface import (
    CallDetail,
    CallDirection,
    CallStatus,
    ConnectionTestResult,
    Credentials,
    CustomPayload,
    NormalizedInboundCall,
    OutboundCallRequest,
    OutboundCallResult,
    ProviderConnectionError,
    ProviderName,
    ProviderRejection,
    VendorPayload,
    normalize_call_status,
)

logger = get_logger(__name__)


class CustomProviderAdapter(HttpTelephonyAdapter):
    provider_name = ProviderName.CUSTOM

    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        super().__init__(http_client=http_client)

    @staticmethod
    def _base_url(credentials: Credentials) -> str:
        provider_url = credentials.get("provider_url")
        if not provider_url:
            raise ProviderRejection(
                message="Custom provider credentials require provider_url",
                error_code="MISSING_CREDENTIALS",
            )
        return str(provider_url).rstrip("/")

    @staticmethod
    def _headers(credentials: Credentials) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {credentials.get('api_key', '')}"}
        if credentials.get("webhook_secret"):
            headers["X-Webhook-Secret"] = str(credentials["webhook_secret"])
        return headers

    async def test_connection(self, credentials: Credentials) -> ConnectionTestResult:
        try:
            base_url = self._base_url(credentials)
        except ProviderRejection as e:
            raise ProviderConnectionError(str(e), error_code=e.error_code) from e

        response = await self._send(
            "GET",
            f"{base_url}/api/test",
            operation="connection test",
            headers=self._headers(credentials),
        )
        data = self._check_response(
            response,
            operation="connection test",
            rejection_cls=ProviderConnectionError,
        )
        return ConnectionTestResult(
            success=True,
            account_metadata={
                "provider_url": base_url,
                "status": data.get("status"),
                "version": data.get("version"),
            },
        )

    async def handle_inbound_call(
        self,
        payload: VendorPayload,
        credentials: Credentials,
    ) -> NormalizedInboundCall:
        self._expect_payload(payload, CustomPayload)
        assert isinstance(payload, CustomPayload)

        logger.info(
            "Handling inbound custom provider call",
            extra={"provider_call_id": payload.call_id},
        )
        return NormalizedInboundCall(
            external_call_id=payload.call_id,
            from_number=payload.from_number,
            to_number=payload.to_number,
            direction=CallDirection.INBOUND,
            provider_name=self.provider_name,
        )

    async def initiate_outbound_call(
        self,
        request: OutboundCallRequest,
        credentials: Credentials,
    ) -> OutboundCallResult:
        base_url = self._base_url(credentials)
        body: dict[str, Any] = {
            "to": request.to_number,
            "from": request.from_number,
            "customData": request.metadata or {},
            "webhookUrl": request.callback_url,
            "statusCallbackUrl": request.callback_url,
        }

        response = await self._send(
            "POST",
            f"{base_url}/api/calls/initiate",
            operation="call initiation",
            json=body,
            headers=self._headers(credentials),
        )
        data = self._check_response(response, operation="call initiation")

        call_id = data.get("callId") or data.get("call_id")
        if not call_id:
            raise ProviderRejection(
                message="Custom provider response did not include a call id",
                error_code="MISSING_CALL_ID",
                provider_response=data,
            )

        return OutboundCallResult(
            external_call_id=str(call_id),
            status=normalize_call_status(data.get("status"), CallStatus.INITIATED),
            provider_name=self.provider_name,
            raw_response=data,
        )

    async def end_call(self, external_call_id: str, credentials: Credentials) -> None:
        response = await self._send(
            "POST",
            f"{self._base_url(credentials)}/api/calls/{external_call_id}/hangup",
            operation="end call",
            headers=self._headers(credentials),
        )
        self._check_response(response, operation="end call", call_id=external_call_id)

    async def get_call_details(
        self,
        external_call_id: str,
        credentials: Credentials,
    ) -> CallDetail:
        response = await self._send(
            "GET",
            f"{self._base_url(credentials)}/api/calls/{external_call_id}",
            operation="call details",
            headers=self._headers(credentials),
        )
        data = self._check_response(response, operation="call details", call_id=external_call_id)

        return CallDetail(
            external_call_id=str(data.get("callId") or data.get("call_id") or external_call_id),
            status=normalize_call_status(data.get("status")),
            duration_seconds=as_int(data.get("duration")),
            from_number=data.get("from"),
            to_number=data.get("to"),
            recording_url=data.get("recordingUrl") or data.get("recording_url"),
        )

    def validate_webhook_signature(
        self,
        body: bytes,
        signature: str,
        url: str,
        credentials: Credentials,
    ) -> bool:
        secret = credentials.get("webhook_secret")
        if not secret:
            return True
        expected = hmac.new(str(secret).encode("utf-8"), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature or "")
