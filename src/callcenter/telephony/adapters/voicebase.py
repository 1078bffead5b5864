"""
VoiceBase adapter.

VoiceBase is a media analytics service rather than a carrier: "calls" are
media uploads identified by ``mediaId``. Outbound placement submits a recording
URL for processing, so the request metadata must carry ``media_url``.
"""

from __future__ import annotations

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
    NormalizedInboundCall,
    OutboundCallRequest,
    OutboundCallResult,
    ProviderConnectionError,
    ProviderName,
    ProviderRejection,
    VendorPayload,
    VoiceBasePayload,
    normalize_call_status,
)

logger = get_logger(__name__)

DEFAULT_API_BASE = "https://api.voicebase.com/v3"


class VoiceBaseAdapter(HttpTelephonyAdapter):
    provider_name = ProviderName.VOICEBASE

    def __init__(
        self,
        api_base_url: str = DEFAULT_API_BASE,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(http_client=http_client)
        self._api_base_url = api_base_url.rstrip("/")

    @staticmethod
    def _headers(credentials: Credentials) -> dict[str, str]:
        api_key = credentials.get("api_key")
        if not api_key:
            raise ProviderRejection(
                message="VoiceBase credentials require api_key",
                error_code="MISSING_CREDENTIALS",
            )
        return {"Authorization": f"Bearer {api_key}"}

    def _error_details(self, body: dict[str, Any]) -> tuple[str | None, str | None]:
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            first = errors[0] if isinstance(errors[0], dict) else {"error": errors[0]}
            message = first.get("error") or first.get("message")
            return (str(message) if message else None, None)
        return super()._error_details(body)

    async def test_connection(self, credentials: Credentials) -> ConnectionTestResult:
        try:
            headers = self._headers(credentials)
        except ProviderRejection as e:
            raise ProviderConnectionError(str(e), error_code=e.error_code) from e

        response = await self._send(
            "GET",
            f"{self._api_base_url}/accounts",
            operation="connection test",
            headers=headers,
        )
        data = self._check_response(
            response,
            operation="connection test",
            rejection_cls=ProviderConnectionError,
        )
        return ConnectionTestResult(
            success=True,
            account_metadata={"account_status": data.get("accountStatus")},
        )

    async def handle_inbound_call(
        self,
        payload: VendorPayload,
        credentials: Credentials,
    ) -> NormalizedInboundCall:
        self._expect_payload(payload, VoiceBasePayload)
        assert isinstance(payload, VoiceBasePayload)

        logger.info("Handling VoiceBase media callback", extra={"media_id": payload.media_id})
        return NormalizedInboundCall(
            external_call_id=payload.media_id,
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
        headers = self._headers(credentials)
        media_url = (request.metadata or {}).get("media_url")
        if not media_url:
            raise ProviderRejection(
                message="VoiceBase outbound requests require metadata.media_url",
                error_code="MISSING_MEDIA_URL",
            )

        body = {
            "mediaUrl": media_url,
            "title": f"Call to {request.to_number}",
            "callbackUrl": request.callback_url,
            "metadata": {
                **{k: v for k, v in request.metadata.items() if k != "media_url"},
                "to": request.to_number,
                "from": request.from_number,
            },
        }

        response = await self._send(
            "POST",
            f"{self._api_base_url}/media",
            operation="media submission",
            json=body,
            headers=headers,
        )
        data = self._check_response(response, operation="media submission")

        media_id = data.get("mediaId")
        if not media_id:
            raise ProviderRejection(
                message="VoiceBase response did not include a mediaId",
                error_code="MISSING_MEDIA_ID",
                provider_response=data,
            )

        return OutboundCallResult(
            external_call_id=str(media_id),
            status=normalize_call_status(data.get("status"), CallStatus.PROCESSING),
            provider_name=self.provider_name,
            raw_response=data,
        )

    async def end_call(self, external_call_id: str, credentials: Credentials) -> None:
        # Nothing to hang up; withdrawing the media stops processing.
        response = await self._send(
            "DELETE",
            f"{self._api_base_url}/media/{external_call_id}",
            operation="media deletion",
            headers=self._headers(credentials),
        )
        self._check_response(response, operation="media deletion", call_id=external_call_id)

    async def get_call_details(
        self,
        external_call_id: str,
        credentials: Credentials,
    ) -> CallDetail:
        response = await self._send(
            "GET",
            f"{self._api_base_url}/media/{external_call_id}",
            operation="media details",
            headers=self._headers(credentials),
        )
        data = self._check_response(response, operation="media details", call_id=external_call_id)
        metadata = data.get("metadata") or {}

        return CallDetail(
            external_call_id=str(data.get("mediaId") or external_call_id),
            status=normalize_call_status(data.get("status")),
            duration_seconds=as_int(data.get("duration")),
            from_number=metadata.get("from"),
            to_number=metadata.get("to"),
            recording_url=data.get("mediaUrl"),
        )
