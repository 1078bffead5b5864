"""
Exotel telephony provider adapter.

Exotel v2 REST API with HTTP basic auth ``account_sid:auth_token`` and JSON
bodies. Call resources are returned wrapped in a ``Call`` object.
"""

from __future__ import annotations

from datetime import datetime, timezone
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
    ExotelPayload,
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

DEFAULT_API_BASE = "https://api.exotel.com/v2"


class ExotelAdapter(HttpTelephonyAdapter):
    """Exotel telephony provider adapter."""

    provider_name = ProviderName.EXOTEL

    def __init__(
        self,
        api_base_url: str = DEFAULT_API_BASE,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(http_client=http_client)
        self._api_base_url = api_base_url.rstrip("/")

    @staticmethod
    def _get_auth(credentials: Credentials) -> tuple[str, str]:
        account_sid = credentials.get("account_sid")
        auth_token = credentials.get("auth_token")
        if not account_sid or not auth_token:
            raise ProviderRejection(
                message="Exotel credentials require account_sid and auth_token",
                error_code="MISSING_CREDENTIALS",
            )
        return (str(account_sid), str(auth_token))

    def _account_url(self, credentials: Credentials, endpoint: str = "") -> str:
        return f"{self._api_base_url}/accounts/{credentials.get('account_sid')}{endpoint}"

    def _error_details(self, body: dict[str, Any]) -> tuple[str | None, str | None]:
        error = body.get("RestException") or body.get("error") or {}
        if isinstance(error, dict):
            message = error.get("Message") or error.get("message")
            code = error.get("Code") or error.get("code")
        else:
            message, code = error, None
        message = message or body.get("message")
        return (
            str(message) if message else None,
            str(code) if code is not None else None,
        )

    @staticmethod
    def _call_body(data: dict[str, Any]) -> dict[str, Any]:
        call = data.get("Call")
        return call if isinstance(call, dict) else data

    async def test_connection(self, credentials: Credentials) -> ConnectionTestResult:
        try:
            auth = self._get_auth(credentials)
        except ProviderRejection as e:
            raise ProviderConnectionError(str(e), error_code=e.error_code) from e

        response = await self._send(
            "GET",
            self._account_url(credentials),
            operation="connection test",
            auth=auth,
        )
        data = self._check_response(
            response,
            operation="connection test",
            rejection_cls=ProviderConnectionError,
        )
        account = data.get("Account") or data.get("account") or {}
        return ConnectionTestResult(
            success=True,
            account_metadata={
                "account_name": account.get("Name") or account.get("name"),
                "timezone": account.get("TimeZone") or account.get("timezone"),
                "app_id": credentials.get("app_id"),
            },
        )

    async def handle_inbound_call(
        self,
        payload: VendorPayload,
        credentials: Credentials,
    ) -> NormalizedInboundCall:
        self._expect_payload(payload, ExotelPayload)
        assert isinstance(payload, ExotelPayload)

        logger.info(
            "Handling inbound Exotel call",
            extra={"provider_call_id": payload.call_sid},
        )
        return NormalizedInboundCall(
            external_call_id=payload.call_sid,
            from_number=payload.from_number,
            to_number=payload.to_number,
            direction=CallDirection.INBOUND,
            provider_name=self.provider_name,
            received_at=payload.call_start_time or datetime.now(timezone.utc),
        )

    async def initiate_outbound_call(
        self,
        request: OutboundCallRequest,
        credentials: Credentials,
    ) -> OutboundCallResult:
        body = {
            "From": request.from_number,
            "To": request.to_number,
            "CallerId": request.from_number,
            "Url": request.callback_url,
            "StatusCallback": request.callback_url,
            "CustomField": request.metadata or {},
        }
        if credentials.get("app_id"):
            body["AppId"] = credentials["app_id"]

        logger.info("Initiating Exotel call", extra={"to": request.to_number})

        response = await self._send(
            "POST",
            self._account_url(credentials, "/calls"),
            operation="call initiation",
            json=body,
            auth=self._get_auth(credentials),
        )
        data = self._check_response(response, operation="call initiation")
        call = self._call_body(data)

        sid = call.get("Sid") or call.get("sid")
        if not sid:
            raise ProviderRejection(
                message="Exotel response did not include a call sid",
                error_code="MISSING_CALL_SID",
                provider_response=data,
            )

        return OutboundCallResult(
            external_call_id=str(sid),
            status=normalize_call_status(call.get("Status"), CallStatus.QUEUED),
            provider_name=self.provider_name,
            raw_response=data,
        )

    async def end_call(self, external_call_id: str, credentials: Credentials) -> None:
        response = await self._send(
            "POST",
            self._account_url(credentials, f"/calls/{external_call_id}/hangup"),
            operation="end call",
            auth=self._get_auth(credentials),
        )
        self._check_response(response, operation="end call", call_id=external_call_id)
        logger.info("Call ended via Exotel", extra={"provider_call_id": external_call_id})

    async def get_call_details(
        self,
        external_call_id: str,
        credentials: Credentials,
    ) -> CallDetail:
        response = await self._send(
            "GET",
            self._account_url(credentials, f"/calls/{external_call_id}"),
            operation="call details",
            auth=self._get_auth(credentials),
        )
        data = self._check_response(response, operation="call details", call_id=external_call_id)
        call = self._call_body(data)

        return CallDetail(
            external_call_id=str(call.get("Sid") or external_call_id),
            status=normalize_call_status(call.get("Status")),
            duration_seconds=as_int(call.get("Duration")),
            from_number=call.get("From"),
            to_number=call.get("To"),
            recording_url=call.get("RecordingUrl") or None,
        )
