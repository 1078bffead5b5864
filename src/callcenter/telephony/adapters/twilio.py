"""
Twilio telephony provider adapter.

REST API 2010-04-01, HTTP basic auth ``account_sid:auth_token``, form-encoded
request bodies.
"""

from __future__ import annotations

import hashlib
import hmac
from base64 import b64encode
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any
from urllib.parse import parse_qsl, urlencode

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
    TwilioPayload,
    VendorPayload,
    normalize_call_status,
)

logger = get_logger(__name__)

DEFAULT_API_BASE = "https://api.twilio.com/2010-04-01"
STATUS_CALLBACK_EVENTS = ["initiated", "ringing", "answered", "completed"]


def _parse_twilio_date(value: Any) -> datetime:
    """Twilio returns RFC 2822 dates; tolerate ISO-8601 as well."""
    if value:
        try:
            return parsedate_to_datetime(str(value))
        except (TypeError, ValueError):
            pass
        try:
            return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            pass
    return datetime.now(timezone.utc)


class TwilioAdapter(HttpTelephonyAdapter):
    """Twilio telephony provider adapter."""

    provider_name = ProviderName.TWILIO

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
                message="Twilio credentials require account_sid and auth_token",
                error_code="MISSING_CREDENTIALS",
            )
        return (str(account_sid), str(auth_token))

    def _get_api_url(self, credentials: Credentials, endpoint: str = "") -> str:
        account_sid = credentials.get("account_sid")
        return f"{self._api_base_url}/Accounts/{account_sid}{endpoint}"

    def _error_details(self, body: dict[str, Any]) -> tuple[str | None, str | None]:
        message = body.get("message")
        code = body.get("code")
        return (
            str(message) if message else None,
            str(code) if code is not None else None,
        )

    async def test_connection(self, credentials: Credentials) -> ConnectionTestResult:
        try:
            auth = self._get_auth(credentials)
        except ProviderRejection as e:
            raise ProviderConnectionError(str(e), error_code=e.error_code) from e

        response = await self._send(
            "GET",
            self._get_api_url(credentials, ".json"),
            operation="connection test",
            auth=auth,
        )
        data = self._check_response(
            response,
            operation="connection test",
            rejection_cls=ProviderConnectionError,
        )
        return ConnectionTestResult(
            success=True,
            account_metadata={
                "account_name": data.get("friendly_name"),
                "account_type": data.get("type"),
                "status": data.get("status"),
            },
        )

    async def handle_inbound_call(
        self,
        payload: VendorPayload,
        credentials: Credentials,
    ) -> NormalizedInboundCall:
        self._expect_payload(payload, TwilioPayload)
        assert isinstance(payload, TwilioPayload)

        logger.info(
            "Handling inbound Twilio call",
            extra={"provider_call_id": payload.call_sid, "call_status": payload.call_status},
        )
        return NormalizedInboundCall(
            external_call_id=payload.call_sid,
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
        auth = self._get_auth(credentials)

        status_callback = request.callback_url
        if request.metadata:
            metadata = {k: str(v) for k, v in request.metadata.items()}
            separator = "&" if "?" in status_callback else "?"
            status_callback = f"{status_callback}{separator}{urlencode(metadata)}"

        payload = {
            "To": request.to_number,
            "From": request.from_number,
            "Url": request.callback_url,
            "Method": "POST",
            "StatusCallback": status_callback,
            "StatusCallbackEvent": STATUS_CALLBACK_EVENTS,
            "StatusCallbackMethod": "POST",
            "Timeout": "60",
            "MachineDetection": "Enable",
        }

        logger.info("Initiating Twilio call", extra={"to": request.to_number})

        response = await self._send(
            "POST",
            self._get_api_url(credentials, "/Calls.json"),
            operation="call initiation",
            data=payload,
            auth=auth,
        )
        data = self._check_response(response, operation="call initiation")

        sid = data.get("sid")
        if not sid:
            raise ProviderRejection(
                message="Twilio response did not include a call sid",
                error_code="MISSING_CALL_SID",
                provider_response=data,
            )

        return OutboundCallResult(
            external_call_id=str(sid),
            status=normalize_call_status(data.get("status"), CallStatus.QUEUED),
            provider_name=self.provider_name,
            created_at=_parse_twilio_date(data.get("date_created")),
            raw_response=data,
        )

    async def end_call(self, external_call_id: str, credentials: Credentials) -> None:
        response = await self._send(
            "POST",
            self._get_api_url(credentials, f"/Calls/{external_call_id}.json"),
            operation="end call",
            data={"Status": "completed"},
            auth=self._get_auth(credentials),
        )
        self._check_response(response, operation="end call", call_id=external_call_id)
        logger.info("Call ended via Twilio", extra={"provider_call_id": external_call_id})

    async def get_call_details(
        self,
        external_call_id: str,
        credentials: Credentials,
    ) -> CallDetail:
        response = await self._send(
            "GET",
            self._get_api_url(credentials, f"/Calls/{external_call_id}.json"),
            operation="call details",
            auth=self._get_auth(credentials),
        )
        data = self._check_response(response, operation="call details", call_id=external_call_id)

        recording_url = None
        recordings = (data.get("subresource_uris") or {}).get("recordings")
        if recordings:
            recording_url = f"https://api.twilio.com{recordings}"

        return CallDetail(
            external_call_id=str(data.get("sid") or external_call_id),
            status=normalize_call_status(data.get("status")),
            duration_seconds=as_int(data.get("duration")),
            from_number=data.get("from"),
            to_number=data.get("to"),
            recording_url=recording_url,
        )

    def validate_webhook_signature(
        self,
        body: bytes,
        signature: str,
        url: str,
        credentials: Credentials,
    ) -> bool:
        auth_token = credentials.get("auth_token")
        if not auth_token:
            logger.warning("No auth token configured, skipping signature validation")
            return True

        try:
            params = parse_qsl(body.decode("utf-8"), keep_blank_values=True)
        except UnicodeDecodeError:
            return False

        data_str = url + "".join(f"{k}{v}" for k, v in sorted(params))
        computed = hmac.new(
            str(auth_token).encode("utf-8"),
            data_str.encode("utf-8"),
            hashlib.sha1,
        ).digest()
        return hmac.compare_digest(b64encode(computed).decode("utf-8"), signature)
