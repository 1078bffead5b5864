"""Tests for the Twilio telephony adapter (httpx MockTransport, no network)."""

import hashlib
import hmac
from base64 import b64encode
from datetime import datetime, timezone
from urllib.parse import parse_qs, urlencode

import httpx
import pytest

from callcenter.telephony.adapters.twilio import TwilioAdapter
from callcenter.telephony.interface import (
    CallDirection,
    CallNotFoundError,
    CallStatus,
    OutboundCallRequest,
    ProviderConnectionError,
    ProviderName,
    ProviderRejection,
)

BASE = "https://twilio.test/2010-04-01"
CREDS = {"account_sid": "AC_TEST_ACCOUNT_SID", "auth_token": "test_auth_token_12345"}


def _adapter(handler, requests: list[httpx.Request] | None = None) -> TwilioAdapter:
    def recording(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(recording))
    return TwilioAdapter(api_base_url=BASE, http_client=client)


@pytest.fixture
def call_request() -> OutboundCallRequest:
    return OutboundCallRequest(
        to_number="+14155551234",
        from_number="+14155550000",
        callback_url="https://example.com/webhooks/telephony/tenant-a",
        metadata={"campaign_id": "c-1", "contact_id": "k-9"},
    )


class TestTwilioAdapterInitiateCall:
    @pytest.mark.asyncio
    async def test_initiate_call_success(self, call_request: OutboundCallRequest) -> None:
        requests: list[httpx.Request] = []
        adapter = _adapter(
            lambda r: httpx.Response(
                201,
                json={
                    "sid": "CA_TEST_CALL_SID_123",
                    "status": "queued",
                    "date_created": "Mon, 15 Jan 2024 10:30:00 +0000",
                },
            ),
            requests,
        )

        result = await adapter.initiate_outbound_call(call_request, CREDS)

        assert result.external_call_id == "CA_TEST_CALL_SID_123"
        assert result.status == CallStatus.QUEUED
        assert result.provider_name == ProviderName.TWILIO
        assert result.created_at == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
        assert result.raw_response["sid"] == "CA_TEST_CALL_SID_123"

        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == f"{BASE}/Accounts/AC_TEST_ACCOUNT_SID/Calls.json"
        expected_auth = b64encode(b"AC_TEST_ACCOUNT_SID:test_auth_token_12345").decode()
        assert request.headers["Authorization"] == f"Basic {expected_auth}"

    @pytest.mark.asyncio
    async def test_initiate_call_form_fields(self, call_request: OutboundCallRequest) -> None:
        requests: list[httpx.Request] = []
        adapter = _adapter(lambda r: httpx.Response(201, json={"sid": "CA1"}), requests)

        await adapter.initiate_outbound_call(call_request, CREDS)

        form = parse_qs(requests[0].content.decode())
        assert form["To"] == ["+14155551234"]
        assert form["From"] == ["+14155550000"]
        assert form["Url"] == [call_request.callback_url]
        assert form["StatusCallbackEvent"] == ["initiated", "ringing", "answered", "completed"]
        assert form["MachineDetection"] == ["Enable"]
        assert form["StatusCallback"] == [
            f"{call_request.callback_url}?{urlencode(call_request.metadata)}"
        ]

    @pytest.mark.asyncio
    async def test_initiate_call_iso_date_and_default_status(
        self,
        call_request: OutboundCallRequest,
    ) -> None:
        adapter = _adapter(
            lambda r: httpx.Response(201, json={"sid": "CA1", "date_created": "2024-01-15T10:30:00Z"})
        )

        result = await adapter.initiate_outbound_call(call_request, CREDS)

        assert result.status == CallStatus.QUEUED
        assert result.created_at == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_initiate_call_api_error(self, call_request: OutboundCallRequest) -> None:
        adapter = _adapter(
            lambda r: httpx.Response(400, json={"code": 21211, "message": "Invalid 'To' Phone Number"})
        )

        with pytest.raises(ProviderRejection) as exc_info:
            await adapter.initiate_outbound_call(call_request, CREDS)

        assert "Invalid 'To' Phone Number" in str(exc_info.value)
        assert exc_info.value.error_code == "21211"

    @pytest.mark.asyncio
    async def test_initiate_call_server_error(self, call_request: OutboundCallRequest) -> None:
        adapter = _adapter(lambda r: httpx.Response(503, text="unavailable"))

        with pytest.raises(ProviderConnectionError) as exc_info:
            await adapter.initiate_outbound_call(call_request, CREDS)

        assert exc_info.value.error_code == "503"

    @pytest.mark.asyncio
    async def test_initiate_call_http_error(self, call_request: OutboundCallRequest) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        adapter = _adapter(refuse)

        with pytest.raises(ProviderConnectionError) as exc_info:
            await adapter.initiate_outbound_call(call_request, CREDS)

        assert exc_info.value.error_code == "HTTP_ERROR"

    @pytest.mark.asyncio
    async def test_initiate_call_missing_sid(self, call_request: OutboundCallRequest) -> None:
        adapter = _adapter(lambda r: httpx.Response(201, json={"status": "queued"}))

        with pytest.raises(ProviderRejection) as exc_info:
            await adapter.initiate_outbound_call(call_request, CREDS)

        assert exc_info.value.error_code == "MISSING_CALL_SID"

    @pytest.mark.asyncio
    async def test_initiate_call_missing_credentials(self, call_request: OutboundCallRequest) -> None:
        adapter = _adapter(lambda r: httpx.Response(201, json={"sid": "CA1"}))

        with pytest.raises(ProviderRejection) as exc_info:
            await adapter.initiate_outbound_call(call_request, {"account_sid": "AC1"})

        assert exc_info.value.error_code == "MISSING_CREDENTIALS"


class TestTwilioAdapterConnection:
    @pytest.mark.asyncio
    async def test_connection_success(self) -> None:
        requests: list[httpx.Request] = []
        adapter = _adapter(
            lambda r: httpx.Response(
                200,
                json={"friendly_name": "Acme", "type": "Full", "status": "active"},
            ),
            requests,
        )

        result = await adapter.test_connection(CREDS)

        assert result.success is True
        assert result.account_metadata == {
            "account_name": "Acme",
            "account_type": "Full",
            "status": "active",
        }
        assert str(requests[0].url) == f"{BASE}/Accounts/AC_TEST_ACCOUNT_SID.json"

    @pytest.mark.asyncio
    async def test_connection_rejected_credentials(self) -> None:
        adapter = _adapter(
            lambda r: httpx.Response(401, json={"code": 20003, "message": "Authenticate"})
        )

        with pytest.raises(ProviderConnectionError) as exc_info:
            await adapter.test_connection(CREDS)

        assert exc_info.value.error_code == "20003"

    @pytest.mark.asyncio
    async def test_connection_missing_credentials(self) -> None:
        adapter = _adapter(lambda r: httpx.Response(200, json={}))

        with pytest.raises(ProviderConnectionError) as exc_info:
            await adapter.test_connection({})

        assert exc_info.value.error_code == "MISSING_CREDENTIALS"


class TestTwilioAdapterCallControl:
    @pytest.mark.asyncio
    async def test_end_call(self) -> None:
        requests: list[httpx.Request] = []
        adapter = _adapter(lambda r: httpx.Response(200, json={"sid": "CA1"}), requests)

        await adapter.end_call("CA1", CREDS)

        assert str(requests[0].url).endswith("/Calls/CA1.json")
        assert parse_qs(requests[0].content.decode()) == {"Status": ["completed"]}

    @pytest.mark.asyncio
    async def test_end_call_unknown(self) -> None:
        adapter = _adapter(lambda r: httpx.Response(404, json={"code": 20404, "message": "nope"}))

        with pytest.raises(CallNotFoundError):
            await adapter.end_call("CA_MISSING", CREDS)

    @pytest.mark.asyncio
    async def test_get_call_details(self) -> None:
        adapter = _adapter(
            lambda r: httpx.Response(
                200,
                json={
                    "sid": "CA1",
                    "status": "in-progress",
                    "duration": "42",
                    "from": "+1",
                    "to": "+2",
                    "subresource_uris": {
                        "recordings": "/2010-04-01/Accounts/AC/Calls/CA1/Recordings.json"
                    },
                },
            )
        )

        detail = await adapter.get_call_details("CA1", CREDS)

        assert detail.status == CallStatus.IN_PROGRESS
        assert detail.duration_seconds == 42
        assert detail.from_number == "+1"
        assert detail.recording_url == (
            "https://api.twilio.com/2010-04-01/Accounts/AC/Calls/CA1/Recordings.json"
        )


class TestTwilioAdapterInbound:
    @pytest.mark.asyncio
    async def test_handle_inbound_call(self) -> None:
        adapter = _adapter(lambda r: httpx.Response(200))
        payload = adapter.parse_payload(
            {"CallSid": "CA_IN", "From": "+14155551234", "To": "+14155550000", "CallStatus": "ringing"}
        )

        call = await adapter.handle_inbound_call(payload, CREDS)

        assert call.external_call_id == "CA_IN"
        assert call.direction == CallDirection.INBOUND
        assert call.provider_name == ProviderName.TWILIO
        assert call.from_number == "+14155551234"


class TestTwilioSignature:
    URL = "https://api.example.com/webhooks/telephony/tenant-a"

    def _sign(self, params: dict[str, str]) -> str:
        data = self.URL + "".join(f"{k}{v}" for k, v in sorted(params.items()))
        digest = hmac.new(CREDS["auth_token"].encode(), data.encode(), hashlib.sha1).digest()
        return b64encode(digest).decode()

    def test_valid_signature(self) -> None:
        adapter = TwilioAdapter()
        params = {"CallSid": "CA1", "From": "+1", "To": "+2"}
        body = urlencode(params).encode()

        assert adapter.validate_webhook_signature(body, self._sign(params), self.URL, CREDS)

    def test_invalid_signature(self) -> None:
        adapter = TwilioAdapter()
        body = urlencode({"CallSid": "CA1"}).encode()

        assert not adapter.validate_webhook_signature(body, "bogus", self.URL, CREDS)

    def test_signature_bound_to_url(self) -> None:
        adapter = TwilioAdapter()
        params = {"CallSid": "CA1"}
        body = urlencode(params).encode()

        assert not adapter.validate_webhook_signature(
            body, self._sign(params), self.URL + "-other", CREDS
        )

    def test_no_auth_token_skips_validation(self) -> None:
        adapter = TwilioAdapter()

        assert adapter.validate_webhook_signature(b"CallSid=CA1", "", self.URL, {})
