"""
Telephony provider interface definition.

Every vendor adapter normalizes its wire format behind the same async
capability surface: connection test, inbound webhook normalization, outbound
call placement, hangup and call detail lookup. Adapters never retry; retries,
timeouts and failover belong to the router.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar

from callcenter.shared.logging import get_logger

logger = get_logger(__name__)

Credentials = Mapping[str, Any]


class ProviderName(str, Enum):
    """Closed set of supported telephony vendors."""

    EXOTEL = "exotel"
    TWILIO = "twilio"
    VOICEBASE = "voicebase"
    CUSTOM = "custom"


class CallDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class CallStatus(str, Enum):
    """Call status values."""

    QUEUED = "queued"
    INITIATED = "initiated"
    RINGING = "ringing"
    IN_PROGRESS = "in_progress"
    PROCESSING = "processing"
    COMPLETED = "completed"
    BUSY = "busy"
    NO_ANSWER = "no_answer"
    FAILED = "failed"
    CANCELED = "canceled"
    UNKNOWN = "unknown"


def normalize_call_status(raw: Any, default: CallStatus = CallStatus.UNKNOWN) -> CallStatus:
    """Map a vendor status string ("in-progress", "No Answer", ...) onto CallStatus."""
    if not raw:
        return default
    value = str(raw).strip().lower().replace("-", "_").replace(" ", "_")
    if value == "cancelled":
        value = "canceled"
    try:
        return CallStatus(value)
    except ValueError:
        return default


@dataclass(frozen=True)
class OutboundCallRequest:
    """Request to place an outbound call."""

    to_number: str
    from_number: str
    callback_url: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OutboundCallResult:
    """Vendor acknowledgement of an outbound call."""

    external_call_id: str
    status: CallStatus
    provider_name: ProviderName
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NormalizedInboundCall:
    """Provider-agnostic representation of an inbound webhook event."""

    external_call_id: str
    from_number: str | None
    to_number: str | None
    direction: CallDirection
    provider_name: ProviderName
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class CallDetail:
    external_call_id: str
    status: CallStatus
    duration_seconds: int | None = None
    from_number: str | None = None
    to_number: str | None = None
    recording_url: str | None = None


@dataclass(frozen=True)
class ConnectionTestResult:
    success: bool
    account_metadata: dict[str, Any] = field(default_factory=dict)


class TelephonyProviderError(Exception):
    """Base exception for telephony provider errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.provider_response = provider_response or {}


class ProviderConnectionError(TelephonyProviderError):
    """Vendor unreachable, or credentials rejected during a connectivity test."""


class ProviderRejection(TelephonyProviderError):
    """Vendor explicitly declined an operation (bad number, balance, auth)."""


class CallNotFoundError(TelephonyProviderError):
    """Vendor does not know the given call id."""


class WebhookParseError(TelephonyProviderError):
    """Error parsing webhook payload."""


# ---------------------------------------------------------------------------
# Vendor payloads (tagged union)
# ---------------------------------------------------------------------------


def _first(raw: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def _missing(provider: ProviderName, key: str, raw: Mapping[str, Any]) -> WebhookParseError:
    return WebhookParseError(
        message=f"Missing {key} in {provider.value} webhook payload",
        error_code="MISSING_CALL_ID",
        provider_response={"keys": sorted(raw.keys())},
    )


@dataclass(frozen=True)
class TwilioPayload:
    provider: ClassVar[ProviderName] = ProviderName.TWILIO

    call_sid: str
    from_number: str | None
    to_number: str | None
    account_sid: str | None = None
    direction: str | None = None
    call_status: str | None = None

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "TwilioPayload":
        call_sid = _first(raw, "CallSid")
        if not call_sid:
            raise _missing(cls.provider, "CallSid", raw)
        return cls(
            call_sid=call_sid,
            from_number=_first(raw, "From"),
            to_number=_first(raw, "To"),
            account_sid=_first(raw, "AccountSid"),
            direction=_first(raw, "Direction"),
            call_status=_first(raw, "CallStatus"),
        )


@dataclass(frozen=True)
class ExotelPayload:
    provider: ClassVar[ProviderName] = ProviderName.EXOTEL

    call_sid: str
    from_number: str | None
    to_number: str | None
    call_start_time: datetime | None = None

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "ExotelPayload":
        call_sid = _first(raw, "CallSid")
        if not call_sid:
            raise _missing(cls.provider, "CallSid", raw)

        started: datetime | None = None
        start_raw = _first(raw, "CallStartTime")
        if start_raw:
            try:
                started = datetime.fromisoformat(start_raw)
            except ValueError:
                logger.warning("Unparseable Exotel CallStartTime", extra={"value": start_raw})

        return cls(
            call_sid=call_sid,
            from_number=_first(raw, "From", "CallFrom"),
            to_number=_first(raw, "To", "CallTo"),
            call_start_time=started,
        )


@dataclass(frozen=True)
class VoiceBasePayload:
    provider: ClassVar[ProviderName] = ProviderName.VOICEBASE

    media_id: str
    from_number: str | None
    to_number: str | None

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "VoiceBasePayload":
        media_id = _first(raw, "mediaId")
        if not media_id:
            raise _missing(cls.provider, "mediaId", raw)
        return cls(
            media_id=media_id,
            from_number=_first(raw, "from"),
            to_number=_first(raw, "to"),
        )


@dataclass(frozen=True)
class CustomPayload:
    provider: ClassVar[ProviderName] = ProviderName.CUSTOM

    call_id: str
    from_number: str | None
    to_number: str | None
    attributes: dict[str, str] = field(default_factory=dict)

    _KNOWN_KEYS: ClassVar[frozenset[str]] = frozenset(
        {"call_id", "callId", "from", "caller", "to", "callee"}
    )

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "CustomPayload":
        call_id = _first(raw, "call_id", "callId")
        if not call_id:
            raise _missing(cls.provider, "call_id", raw)
        return cls(
            call_id=call_id,
            from_number=_first(raw, "from", "caller"),
            to_number=_first(raw, "to", "callee"),
            attributes={
                str(k): str(v) for k, v in raw.items() if k not in cls._KNOWN_KEYS
            },
        )


VendorPayload = TwilioPayload | ExotelPayload | VoiceBasePayload | CustomPayload

PAYLOAD_TYPES: dict[ProviderName, type[VendorPayload]] = {  # type: ignore[valid-type]
    ProviderName.TWILIO: TwilioPayload,
    ProviderName.EXOTEL: ExotelPayload,
    ProviderName.VOICEBASE: VoiceBasePayload,
    ProviderName.CUSTOM: CustomPayload,
}


def parse_vendor_payload(provider: ProviderName, raw: Mapping[str, Any]) -> VendorPayload:
    """Build the payload variant owned by ``provider`` from an opaque webhook body."""
    return PAYLOAD_TYPES[provider].from_raw(raw)


class TelephonyProvider(ABC):
    """Abstract interface for telephony providers."""

    provider_name: ProviderName

    def parse_payload(self, raw: Mapping[str, Any]) -> VendorPayload:
        """Parse a raw webhook body into this provider's payload variant."""
        return parse_vendor_payload(self.provider_name, raw)

    def _expect_payload(self, payload: VendorPayload, expected: type) -> None:
        if not isinstance(payload, expected):
            raise WebhookParseError(
                message=(
                    f"{self.provider_name.value} adapter cannot handle "
                    f"{type(payload).__name__}"
                ),
                error_code="UNEXPECTED_PAYLOAD",
            )

    @abstractmethod
    async def test_connection(self, credentials: Credentials) -> ConnectionTestResult:
        """Verify credentials against the vendor; raise ProviderConnectionError on failure."""
        ...

    @abstractmethod
    async def handle_inbound_call(
        self,
        payload: VendorPayload,
        credentials: Credentials,
    ) -> NormalizedInboundCall:
        ...

    @abstractmethod
    async def initiate_outbound_call(
        self,
        request: OutboundCallRequest,
        credentials: Credentials,
    ) -> OutboundCallResult:
        ...

    @abstractmethod
    async def end_call(self, external_call_id: str, credentials: Credentials) -> None:
        ...

    @abstractmethod
    async def get_call_details(
        self,
        external_call_id: str,
        credentials: Credentials,
    ) -> CallDetail:
        ...

    async def check_health(self, credentials: Credentials) -> bool:
        """Thin wrapper over test_connection that reports errors as False."""
        try:
            await self.test_connection(credentials)
            return True
        except Exception as e:
            logger.warning(
                "Provider health check failed",
                extra={"provider": self.provider_name.value, "error": str(e)},
            )
            return False

    def validate_webhook_signature(
        self,
        body: bytes,
        signature: str,
        url: str,
        credentials: Credentials,
    ) -> bool:
        """Validate webhook authenticity. Vendors without signing accept everything."""
        return True

    async def aclose(self) -> None:
        """Release network resources owned by the adapter."""
        return None
