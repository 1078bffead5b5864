"""
Provider registry: closed mapping from ProviderName to adapter instances.

Built once at startup. Persisted provider names are plain strings, so lookups
go through ``resolve`` which rejects anything outside the supported set.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping

from callcenter.shared.logging import get_logger
from callcenter.telephony.adapters import (
    CustomProviderAdapter,
    ExotelAdapter,
    MockTelephonyAdapter,
    TwilioAdapter,
    VoiceBaseAdapter,
)
from callcenter.telephony.config import TelephonyConfig
from callcenter.telephony.exceptions import UnknownProviderError
from callcenter.telephony.interface import ProviderName, TelephonyProvider

logger = get_logger(__name__)


def parse_provider_name(name: str | ProviderName) -> ProviderName:
    """Validate a provider identifier at the boundary."""
    if isinstance(name, ProviderName):
        return name
    try:
        return ProviderName(str(name).strip().lower())
    except ValueError:
        raise UnknownProviderError(str(name)) from None


class ProviderRegistry:
    def __init__(self, adapters: Mapping[ProviderName, TelephonyProvider]) -> None:
        self._adapters = dict(adapters)

    def __contains__(self, name: object) -> bool:
        return name in self._adapters

    def __iter__(self) -> Iterator[ProviderName]:
        return iter(self._adapters)

    def resolve(self, name: str | ProviderName) -> TelephonyProvider:
        provider = parse_provider_name(name)
        adapter = self._adapters.get(provider)
        if adapter is None:
            raise UnknownProviderError(provider.value)
        return adapter

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.aclose()


def build_provider_registry(config: TelephonyConfig) -> ProviderRegistry:
    """Create one adapter per supported vendor, or mocks in sandbox mode."""
    if config.sandbox_mode:
        logger.warning("Telephony sandbox mode enabled: all vendors are mocked")
        return ProviderRegistry({name: MockTelephonyAdapter(name) for name in ProviderName})

    return ProviderRegistry(
        {
            ProviderName.TWILIO: TwilioAdapter(api_base_url=config.twilio_api_base_url),
            ProviderName.EXOTEL: ExotelAdapter(api_base_url=config.exotel_api_base_url),
            ProviderName.VOICEBASE: VoiceBaseAdapter(api_base_url=config.voicebase_api_base_url),
            ProviderName.CUSTOM: CustomProviderAdapter(),
        }
    )
