"""
Static provider catalogue: marketing metadata and credential field schemas.

Used by the provider-management API to render the "choose your vendor" screen
and to validate that a credential map carries the vendor's required fields
before any network call is made.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from callcenter.telephony.interface import ProviderName

FieldType = Literal["text", "password", "textarea"]


@dataclass(frozen=True)
class CredentialField:
    name: str
    label: str
    type: FieldType
    required: bool
    placeholder: str = ""
    help: str = ""


@dataclass(frozen=True)
class ProviderInfo:
    name: ProviderName
    label: str
    description: str
    features: tuple[str, ...]
    languages: tuple[str, ...]
    pricing: str
    credential_fields: tuple[CredentialField, ...] = field(default_factory=tuple)

    @property
    def required_fields(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.credential_fields if f.required)


PROVIDER_CATALOG: dict[ProviderName, ProviderInfo] = {
    ProviderName.EXOTEL: ProviderInfo(
        name=ProviderName.EXOTEL,
        label="Exotel",
        description="Indian VoIP provider with excellent Hindi support",
        features=("IVR", "Call Recording", "Voicebot", "Call Analytics"),
        languages=("English", "Hindi", "Hinglish"),
        pricing="Pay-per-minute",
        credential_fields=(
            CredentialField("account_sid", "Account SID", "text", True,
                            "e.g., abc123def456", "Found in Exotel dashboard under Settings"),
            CredentialField("auth_token", "Auth Token", "password", True,
                            "Your auth token", "Keep this secret!"),
            CredentialField("app_id", "App ID", "text", True,
                            "Your app ID", "Create an app in Exotel dashboard"),
        ),
    ),
    ProviderName.TWILIO: ProviderInfo(
        name=ProviderName.TWILIO,
        label="Twilio",
        description="Global communications platform",
        features=("IVR", "Call Recording", "SMS", "WhatsApp"),
        languages=("English", "Multiple languages"),
        pricing="Pay-per-minute",
        credential_fields=(
            CredentialField("account_sid", "Account SID", "text", True,
                            "ACxxxxxxxxxxxxxxxxxxxxxxxxxx", "Found in Twilio console"),
            CredentialField("auth_token", "Auth Token", "password", True,
                            "Your auth token", "Keep this secret!"),
            CredentialField("phone_numbers", "Twilio Phone Number(s)", "textarea", False,
                            "+1234567890", "One per line with country code"),
        ),
    ),
    ProviderName.VOICEBASE: ProviderInfo(
        name=ProviderName.VOICEBASE,
        label="VoiceBase",
        description="Voice analytics and call recording",
        features=("Call Recording", "Speech Recognition", "Analytics"),
        languages=("English", "Hindi"),
        pricing="Subscription-based",
        credential_fields=(
            CredentialField("api_key", "API Key", "text", True,
                            "Your API key", "Found in VoiceBase account settings"),
            CredentialField("api_secret", "API Secret", "password", False,
                            "Your API secret", "Keep this secret!"),
        ),
    ),
    ProviderName.CUSTOM: ProviderInfo(
        name=ProviderName.CUSTOM,
        label="Custom Provider",
        description="Bring your own VoIP provider",
        features=("Custom", "Flexible", "Webhook-based"),
        languages=("All supported by your provider",),
        pricing="Your provider's pricing",
        credential_fields=(
            CredentialField("provider_url", "Provider API URL", "text", True,
                            "https://api.your-provider.com", "Base URL for API calls"),
            CredentialField("api_key", "API Key", "password", True,
                            "Your API key", "For authentication"),
            CredentialField("webhook_secret", "Webhook Secret (for signature validation)",
                            "password", False, "Optional webhook secret",
                            "If your provider signs webhooks"),
        ),
    ),
}


def get_provider_info(provider: ProviderName) -> ProviderInfo:
    return PROVIDER_CATALOG[provider]


def missing_credential_fields(provider: ProviderName, credentials: Mapping[str, Any]) -> list[str]:
    """Return the required credential fields absent (or blank) in ``credentials``."""
    return [
        name
        for name in PROVIDER_CATALOG[provider].required_fields
        if not str(credentials.get(name) or "").strip()
    ]
