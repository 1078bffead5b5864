"""
Telephony routing configuration.

Deployment-wide knobs for timeouts, circuit breakers and the health-check
loop, plus vendor API base URLs. Per-tenant settings (provider choice,
credentials, failover threshold) live in the provider config table instead.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TelephonyConfig(BaseSettings):
    """Telephony router configuration from environment."""

    model_config = SettingsConfigDict(
        env_prefix="TELEPHONY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Timeouts (enforced by the router, never by adapters)
    test_timeout_seconds: float = Field(default=10.0, gt=0, le=120)
    call_timeout_seconds: float = Field(default=30.0, gt=0, le=300)
    store_timeout_seconds: float = Field(default=10.0, gt=0, le=120)

    # Circuit breaker (per deployment, not per tenant)
    breaker_failure_threshold: int = Field(default=5, ge=1, le=100)
    breaker_reset_timeout_seconds: float = Field(default=60.0, gt=0, le=3600)

    # Health-check loop
    health_check_interval_seconds: float = Field(default=60.0, ge=1, le=3600)
    health_check_concurrency: int = Field(default=10, ge=1, le=100)

    # Default for new tenant configs
    default_failover_threshold: int = Field(default=3, ge=1, le=100)

    # Replace every vendor adapter with the in-process mock (local development).
    sandbox_mode: bool = Field(default=False)

    # Vendor endpoints
    twilio_api_base_url: str = Field(default="https://api.twilio.com/2010-04-01")
    exotel_api_base_url: str = Field(default="https://api.exotel.com/v2")
    voicebase_api_base_url: str = Field(default="https://api.voicebase.com/v3")

    # Public base URL used for vendor callbacks
    webhook_base_url: str = Field(default="http://localhost:8000")

    def get_webhook_url(self, tenant_id: str) -> str:
        base = self.webhook_base_url.rstrip("/")
        return f"{base}/webhooks/telephony/{tenant_id}"


@lru_cache(maxsize=1)
def get_telephony_config() -> TelephonyConfig:
    return TelephonyConfig()
