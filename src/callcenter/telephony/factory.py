"""
Telephony router factory.

Single source of truth for wiring: settings come from Settings and
TelephonyConfig (pydantic-settings), never from raw os.getenv here.
"""

from __future__ import annotations

from functools import lru_cache

from callcenter.config import DEFAULT_CREDENTIAL_KEY, get_settings
from callcenter.shared.database import get_database_manager
from callcenter.shared.logging import get_logger
from callcenter.telephony.circuit_breaker import CircuitBreakerRegistry
from callcenter.telephony.config import get_telephony_config
from callcenter.telephony.credentials import CredentialCipher
from callcenter.telephony.registry import ProviderRegistry, build_provider_registry
from callcenter.telephony.repository import SqlAlchemyProviderConfigRepository
from callcenter.telephony.router import TelephonyRouter

logger = get_logger(__name__)


@lru_cache(maxsize=1)
def get_credential_cipher() -> CredentialCipher:
    settings = get_settings()
    if settings.credential_encryption_key == DEFAULT_CREDENTIAL_KEY:
        log = logger.error if settings.app_env == "prod" else logger.warning
        log(
            "Credential encryption key is the built-in default; set CREDENTIAL_ENCRYPTION_KEY",
            extra={"env": settings.app_env},
        )
    return CredentialCipher.from_secret(settings.credential_encryption_key)


@lru_cache(maxsize=1)
def get_provider_registry() -> ProviderRegistry:
    cfg = get_telephony_config()
    registry = build_provider_registry(cfg)
    logger.info(
        "Provider registry built",
        extra={
            "providers": [name.value for name in registry],
            "sandbox_mode": cfg.sandbox_mode,
        },
    )
    return registry


@lru_cache(maxsize=1)
def get_telephony_router() -> TelephonyRouter:
    """Create and cache the process-wide router (and its breaker registry)."""
    cfg = get_telephony_config()
    return TelephonyRouter(
        repository=SqlAlchemyProviderConfigRepository(get_database_manager()),
        registry=get_provider_registry(),
        cipher=get_credential_cipher(),
        breakers=CircuitBreakerRegistry(
            failure_threshold=cfg.breaker_failure_threshold,
            reset_timeout=cfg.breaker_reset_timeout_seconds,
        ),
        config=cfg,
    )
