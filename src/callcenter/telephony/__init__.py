"""
Telephony routing package.

Keep package import side-effects to a minimum to avoid circular imports.
Do not import router/factory/adapters here.
"""

__all__ = [
    "interface",
    "config",
    "catalog",
    "circuit_breaker",
    "credentials",
    "registry",
    "repository",
    "router",
    "health",
    "factory",
]
