"""
Call-center telephony routing service.

Keep package import side-effects to a minimum to avoid circular imports.
"""

__version__ = "0.1.0"
