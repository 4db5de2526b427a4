"""
pastevault - paste persistence and security engine

Stores short-lived, optionally password-encrypted text snippets with
burn-after-reading, expiry and owner-authorized deletion, and caches their
syntax-highlighted renderings.
"""

__version__ = "0.1.0"

from .core.service import PasteService, create_service, get_paste_service

__all__ = ["PasteService", "create_service", "get_paste_service"]
