# soulscore/services/__init__.py
"""Services package for SoulScore."""

from .event_service import event_service
from .similarity_cache_service import similarity_cache_service

__all__ = ["event_service", "similarity_cache_service"]
