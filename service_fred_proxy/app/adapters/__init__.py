"""
Adapters package for the FRED proxy.

Contains the HTTP client wrapper for the upstream FRED API. The adapter
encapsulates:

- Base URL, credential and request shapes
- Circuit breaking around upstream calls
- Error handling that maps to shared errors

Keep adapters thin; caching and retries live in the proxy layer.
"""

from .fred_client import FredClient

__all__ = ["FredClient"]
