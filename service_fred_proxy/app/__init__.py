"""
FRED web proxy service package.

The proxy fronts browser requests for FRED data:
- Whitelisted routes for series metadata and observations
- Cache-aside reads against a local SQLite store
- Single-flight coalescing of concurrent misses
- Circuit-breaking and retries for upstream calls

Structure:
- app.main: FastAPI app, routes, and CLI entry point.
- app.adapters: HTTP client for the FRED API.
- app.caching: Durable cache store and request coalescer.
- app.proxy: Request types and the cache-aside orchestrator.
"""
