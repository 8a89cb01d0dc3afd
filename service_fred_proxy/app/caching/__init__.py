"""
Proxy caching package.

Durable per-key storage of upstream payloads plus single-flight
coalescing of concurrent misses. Entries are replaced, never expired.
"""
