"""Shared keyed store adapters.

The services depend on ``AbstractSharedStore`` only. The Redis adapter is the
production implementation; tests run the same adapter against an in-process
Redis.
"""
