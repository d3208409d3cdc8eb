"""Throttle storage adapters.

The throttle depends on ``AbstractThrottleStore`` only, so the in-memory
store can later be replaced by a shared one (e.g. Redis) without touching
the HTTP layer.
"""
