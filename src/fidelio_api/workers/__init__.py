"""Background workers supporting async processing."""

from .shadow_expiration import ShadowExpirationWorker, ShadowSweepSummary

__all__ = [
    "ShadowExpirationWorker",
    "ShadowSweepSummary",
]
