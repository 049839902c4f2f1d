from __future__ import annotations

from canemap_offline.models.cache import CachedResponse
from canemap_offline.models.gate import InterceptDecision, LifecycleState, SkipWaitingMessage

__all__ = [
    # cache
    "CachedResponse",
    # gate
    "InterceptDecision",
    "LifecycleState",
    "SkipWaitingMessage",
]
