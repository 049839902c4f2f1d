from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict


class InterceptDecision(StrEnum):
    EXCLUDED = "excluded"  # Never touched, not even for reads
    PASSTHROUGH = "passthrough"  # Not excluded, but not eligible for caching
    MANAGED = "managed"  # Network first, cached copy on network failure


class LifecycleState(StrEnum):
    NEW = "new"
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVE = "active"
    REDUNDANT = "redundant"  # Install failed, or superseded by a newer generation


class SkipWaitingMessage(BaseModel):
    """The only control message a gate understands: ``{"type": "SKIP_WAITING"}``."""

    model_config = ConfigDict(extra="allow")

    type: Literal["SKIP_WAITING"]
