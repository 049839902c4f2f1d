from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    INSTALL_FAILED = "INSTALL_FAILED"
    NETWORK_UNAVAILABLE = "NETWORK_UNAVAILABLE"
    CACHE_STORAGE_FAILED = "CACHE_STORAGE_FAILED"


class OfflineCacheError(Exception):
    """Base for every expected failure inside the offline cache gate.

    The gate recovers from ``NetworkError`` and ``CacheStorageError`` locally.
    ``InstallError`` propagates to the registration, which keeps the previous
    generation serving.
    """

    code: ErrorCode = ErrorCode.CACHE_STORAGE_FAILED

    def __init__(self, message: str, *, recoverable: bool = True) -> None:
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "recoverable": self.recoverable,
            }
        }


class InstallError(OfflineCacheError):
    """An essential URL could not be fetched or the generation could not be written."""

    code = ErrorCode.INSTALL_FAILED


class NetworkError(OfflineCacheError):
    """The live fetch was rejected before any response arrived."""

    code = ErrorCode.NETWORK_UNAVAILABLE


class CacheStorageError(OfflineCacheError):
    code = ErrorCode.CACHE_STORAGE_FAILED
