from __future__ import annotations

from datetime import datetime

import httpx
from pydantic import BaseModel


class CachedResponse(BaseModel):
    """A prior successful response stored in one cache generation."""

    generation: str
    url: str  # Absolute request URL, the lookup key within the generation
    status_code: int
    headers: list[tuple[str, str]] = []  # Transfer and encoding headers already stripped
    body: bytes = b""
    stored_at: datetime

    def to_response(self, request: httpx.Request | None = None) -> httpx.Response:
        return httpx.Response(
            self.status_code,
            headers=self.headers,
            content=self.body,
            request=request,
        )
