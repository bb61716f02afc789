from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple


@dataclass
class CachedToken:
    value: str
    expires_at: float


class TokenCache:
    """
    Holds one provider bearer token and refreshes it shortly before expiry.

    fetch() returns (token, expires_in_seconds).
    A token is considered stale refresh_margin seconds before it expires.
    Instances are created per client and injected; nothing is module-global.
    """

    def __init__(
        self,
        fetch: Callable[[], Tuple[str, float]],
        refresh_margin: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch = fetch
        self.refresh_margin = float(refresh_margin)
        self._clock = clock
        self._token: Optional[CachedToken] = None
        self._lock = threading.Lock()

    def _is_fresh(self, now: float) -> bool:
        return self._token is not None and now < self._token.expires_at - self.refresh_margin

    def get(self) -> str:
        now = self._clock()
        if self._is_fresh(now):
            return self._token.value

        with self._lock:
            # another thread may have refreshed while we waited
            now = self._clock()
            if self._is_fresh(now):
                return self._token.value

            value, expires_in = self._fetch()
            self._token = CachedToken(value=value, expires_at=now + float(expires_in))
            return value

    def invalidate(self) -> None:
        with self._lock:
            self._token = None
