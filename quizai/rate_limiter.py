from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Union

from .settings import settings
from .store import KeyValueStore

logger = logging.getLogger(__name__)

LEDGER_KEY = "quiz_creation_timestamps_unauth"
HOUR_MS = 60 * 60 * 1000


@dataclass(frozen=True)
class Anonymous:
    pass


@dataclass(frozen=True)
class Authenticated:
    user_id: str


Identity = Union[Anonymous, Authenticated]


def identity_for(user_id: Optional[str]) -> Identity:
    uid = (user_id or "").strip()
    return Authenticated(uid) if uid else Anonymous()


def now_ms() -> int:
    return int(time.time() * 1000)


class RateLimiter:
    """
    Rolling-window quota for anonymous quiz generation.

    The check and the append are separate calls so a failed generation never
    consumes quota. Ledger problems are logged and treated as an empty ledger:
    a user is never blocked because local bookkeeping broke.
    """

    def __init__(
        self,
        store: KeyValueStore,
        limit: Optional[int] = None,
        window_ms: Optional[int] = None,
        key: str = LEDGER_KEY,
    ) -> None:
        self.store = store
        self.limit = settings.anon_daily_limit if limit is None else int(limit)
        self.window_ms = settings.rate_window_hours * HOUR_MS if window_ms is None else int(window_ms)
        self.key = key

    def _load_pruned(self, now: int) -> List[int]:
        res = self.store.read(self.key)
        if not res.ok:
            logger.warning("rate_ledger_read_failed key=%s error=%s", self.key, res.error)
            return []
        data = res.value
        if data is None:
            return []
        if not isinstance(data, list):
            logger.warning("rate_ledger_malformed key=%s type=%s", self.key, type(data).__name__)
            return []

        cutoff = now - self.window_ms
        out: List[int] = []
        for ts in data:
            # bool is an int subclass; a ledger of `true`s is still garbage
            if isinstance(ts, bool) or not isinstance(ts, (int, float)):
                continue
            if ts > cutoff:
                out.append(int(ts))
        return out

    def check_and_consume(self, identity: Identity, now: Optional[int] = None, limit: Optional[int] = None) -> bool:
        if isinstance(identity, Authenticated):
            return True
        now = now_ms() if now is None else int(now)
        limit = self.limit if limit is None else int(limit)
        recent = self._load_pruned(now)
        allowed = len(recent) < limit
        if not allowed:
            logger.info("rate_limited used=%d limit=%d", len(recent), limit)
        return allowed

    def record_usage(self, identity: Identity, now: Optional[int] = None) -> None:
        if isinstance(identity, Authenticated):
            return
        now = now_ms() if now is None else int(now)
        recent = self._load_pruned(now)
        recent.append(now)
        res = self.store.write(self.key, recent)
        if not res.ok:
            logger.error("rate_ledger_write_failed key=%s error=%s", self.key, res.error)

    def remaining(self, identity: Identity, now: Optional[int] = None) -> Optional[int]:
        if isinstance(identity, Authenticated):
            return None
        now = now_ms() if now is None else int(now)
        return max(0, self.limit - len(self._load_pruned(now)))

    def for_owner(self, owner: str) -> "RateLimiter":
        """Same store, limit and window; a separate ledger slot for `owner`."""
        return RateLimiter(self.store, limit=self.limit, window_ms=self.window_ms, key=f"{LEDGER_KEY}_{owner}")
