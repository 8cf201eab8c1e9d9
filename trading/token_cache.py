"""
FundedDesk – Instrument token cache.
Maps "EXCHANGE:SCRIP" to the broker's symbol token. Entries never expire
unless a TTL is configured.
"""
import time
from typing import Callable, Dict, Optional, Tuple

from core.models import TokenInfo

class InstrumentTokenCache:
    def __init__(self, ttl_sec: Optional[float] = None, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_sec if ttl_sec and ttl_sec > 0 else None
        self._clock = clock
        self._entries: Dict[str, Tuple[TokenInfo, float]] = {}

    @staticmethod
    def key(scrip: str, exchange: str) -> str:
        return f"{exchange}:{scrip.upper()}"

    def get(self, scrip: str, exchange: str) -> Optional[TokenInfo]:
        k = self.key(scrip, exchange)
        hit = self._entries.get(k)
        if hit is None:
            return None
        info, stored_at = hit
        if self._ttl is not None and self._clock() - stored_at >= self._ttl:
            del self._entries[k]
            return None
        return info

    def put(self, scrip: str, exchange: str, info: TokenInfo) -> None:
        self._entries[self.key(scrip, exchange)] = (info, self._clock())

    def drop(self, scrip: str, exchange: str) -> None:
        self._entries.pop(self.key(scrip, exchange), None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries
