"""
Account cache: optional, bounded, explicitly stale.

Nothing depends on the cache for correctness. It exists so that a detail view
opened right after a list scan does not refetch the same bytes. Every entry
carries the instant its read was issued (`as_of`); entries older than the TTL
are dropped on access; the oldest entries are evicted past max_entries. The
dispatcher invalidates an address after every successful action.

Writes are ordered by read token. A reader takes a token with begin_read()
before going to the ledger and hands it back to put(). A put whose read began
before the address was last invalidated, or before the read behind the entry
already held, is refused: a slow scan never replaces a newer re-read.
"""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Optional

from .keys import PubkeyLike, as_pubkey
from .models import OrderRecord

logger = logging.getLogger("peermint.cache")


@dataclass(frozen=True)
class CachedRecord:
    record: OrderRecord
    as_of: float
    read_token: int = field(default=0, compare=False)


class AccountCache:

    def __init__(self, ttl_seconds: float = 15.0, max_entries: int = 1024,
                 clock: Callable[[], float] = time.time):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._ttl = ttl_seconds
        self._max = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, CachedRecord]" = OrderedDict()
        # address -> token issued at invalidation; bounded like the entries
        self._invalidated: "OrderedDict[str, int]" = OrderedDict()
        self._token = 0
        self._hits = 0
        self._misses = 0
        self._stale_writes = 0

    def begin_read(self) -> int:
        """Token for a ledger read about to be issued."""
        self._token += 1
        return self._token

    def get(self, address: PubkeyLike) -> Optional[CachedRecord]:
        key = str(as_pubkey(address))
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        if self._clock() - entry.as_of > self._ttl:
            del self._entries[key]
            self._misses += 1
            return None
        self._entries.move_to_end(key)
        self._hits += 1
        return entry

    def put(self, record: OrderRecord, as_of: Optional[float] = None,
            read_token: Optional[int] = None) -> CachedRecord:
        """
        Store what a read returned. Returns the entry built from this read
        whether or not it was stored.
        """
        key = str(record.address)
        token = self.begin_read() if read_token is None else read_token
        entry = CachedRecord(
            record=record, as_of=self._clock() if as_of is None else as_of, read_token=token,
        )

        current = self._entries.get(key)
        if token < self._invalidated.get(key, 0) or (
            current is not None and (current.read_token > token or current.as_of > entry.as_of)
        ):
            self._stale_writes += 1
            logger.debug(f"Cache refused stale write for {key[:12]}...")
            return entry

        self._entries[key] = entry
        self._entries.move_to_end(key)
        while len(self._entries) > self._max:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Cache evicted {evicted[:12]}...")
        return entry

    def invalidate(self, address: PubkeyLike) -> None:
        key = str(as_pubkey(address))
        self._entries.pop(key, None)
        self._invalidated[key] = self.begin_read()
        self._invalidated.move_to_end(key)
        while len(self._invalidated) > self._max:
            self._invalidated.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def get_status(self) -> dict:
        """Status for dashboard / debugging."""
        return {
            "entries": len(self._entries),
            "max_entries": self._max,
            "ttl_seconds": self._ttl,
            "hits": self._hits,
            "misses": self._misses,
            "stale_writes": self._stale_writes,
        }
