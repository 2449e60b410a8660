"""
Account Discovery Service

Finds Order accounts on the ledger. There is no index: enumeration is always
a tagged scan of the program's accounts, narrowed at the RPC boundary by
byte-exact filters (never by pulling everything and filtering locally).

Every returned blob is decoded; anything that is not a valid Order is dropped
and the rest of the batch is returned.

Designed for: peermint escrow client
"""

import asyncio
import logging
import time
from typing import Callable, Iterable, Optional

from .cache import AccountCache, CachedRecord
from .config import PROTOCOL
from .decoder import try_decode_order
from .errors import NotFound, PeermintError
from .keys import PubkeyLike, as_pubkey
from .models import OrderRecord
from .rpc import LedgerRpc, ScanFilter

logger = logging.getLogger("peermint.discovery")


class AccountDiscovery:
    """
    Usage:
        discovery = AccountDiscovery(rpc)
        everything = await discovery.find_all()
        mine = await discovery.find_by_owner(wallet.identity)
        one = await discovery.find_one("Fz3...")
    """

    def __init__(
        self,
        rpc: LedgerRpc,
        program_id: PubkeyLike = PROTOCOL.PROGRAM_ID,
        cache: Optional[AccountCache] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._rpc = rpc
        self._program_id = as_pubkey(program_id)
        self._cache = cache
        self._clock = clock

    @property
    def cache(self) -> Optional[AccountCache]:
        return self._cache

    def _begin_read(self) -> tuple[float, Optional[int]]:
        """Stamp a read before it is issued: (as_of, cache read token)."""
        token = self._cache.begin_read() if self._cache is not None else None
        return self._clock(), token

    async def _scan(self, filters: list[ScanFilter], tag: bytes) -> list[OrderRecord]:
        as_of, token = self._begin_read()
        raw = await self._rpc.scan_accounts(self._program_id, filters)

        records = []
        dropped = 0
        for address, data in raw:
            order = try_decode_order(data, tag, str(address))
            if order is None:
                dropped += 1
                continue
            record = OrderRecord(address=address, order=order)
            records.append(record)
            if self._cache is not None:
                self._cache.put(record, as_of, token)
        if dropped:
            logger.info(f"Scan kept {len(records)} orders, dropped {dropped} undecodable accounts")
        return records

    async def find_all(self, tag: bytes = PROTOCOL.ORDER_TAG) -> list[OrderRecord]:
        """Every account whose first 8 bytes equal `tag`."""
        return await self._scan([ScanFilter(0, tag)], tag)

    async def find_by_owner(
        self,
        owner: PubkeyLike,
        tag: bytes = PROTOCOL.ORDER_TAG,
        owner_offset: int = PROTOCOL.CREATOR_OFFSET,
    ) -> list[OrderRecord]:
        """Tagged accounts with `owner` at `owner_offset` (default: creator)."""
        filters = [ScanFilter(0, tag), ScanFilter(owner_offset, as_pubkey(owner).raw)]
        return await self._scan(filters, tag)

    async def lookup(
        self, address: PubkeyLike, tag: bytes = PROTOCOL.ORDER_TAG, use_cache: bool = True
    ) -> CachedRecord:
        """
        Fetch and decode a single Order, with the instant it was read.
        A fresh-enough cache entry is returned as-is, with its original as_of.

        Raises NotFound when the account is absent or is not a decodable Order.
        """
        pk = as_pubkey(address)
        if use_cache and self._cache is not None:
            cached = self._cache.get(pk)
            if cached is not None:
                return cached

        as_of, token = self._begin_read()
        data = await self._rpc.get_account(pk)
        if data is None:
            raise NotFound(str(pk))
        order = try_decode_order(data, tag, str(pk))
        if order is None:
            raise NotFound(str(pk))

        record = OrderRecord(address=pk, order=order)
        if self._cache is not None:
            return self._cache.put(record, as_of, token)
        return CachedRecord(record=record, as_of=as_of)

    async def find_one(
        self, address: PubkeyLike, tag: bytes = PROTOCOL.ORDER_TAG, use_cache: bool = True
    ) -> OrderRecord:
        """Single fetch; absent or undecodable -> NotFound."""
        return (await self.lookup(address, tag, use_cache)).record

    async def fetch_many(
        self, addresses: Iterable[PubkeyLike], tag: bytes = PROTOCOL.ORDER_TAG
    ) -> list[OrderRecord]:
        """
        Concurrent single fetches, merged in completion order.
        Missing, undecodable and transiently failing accounts are omitted.
        """
        tasks = [
            asyncio.ensure_future(self.find_one(a, tag, use_cache=False))
            for a in addresses
        ]
        records = []
        try:
            for next_done in asyncio.as_completed(tasks):
                try:
                    records.append(await next_done)
                except NotFound as e:
                    logger.debug(f"fetch_many: {e}")
                except PeermintError as e:
                    logger.warning(f"fetch_many: dropped one account: {e}")
        finally:
            for t in tasks:
                if not t.done():
                    t.cancel()
        return records
