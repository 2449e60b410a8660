"""
List and Detail View Controllers

Both compose the same read pipeline:
    Discovery -> Decoder -> Projector -> (filter/sort | permitted action)

Leaving a view calls close(): in-flight reads are cancelled and the pending
load() returns None instead of raising. Lifecycle submissions are not owned by
views and are unaffected.

Designed for: peermint escrow client
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from .config import PROTOCOL
from .discovery import AccountDiscovery
from .instructions import LifecycleAction
from .keys import PubkeyLike, as_pubkey
from .models import Order, OrderRecord, RawStatus
from .projector import STATUS_PRIORITY, DisplayStatus, ProjectedOrder, project

logger = logging.getLogger("peermint.views")

T = TypeVar("T")


class SortOrder(str, Enum):
    DEFAULT = "default"      # pending, completed, expired; newest first within each
    LATEST = "latest"        # highest nonce first
    SOONEST = "soonest"      # least time left first; expired first, completed/no expiry last


@dataclass(frozen=True)
class OrderListItem:
    address: str
    projection: ProjectedOrder

    @property
    def nonce(self) -> int:
        return self.projection.order.nonce


@dataclass(frozen=True)
class OrderListing:
    items: list[OrderListItem]
    total: int              # before search / filter
    as_of: float


@dataclass(frozen=True)
class ActionDecision:
    action: Optional[LifecycleAction]
    message: str


@dataclass(frozen=True)
class OrderDetail:
    address: str
    projection: ProjectedOrder
    decision: ActionDecision
    as_of: float


# ============================================================
# PURE HELPERS
# ============================================================

def matches_query(item: OrderListItem, query: str) -> bool:
    q = query.strip().lower()
    if not q:
        return True
    return (
        q in item.projection.sequence_number.lower()
        or q in item.projection.status.value
        or q in item.address.lower()
    )


def filter_items(
    items: list[OrderListItem], query: str = "", status: Optional[DisplayStatus] = None
) -> list[OrderListItem]:
    return [
        i for i in items
        if matches_query(i, query) and (status is None or i.projection.status == status)
    ]


def sort_items(items: list[OrderListItem], order: SortOrder = SortOrder.DEFAULT) -> list[OrderListItem]:
    if order == SortOrder.LATEST:
        return sorted(items, key=lambda i: -i.nonce)
    if order == SortOrder.SOONEST:
        return sorted(items, key=lambda i: (i.projection.time_remaining.seconds, -i.nonce))
    return sorted(items, key=lambda i: (STATUS_PRIORITY[i.projection.status], -i.nonce))


def permitted_action(order: Order, caller: Optional[PubkeyLike]) -> ActionDecision:
    """
    The single transition `caller` may take on `order`, or none with a message
    naming who the order is waiting on. Mirrors the ledger's preconditions; the
    ledger still has the final say.
    """
    who = as_pubkey(caller) if caller is not None else None
    status = order.status

    if status == RawStatus.CREATED:
        if who is None:
            return ActionDecision(None, "Waiting for a helper to join this request.")
        if who == order.creator:
            return ActionDecision(None, "Waiting for someone to join your request.")
        return ActionDecision(LifecycleAction.JOIN, "Join this request as the helper.")

    if status == RawStatus.JOINED:
        if who is not None and who == order.helper:
            return ActionDecision(LifecycleAction.MARK_PAID, "Mark the payment as sent.")
        return ActionDecision(None, "Request has been joined. Waiting for the helper to mark it as paid.")

    if status == RawStatus.PAID_LOCAL:
        if who is not None and who == order.creator:
            return ActionDecision(LifecycleAction.RELEASE, "Confirm receipt and release the escrowed funds.")
        return ActionDecision(None, "Payment marked as sent. Waiting for the creator to release funds.")

    if status == RawStatus.RELEASED:
        return ActionDecision(None, "Request completed. Funds have been released.")
    if status == RawStatus.DISPUTED:
        return ActionDecision(None, "This request is under dispute. No action is available here.")
    return ActionDecision(None, "The dispute has been resolved. No further action.")


# ============================================================
# CONTROLLERS
# ============================================================

class _ViewController:

    def __init__(
        self,
        discovery: AccountDiscovery,
        exchange_rate: Decimal = PROTOCOL.ADVISORY_EXCHANGE_RATE,
        clock: Callable[[], float] = time.time,
    ):
        self._discovery = discovery
        self._exchange_rate = exchange_rate
        self._clock = clock
        self._task: Optional[asyncio.Future] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def _cancellable(self, work: Awaitable[T]) -> Optional[T]:
        """
        Run `work` as this view's current load. Returns None if the view was
        closed, or a newer load superseded this one, before it finished.
        """
        if self._closed:
            if asyncio.iscoroutine(work):
                work.close()
            return None
        if self._task is not None and not self._task.done():
            self._task.cancel()

        task = asyncio.ensure_future(work)
        self._task = task
        try:
            return await task
        except asyncio.CancelledError:
            if task.cancelled() and (self._closed or self._task is not task):
                logger.debug(f"{type(self).__name__} load cancelled")
                return None
            raise
        finally:
            if self._task is task:
                self._task = None

    def close(self) -> None:
        """Leave the view: cancel in-flight reads."""
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()


class ListViewController(_ViewController):
    """
    Usage:
        view = ListViewController(discovery)
        listing = await view.load(query="0042", sort=SortOrder.SOONEST)
        view.close()
    """

    async def load(
        self,
        owner: Optional[PubkeyLike] = None,
        query: str = "",
        status: Optional[DisplayStatus] = None,
        sort: SortOrder = SortOrder.DEFAULT,
    ) -> Optional[OrderListing]:
        if owner is not None:
            fetch = self._discovery.find_by_owner(owner)
        else:
            fetch = self._discovery.find_all()

        records = await self._cancellable(fetch)
        if records is None:
            return None

        # One instant for the whole render
        as_of = self._clock()
        now = int(as_of)
        items = [self._item(r, now) for r in records]
        visible = sort_items(filter_items(items, query, status), sort)
        logger.debug(f"List view: {len(visible)}/{len(items)} orders (sort={sort.value})")
        return OrderListing(items=visible, total=len(items), as_of=as_of)

    def _item(self, record: OrderRecord, now: int) -> OrderListItem:
        return OrderListItem(
            address=str(record.address),
            projection=project(record.order, now, self._exchange_rate),
        )


class DetailViewController(_ViewController):
    """
    Usage:
        view = DetailViewController(discovery)
        detail = await view.load("Fz3...", caller=wallet.identity)
        if detail.decision.action: ...
    """

    async def load(
        self,
        address: PubkeyLike,
        caller: Optional[PubkeyLike] = None,
        use_cache: bool = True,
    ) -> Optional[OrderDetail]:
        """Raises NotFound if the account is absent or not an Order."""
        cached = await self._cancellable(self._discovery.lookup(address, use_cache=use_cache))
        if cached is None:
            return None
        return self.describe(cached.record, caller, as_of=cached.as_of)

    def describe(
        self,
        record: OrderRecord,
        caller: Optional[PubkeyLike] = None,
        as_of: Optional[float] = None,
    ) -> OrderDetail:
        """Project an already-fetched record (e.g. ActionResult.record)."""
        now = self._clock()
        return OrderDetail(
            address=str(record.address),
            projection=project(record.order, int(now), self._exchange_rate),
            decision=permitted_action(record.order, caller),
            as_of=now if as_of is None else as_of,
        )
