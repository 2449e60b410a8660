"""
List and detail view controllers: search, filter, ordering, permitted
actions, and what happens when a view is left mid-load.
"""

import asyncio

import pytest

from peermint.dispatcher import LifecycleDispatcher
from peermint.errors import NotFound, TransientRpcFailure
from peermint.instructions import LifecycleAction
from peermint.models import RawStatus
from peermint.projector import DisplayStatus
from peermint.views import (
    DetailViewController,
    ListViewController,
    SortOrder,
    permitted_action,
)

from fakes import CREATOR, HELPER, STRANGER, FakeSigner, make_order, make_pubkey


@pytest.fixture
def list_view(discovery, clock):
    return ListViewController(discovery, clock=clock)


@pytest.fixture
def detail_view(discovery, clock):
    return DetailViewController(discovery, clock=clock)


def nonces(listing):
    return [i.nonce for i in listing.items]


class TestOrdering:

    @pytest.mark.asyncio
    async def test_latest_is_descending_nonce(self, ledger, list_view):
        for n in [5, 1, 9, 3]:
            ledger.add_order(make_order(nonce=n))
        listing = await list_view.load(sort=SortOrder.LATEST)
        assert nonces(listing) == [9, 5, 3, 1]

    @pytest.mark.asyncio
    async def test_default_groups_by_status_then_newest(self, ledger, list_view, clock):
        now = int(clock.now)
        ledger.add_order(make_order(nonce=1))                                       # pending
        ledger.add_order(make_order(nonce=5, expiry_raw=now - 10))                  # expired
        ledger.add_order(make_order(nonce=3, status=RawStatus.RELEASED))            # completed
        ledger.add_order(make_order(nonce=7, expiry_raw=now + 3_600))               # pending
        ledger.add_order(make_order(nonce=2, status=RawStatus.RESOLVED))            # completed

        listing = await list_view.load()

        assert nonces(listing) == [7, 1, 3, 2, 5]
        assert [i.projection.status for i in listing.items] == [
            DisplayStatus.PENDING, DisplayStatus.PENDING,
            DisplayStatus.COMPLETED, DisplayStatus.COMPLETED,
            DisplayStatus.EXPIRED,
        ]

    @pytest.mark.asyncio
    async def test_soonest(self, ledger, list_view, clock):
        now = int(clock.now)
        ledger.add_order(make_order(nonce=1, expiry_raw=now + 86_400))
        ledger.add_order(make_order(nonce=2, expiry_raw=now - 1))                   # expired first
        ledger.add_order(make_order(nonce=3, expiry_raw=now + 60))
        ledger.add_order(make_order(nonce=4))                                       # no expiry
        ledger.add_order(make_order(nonce=5, status=RawStatus.RELEASED, expiry_raw=now + 10))

        listing = await list_view.load(sort=SortOrder.SOONEST)

        assert nonces(listing) == [2, 3, 1, 5, 4]

    @pytest.mark.asyncio
    async def test_whole_list_uses_one_instant(self, ledger, list_view, clock):
        for n in range(4):
            ledger.add_order(make_order(nonce=n))
        listing = await list_view.load()
        assert {i.projection.now for i in listing.items} == {int(clock.now)}
        assert listing.as_of == clock.now


class TestSearchAndFilter:

    @pytest.mark.asyncio
    async def test_search_by_sequence_number(self, ledger, list_view):
        ledger.add_order(make_order(nonce=42))
        ledger.add_order(make_order(nonce=7))
        listing = await list_view.load(query="000042")
        assert nonces(listing) == [42]
        assert listing.total == 2

    @pytest.mark.asyncio
    async def test_search_by_status_is_case_insensitive(self, ledger, list_view):
        ledger.add_order(make_order(nonce=1, status=RawStatus.RELEASED))
        ledger.add_order(make_order(nonce=2))
        listing = await list_view.load(query="  COMPLETED ")
        assert nonces(listing) == [1]

    @pytest.mark.asyncio
    async def test_search_by_address(self, ledger, list_view):
        target = ledger.add_order(make_order(nonce=1))
        ledger.add_order(make_order(nonce=2))
        listing = await list_view.load(query=str(target)[:10].upper())
        assert [i.address for i in listing.items] == [str(target)]

    @pytest.mark.asyncio
    async def test_status_filter(self, ledger, list_view, clock):
        ledger.add_order(make_order(nonce=1, expiry_raw=int(clock.now) - 5))
        ledger.add_order(make_order(nonce=2))
        listing = await list_view.load(status=DisplayStatus.EXPIRED)
        assert nonces(listing) == [1]

    @pytest.mark.asyncio
    async def test_owner_scope(self, ledger, list_view):
        ledger.add_order(make_order(nonce=1))
        ledger.add_order(make_order(nonce=2, creator=STRANGER))
        listing = await list_view.load(owner=STRANGER)
        assert nonces(listing) == [2]
        assert listing.total == 1


class TestPermittedAction:

    @pytest.mark.parametrize("status,caller,action", [
        (RawStatus.CREATED, STRANGER, LifecycleAction.JOIN),
        (RawStatus.CREATED, CREATOR, None),
        (RawStatus.CREATED, None, None),
        (RawStatus.JOINED, HELPER, LifecycleAction.MARK_PAID),
        (RawStatus.JOINED, CREATOR, None),
        (RawStatus.PAID_LOCAL, CREATOR, LifecycleAction.RELEASE),
        (RawStatus.PAID_LOCAL, HELPER, None),
        (RawStatus.RELEASED, CREATOR, None),
        (RawStatus.DISPUTED, CREATOR, None),
        (RawStatus.RESOLVED, HELPER, None),
    ])
    def test_table(self, status, caller, action):
        decision = permitted_action(make_order(status=status), caller)
        assert decision.action == action
        assert decision.message

    def test_waiting_messages_name_the_awaited_party(self):
        assert "join" in permitted_action(make_order(), CREATOR).message
        assert "helper" in permitted_action(make_order(status=RawStatus.JOINED), CREATOR).message
        assert "creator" in permitted_action(make_order(status=RawStatus.PAID_LOCAL), HELPER).message

    def test_caller_as_base58(self):
        decision = permitted_action(make_order(status=RawStatus.JOINED), str(HELPER))
        assert decision.action == LifecycleAction.MARK_PAID


class TestDetailView:

    @pytest.mark.asyncio
    async def test_load(self, ledger, detail_view, clock):
        expiry = int(clock.now) + 7_200
        address = ledger.add_order(make_order(nonce=12, expiry_raw=expiry))

        detail = await detail_view.load(address, caller=STRANGER)

        assert detail.address == str(address)
        assert detail.projection.sequence_number == "000012"
        assert detail.projection.expiry_at.timestamp() == expiry
        assert detail.decision.action == LifecycleAction.JOIN

    @pytest.mark.asyncio
    async def test_unknown_address(self, detail_view):
        with pytest.raises(NotFound):
            await detail_view.load(make_pubkey(88))

    @pytest.mark.asyncio
    async def test_cached_read_reports_when_it_was_read(self, ledger, discovery, detail_view, clock):
        address = ledger.add_order(make_order())
        await discovery.find_all()
        scanned_at = clock.now
        clock.advance(10)

        detail = await detail_view.load(address)

        assert detail.as_of == scanned_at
        assert ledger.get_calls == []

    @pytest.mark.asyncio
    async def test_describe_record_from_an_action(self, ledger, discovery, detail_view, clock):
        address = ledger.add_order(make_order(status=RawStatus.JOINED))
        record = await discovery.find_one(address)
        clock.advance(3)

        detail = detail_view.describe(record, caller=HELPER)

        assert detail.as_of == clock.now
        assert detail.decision.action == LifecycleAction.MARK_PAID

    @pytest.mark.asyncio
    async def test_scan_older_than_an_action_does_not_replace_it(self, ledger, discovery, detail_view):
        address = ledger.add_order(make_order())
        ledger.scan_gate = asyncio.Event()
        scan = asyncio.ensure_future(discovery.find_all())
        await asyncio.sleep(0.01)

        result = await LifecycleDispatcher(ledger, discovery, FakeSigner(HELPER)).join(address)
        assert result.record.order.status == RawStatus.JOINED

        ledger.scan_gate.set()
        stale = await scan
        assert stale[0].order.status == RawStatus.CREATED

        detail = await detail_view.load(address, caller=HELPER)

        assert detail.projection.order.status == RawStatus.JOINED
        assert detail.decision.action == LifecycleAction.MARK_PAID
        assert discovery.cache.get_status()["stale_writes"] == 1


class TestCancellation:

    @pytest.mark.asyncio
    async def test_leaving_the_view_cancels_the_load(self, ledger, list_view):
        ledger.add_order(make_order())
        ledger.read_gate = asyncio.Event()

        load = asyncio.ensure_future(list_view.load())
        await asyncio.sleep(0.01)
        list_view.close()

        assert await load is None
        assert list_view.closed

    @pytest.mark.asyncio
    async def test_closed_view_does_not_read(self, ledger, detail_view):
        address = ledger.add_order(make_order())
        detail_view.close()
        assert await detail_view.load(address) is None
        assert ledger.get_calls == []

    @pytest.mark.asyncio
    async def test_newer_load_supersedes_older(self, ledger, list_view):
        ledger.add_order(make_order(nonce=1))
        ledger.read_gate = asyncio.Event()

        older = asyncio.ensure_future(list_view.load())
        await asyncio.sleep(0.01)
        newer = asyncio.ensure_future(list_view.load(sort=SortOrder.LATEST))
        await asyncio.sleep(0.01)
        ledger.read_gate.set()

        assert await older is None
        assert nonces(await newer) == [1]

    @pytest.mark.asyncio
    async def test_failures_still_raise(self, ledger, list_view):
        ledger.fail_scan = TransientRpcFailure("boom")
        with pytest.raises(TransientRpcFailure):
            await list_view.load()
