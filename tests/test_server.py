"""HTTP boundary over the view controllers."""

import pytest
from fastapi.testclient import TestClient

from api.server import create_app
from peermint.errors import LedgerRejected, TransientRpcFailure
from peermint.models import RawStatus
from peermint.views import DetailViewController, ListViewController

from fakes import CREATOR, HELPER, STRANGER, make_order, make_pubkey


@pytest.fixture
def client(discovery, clock):
    app = create_app(
        list_view_factory=lambda: ListViewController(discovery, clock=clock),
        detail_view_factory=lambda: DetailViewController(discovery, clock=clock),
        status_fn=lambda: {"cache": discovery.cache.get_status()},
    )
    return TestClient(app)


class TestHealth:

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["ok"] is True
        assert "entries" in body["cache"]


class TestListOrders:

    def test_list(self, client, ledger, clock):
        ledger.add_order(make_order(nonce=1))
        ledger.add_order(make_order(nonce=2, expiry_raw=int(clock.now) - 1))

        body = client.get("/orders").json()

        assert body["count"] == 2
        assert body["total"] == 2
        assert [o["sequence_number"] for o in body["orders"]] == ["000001", "000002"]
        first = body["orders"][0]
        assert first["status"] == "pending"
        assert first["time_remaining"] == "No expiry"
        assert first["seconds_remaining"] is None
        assert first["principal"] == "1.000000"
        assert first["display"] == "84.00"
        assert first["fee_display"] == "4.20"
        assert first["total_principal"] == "1.050000"
        assert body["orders"][1]["seconds_remaining"] == 0

    def test_query_status_and_sort(self, client, ledger):
        for n in [5, 1, 9, 3]:
            ledger.add_order(make_order(nonce=n))
        ledger.add_order(make_order(nonce=4, status=RawStatus.RELEASED))

        latest = client.get("/orders", params={"sort": "latest", "status": "pending"}).json()
        assert [o["nonce"] for o in latest["orders"]] == [9, 5, 3, 1]
        assert latest["total"] == 5

        found = client.get("/orders", params={"q": "000004"}).json()
        assert [o["status"] for o in found["orders"]] == ["completed"]

    def test_owner(self, client, ledger):
        ledger.add_order(make_order(nonce=1))
        ledger.add_order(make_order(nonce=2, creator=STRANGER))
        body = client.get("/orders", params={"owner": str(STRANGER)}).json()
        assert [o["creator"] for o in body["orders"]] == [str(STRANGER)]

    def test_invalid_owner(self, client):
        assert client.get("/orders", params={"owner": "not-an-identity"}).status_code == 400

    def test_invalid_sort(self, client):
        assert client.get("/orders", params={"sort": "oldest"}).status_code == 422

    def test_ledger_unavailable(self, client, ledger):
        ledger.fail_scan = TransientRpcFailure("node behind")
        assert client.get("/orders").status_code == 503

    def test_ledger_rejects(self, client, ledger):
        ledger.fail_scan = LedgerRejected("bad filter")
        assert client.get("/orders").status_code == 502


class TestGetOrder:

    def test_detail_with_caller(self, client, ledger):
        address = ledger.add_order(make_order(status=RawStatus.JOINED, payment_reference="UPI bob@bank"))

        body = client.get(f"/orders/{address}", params={"caller": str(HELPER)}).json()

        assert body["order"]["address"] == str(address)
        assert body["order"]["helper"] == str(HELPER)
        assert body["order"]["raw_status"] == "joined"
        assert body["payment_reference"] == "UPI bob@bank"
        assert body["action"] == "mark_paid"

    def test_detail_without_caller(self, client, ledger):
        address = ledger.add_order(make_order())
        body = client.get(f"/orders/{address}").json()
        assert body["action"] is None
        assert body["message"]

    def test_creator_waits(self, client, ledger):
        address = ledger.add_order(make_order())
        body = client.get(f"/orders/{address}", params={"caller": str(CREATOR)}).json()
        assert body["action"] is None
        assert "join" in body["message"]

    def test_not_found(self, client):
        assert client.get(f"/orders/{make_pubkey(66)}").status_code == 404

    def test_invalid_address(self, client):
        assert client.get("/orders/xyz0").status_code == 400

    def test_invalid_caller(self, client, ledger):
        address = ledger.add_order(make_order())
        assert client.get(f"/orders/{address}", params={"caller": "0"}).status_code == 400

    def test_ledger_unavailable(self, client, ledger):
        address = ledger.add_order(make_order())
        ledger.fail_reads[str(address)] = TransientRpcFailure("timeout")
        assert client.get(f"/orders/{address}").status_code == 503
