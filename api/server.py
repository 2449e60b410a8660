"""
peermint API Server - FastAPI Backend

Endpoints:
- GET  /health                 Heartbeat + cache / RPC status
- GET  /orders                 Explore list (q, status, sort, owner)
- GET  /orders/{address}       Detail view + the caller's permitted action

Read-only. Lifecycle actions are signed by the user's wallet and submitted
through the dispatcher on the client side; this server never holds keys.
"""

import math
import os
import time
import logging
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from peermint.errors import NotFound, PeermintError, TransientRpcFailure
from peermint.keys import as_pubkey
from peermint.projector import DisplayStatus, ProjectedOrder, format_display, format_principal
from peermint.views import DetailViewController, ListViewController, SortOrder

logger = logging.getLogger("peermint.api")


# ============================================================
# MODELS
# ============================================================

class OrderSummary(BaseModel):
    address: str
    sequence_number: str
    nonce: int
    creator: str
    helper: Optional[str] = None
    status: str
    status_label: str
    raw_status: str
    time_remaining: str
    seconds_remaining: Optional[int] = None   # null = never (completed / no expiry)
    expiry_at: Optional[str] = None           # ISO-8601 UTC
    principal: str
    display: str
    display_derived: bool
    fee_percent: int
    fee_display: str
    fee_principal: str
    total_display: str
    total_principal: str
    layout: str


class OrderListResponse(BaseModel):
    orders: list[OrderSummary]
    count: int
    total: int
    as_of: float


class OrderDetailResponse(BaseModel):
    order: OrderSummary
    payment_reference: str
    action: Optional[str] = None
    message: str
    as_of: float


def _summary(address: str, p: ProjectedOrder) -> OrderSummary:
    order = p.order
    seconds = p.time_remaining.seconds
    return OrderSummary(
        address=address,
        sequence_number=p.sequence_number,
        nonce=order.nonce,
        creator=str(order.creator),
        helper=str(order.helper) if order.helper else None,
        status=p.status.value,
        status_label=p.status.label,
        raw_status=order.status.name.lower(),
        time_remaining=p.time_remaining.label,
        seconds_remaining=None if math.isinf(seconds) else int(seconds),
        expiry_at=p.expiry_at.isoformat() if p.expiry_at else None,
        principal=format_principal(p.amounts.principal),
        display=format_display(p.amounts.display),
        display_derived=p.amounts.display_derived,
        fee_percent=p.fees.fee_percent,
        fee_display=format_display(p.fees.fee_display),
        fee_principal=format_principal(p.fees.fee_principal),
        total_display=format_display(p.fees.total_display),
        total_principal=format_principal(p.fees.total_principal),
        layout=order.layout.value,
    )


def _check_identity(value: str, what: str) -> str:
    try:
        return str(as_pubkey(value))
    except ValueError:
        raise HTTPException(400, f"Invalid {what}: {value}")


# ============================================================
# SERVER FACTORY
# ============================================================

def create_app(
    list_view_factory: Callable[[], ListViewController],
    detail_view_factory: Callable[[], DetailViewController],
    status_fn: Optional[Callable[[], dict]] = None,
) -> FastAPI:
    """
    Create FastAPI app over the view controllers.

    Each request gets its own controller and closes it when done, so a client
    disconnect cancels that request's ledger reads and nothing else.
    status_fn: optional () -> dict merged into /health (cache stats etc.)
    """
    app = FastAPI(
        title="peermint",
        description="Peer-to-peer escrow orders, read straight from the ledger.",
        version="0.1.0",
    )

    # CORS: allow all in dev, restrict in production via CORS_ORIGINS env var
    cors_origins = os.getenv("CORS_ORIGINS", "*").split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    # ============================================================
    # ROUTES
    # ============================================================

    @app.get("/health")
    async def health():
        """Heartbeat endpoint."""
        body = {"ok": True, "timestamp": time.time()}
        if status_fn is not None:
            body.update(status_fn())
        return body

    @app.get("/orders", response_model=OrderListResponse)
    async def list_orders(
        q: str = Query("", max_length=100),
        status: Optional[DisplayStatus] = None,
        sort: SortOrder = SortOrder.DEFAULT,
        owner: Optional[str] = None,
    ):
        """Every order (or one creator's), searched, filtered and sorted."""
        owner_pk = _check_identity(owner, "owner") if owner else None

        view = list_view_factory()
        try:
            listing = await view.load(owner=owner_pk, query=q, status=status, sort=sort)
        except TransientRpcFailure as e:
            logger.warning(f"List load failed: {e}")
            raise HTTPException(503, "Ledger temporarily unavailable")
        except PeermintError as e:
            logger.error(f"List load failed: {e}")
            raise HTTPException(502, "Ledger rejected the request")
        finally:
            view.close()

        if listing is None:
            raise HTTPException(503, "Request cancelled")

        return OrderListResponse(
            orders=[_summary(i.address, i.projection) for i in listing.items],
            count=len(listing.items),
            total=listing.total,
            as_of=listing.as_of,
        )

    @app.get("/orders/{address}", response_model=OrderDetailResponse)
    async def get_order(address: str, caller: Optional[str] = None):
        """One order, plus what `caller` (a wallet identity) may do next."""
        address = _check_identity(address, "address")
        caller_pk = _check_identity(caller, "caller") if caller else None

        view = detail_view_factory()
        try:
            detail = await view.load(address, caller=caller_pk)
        except NotFound:
            raise HTTPException(404, "Order not found")
        except TransientRpcFailure as e:
            logger.warning(f"Detail load failed for {address[:12]}...: {e}")
            raise HTTPException(503, "Ledger temporarily unavailable")
        except PeermintError as e:
            logger.error(f"Detail load failed for {address[:12]}...: {e}")
            raise HTTPException(502, "Ledger rejected the request")
        finally:
            view.close()

        if detail is None:
            raise HTTPException(503, "Request cancelled")

        return OrderDetailResponse(
            order=_summary(detail.address, detail.projection),
            payment_reference=detail.projection.order.payment_reference,
            action=detail.decision.action.value if detail.decision.action else None,
            message=detail.decision.message,
            as_of=detail.as_of,
        )

    return app
