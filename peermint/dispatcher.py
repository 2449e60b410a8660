"""
Lifecycle Action Dispatcher

Submits the three client-exposed transitions and reports what the ledger says
afterwards. The ledger program owns the state machine; this module only
triggers transitions and observes them:

    Created(0) --join--> Joined(1) --mark_paid--> PaidLocal(2) --release--> Released(3)

Design:
- One signed submission per call. Never auto-retried.
- "Already processed" is success: the transition we wanted is on the ledger.
- Failures come back as ActionResult(success=False); nothing local is mutated.
- After success the account is dropped from the cache and re-read. The result
  carries the freshly read record, never a guessed next state.
- The same (account, action) submitted again while one is outstanding joins
  the outstanding submission instead of sending a second transaction. A
  mark_paid whose note differs from the outstanding one fails instead.
- Submissions are shielded: a caller navigating away (cancelling its await)
  does not cancel a transaction that may already be irrevocable.

Designed for: peermint escrow client
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .config import PROTOCOL
from .discovery import AccountDiscovery
from .errors import (
    AlreadyApplied,
    NotFound,
    PeermintError,
    PreconditionViolation,
    TransientRpcFailure,
)
from .instructions import (
    Instruction,
    LifecycleAction,
    build_join,
    build_mark_paid,
    build_release,
)
from .keys import Pubkey, PubkeyLike, as_pubkey
from .models import OrderRecord
from .rpc import LedgerRpc, Signer

logger = logging.getLogger("peermint.dispatcher")


class ErrorKind(str, Enum):
    PRECONDITION = "precondition"
    TRANSIENT = "transient"
    NOT_FOUND = "not_found"
    REJECTED = "rejected"


# ============================================================
# RESULT TYPE
# ============================================================

@dataclass
class ActionResult:
    """Outcome of one lifecycle submission."""
    success: bool
    action: LifecycleAction
    address: str
    signature: str = ""                      # empty on failure, or if the signed bytes carry none
    already_applied: bool = False
    error: str = ""
    error_kind: Optional[ErrorKind] = None
    record: Optional[OrderRecord] = None     # fresh post-confirmation read
    refreshed: bool = False


# ============================================================
# DISPATCHER
# ============================================================

class LifecycleDispatcher:
    """
    Usage:
        dispatcher = LifecycleDispatcher(rpc, discovery, signer)
        result = await dispatcher.mark_paid("Fz3...", note="UTR 4411")
        if result.success and result.record:
            show(result.record)
    """

    def __init__(
        self,
        rpc: LedgerRpc,
        discovery: AccountDiscovery,
        signer: Signer,
        program_id: PubkeyLike = PROTOCOL.PROGRAM_ID,
        mint: PubkeyLike = PROTOCOL.USDC_MINT,
    ):
        self._rpc = rpc
        self._discovery = discovery
        self._signer = signer
        self._program_id = as_pubkey(program_id)
        self._mint = as_pubkey(mint)

        # (address, action) -> (submission task, note it commits)
        self._in_flight: dict[tuple[str, LifecycleAction], tuple[asyncio.Future, Optional[str]]] = {}

        self._tx_count: int = 0
        self._last_error: str = ""
        self._last_action_at: float = 0.0

    # ============================================================
    # PUBLIC METHODS
    # ============================================================

    async def join(self, address: PubkeyLike) -> ActionResult:
        """Created -> Joined. Caller becomes the helper."""
        return await self.dispatch(LifecycleAction.JOIN, address)

    async def mark_paid(self, address: PubkeyLike, note: Optional[str] = None) -> ActionResult:
        """Joined -> PaidLocal. `note` is committed as a hash, never stored in clear."""
        return await self.dispatch(LifecycleAction.MARK_PAID, address, note=note)

    async def acknowledge_and_release(self, address: PubkeyLike) -> ActionResult:
        """PaidLocal -> Released. Escrow moves to the helper."""
        return await self.dispatch(LifecycleAction.RELEASE, address)

    def is_pending(self, address: PubkeyLike, action: LifecycleAction) -> bool:
        """True while a submission for (address, action) is outstanding."""
        return (str(as_pubkey(address)), action) in self._in_flight

    async def dispatch(
        self, action: LifecycleAction, address: PubkeyLike, note: Optional[str] = None
    ) -> ActionResult:
        pk = as_pubkey(address)
        key = (str(pk), action)

        outstanding = self._in_flight.get(key)
        if outstanding is None:
            task = asyncio.ensure_future(self._run(action, pk, note))
            self._in_flight[key] = (task, note)
            task.add_done_callback(lambda _t, k=key: self._in_flight.pop(k, None))
        else:
            task, pending_note = outstanding
            if note != pending_note:
                # The outstanding submission commits its own note, not this one
                return self._failure(action, pk, ErrorKind.PRECONDITION, PreconditionViolation(
                    f"{action.value} already in flight with a different note"
                ))
            logger.info(f"{action.value} for {key[0][:12]}... already in flight; joining it")

        return await asyncio.shield(task)

    # ============================================================
    # INTERNALS
    # ============================================================

    async def _build(self, action: LifecycleAction, address: Pubkey, note: Optional[str]) -> Instruction:
        caller = self._signer.identity
        if action == LifecycleAction.JOIN:
            return build_join(address, caller, self._program_id)
        if action == LifecycleAction.MARK_PAID:
            return build_mark_paid(address, caller, note, self._program_id)

        # Release pays the helper's token account, so the helper must be known
        record = await self._discovery.find_one(address, use_cache=False)
        if record.order.helper is None:
            raise PreconditionViolation("order has no helper to release funds to")
        return build_release(address, caller, record.order.helper, self._mint, self._program_id)

    def _failure(self, action: LifecycleAction, address: Pubkey, kind: ErrorKind, e: Exception) -> ActionResult:
        error = f"{type(e).__name__}: {e}"
        self._last_error = error
        logger.warning(f"TX FAILED [{action.value}] {str(address)[:12]}...: {error}")
        return ActionResult(
            success=False, action=action, address=str(address), error=error, error_kind=kind,
        )

    async def _run(self, action: LifecycleAction, address: Pubkey, note: Optional[str]) -> ActionResult:
        self._last_action_at = time.time()
        already_applied = False
        try:
            instruction = await self._build(action, address, note)
            confirmation = await self._rpc.submit_signed_instruction(instruction, self._signer)
            signature = confirmation.signature
        except AlreadyApplied as e:
            already_applied = True
            signature = e.signature
            logger.info(f"{action.value} for {str(address)[:12]}... was already applied")
        except PreconditionViolation as e:
            return self._failure(action, address, ErrorKind.PRECONDITION, e)
        except TransientRpcFailure as e:
            return self._failure(action, address, ErrorKind.TRANSIENT, e)
        except NotFound as e:
            return self._failure(action, address, ErrorKind.NOT_FOUND, e)
        except PeermintError as e:
            return self._failure(action, address, ErrorKind.REJECTED, e)

        if not already_applied:
            self._tx_count += 1
            logger.info(f"TX SUCCESS [{action.value}] {str(address)[:12]}... sig={signature[:16]}...")

        # The ledger is the only truth: drop what we knew and read it again
        cache = self._discovery.cache
        if cache is not None:
            cache.invalidate(address)

        record = None
        try:
            record = await self._discovery.find_one(address, use_cache=False)
        except PeermintError as e:
            logger.warning(f"Post-confirmation read failed for {str(address)[:12]}...: {e}")

        return ActionResult(
            success=True,
            action=action,
            address=str(address),
            signature=signature,
            already_applied=already_applied,
            record=record,
            refreshed=record is not None,
        )

    def get_status(self) -> dict:
        """Status for dashboard / debugging."""
        return {
            "signer": str(self._signer.identity),
            "in_flight": [f"{a}:{k.value}" for a, k in self._in_flight],
            "tx_count": self._tx_count,
            "last_error": self._last_error,
            "last_action_at": self._last_action_at,
        }
