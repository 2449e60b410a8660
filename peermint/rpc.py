"""
Ledger RPC: the only door to the system of record.

The client holds no index and no authoritative state: every read goes through
get_account / scan_accounts, every write through submit_signed_instruction.

Design:
- LedgerRpc (ABC): the three operations the rest of the package depends on.
  Tests plug in an in-memory ledger; production uses SolanaRpcClient.
- SolanaRpcClient: JSON-RPC over aiohttp. One lazily-created session, reused.
- Submissions go out with maxRetries=0. The node must not resend on our
  behalf and neither do we; a confirmation timeout is surfaced as transient
  and the caller re-reads the ledger to learn what actually happened.
- Error classification is a pure function so it can be tested without a node.

Designed for: peermint escrow client
"""

import asyncio
import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import aiohttp
import base58

from .config import ClientConfig
from .errors import (
    AlreadyApplied,
    LedgerRejected,
    PeermintError,
    PreconditionViolation,
    TransientRpcFailure,
)
from .instructions import Instruction
from .keys import Pubkey, PubkeyLike, as_pubkey

logger = logging.getLogger("peermint.rpc")

# Program error codes that mean "this caller/state may not take this transition"
PRECONDITION_ERROR_CODES = {
    6002: "order is not in the expected state",
    6003: "caller is not authorized for this transition",
    6004: "order has no helper",
    6005: "order has not expired yet",
}
# Framework account-constraint failures (e.g. has_one = creator)
CONSTRAINT_ERROR_RANGE = range(2000, 3000)

_TRANSIENT_RPC_CODES = {-32004, -32005, -32007, -32014, -32016}
_ALREADY_PROCESSED_MARKERS = ("already been processed", "AlreadyProcessed")

SIGNATURE_LENGTH = 64


# ============================================================
# RESULT / FILTER TYPES
# ============================================================

@dataclass(frozen=True)
class ScanFilter:
    """Byte-exact match of `data` at `offset`. Filters in one scan are ANDed."""
    offset: int
    data: bytes


@dataclass(frozen=True)
class Confirmation:
    signature: str
    slot: int = 0
    status: str = "confirmed"


# ============================================================
# COLLABORATOR INTERFACES
# ============================================================

class Signer(ABC):
    """
    Wallet collaborator. Holds the key, assembles and signs the transaction.
    This package never sees private key material.
    """

    @property
    @abstractmethod
    def identity(self) -> Pubkey:
        ...

    @abstractmethod
    async def sign(self, instruction: Instruction, recent_blockhash: str) -> bytes:
        """Return the signed transaction carrying `instruction`, in wire format."""
        ...


class LedgerRpc(ABC):

    @abstractmethod
    async def get_account(self, address: PubkeyLike) -> Optional[bytes]:
        """Raw account data, or None if the account does not exist."""
        ...

    @abstractmethod
    async def scan_accounts(
        self, program_id: PubkeyLike, filters: Sequence[ScanFilter]
    ) -> list[tuple[Pubkey, bytes]]:
        """All accounts owned by program_id whose data matches every filter."""
        ...

    @abstractmethod
    async def submit_signed_instruction(self, instruction: Instruction, signer: Signer) -> Confirmation:
        """
        Sign, submit once, wait for confirmation.

        Raises:
            AlreadyApplied, PreconditionViolation, LedgerRejected, TransientRpcFailure
        """
        ...

    async def close(self) -> None:
        pass


# ============================================================
# ERROR CLASSIFICATION
# ============================================================

def _custom_error_code(err: Any) -> Optional[int]:
    """Extract N from {"InstructionError": [idx, {"Custom": N}]}."""
    if isinstance(err, dict):
        detail = err.get("InstructionError")
        if isinstance(detail, (list, tuple)) and len(detail) == 2 and isinstance(detail[1], dict):
            code = detail[1].get("Custom")
            if isinstance(code, int):
                return code
    return None


def transaction_signature(signed: bytes) -> str:
    """
    First signature of a serialized transaction, base58. That signature is the
    transaction's id. Returns "" if `signed` is not in wire format.

    Wire format: compact-u16 signature count, then 64-byte signatures.
    """
    count = 0
    for i in range(min(3, len(signed))):
        count |= (signed[i] & 0x7F) << (7 * i)
        if not signed[i] & 0x80:
            start = i + 1
            break
    else:
        return ""
    if count == 0 or len(signed) < start + SIGNATURE_LENGTH:
        return ""
    return base58.b58encode(bytes(signed[start:start + SIGNATURE_LENGTH])).decode("ascii")


def classify_transaction_error(err: Any, message: str = "", signature: str = "") -> PeermintError:
    """Map a ledger-side transaction error to the package taxonomy."""
    text = f"{message} {err}"
    if err == "AlreadyProcessed" or any(m in text for m in _ALREADY_PROCESSED_MARKERS):
        return AlreadyApplied(message or "transaction already processed", signature)

    code = _custom_error_code(err)
    if code is not None:
        if code in PRECONDITION_ERROR_CODES:
            return PreconditionViolation(PRECONDITION_ERROR_CODES[code], code)
        if code in CONSTRAINT_ERROR_RANGE:
            return PreconditionViolation(f"account constraint violated (code {code})", code)
        return LedgerRejected(f"program error {code}: {message or err}", code)

    if err == "BlockhashNotFound" or "Blockhash not found" in text:
        return TransientRpcFailure(f"blockhash expired before submission landed: {message or err}")

    return LedgerRejected(f"transaction rejected: {message or err}")


# ============================================================
# JSON-RPC CLIENT
# ============================================================

class SolanaRpcClient(LedgerRpc):
    """
    JSON-RPC ledger client.

    Usage:
        rpc = SolanaRpcClient(ClientConfig.from_env())
        data = await rpc.get_account("Fz3...")
        await rpc.close()
    """

    def __init__(self, config: Optional[ClientConfig] = None):
        self._config = config or ClientConfig()
        self._session: Optional[aiohttp.ClientSession] = None
        self._timeout = aiohttp.ClientTimeout(total=self._config.rpc_timeout_seconds)
        self._request_id = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "SolanaRpcClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def _call(self, method: str, params: list) -> dict:
        """
        One JSON-RPC round trip. Returns the raw response envelope so callers
        can inspect `error` themselves (sendTransaction errors carry data).
        """
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        session = await self._get_session()
        try:
            async with session.post(self._config.rpc_url, json=payload) as resp:
                if resp.status == 429 or resp.status >= 500:
                    body = await resp.text()
                    raise TransientRpcFailure(f"{method}: HTTP {resp.status}: {body[:200]}")
                if resp.status != 200:
                    body = await resp.text()
                    raise LedgerRejected(f"{method}: HTTP {resp.status}: {body[:200]}")
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientRpcFailure(f"{method}: {type(e).__name__}: {e}")

    async def _result(self, method: str, params: list) -> Any:
        envelope = await self._call(method, params)
        error = envelope.get("error")
        if error:
            code = error.get("code")
            message = error.get("message", "")
            if code in _TRANSIENT_RPC_CODES:
                raise TransientRpcFailure(f"{method}: {message} (code {code})")
            raise LedgerRejected(f"{method}: {message} (code {code})", code)
        return envelope.get("result")

    # ============================================================
    # READS
    # ============================================================

    async def get_account(self, address: PubkeyLike) -> Optional[bytes]:
        result = await self._result(
            "getAccountInfo",
            [str(as_pubkey(address)), {"encoding": "base64", "commitment": self._config.commitment}],
        )
        value = (result or {}).get("value")
        if value is None:
            return None
        try:
            return _decode_account_data(value.get("data"))
        except ValueError as e:
            raise LedgerRejected(f"getAccountInfo: {e}")

    async def scan_accounts(
        self, program_id: PubkeyLike, filters: Sequence[ScanFilter]
    ) -> list[tuple[Pubkey, bytes]]:
        rpc_filters = [
            {"memcmp": {"offset": f.offset, "bytes": base58.b58encode(f.data).decode("ascii")}}
            for f in filters
        ]
        result = await self._result(
            "getProgramAccounts",
            [
                str(as_pubkey(program_id)),
                {"encoding": "base64", "commitment": self._config.commitment, "filters": rpc_filters},
            ],
        )
        accounts = []
        for entry in result or []:
            try:
                address = Pubkey.from_base58(entry["pubkey"])
                data = _decode_account_data(entry["account"]["data"])
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed scan entry: {type(e).__name__}: {e}")
                continue
            accounts.append((address, data))
        logger.debug(f"Scan returned {len(accounts)} accounts ({len(rpc_filters)} filters)")
        return accounts

    # ============================================================
    # WRITES
    # ============================================================

    async def _latest_blockhash(self) -> str:
        result = await self._result("getLatestBlockhash", [{"commitment": self._config.commitment}])
        return result["value"]["blockhash"]

    async def submit_signed_instruction(self, instruction: Instruction, signer: Signer) -> Confirmation:
        blockhash = await self._latest_blockhash()
        signed = await signer.sign(instruction, blockhash)

        envelope = await self._call(
            "sendTransaction",
            [
                base64.b64encode(signed).decode("ascii"),
                {
                    "encoding": "base64",
                    "skipPreflight": False,
                    "preflightCommitment": self._config.commitment,
                    "maxRetries": 0,
                },
            ],
        )
        error = envelope.get("error")
        if error:
            data = error.get("data") or {}
            err = data.get("err") if isinstance(data, dict) else None
            raise classify_transaction_error(err, error.get("message", ""), transaction_signature(signed))

        signature = envelope.get("result", "")
        logger.info(
            f"Submitted {instruction.action.value} for {str(instruction.target)[:12]}... "
            f"sig={signature[:16]}..."
        )
        return await self._await_confirmation(signature)

    async def _await_confirmation(self, signature: str) -> Confirmation:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.confirm_timeout_seconds
        wanted = {"confirmed", "finalized"} if self._config.commitment != "finalized" else {"finalized"}

        while loop.time() < deadline:
            result = await self._result(
                "getSignatureStatuses", [[signature], {"searchTransactionHistory": True}]
            )
            statuses = (result or {}).get("value") or [None]
            status = statuses[0]
            if status is not None:
                if status.get("err"):
                    raise classify_transaction_error(status["err"], "", signature)
                if status.get("confirmationStatus") in wanted:
                    return Confirmation(
                        signature=signature,
                        slot=status.get("slot", 0),
                        status=status["confirmationStatus"],
                    )
            await asyncio.sleep(self._config.confirm_poll_seconds)

        raise TransientRpcFailure(
            f"confirmation timed out for {signature[:16]}...; outcome unknown until re-read"
        )


def _decode_account_data(data: Any) -> bytes:
    # data is ["<base64>", "base64"]
    if isinstance(data, (list, tuple)) and data and isinstance(data[0], str):
        return base64.b64decode(data[0])
    raise ValueError(f"unexpected account data encoding: {type(data).__name__}")
