"""
Error taxonomy for the escrow client.

Record-level errors (SchemaMismatch, DecodeFailure) never escape a batch read:
the offending record is omitted. Everything else is surfaced to the caller.
"""

from typing import Optional


class PeermintError(Exception):
    """Base class for every error raised by this package."""
    pass


# ============================================================
# RECORD ERRORS batch reads drop the record and keep going
# ============================================================

class RecordError(PeermintError):
    pass


class SchemaMismatch(RecordError):
    """Account does not carry the Order schema tag. Not an error to scan callers."""
    pass


class DecodeFailure(RecordError):
    """Account carries the Order tag but its bytes are truncated or invalid."""

    def __init__(self, reason: str, address: Optional[str] = None):
        self.reason = reason
        self.address = address
        where = f" ({address})" if address else ""
        super().__init__(f"undecodable order record{where}: {reason}")


# ============================================================
# READ / WRITE ERRORS surfaced to the caller
# ============================================================

class NotFound(PeermintError):
    """Single-fetch target does not exist on the ledger."""

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"account not found: {address}")


class PreconditionViolation(PeermintError):
    """The ledger program rejected a transition as illegal for the caller or state."""

    def __init__(self, message: str, code: Optional[int] = None):
        self.code = code
        super().__init__(message)


class AlreadyApplied(PeermintError):
    """This exact submission was already processed. Callers treat it as success."""

    def __init__(self, message: str, signature: str = ""):
        self.signature = signature
        super().__init__(message)


class TransientRpcFailure(PeermintError):
    """Network error, timeout or overloaded node. Never retried automatically."""
    pass


class LedgerRejected(PeermintError):
    """Any other ledger-side rejection of a submission."""

    def __init__(self, message: str, code: Optional[int] = None):
        self.code = code
        super().__init__(message)
