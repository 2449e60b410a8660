"""
Protocol constants and runtime configuration.

Two layers:
- PROTOCOL: frozen constants that describe the on-ledger program. Changing any
  of these means talking to a different program, so they are not env-driven
  (except the program id override used for devnet/localnet deployments).
- ClientConfig: per-process settings read from the environment after
  load_dotenv() has run in the entry point.

Designed for: peermint escrow client
"""

import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Final


# ============================================================
# PROTOCOL CONSTANTS
# ============================================================

@dataclass(frozen=True)
class ProtocolConstants:
    """Frozen dataclass = immutable at runtime."""

    # --- PROGRAM ---
    PROGRAM_ID: Final[str] = "2rQAwzmXe4vXLCHAcVbEzqDU5i5mPkKoRp5tdPqYUWyS"
    ORDER_TAG: Final[bytes] = bytes([134, 173, 223, 185, 77, 86, 28, 51])
    ORDER_SEED: Final[bytes] = b"order"
    CREATOR_OFFSET: Final[int] = 8                 # creator identity follows the tag
    HELPER_OFFSET: Final[int] = 40

    # --- TOKENS ---
    USDC_MINT: Final[str] = "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU"
    TOKEN_PROGRAM_ID: Final[str] = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
    ASSOCIATED_TOKEN_PROGRAM_ID: Final[str] = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"

    # --- AMOUNTS ---
    PRINCIPAL_DECIMALS: Final[int] = 6             # settlement currency, 1e-6
    DISPLAY_DECIMALS: Final[int] = 2               # display currency, 1e-2
    ADVISORY_EXCHANGE_RATE: Final[Decimal] = Decimal("84")   # display units per principal unit
    MAX_FEE_PERCENT: Final[int] = 100

    # --- EXPIRY ---
    # Raw expiry values above this are milliseconds (2100-01-01T00:00:00Z in seconds).
    # Used by every projection path; there is no second heuristic.
    EXPIRY_MS_CUTOVER: Final[int] = 4_102_444_800

    # --- PAYMENT REFERENCE ---
    MAX_PAYMENT_REFERENCE_BYTES: Final[int] = 500

    # --- DISPLAY ---
    SEQUENCE_NUMBER_WIDTH: Final[int] = 6


PROTOCOL = ProtocolConstants()


# ============================================================
# RUNTIME CONFIG
# ============================================================

DEFAULT_RPC_URL = "https://api.devnet.solana.com"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


@dataclass
class ClientConfig:
    """Settings for one client process. Build with ClientConfig.from_env()."""
    rpc_url: str = DEFAULT_RPC_URL
    program_id: str = PROTOCOL.PROGRAM_ID
    commitment: str = "confirmed"
    rpc_timeout_seconds: float = 30.0
    confirm_timeout_seconds: float = 60.0
    confirm_poll_seconds: float = 1.0
    cache_ttl_seconds: float = 15.0
    cache_max_entries: int = 1024
    advisory_exchange_rate: Decimal = PROTOCOL.ADVISORY_EXCHANGE_RATE

    @classmethod
    def from_env(cls) -> "ClientConfig":
        rate_raw = os.getenv("PEERMINT_ADVISORY_RATE", "")
        return cls(
            rpc_url=os.getenv("PEERMINT_RPC_URL", DEFAULT_RPC_URL),
            program_id=os.getenv("PEERMINT_PROGRAM_ID", PROTOCOL.PROGRAM_ID),
            commitment=os.getenv("PEERMINT_COMMITMENT", "confirmed"),
            rpc_timeout_seconds=_env_float("PEERMINT_RPC_TIMEOUT", 30.0),
            confirm_timeout_seconds=_env_float("PEERMINT_CONFIRM_TIMEOUT", 60.0),
            confirm_poll_seconds=_env_float("PEERMINT_CONFIRM_POLL", 1.0),
            cache_ttl_seconds=_env_float("PEERMINT_CACHE_TTL", 15.0),
            cache_max_entries=_env_int("PEERMINT_CACHE_SIZE", 1024),
            advisory_exchange_rate=(
                Decimal(rate_raw) if rate_raw else PROTOCOL.ADVISORY_EXCHANGE_RATE
            ),
        )
