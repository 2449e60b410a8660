"""
peermint - main entry point

Builds the ledger client, discovery and cache, wires them into the read-only
API, starts the server. One file to understand how everything connects.

Usage:
    python main.py              # Start the API on HOST:PORT
    uvicorn main:app            # Or directly via uvicorn
"""

import os
import re
import logging
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv

# ============================================================
# BOOTSTRAP
# ============================================================

load_dotenv()

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


class _SecretMaskingFilter(logging.Filter):
    """Redact base58 strings of secret-key length (64-byte keypairs) from all log output."""
    _PATTERN = re.compile(r'(?<![1-9A-HJ-NP-Za-km-z])([1-9A-HJ-NP-Za-km-z]{86,88})(?![1-9A-HJ-NP-Za-km-z])')

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._PATTERN.sub('[REDACTED]', record.msg)
        if record.args:
            try:
                formatted = record.getMessage()
            except (TypeError, ValueError):
                return True
            if self._PATTERN.search(formatted):
                record.msg = self._PATTERN.sub('[REDACTED]', formatted)
                record.args = None
        return True


_mask_filter = _SecretMaskingFilter()
for _h in logging.root.handlers:
    _h.addFilter(_mask_filter)

logger = logging.getLogger("peermint.main")


# ============================================================
# MODULE IMPORTS
# ============================================================

from peermint.cache import AccountCache
from peermint.config import ClientConfig
from peermint.discovery import AccountDiscovery
from peermint.rpc import SolanaRpcClient
from peermint.views import DetailViewController, ListViewController
from api.server import create_app


# ============================================================
# GLOBALS (singleton instances)
# ============================================================

config = ClientConfig.from_env()
rpc = SolanaRpcClient(config)
cache = AccountCache(ttl_seconds=config.cache_ttl_seconds, max_entries=config.cache_max_entries)
discovery = AccountDiscovery(rpc, program_id=config.program_id, cache=cache)


def _list_view() -> ListViewController:
    return ListViewController(discovery, exchange_rate=config.advisory_exchange_rate)


def _detail_view() -> DetailViewController:
    return DetailViewController(discovery, exchange_rate=config.advisory_exchange_rate)


def _status() -> dict:
    return {
        "rpc_url": config.rpc_url,
        "program_id": config.program_id,
        "commitment": config.commitment,
        "cache": cache.get_status(),
    }


@asynccontextmanager
async def lifespan(app):
    """Startup and shutdown."""
    logger.info("=" * 60)
    logger.info(f"peermint API starting (rpc={config.rpc_url}, program={config.program_id})")
    logger.info("=" * 60)
    yield
    await rpc.close()
    logger.info("RPC session closed. Goodbye.")


def create_peermint_app():
    """Create the fully wired FastAPI app."""
    app = create_app(
        list_view_factory=_list_view,
        detail_view_factory=_detail_view,
        status_fn=_status,
    )
    app.router.lifespan_context = lifespan
    return app


# ============================================================
# ENTRY POINT
# ============================================================

app = create_peermint_app()

if __name__ == "__main__":
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    reload = os.getenv("DEV", "").lower() in ("1", "true", "yes")

    logger.info(f"Starting server on {host}:{port} (reload={reload})")

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=LOG_LEVEL.lower(),
    )
