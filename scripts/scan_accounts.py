#!/usr/bin/env python3
"""
Order Account Scan

Scans the program's accounts for the Order schema tag and reports which ones
decode (and with which layout) and which do not. Useful after a program
upgrade to see how many records on the ledger the client can still read.

Usage:
    python scripts/scan_accounts.py                   # Every tagged account
    python scripts/scan_accounts.py --owner <wallet>  # One creator's accounts
    python scripts/scan_accounts.py --json            # Machine-readable output

Reads PEERMINT_RPC_URL / PEERMINT_PROGRAM_ID from .env like the API does.
This is read-only: nothing is signed or submitted.
"""

import sys
import json
import asyncio
import argparse
import logging
from collections import Counter
from pathlib import Path

from dotenv import load_dotenv

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

load_dotenv(ROOT / ".env")

logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("peermint.scan")

from peermint.config import PROTOCOL, ClientConfig
from peermint.decoder import decode_order
from peermint.errors import DecodeFailure, SchemaMismatch
from peermint.keys import Pubkey, as_pubkey
from peermint.rpc import ScanFilter, SolanaRpcClient


def summarize(accounts: list[tuple[Pubkey, bytes]]) -> dict:
    """Classify raw (address, bytes) pairs without dropping anything."""
    layouts: Counter = Counter()
    failures = []
    for address, data in accounts:
        try:
            order = decode_order(data, PROTOCOL.ORDER_TAG, str(address))
        except SchemaMismatch:
            layouts["untagged"] += 1
            continue
        except DecodeFailure as e:
            failures.append({"address": str(address), "size": len(data), "reason": e.reason})
            continue
        layouts[order.layout.value] += 1

    return {
        "scanned": len(accounts),
        "decodable": sum(v for k, v in layouts.items() if k != "untagged"),
        "by_layout": dict(layouts),
        "incompatible": failures,
    }


async def scan(config: ClientConfig, owner: str = "") -> dict:
    filters = [ScanFilter(0, PROTOCOL.ORDER_TAG)]
    if owner:
        filters.append(ScanFilter(PROTOCOL.CREATOR_OFFSET, as_pubkey(owner).raw))
    async with SolanaRpcClient(config) as rpc:
        accounts = await rpc.scan_accounts(config.program_id, filters)
    return summarize(accounts)


def print_report(report: dict, config: ClientConfig):
    print("=" * 60)
    print(f"Program:     {config.program_id}")
    print(f"RPC:         {config.rpc_url}")
    print("=" * 60)
    print(f"Scanned:     {report['scanned']}")
    print(f"Decodable:   {report['decodable']}")
    for layout, count in sorted(report["by_layout"].items()):
        print(f"  {layout:<10} {count}")
    print(f"Incompatible: {len(report['incompatible'])}")
    for f in report["incompatible"]:
        print(f"  {f['address']}  {f['size']:>5} bytes  {f['reason']}")


def main():
    parser = argparse.ArgumentParser(description="Scan ledger accounts for decodable orders")
    parser.add_argument("--owner", default="",
                        help="Only accounts created by this wallet (base58)")
    parser.add_argument("--json", action="store_true",
                        help="Output as JSON")
    args = parser.parse_args()

    config = ClientConfig.from_env()
    report = asyncio.run(scan(config, args.owner))

    if args.json:
        print(json.dumps(report, indent=2))
    else:
        print_report(report, config)

    return 1 if report["incompatible"] else 0


if __name__ == "__main__":
    sys.exit(main())
