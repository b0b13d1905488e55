#!/usr/bin/env python3
# clients/cli/cipherpay_cli.py
# Command-line front end for the CipherPay wallet core.
# Configuration comes from CIPHERPAY_* env vars; flags override them.

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, List, Optional

from services.crypto_core.addresses import random_address
from services.logging_config import setup_logging
from services.wallet_core.config import CipherPayConfig
from services.wallet_core.errors import CipherPayError
from services.wallet_core.session import CipherPaySession


# ======== Color accents (no deps) ========
class C:
    OK   = "\033[92m"
    WARN = "\033[93m"
    ERR  = "\033[91m"
    DIM  = "\033[2m"
    BOLD = "\033[1m"
    RST  = "\033[0m"


def _short(s: Optional[str]) -> str:
    return f"{s[:6]}…{s[-6:]}" if s and len(s) > 14 else str(s)


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, indent=2, default=str))


def _config_from_args(args: argparse.Namespace) -> CipherPayConfig:
    cfg = CipherPayConfig.from_env()
    changes: Dict[str, Any] = {}
    if args.backend:
        changes["backend"] = args.backend
    if args.relayer_url:
        changes["relayer_url"] = args.relayer_url
    if args.notes_file:
        changes["notes_state_path"] = args.notes_file
    if args.chain:
        changes["chain_type"] = args.chain
    return cfg.updated(**changes) if changes else cfg


# ======== Commands ========
async def cmd_status(session: CipherPaySession, args: argparse.Namespace) -> int:
    _print_json(session.get_service_status())
    return 0


async def cmd_notes(session: CipherPaySession, args: argparse.Namespace) -> int:
    notes = session.get_all_notes() if args.all else session.get_spendable_notes()
    if args.json:
        _print_json([n.model_dump(exclude={"secret_hex"}) for n in notes])
        return 0
    if not notes:
        print(f"{C.DIM}(no notes){C.RST}")
    for n in notes:
        flag = f"{C.DIM}spent{C.RST}" if n.spent else f"{C.OK}unspent{C.RST}"
        print(f"  {_short(n.commitment)}  {n.amount:>24}  {flag}")
    print(f"{C.BOLD}Balance:{C.RST} {session.get_balance()}")
    return 0


async def cmd_root(session: CipherPaySession, args: argparse.Namespace) -> int:
    root = await session.fetch_merkle_root()
    _print_json(root.model_dump())
    return 0


async def cmd_path(session: CipherPaySession, args: argparse.Namespace) -> int:
    path = await session.get_merkle_path(args.commitment)
    _print_json(path.model_dump())
    return 0


async def cmd_tx_status(session: CipherPaySession, args: argparse.Namespace) -> int:
    status = await session.check_transaction_status(args.tx_hash)
    print(status.value)
    return 0


async def cmd_demo(session: CipherPaySession, args: argparse.Namespace) -> int:
    """Deposit two notes, pay one recipient, show what changed."""
    addr = await session.connect_wallet()
    print(f"{C.OK}Connected{C.RST} as {_short(addr)}")

    for amount in args.deposits:
        note = await session.deposit(amount)
        print(f"  deposit {amount:>14} -> {_short(note.commitment)}")
    print(f"{C.BOLD}Balance:{C.RST} {session.get_balance()}")

    recipient = args.recipient or random_address(session.config.chain_type)
    tx = await session.create_transfer(recipient, args.amount)
    print(f"Transfer {tx.id}: {len(tx.input_commitments)} input(s), "
          f"change={tx.change_note.amount if tx.change_note else 0}")
    if tx.stealth:
        print(f"  {C.DIM}stealth recipient {_short(tx.stealth.stealth_address)}{C.RST}")
    receipt = await session.submit_transfer(tx)
    print(f"{C.OK}Settled{C.RST} as {receipt.tx_hash}")

    status = await session.check_transaction_status(receipt.tx_hash)
    print(f"Status: {status.value}")
    print(f"{C.BOLD}Balance:{C.RST} {session.get_balance()}")
    if session.config.enable_compliance:
        report = session.generate_compliance_report()
        print(f"Compliance report: {report['count']} transfer(s), total {report['total_transferred']}")
    await session.disconnect_wallet()
    return 0


COMMANDS = {
    "status": cmd_status,
    "notes": cmd_notes,
    "root": cmd_root,
    "path": cmd_path,
    "tx-status": cmd_tx_status,
    "demo": cmd_demo,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cipherpay", description="CipherPay wallet core CLI")
    parser.add_argument("--backend", choices=["simulated", "real"], default=None,
                        help="Override CIPHERPAY_BACKEND")
    parser.add_argument("--chain", choices=["solana", "ethereum"], default=None)
    parser.add_argument("--relayer-url", default=None)
    parser.add_argument("--notes-file", default=None, help="JSON file persisting the local notes")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING… (default: CIPHERPAY_LOG_LEVEL)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Print a session status snapshot")

    p = sub.add_parser("notes", help="List local notes")
    p.add_argument("--all", action="store_true", help="Include spent notes")
    p.add_argument("--json", action="store_true")

    sub.add_parser("root", help="Fetch the current Merkle root")

    p = sub.add_parser("path", help="Fetch the Merkle path of a commitment")
    p.add_argument("commitment")

    p = sub.add_parser("tx-status", help="Check a submitted transaction")
    p.add_argument("tx_hash")

    p = sub.add_parser("demo", help="End-to-end run against the simulated backend")
    p.add_argument("--deposits", type=int, nargs="+", default=[1_000_000_000, 500_000_000])
    p.add_argument("--amount", type=int, default=1_200_000_000)
    p.add_argument("--recipient", default=None, help="Defaults to a fresh random address")
    return parser


async def run(args: argparse.Namespace) -> int:
    cfg = _config_from_args(args)
    if args.command == "demo" and cfg.backend != "simulated":
        print(f"{C.WARN}demo runs against the simulated backend only{C.RST}", file=sys.stderr)
        return 2
    async with CipherPaySession(cfg) as session:
        return await COMMANDS[args.command](session, args)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    try:
        return asyncio.run(run(args))
    except CipherPayError as e:
        print(f"{C.ERR}{type(e).__name__}{C.RST}: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted by user."); sys.exit(130)
