"""Blackhole CLI — command-line interface for the burn engine.

Usage:
    python -m blackhole.cli status
    python -m blackhole.cli tiers
    python -m blackhole.cli preview --amount 10.5
    python -m blackhole.cli demo-burn --token DEMO --amount 10.5 --count 3
    python -m blackhole.cli verify --reference 0x...
    python -m blackhole.cli check-invariants

``verify`` talks to a live ledger. It reads BLACKHOLE_RPC_URL (required),
BLACKHOLE_PRIVATE_KEY and BLACKHOLE_CHAIN_ID from the environment or a
.env file at the project root. Every other command runs offline.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

from blackhole.ledger.gateway import InMemoryLedgerGateway
from blackhole.policy.resolver import BurnPolicy
from blackhole.service import BlackholeService


ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG = ROOT / "config"
DEMO_ACCOUNT = "0x00000000000000000000000000000000000B0B00"

logger = logging.getLogger("blackhole.cli")


def _load_policy(config_dir: Path) -> BurnPolicy:
    return BurnPolicy.from_config_dir(config_dir)


def _demo_service(policy: BurnPolicy) -> tuple[BlackholeService, InMemoryLedgerGateway]:
    """Service wired to a fresh simulated ledger."""
    gateway = InMemoryLedgerGateway(DEMO_ACCOUNT, policy.tokens())
    return BlackholeService(policy, gateway), gateway


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_status(args: argparse.Namespace) -> int:
    service, _ = _demo_service(_load_policy(args.config))
    _print_json(service.status())
    return 0


def cmd_tiers(args: argparse.Namespace) -> int:
    policy = _load_policy(args.config)
    _print_json({
        "tiers": [
            {"name": t.name, "min": t.min_score, "max": t.max_score}
            for t in policy.tiers()
        ],
        "achievements": [
            {
                "id": a.achievement_id,
                "name": a.name,
                "kind": a.kind.value,
                "threshold": a.threshold,
            }
            for a in policy.achievements()
        ],
    })
    return 0


def cmd_preview(args: argparse.Namespace) -> int:
    service, _ = _demo_service(_load_policy(args.config))
    result = service.preview(args.amount)
    if result.success:
        _print_json(result.data)
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_demo_burn(args: argparse.Namespace) -> int:
    """Run burns end to end against the simulated ledger."""
    policy = _load_policy(args.config)
    service, gateway = _demo_service(policy)
    try:
        token = policy.token(args.token)
        amount = Decimal(args.amount)
    except (ValueError, ArithmeticError) as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1
    if args.count < 1:
        print("Failed: --count must be at least 1", file=sys.stderr)
        return 1
    if amount.is_finite() and amount > 0:
        gateway.mint(DEMO_ACCOUNT, token, amount * args.count)

    for _ in range(args.count):
        selected = service.select_burn(token.symbol, amount)
        if not selected.success:
            print(f"Failed: {'; '.join(selected.errors)}", file=sys.stderr)
            return 1
        if selected.data["needs_approval"]:
            approved = service.approve()
            if not approved.success:
                print(f"Failed: {'; '.join(approved.errors)}", file=sys.stderr)
                return 1
            gateway.settle()
        burned = service.burn()
        if not burned.success:
            print(f"Failed: {'; '.join(burned.errors)}", file=sys.stderr)
            return 1
        gateway.settle()
        logger.info("Demo burn confirmed: %s", burned.data["tx_ref"])
        service.reset()

    _print_json({
        "reputation": service.reputation().data,
        "history": service.history().data["burns"],
    })
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    """Verify a transaction reference on the live ledger."""
    from blackhole.ledger.web3_gateway import Web3LedgerGateway
    from blackhole.proof.engine import ProofEngine
    from blackhole.errors import BlackholeError

    load_dotenv(ROOT / ".env")
    rpc_url = os.getenv("BLACKHOLE_RPC_URL")
    if not rpc_url:
        print("ERROR: Missing BLACKHOLE_RPC_URL in environment or .env", file=sys.stderr)
        return 1

    policy = _load_policy(args.config)
    gateway = Web3LedgerGateway(
        rpc_url,
        os.getenv("BLACKHOLE_PRIVATE_KEY"),
        policy.tokens(),
        chain_id=int(os.getenv("BLACKHOLE_CHAIN_ID", "1")),
    )
    engine = ProofEngine(policy, gateway)
    try:
        proof = engine.verify(args.reference)
    except BlackholeError as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1
    _print_json({
        "certificate": engine.export_certificate(proof),
        "explorer_url": policy.explorer_url(proof.tx_ref),
    })
    return 0 if proof.verified else 2


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run burn policy invariant checks."""
    tools_dir = ROOT / "tools"
    sys.path.insert(0, str(tools_dir))
    from check_invariants import check
    return check(args.config)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="blackhole",
        description="Blackhole — burn-to-reputation engine CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show session status")

    # tiers
    sub.add_parser("tiers", help="List the tier ladder and achievements")

    # preview
    p_preview = sub.add_parser("preview", help="Estimate reputation for a burn amount")
    p_preview.add_argument("--amount", required=True, help="Token amount (Decimal)")

    # demo-burn
    p_demo = sub.add_parser("demo-burn", help="Run burns against the simulated ledger")
    p_demo.add_argument("--token", default="DEMO", help="Token symbol (default: DEMO)")
    p_demo.add_argument("--amount", required=True, help="Amount per burn (Decimal)")
    p_demo.add_argument("--count", type=int, default=1, help="Number of burns (default: 1)")

    # verify
    p_verify = sub.add_parser("verify", help="Verify a burn on the live ledger")
    p_verify.add_argument("--reference", required=True, help="Transaction hash (0x + 64 hex)")

    # check-invariants
    sub.add_parser("check-invariants", help="Run burn policy invariant checks")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "tiers": cmd_tiers,
        "preview": cmd_preview,
        "demo-burn": cmd_demo_burn,
        "verify": cmd_verify,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
