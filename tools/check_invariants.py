#!/usr/bin/env python3
"""Blackhole invariant checks against the burn policy artifact."""

import json
import re
import sys
from pathlib import Path
from typing import Optional


ROOT = Path(__file__).resolve().parents[1]
PARAMS_FILENAME = "burn_params.json"

ACHIEVEMENT_KINDS = {"burns", "amount", "reputation"}
ADDRESS_RE = re.compile(r"0x[0-9a-fA-F]{40}")


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def check_tiers(tiers: list, errors: list[str]) -> None:
    """Tier ladder must partition [0, inf) with no gaps or overlaps."""
    if not tiers:
        errors.append("tier ladder must not be empty")
        return
    if tiers[0].get("min") != 0:
        errors.append(f"first tier must start at 0, got {tiers[0].get('min')}")
    names = [t.get("name") for t in tiers]
    if len(set(names)) != len(names):
        errors.append("tier names must be unique")
    for current, following in zip(tiers, tiers[1:]):
        if current.get("max") is None:
            errors.append(f"only the top tier may be unbounded: {current.get('name')}")
            continue
        if current["max"] < current["min"]:
            errors.append(f"tier {current['name']} has max below min")
        if current["max"] + 1 != following.get("min"):
            errors.append(
                f"tier gap/overlap between {current['name']} and {following.get('name')}"
            )
    if tiers[-1].get("max") is not None:
        errors.append(f"top tier must be unbounded: {tiers[-1].get('name')}")


def check_achievements(achievements: list, errors: list[str]) -> None:
    seen: set[str] = set()
    for a in achievements:
        if a.get("id") in seen:
            errors.append(f"duplicate achievement id: {a.get('id')}")
        seen.add(a.get("id"))
        if a.get("kind") not in ACHIEVEMENT_KINDS:
            errors.append(f"achievement {a.get('id')} has unknown kind {a.get('kind')!r}")
        if not isinstance(a.get("threshold"), (int, float)) or a["threshold"] <= 0:
            errors.append(f"achievement {a.get('id')} threshold must be positive")


def check_tokens(tokens: list, errors: list[str]) -> None:
    symbols = [t.get("symbol") for t in tokens]
    if not symbols:
        errors.append("token registry must not be empty")
    if len(set(symbols)) != len(symbols):
        errors.append("token symbols must be unique")
    addresses = [str(t.get("address", "")).lower() for t in tokens]
    if len(set(addresses)) != len(addresses):
        errors.append("token contract addresses must be unique")
    for t in tokens:
        if not ADDRESS_RE.fullmatch(str(t.get("address", ""))):
            errors.append(f"token {t.get('symbol')} address is not a 20-byte hex address")
        decimals = t.get("decimals")
        if not isinstance(decimals, int) or not (0 <= decimals <= 36):
            errors.append(f"token {t.get('symbol')} decimals must be an integer in [0, 36]")


def check(config_dir: Optional[Path] = None) -> int:
    params = load_json(Path(config_dir or ROOT / "config") / PARAMS_FILENAME)
    errors: list[str] = []

    # --- History and scoring ---
    capacity = params.get("history_capacity")
    if not isinstance(capacity, int) or capacity < 1:
        errors.append(f"history_capacity must be a positive integer, got {capacity!r}")
    multiplier = params.get("score_multiplier")
    if not isinstance(multiplier, int) or multiplier < 1:
        errors.append(f"score_multiplier must be a positive integer, got {multiplier!r}")

    # --- Ledger addresses ---
    sink = str(params.get("burn_sink", ""))
    if not ADDRESS_RE.fullmatch(sink):
        errors.append("burn_sink must be a 20-byte hex address")
    if not ADDRESS_RE.fullmatch(str(params.get("spender", ""))):
        errors.append("spender must be a 20-byte hex address")
    if sink.lower() == str(params.get("spender", "")).lower():
        errors.append("burn_sink and spender must differ")

    # --- Reference format ---
    fmt = params.get("reference_format", {})
    if fmt.get("prefix") != "0x":
        errors.append("reference_format.prefix must be '0x'")
    if fmt.get("hex_length") != 64:
        errors.append("reference_format.hex_length must be 64")
    if "{reference}" not in params.get("explorer_tx_url", ""):
        errors.append("explorer_tx_url must contain a {reference} placeholder")

    # --- Certificate identity ---
    certificate = params.get("certificate", {})
    if not certificate.get("type") or not certificate.get("version"):
        errors.append("certificate type and version must be set")

    check_tiers(params.get("tiers", []), errors)
    check_achievements(params.get("achievements", []), errors)
    check_tokens(params.get("tokens", []), errors)

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(check())
