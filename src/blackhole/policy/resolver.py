"""Policy resolver — loads and validates burn engine parameters.

All tunable values (tier ladder, achievements, token registry, burn
sink, history capacity, certificate identity) live in
``config/burn_params.json``. Engines never read the file themselves;
they receive a BurnPolicy.

Load-time invariants (fail-closed, ValueError on violation):
- history_capacity >= 1
- tier ladder non-empty, starts at 0, contiguous (max + 1 == next.min)
- only the last tier is unbounded, and it must be unbounded
- achievement kinds are burns | amount | reputation, thresholds > 0
- token symbols unique
"""

from __future__ import annotations

import json
import re
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

from blackhole.models.burn import TokenInfo
from blackhole.models.reputation import (
    AchievementDefinition,
    AchievementKind,
    TierDefinition,
)


PARAMS_FILENAME = "burn_params.json"
DEFAULT_CONFIG_DIR = Path(__file__).resolve().parents[3] / "config"


class BurnPolicy:
    """Read-only view over burn engine parameters.

    Usage:
        policy = BurnPolicy.from_config_dir(Path("config"))
        policy.tiers()
        policy.token("DEMO")
    """

    def __init__(self, params: dict[str, Any]) -> None:
        self._params = params
        self._tiers = _parse_tiers(params["tiers"])
        self._achievements = _parse_achievements(params["achievements"])
        self._tokens = _parse_tokens(params["tokens"])

        capacity = params["history_capacity"]
        if not isinstance(capacity, int) or capacity < 1:
            raise ValueError(f"history_capacity must be a positive integer, got {capacity!r}")

        fmt = params["reference_format"]
        self._reference_re = re.compile(
            re.escape(fmt["prefix"]) + r"[0-9a-fA-F]{" + str(int(fmt["hex_length"])) + r"}"
        )

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> BurnPolicy:
        """Load from ``<config_dir>/burn_params.json``."""
        path = Path(config_dir) / PARAMS_FILENAME
        params = json.loads(path.read_text(encoding="utf-8"))
        return cls(params)

    @classmethod
    def default(cls) -> BurnPolicy:
        """Load the bundled configuration."""
        return cls.from_config_dir(DEFAULT_CONFIG_DIR)

    # ------------------------------------------------------------------
    # History and scoring
    # ------------------------------------------------------------------

    def history_capacity(self) -> int:
        return int(self._params["history_capacity"])

    def score_multiplier(self) -> int:
        return int(self._params["score_multiplier"])

    def tiers(self) -> list[TierDefinition]:
        return list(self._tiers)

    def achievements(self) -> list[AchievementDefinition]:
        return list(self._achievements)

    # ------------------------------------------------------------------
    # Ledger addresses and tokens
    # ------------------------------------------------------------------

    def burn_sink(self) -> str:
        """The unspendable destination burned tokens are sent to."""
        return self._params["burn_sink"]

    def spender(self) -> str:
        """Address the engine asks to be approved as spender."""
        return self._params["spender"]

    def tokens(self) -> list[TokenInfo]:
        return list(self._tokens.values())

    def token(self, symbol: str) -> TokenInfo:
        token = self._tokens.get(symbol)
        if token is None:
            raise ValueError(f"Unsupported token: {symbol}")
        return token

    def token_by_address(self, address: str) -> Optional[TokenInfo]:
        wanted = address.lower()
        for token in self._tokens.values():
            if token.address.lower() == wanted:
                return token
        return None

    # ------------------------------------------------------------------
    # Proofs and certificates
    # ------------------------------------------------------------------

    def is_well_formed_reference(self, reference: str) -> bool:
        """Check a transaction reference against the canonical format."""
        return self._reference_re.fullmatch(reference) is not None

    def certificate_type(self) -> str:
        return self._params["certificate"]["type"]

    def certificate_version(self) -> str:
        return self._params["certificate"]["version"]

    def explorer_url(self, reference: str) -> str:
        return self._params["explorer_tx_url"].format(reference=reference)


def _parse_tiers(raw: list[dict[str, Any]]) -> list[TierDefinition]:
    if not raw:
        raise ValueError("Tier ladder must not be empty")
    tiers = [
        TierDefinition(
            name=t["name"],
            min_score=int(t["min"]),
            max_score=None if t.get("max") is None else int(t["max"]),
        )
        for t in raw
    ]
    if tiers[0].min_score != 0:
        raise ValueError(f"Tier ladder must start at 0, starts at {tiers[0].min_score}")
    for current, following in zip(tiers, tiers[1:]):
        if current.max_score is None:
            raise ValueError(f"Only the top tier may be unbounded: {current.name}")
        if current.max_score < current.min_score:
            raise ValueError(f"Tier {current.name} has max below min")
        if current.max_score + 1 != following.min_score:
            raise ValueError(
                f"Tier ladder not contiguous: {current.name} ends at "
                f"{current.max_score}, {following.name} starts at {following.min_score}"
            )
    if not tiers[-1].is_unbounded:
        raise ValueError(f"Top tier must be unbounded: {tiers[-1].name}")
    return tiers


def _parse_achievements(raw: list[dict[str, Any]]) -> list[AchievementDefinition]:
    achievements: list[AchievementDefinition] = []
    seen: set[str] = set()
    for a in raw:
        kind = AchievementKind(a["kind"])
        threshold = Decimal(str(a["threshold"]))
        if threshold <= 0:
            raise ValueError(f"Achievement {a['id']} threshold must be positive")
        if a["id"] in seen:
            raise ValueError(f"Duplicate achievement id: {a['id']}")
        seen.add(a["id"])
        achievements.append(
            AchievementDefinition(
                achievement_id=a["id"],
                name=a["name"],
                kind=kind,
                threshold=threshold,
                description=a.get("description", ""),
            )
        )
    return achievements


def _parse_tokens(raw: list[dict[str, Any]]) -> dict[str, TokenInfo]:
    tokens: dict[str, TokenInfo] = {}
    for t in raw:
        if t["symbol"] in tokens:
            raise ValueError(f"Duplicate token symbol: {t['symbol']}")
        tokens[t["symbol"]] = TokenInfo(
            symbol=t["symbol"],
            decimals=int(t["decimals"]),
            address=t["address"],
            name=t.get("name", ""),
        )
    return tokens
