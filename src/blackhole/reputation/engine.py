"""Reputation engine — score, tier, achievements, and analytics from burn history.

Scoring model:
  score = Σ floor(amount_i × multiplier)        (multiplier = 100)

Truncation is per record, then the integers are summed. Summing first
and truncating the aggregate gives a different (larger) result and is
not what the score means.

Everything here is a pure function of the history passed in. Nothing
is cached and nothing is stored; call order does not matter.

total_burned is token-agnostic: amounts of different tokens are added
as plain numbers. Token heterogeneity is surfaced by token_breakdown,
not corrected in the total.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Optional, Sequence

from blackhole.models.burn import BurnRecord
from blackhole.models.reputation import (
    AchievementDefinition,
    AchievementKind,
    AchievementStatus,
    BurnAnalytics,
    ReputationSnapshot,
    TierDefinition,
    TokenBreakdownEntry,
)
from blackhole.policy.resolver import BurnPolicy


_CENT = Decimal("0.01")


class _BurnStats:
    """The three statistics achievement predicates can test."""

    __slots__ = ("burn_count", "total_burned", "score")

    def __init__(self, burn_count: int, total_burned: Decimal, score: int) -> None:
        self.burn_count = burn_count
        self.total_burned = total_burned
        self.score = score


# One selector per achievement kind; the threshold test is shared.
_STAT_SELECTORS: Dict[AchievementKind, Callable[[_BurnStats], Decimal]] = {
    AchievementKind.BURNS: lambda s: Decimal(s.burn_count),
    AchievementKind.AMOUNT: lambda s: s.total_burned,
    AchievementKind.REPUTATION: lambda s: Decimal(s.score),
}


class ReputationEngine:
    """Derives reputation views from a burn history."""

    def __init__(self, policy: BurnPolicy) -> None:
        self._policy = policy
        self._tiers = policy.tiers()
        self._achievements = policy.achievements()

    # ------------------------------------------------------------------
    # Score
    # ------------------------------------------------------------------

    def score_contribution(self, amount: Decimal) -> int:
        """Points a single burn of ``amount`` is worth."""
        scaled = amount * self._policy.score_multiplier()
        return int(scaled.to_integral_value(rounding=ROUND_FLOOR))

    def score(self, history: Sequence[BurnRecord]) -> int:
        return sum(self.score_contribution(r.amount) for r in history)

    def total_burned(self, history: Sequence[BurnRecord]) -> Decimal:
        return sum((r.amount for r in history), Decimal("0"))

    # ------------------------------------------------------------------
    # Tiers
    # ------------------------------------------------------------------

    def tier(self, score: int) -> TierDefinition:
        """Return the unique tier containing ``score``."""
        if score < 0:
            raise ValueError(f"Score must be non-negative, got {score}")
        for tier in self._tiers:
            if tier.contains(score):
                return tier
        # Unreachable with a validated ladder
        raise ValueError(f"No tier contains score {score}")

    def next_tier(self, score: int) -> Optional[TierDefinition]:
        """The first tier above ``score``, or None at the top."""
        for tier in self._tiers:
            if tier.min_score > score:
                return tier
        return None

    @staticmethod
    def progress_to_next_tier(
        score: int,
        current: TierDefinition,
        next_tier: Optional[TierDefinition],
    ) -> float:
        """Percent of the way from ``current.min`` to ``next_tier.min``.

        Clamped to [0, 100]. The top tier is always 100.
        """
        if next_tier is None:
            return 100.0
        span = next_tier.min_score - current.min_score
        progress = (score - current.min_score) / span * 100
        return max(0.0, min(100.0, progress))

    # ------------------------------------------------------------------
    # Achievements
    # ------------------------------------------------------------------

    @staticmethod
    def is_unlocked(
        definition: AchievementDefinition,
        burn_count: int,
        total_burned: Decimal,
        score: int,
    ) -> bool:
        """Evaluate one achievement predicate."""
        stats = _BurnStats(burn_count, total_burned, score)
        return _STAT_SELECTORS[definition.kind](stats) >= definition.threshold

    def achievements(
        self,
        history: Sequence[BurnRecord],
        score: Optional[int] = None,
    ) -> list[AchievementStatus]:
        if score is None:
            score = self.score(history)
        total = self.total_burned(history)
        return [
            AchievementStatus(
                definition=a,
                unlocked=self.is_unlocked(a, len(history), total, score),
            )
            for a in self._achievements
        ]

    # ------------------------------------------------------------------
    # Breakdown and analytics
    # ------------------------------------------------------------------

    def token_breakdown(self, history: Sequence[BurnRecord]) -> list[TokenBreakdownEntry]:
        """Amount burned per token symbol, largest first."""
        totals: Dict[str, Decimal] = {}
        for record in history:
            symbol = record.token.symbol
            totals[symbol] = totals.get(symbol, Decimal("0")) + record.amount
        grand_total = self.total_burned(history)
        entries = [
            TokenBreakdownEntry(
                symbol=symbol,
                amount=amount,
                share_percent=_percent_of(amount, grand_total),
            )
            for symbol, amount in totals.items()
        ]
        entries.sort(key=lambda e: e.amount, reverse=True)
        return entries

    def snapshot(self, history: Sequence[BurnRecord]) -> ReputationSnapshot:
        score = self.score(history)
        current = self.tier(score)
        following = self.next_tier(score)
        return ReputationSnapshot(
            score=score,
            total_burned=self.total_burned(history),
            burn_count=len(history),
            tier=current,
            next_tier=following,
            progress_percent=self.progress_to_next_tier(score, current, following),
            points_to_next_tier=following.min_score - score if following else 0,
            achievements=self.achievements(history, score),
        )

    def analytics(
        self,
        history: Sequence[BurnRecord],
        now: Optional[datetime] = None,
    ) -> BurnAnalytics:
        if now is None:
            now = datetime.now(timezone.utc)
        count = len(history)
        breakdown = self.token_breakdown(history)
        if count == 0:
            return BurnAnalytics(
                average_points_per_burn=0,
                average_tokens_per_burn=Decimal("0.00"),
                days_active=0,
                token_types=0,
                breakdown=breakdown,
            )
        score = self.score(history)
        total = self.total_burned(history)
        oldest = min(r.timestamp for r in history)
        days = (now - oldest) / timedelta(days=1)
        return BurnAnalytics(
            average_points_per_burn=_round_half_up(Decimal(score) / count),
            average_tokens_per_burn=(total / count).quantize(_CENT, rounding=ROUND_HALF_UP),
            days_active=max(0, math.floor(days + 0.5)),
            token_types=len(breakdown),
            breakdown=breakdown,
        )


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _percent_of(part: Decimal, whole: Decimal) -> int:
    if whole == 0:
        return 0
    return _round_half_up(part / whole * 100)
