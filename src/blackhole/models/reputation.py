"""Reputation models — tiers, achievements, and derived snapshots.

None of these has a lifecycle of its own. Snapshots and achievement
statuses are recomputed from the burn history on every read; tier and
achievement definitions come from configuration.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional


@dataclass(frozen=True)
class TierDefinition:
    """A named score bracket ``[min_score, max_score]``.

    ``max_score`` of None marks the unbounded top tier.
    """
    name: str
    min_score: int
    max_score: Optional[int] = None

    def contains(self, score: int) -> bool:
        if score < self.min_score:
            return False
        return self.max_score is None or score <= self.max_score

    @property
    def is_unbounded(self) -> bool:
        return self.max_score is None


class AchievementKind(str, enum.Enum):
    """Which burn statistic an achievement threshold applies to."""
    BURNS = "burns"
    AMOUNT = "amount"
    REPUTATION = "reputation"


@dataclass(frozen=True)
class AchievementDefinition:
    """A threshold predicate: ``stat(kind) >= threshold``."""
    achievement_id: str
    name: str
    kind: AchievementKind
    threshold: Decimal
    description: str = ""


@dataclass(frozen=True)
class AchievementStatus:
    definition: AchievementDefinition
    unlocked: bool

    @property
    def achievement_id(self) -> str:
        return self.definition.achievement_id


@dataclass(frozen=True)
class TokenBreakdownEntry:
    """Burned amount for one token, with its share of the total."""
    symbol: str
    amount: Decimal
    share_percent: int


@dataclass(frozen=True)
class ReputationSnapshot:
    """Derived view over the burn history. Never stored."""
    score: int
    total_burned: Decimal
    burn_count: int
    tier: TierDefinition
    next_tier: Optional[TierDefinition] = None
    progress_percent: float = 100.0
    points_to_next_tier: int = 0
    achievements: List[AchievementStatus] = field(default_factory=list)

    @property
    def unlocked_achievements(self) -> List[str]:
        return [a.achievement_id for a in self.achievements if a.unlocked]


@dataclass(frozen=True)
class BurnAnalytics:
    """Journey statistics shown alongside the reputation snapshot."""
    average_points_per_burn: int
    average_tokens_per_burn: Decimal
    days_active: int
    token_types: int
    breakdown: List[TokenBreakdownEntry] = field(default_factory=list)
