"""Core data models for the burn engine."""

from blackhole.models.burn import (
    BurnCompletion,
    BurnRecord,
    BurnStep,
    PendingSubmission,
    Receipt,
    ReceiptStatus,
    SubmissionKind,
    TokenInfo,
    TransactionLookup,
)
from blackhole.models.proof import BurnProof, ProofContext
from blackhole.models.reputation import (
    AchievementDefinition,
    AchievementKind,
    AchievementStatus,
    BurnAnalytics,
    ReputationSnapshot,
    TierDefinition,
    TokenBreakdownEntry,
)

__all__ = [
    "BurnCompletion",
    "BurnRecord",
    "BurnStep",
    "PendingSubmission",
    "Receipt",
    "ReceiptStatus",
    "SubmissionKind",
    "TokenInfo",
    "TransactionLookup",
    "BurnProof",
    "ProofContext",
    "AchievementDefinition",
    "AchievementKind",
    "AchievementStatus",
    "BurnAnalytics",
    "ReputationSnapshot",
    "TierDefinition",
    "TokenBreakdownEntry",
]
