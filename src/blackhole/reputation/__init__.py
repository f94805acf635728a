"""Reputation and tier calculation."""

from blackhole.reputation.engine import ReputationEngine

__all__ = ["ReputationEngine"]
