"""Burn history store."""

from blackhole.history.store import BurnHistoryStore

__all__ = ["BurnHistoryStore"]
