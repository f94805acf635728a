"""Burn execution engine — the transaction controller."""

from blackhole.engine.controller import BurnTransactionController

__all__ = ["BurnTransactionController"]
