"""Configuration — burn engine parameters and their load-time invariants."""

from blackhole.policy.resolver import BurnPolicy

__all__ = ["BurnPolicy"]
