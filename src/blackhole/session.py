"""Session context — everything one connected wallet owns for one session.

The hosting application creates a session and passes it in. Engines
operate on it explicitly; there is no ambient, module-level state.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from blackhole.history.store import BurnHistoryStore
from blackhole.persistence.event_log import EventLog
from blackhole.policy.resolver import BurnPolicy


class SessionView(str, enum.Enum):
    """Which view the hosting application is showing."""
    BURN = "burn"
    REPUTATION = "reputation"
    HISTORY = "history"
    PROOF = "proof"


@dataclass
class BurnSession:
    account: str
    history: BurnHistoryStore
    event_log: EventLog = field(default_factory=EventLog)
    active_view: SessionView = SessionView.BURN

    @classmethod
    def open(cls, account: str, policy: BurnPolicy) -> BurnSession:
        return cls(
            account=account,
            history=BurnHistoryStore(capacity=policy.history_capacity()),
        )
