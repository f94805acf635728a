"""Append-only audit log — the record of everything a session did.

Every controller transition, history append, and verification produces
an event record appended here. Events are immutable once written and
carry a SHA-256 hash of their canonical JSON, so an exported log can be
checked for tampering.

The log lives for one session only. Durable storage is the hosting
application's concern.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4


class EventKind(str, enum.Enum):
    """Classification of session events."""
    # Controller
    SELECTION_MADE = "selection_made"
    SELECTION_RESET = "selection_reset"
    APPROVAL_SUBMITTED = "approval_submitted"
    APPROVAL_CONFIRMED = "approval_confirmed"
    APPROVAL_FAILED = "approval_failed"
    BURN_SUBMITTED = "burn_submitted"
    BURN_CONFIRMED = "burn_confirmed"
    BURN_FAILED = "burn_failed"
    SUBMISSION_ABANDONED = "submission_abandoned"
    LATE_CONFIRMATION_IGNORED = "late_confirmation_ignored"
    # History
    BURN_RECORDED = "burn_recorded"
    HISTORY_EVICTED = "history_evicted"
    # Proofs
    PROOF_VERIFIED = "proof_verified"
    VERIFICATION_FAILED = "verification_failed"
    CERTIFICATE_EXPORTED = "certificate_exported"


def _canonical_hash(
    event_id: str,
    event_kind: str,
    timestamp_utc: str,
    actor_id: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp_utc": timestamp_utc,
            "actor_id": actor_id,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable event in the session log."""
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    event_hash: str  # SHA-256 of canonical JSON

    @staticmethod
    def create(
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
        event_id: Optional[str] = None,
    ) -> EventRecord:
        """Create a new event record with computed hash."""
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%SZ")
        if event_id is None:
            event_id = f"evt_{uuid4().hex[:12]}"
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            actor_id=actor_id,
            payload=payload,
            event_hash=_canonical_hash(
                event_id, event_kind.value, ts_str, actor_id, payload,
            ),
        )

    def verify_hash(self) -> bool:
        """Recompute the canonical hash and compare."""
        expected = _canonical_hash(
            self.event_id,
            self.event_kind.value,
            self.timestamp_utc,
            self.actor_id,
            self.payload,
        )
        return expected == self.event_hash


class EventLog:
    """In-memory append-only event log.

    Events can only be appended, never modified or deleted.
    """

    def __init__(self) -> None:
        self._events: list[EventRecord] = []
        self._event_ids: set[str] = set()

    def append(self, event: EventRecord) -> None:
        """Append an event to the log.

        Raises ValueError if event_id is a duplicate (replay protection).
        """
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")
        self._events.append(event)
        self._event_ids.add(event.event_id)

    def record(
        self,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Create and append an event in one step."""
        event = EventRecord.create(event_kind, actor_id, payload, timestamp_utc)
        self.append(event)
        return event

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    def events_since(
        self,
        since_utc: str,
        kind: Optional[EventKind] = None,
    ) -> list[EventRecord]:
        """Return events at or after a timestamp, optionally filtered by kind."""
        result = [e for e in self._events if e.timestamp_utc >= since_utc]
        if kind is not None:
            result = [e for e in result if e.event_kind == kind]
        return result

    def to_jsonl(self) -> str:
        """Serialise the log, one JSON object per line."""
        lines = [
            json.dumps(
                {
                    "event_id": e.event_id,
                    "event_kind": e.event_kind.value,
                    "timestamp_utc": e.timestamp_utc,
                    "actor_id": e.actor_id,
                    "payload": e.payload,
                    "event_hash": e.event_hash,
                },
                sort_keys=True,
                ensure_ascii=False,
            )
            for e in self._events
        ]
        return "\n".join(lines)

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None
