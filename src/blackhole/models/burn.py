"""Burn models — tokens, burn records, receipts, and the controller step map.

All token quantities use Decimal. Conversion to ledger base units
happens only at the gateway boundary, using the token's own decimals.

Controller state machine:
    SELECT → APPROVING       (approval submitted)
    SELECT → BURNING         (allowance already sufficient, burn submitted)
    APPROVING → BURNING      (burn submitted after approval)
    APPROVING → SELECT       (approval rejected, reverted, abandoned, or re-selected while idle)
    BURNING → APPROVING      (burn rejected, reverted, or abandoned)
    BURNING → SUCCESS        (burn confirmed)
    SUCCESS → SELECT         (explicit reset, clears the selection)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Optional


@dataclass(frozen=True)
class TokenInfo:
    """A burnable token: symbol, decimals, and contract reference."""
    symbol: str
    decimals: int
    address: str
    name: str = ""

    def to_base_units(self, amount: Decimal) -> int:
        """Convert a display amount to integer base units.

        Raises ValueError if the amount carries more precision than
        the token supports.
        """
        scaled = amount.scaleb(self.decimals)
        if scaled != scaled.to_integral_value():
            raise ValueError(
                f"{self.symbol} supports {self.decimals} decimals, "
                f"got {amount}"
            )
        return int(scaled)

    def from_base_units(self, units: int) -> Decimal:
        """Convert integer base units back to a display amount."""
        return Decimal(units).scaleb(-self.decimals)


@dataclass(frozen=True)
class BurnRecord:
    """A confirmed burn. Immutable once created.

    Created only from a ledger confirmation. Evicted only by history
    capacity, oldest first.
    """
    tx_ref: str
    amount: Decimal
    token: TokenInfo
    timestamp: datetime

    @property
    def timestamp_ms(self) -> int:
        """Confirmation time as integer milliseconds since the epoch."""
        return to_epoch_ms(self.timestamp)


@dataclass(frozen=True)
class BurnCompletion:
    """Completion event emitted exactly once per successful burn.

    Wire shape is ``{txRef, amount, token}`` with amount as a decimal
    string and token as its symbol (see ``as_event``). The full token
    and the confirmation details ride along so the history appender
    can build a BurnRecord without another ledger read.
    """
    tx_ref: str
    amount: Decimal
    token: TokenInfo
    timestamp: datetime
    block_number: Optional[int] = None

    def as_event(self) -> Dict[str, str]:
        return {
            "txRef": self.tx_ref,
            "amount": format_amount(self.amount),
            "token": self.token.symbol,
        }

    def to_record(self) -> BurnRecord:
        return BurnRecord(
            tx_ref=self.tx_ref,
            amount=self.amount,
            token=self.token,
            timestamp=self.timestamp,
        )


class BurnStep(str, enum.Enum):
    """Step of the burn transaction controller."""
    SELECT = "select"
    APPROVING = "approving"
    BURNING = "burning"
    SUCCESS = "success"


# Valid controller transitions
BURN_TRANSITIONS: Dict[BurnStep, frozenset] = {
    BurnStep.SELECT: frozenset({BurnStep.APPROVING, BurnStep.BURNING}),
    BurnStep.APPROVING: frozenset({BurnStep.BURNING, BurnStep.SELECT}),
    BurnStep.BURNING: frozenset({BurnStep.SUCCESS, BurnStep.APPROVING}),
    BurnStep.SUCCESS: frozenset({BurnStep.SELECT}),
}


class SubmissionKind(str, enum.Enum):
    """Which ledger operation a pending submission is for."""
    APPROVE = "approve"
    TRANSFER = "transfer"


class ReceiptStatus(str, enum.Enum):
    CONFIRMED = "confirmed"
    REVERTED = "reverted"


@dataclass(frozen=True)
class PendingSubmission:
    """Handle for a submitted, not yet confirmed, transaction."""
    tx_ref: str
    kind: SubmissionKind
    token: TokenInfo
    amount: Decimal
    submitted_utc: datetime


@dataclass(frozen=True)
class Receipt:
    """Confirmation notification for one submitted transaction."""
    tx_ref: str
    status: ReceiptStatus
    timestamp: datetime
    block_number: Optional[int] = None
    reason: str = ""

    @property
    def confirmed(self) -> bool:
        return self.status == ReceiptStatus.CONFIRMED


@dataclass(frozen=True)
class TransactionLookup:
    """What the ledger reports about a past transaction."""
    tx_ref: str
    block_number: int
    sender: str
    amount: Decimal
    token: TokenInfo
    timestamp: datetime
    destination: Optional[str] = None


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def format_amount(amount: Decimal) -> str:
    """Canonical decimal string: no exponent, no trailing zeros."""
    return format(amount.normalize(), "f")


def to_epoch_ms(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - _EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(value: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=value)
