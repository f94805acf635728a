"""Ledger gateway contract — the engine's only view of the ledger.

The controller, the proof engine, and the service never talk to a chain
directly. They talk to this Protocol. Swapping the simulated ledger for
a live one requires zero changes to any engine.

Two-phase submission: ``submit_*`` returns a transaction reference as a
pending handle. The confirmation (or revert) arrives later as a Receipt
delivered to every registered listener.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Tuple, runtime_checkable

from blackhole.errors import GatewayError, SubmissionError
from blackhole.models.burn import (
    Receipt,
    ReceiptStatus,
    SubmissionKind,
    TokenInfo,
    TransactionLookup,
)

logger = logging.getLogger(__name__)

ReceiptListener = Callable[[Receipt], None]


@runtime_checkable
class LedgerGateway(Protocol):
    """Contract every ledger backend must satisfy.

    Implementations raise GatewayError for transport failures and
    SubmissionError when the wallet or node refuses a submission.
    """

    @property
    def account(self) -> str:
        """The connected account submissions are signed by."""
        ...

    def read_balance(self, account: str, token: TokenInfo) -> Decimal:
        ...

    def read_allowance(self, account: str, spender: str, token: TokenInfo) -> Decimal:
        ...

    def submit_approve(self, token: TokenInfo, spender: str, amount: Decimal) -> str:
        """Submit an approval for exactly ``amount``. Returns the tx reference."""
        ...

    def submit_transfer(self, token: TokenInfo, destination: str, amount: Decimal) -> str:
        """Submit a transfer of ``amount`` to ``destination``. Returns the tx reference."""
        ...

    def lookup_transaction(self, reference: str) -> Optional[TransactionLookup]:
        """Return what the ledger knows about a transaction, or None."""
        ...

    def add_receipt_listener(self, listener: ReceiptListener) -> None:
        """Register a callback for confirmation notifications."""
        ...


@dataclass(frozen=True)
class _SubmittedTx:
    tx_ref: str
    kind: SubmissionKind
    sender: str
    counterparty: str
    token: TokenInfo
    amount: Decimal


class InMemoryLedgerGateway:
    """Session-scoped simulated ledger.

    Submissions stay pending until ``confirm`` or ``revert`` is called,
    so callers control exactly when receipts land. Used by the test
    suite and the CLI demo.

    Usage:
        gateway = InMemoryLedgerGateway("0xabc...", tokens)
        gateway.mint("0xabc...", demo, Decimal("50"))
        ref = gateway.submit_approve(demo, spender, Decimal("10"))
        gateway.confirm(ref)
    """

    def __init__(
        self,
        account: str,
        tokens: Iterable[TokenInfo] = (),
        first_block: int = 18_500_000,
    ) -> None:
        self._account = account
        self._tokens: Dict[str, TokenInfo] = {t.address.lower(): t for t in tokens}
        self._balances: Dict[Tuple[str, str], Decimal] = {}
        self._allowances: Dict[Tuple[str, str, str], Decimal] = {}
        self._pending: Dict[str, _SubmittedTx] = {}
        self._mined: Dict[str, TransactionLookup] = {}
        self._listeners: List[ReceiptListener] = []
        self._next_block = first_block
        self._connected = True
        self._reject_reason: Optional[str] = None
        self.lookup_count = 0

    # ------------------------------------------------------------------
    # LedgerGateway contract
    # ------------------------------------------------------------------

    @property
    def account(self) -> str:
        return self._account

    def read_balance(self, account: str, token: TokenInfo) -> Decimal:
        self._require_connected()
        return self._balances.get((account.lower(), token.symbol), Decimal("0"))

    def read_allowance(self, account: str, spender: str, token: TokenInfo) -> Decimal:
        self._require_connected()
        key = (account.lower(), spender.lower(), token.symbol)
        return self._allowances.get(key, Decimal("0"))

    def submit_approve(self, token: TokenInfo, spender: str, amount: Decimal) -> str:
        return self._submit(SubmissionKind.APPROVE, token, spender, amount)

    def submit_transfer(self, token: TokenInfo, destination: str, amount: Decimal) -> str:
        return self._submit(SubmissionKind.TRANSFER, token, destination, amount)

    def lookup_transaction(self, reference: str) -> Optional[TransactionLookup]:
        self._require_connected()
        self.lookup_count += 1
        return self._mined.get(reference.lower())

    def add_receipt_listener(self, listener: ReceiptListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Simulation controls
    # ------------------------------------------------------------------

    def mint(self, account: str, token: TokenInfo, amount: Decimal) -> None:
        """Credit ``amount`` of ``token`` to ``account``."""
        key = (account.lower(), token.symbol)
        self._balances[key] = self._balances.get(key, Decimal("0")) + amount
        self._tokens.setdefault(token.address.lower(), token)

    def disconnect(self) -> None:
        self._connected = False

    def connect(self) -> None:
        self._connected = True

    def reject_next_submission(self, reason: str = "User rejected the request") -> None:
        """Make the next submit_* call fail as if the wallet refused to sign."""
        self._reject_reason = reason

    def pending_refs(self) -> List[str]:
        return list(self._pending)

    def confirm(self, tx_ref: str, now: Optional[datetime] = None) -> Receipt:
        """Mine a pending transaction and notify listeners.

        A transfer that exceeds the sender's balance at mining time is
        reverted instead.
        """
        tx = self._pop_pending(tx_ref)
        if now is None:
            now = datetime.now(timezone.utc)

        if tx.kind == SubmissionKind.TRANSFER:
            sender_key = (tx.sender.lower(), tx.token.symbol)
            balance = self._balances.get(sender_key, Decimal("0"))
            if balance < tx.amount:
                return self._deliver(Receipt(
                    tx_ref=tx.tx_ref,
                    status=ReceiptStatus.REVERTED,
                    timestamp=now,
                    reason="ERC20: transfer amount exceeds balance",
                ))
            self._balances[sender_key] = balance - tx.amount
            dest_key = (tx.counterparty.lower(), tx.token.symbol)
            self._balances[dest_key] = self._balances.get(dest_key, Decimal("0")) + tx.amount
        else:
            key = (tx.sender.lower(), tx.counterparty.lower(), tx.token.symbol)
            self._allowances[key] = tx.amount

        block_number = self._next_block
        self._next_block += 1
        self._mined[tx.tx_ref.lower()] = TransactionLookup(
            tx_ref=tx.tx_ref,
            block_number=block_number,
            sender=tx.sender,
            amount=tx.amount,
            token=tx.token,
            timestamp=now,
            destination=tx.counterparty,
        )
        return self._deliver(Receipt(
            tx_ref=tx.tx_ref,
            status=ReceiptStatus.CONFIRMED,
            timestamp=now,
            block_number=block_number,
        ))

    def revert(
        self,
        tx_ref: str,
        reason: str = "execution reverted",
        now: Optional[datetime] = None,
    ) -> Receipt:
        """Drop a pending transaction as reverted and notify listeners."""
        tx = self._pop_pending(tx_ref)
        return self._deliver(Receipt(
            tx_ref=tx.tx_ref,
            status=ReceiptStatus.REVERTED,
            timestamp=now or datetime.now(timezone.utc),
            reason=reason,
        ))

    def settle(self, now: Optional[datetime] = None) -> List[Receipt]:
        """Confirm every pending transaction in submission order."""
        return [self.confirm(ref, now=now) for ref in list(self._pending)]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _submit(
        self,
        kind: SubmissionKind,
        token: TokenInfo,
        counterparty: str,
        amount: Decimal,
    ) -> str:
        self._require_connected()
        if self._reject_reason is not None:
            reason, self._reject_reason = self._reject_reason, None
            raise SubmissionError(reason)
        if amount <= Decimal("0"):
            raise SubmissionError("Amount must be positive")
        # Base-unit conversion is where a live ledger would reject it too
        try:
            token.to_base_units(amount)
        except ValueError as exc:
            raise SubmissionError(str(exc)) from exc

        tx_ref = "0x" + secrets.token_hex(32)
        self._pending[tx_ref] = _SubmittedTx(
            tx_ref=tx_ref,
            kind=kind,
            sender=self._account,
            counterparty=counterparty,
            token=token,
            amount=amount,
        )
        logger.debug("Submitted %s %s %s as %s", kind.value, amount, token.symbol, tx_ref)
        return tx_ref

    def _pop_pending(self, tx_ref: str) -> _SubmittedTx:
        tx = self._pending.pop(tx_ref, None)
        if tx is None:
            raise ValueError(f"Unknown pending transaction: {tx_ref}")
        return tx

    def _deliver(self, receipt: Receipt) -> Receipt:
        for listener in list(self._listeners):
            listener(receipt)
        return receipt

    def _require_connected(self) -> None:
        if not self._connected:
            raise GatewayError("Wallet disconnected")
