"""Burn transaction controller — drives one burn through the ledger.

Steps:
    SELECT     token and amount chosen, nothing submitted
    APPROVING  approval submitted (pending) or confirmed (idle)
    BURNING    transfer to the burn sink submitted
    SUCCESS    transfer confirmed, completion event emitted

Failure handling reverts exactly one step and keeps the selection:
    approval refused or reverted  → SELECT
    burn refused or reverted      → APPROVING
Only ``reset`` (from SUCCESS) clears the selection. While idle in APPROVING
a new ``select`` replaces it and drops back to SELECT, so a burn that
can no longer succeed never strands the controller.

One transaction may be in flight at a time. Receipts whose reference
does not match the in-flight transaction are ignored, which covers
duplicate deliveries and late confirmations for abandoned attempts.
The completion event therefore fires at most once per burn.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, List, Optional, Union

from blackhole.errors import (
    BlackholeError,
    BurnValidationError,
    ConfirmationError,
    ControllerBusyError,
    GatewayError,
    SubmissionError,
    TransitionError,
)
from blackhole.ledger.gateway import LedgerGateway
from blackhole.models.burn import (
    BURN_TRANSITIONS,
    BurnCompletion,
    BurnStep,
    PendingSubmission,
    Receipt,
    SubmissionKind,
    TokenInfo,
    format_amount,
)
from blackhole.persistence.event_log import EventKind, EventLog
from blackhole.policy.resolver import BurnPolicy

logger = logging.getLogger(__name__)

CompletionListener = Callable[[BurnCompletion], None]


class BurnTransactionController:
    """State machine for a single burn attempt.

    Usage:
        controller = BurnTransactionController(gateway, policy)
        controller.on_completion(history_appender)
        controller.select("DEMO", "10.5")
        if controller.needs_approval():
            controller.approve()
            # ... approval receipt arrives via the gateway ...
        controller.burn()
        # ... burn receipt arrives, completion event fires ...
        controller.reset()
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        policy: BurnPolicy,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self._gateway = gateway
        self._policy = policy
        self._event_log = event_log
        self._step = BurnStep.SELECT
        self._token: Optional[TokenInfo] = None
        self._amount: Optional[Decimal] = None
        self._pending: Optional[PendingSubmission] = None
        self._abandoned: set[str] = set()
        self._completion: Optional[BurnCompletion] = None
        self._last_error: Optional[BlackholeError] = None
        self._listeners: List[CompletionListener] = []
        gateway.add_receipt_listener(self.handle_receipt)

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def step(self) -> BurnStep:
        return self._step

    @property
    def token(self) -> Optional[TokenInfo]:
        return self._token

    @property
    def amount(self) -> Optional[Decimal]:
        return self._amount

    @property
    def pending(self) -> Optional[PendingSubmission]:
        return self._pending

    @property
    def is_busy(self) -> bool:
        return self._pending is not None

    @property
    def completion(self) -> Optional[BurnCompletion]:
        return self._completion

    @property
    def last_error(self) -> Optional[BlackholeError]:
        """Most recent failure of this attempt, cleared on the next success."""
        return self._last_error

    def on_completion(self, listener: CompletionListener) -> None:
        """Register a callback for the burn completion event."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Selection and validation
    # ------------------------------------------------------------------

    def select(self, token: Union[TokenInfo, str], amount: Union[Decimal, str]) -> None:
        """Choose the token and amount to burn.

        Allowed in SELECT, and in APPROVING while nothing is in flight
        (drops back to SELECT). A rejected selection leaves state as is.
        """
        if self.is_busy or self._step not in (BurnStep.SELECT, BurnStep.APPROVING):
            raise TransitionError(
                f"Selection can only change while idle in {BurnStep.SELECT.value} "
                f"or {BurnStep.APPROVING.value}, controller is in {self._step.value}"
            )
        if isinstance(token, str):
            try:
                token = self._policy.token(token)
            except ValueError as exc:
                raise BurnValidationError(str(exc)) from exc
        parsed = _parse_amount(amount)
        if self._step == BurnStep.APPROVING:
            self._transition(BurnStep.SELECT)
        self._token = token
        self._amount = parsed
        self._last_error = None
        self._record(EventKind.SELECTION_MADE, {
            "token": token.symbol,
            "amount": format_amount(self._amount),
        })

    def validate(self) -> list[str]:
        """Check the preconditions for leaving SELECT. Empty list = OK."""
        errors: list[str] = []
        if self._token is None:
            errors.append("No token selected")
            return errors
        if self._amount is None:
            errors.append("No amount entered")
            return errors
        if self._amount <= Decimal("0"):
            errors.append(f"Amount must be positive, got {self._amount}")
            return errors
        try:
            self._token.to_base_units(self._amount)
        except ValueError as exc:
            errors.append(str(exc))
            return errors
        balance = self._gateway.read_balance(self._gateway.account, self._token)
        if self._amount > balance:
            errors.append(
                f"Insufficient balance: {format_amount(self._amount)} "
                f"{self._token.symbol} requested, {format_amount(balance)} available"
            )
        return errors

    def needs_approval(self) -> bool:
        """True if the current allowance does not cover the selected amount."""
        self._require_selection()
        allowance = self._gateway.read_allowance(
            self._gateway.account, self._policy.spender(), self._token,
        )
        return allowance < self._amount

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------

    def approve(self) -> PendingSubmission:
        """Submit an approval for exactly the selected amount.

        Transitions: SELECT → APPROVING (or re-approve while APPROVING)
        """
        self._require_idle()
        if self._step not in (BurnStep.SELECT, BurnStep.APPROVING):
            raise TransitionError(f"Cannot approve from {self._step.value}")
        self._require_valid()
        if not self.needs_approval():
            raise BurnValidationError(
                f"Allowance already covers {format_amount(self._amount)} {self._token.symbol}"
            )

        try:
            tx_ref = self._gateway.submit_approve(
                self._token, self._policy.spender(), self._amount,
            )
        except (SubmissionError, GatewayError) as exc:
            self._fail_submission(SubmissionKind.APPROVE, exc, BurnStep.SELECT)
            raise

        self._pending = self._pending_for(tx_ref, SubmissionKind.APPROVE)
        if self._step != BurnStep.APPROVING:
            self._transition(BurnStep.APPROVING)
        self._record(EventKind.APPROVAL_SUBMITTED, self._tx_payload(tx_ref))
        return self._pending

    def burn(self) -> PendingSubmission:
        """Submit the transfer to the burn sink.

        Rejected if the allowance does not cover the amount, so approval
        cannot be skipped.

        Transitions: SELECT → BURNING, APPROVING → BURNING
        """
        self._require_idle()
        if self._step not in (BurnStep.SELECT, BurnStep.APPROVING):
            raise TransitionError(f"Cannot burn from {self._step.value}")
        self._require_valid()
        if self.needs_approval():
            raise BurnValidationError(
                f"Approval required before burning {format_amount(self._amount)} "
                f"{self._token.symbol}"
            )

        try:
            tx_ref = self._gateway.submit_transfer(
                self._token, self._policy.burn_sink(), self._amount,
            )
        except (SubmissionError, GatewayError) as exc:
            self._fail_submission(SubmissionKind.TRANSFER, exc, BurnStep.APPROVING)
            raise

        self._pending = self._pending_for(tx_ref, SubmissionKind.TRANSFER)
        self._transition(BurnStep.BURNING)
        self._record(EventKind.BURN_SUBMITTED, self._tx_payload(tx_ref))
        return self._pending

    # ------------------------------------------------------------------
    # Confirmations
    # ------------------------------------------------------------------

    def handle_receipt(self, receipt: Receipt) -> Optional[BurnCompletion]:
        """Consume a confirmation notification.

        Returns the completion event when a burn is confirmed, else None.
        Receipts for anything other than the in-flight transaction are
        no-ops.
        """
        pending = self._pending
        if pending is None or receipt.tx_ref.lower() != pending.tx_ref.lower():
            logger.info("Ignoring receipt for %s: not in flight", receipt.tx_ref)
            self._record(EventKind.LATE_CONFIRMATION_IGNORED, {
                "tx_ref": receipt.tx_ref,
                "status": receipt.status.value,
                "abandoned": receipt.tx_ref.lower() in self._abandoned,
            })
            return None

        self._pending = None

        if pending.kind == SubmissionKind.APPROVE:
            if receipt.confirmed:
                self._last_error = None
                self._record(EventKind.APPROVAL_CONFIRMED, self._tx_payload(receipt.tx_ref))
            else:
                self._last_error = ConfirmationError(receipt.tx_ref, receipt.reason)
                self._transition(BurnStep.SELECT)
                self._record(EventKind.APPROVAL_FAILED, {
                    **self._tx_payload(receipt.tx_ref), "reason": receipt.reason,
                })
            return None

        if not receipt.confirmed:
            self._last_error = ConfirmationError(receipt.tx_ref, receipt.reason)
            self._transition(BurnStep.APPROVING)
            self._record(EventKind.BURN_FAILED, {
                **self._tx_payload(receipt.tx_ref), "reason": receipt.reason,
            })
            return None

        completion = BurnCompletion(
            tx_ref=receipt.tx_ref,
            amount=pending.amount,
            token=pending.token,
            timestamp=receipt.timestamp,
            block_number=receipt.block_number,
        )
        self._completion = completion
        self._last_error = None
        self._transition(BurnStep.SUCCESS)
        self._record(EventKind.BURN_CONFIRMED, {
            **self._tx_payload(receipt.tx_ref), "block_number": receipt.block_number,
        })
        logger.info(
            "Burn confirmed: %s %s (%s)",
            format_amount(completion.amount), completion.token.symbol, completion.tx_ref,
        )
        for listener in list(self._listeners):
            listener(completion)
        return completion

    # ------------------------------------------------------------------
    # Abandon and reset
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Abandon the in-flight submission.

        The ledger may still mine it. A late receipt is ignored because
        it no longer matches the in-flight reference.

        Transitions: APPROVING → SELECT, BURNING → APPROVING
        """
        if self._pending is None:
            raise TransitionError("No submission in flight to cancel")
        pending = self._pending
        self._pending = None
        self._abandoned.add(pending.tx_ref.lower())
        self._last_error = SubmissionError(f"Submission {pending.tx_ref} abandoned")
        if pending.kind == SubmissionKind.APPROVE:
            self._transition(BurnStep.SELECT)
        else:
            self._transition(BurnStep.APPROVING)
        self._record(EventKind.SUBMISSION_ABANDONED, {
            "tx_ref": pending.tx_ref, "kind": pending.kind.value,
        })

    def reset(self) -> None:
        """Clear the selection after a successful burn.

        Transitions: SUCCESS → SELECT
        """
        if self._step != BurnStep.SUCCESS:
            raise TransitionError(
                f"Reset is only allowed from {BurnStep.SUCCESS.value}, "
                f"controller is in {self._step.value}"
            )
        self._transition(BurnStep.SELECT)
        self._token = None
        self._amount = None
        self._completion = None
        self._last_error = None
        self._abandoned.clear()
        self._record(EventKind.SELECTION_RESET, {})

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(self, target: BurnStep) -> None:
        allowed = BURN_TRANSITIONS.get(self._step, frozenset())
        if target not in allowed:
            raise TransitionError(
                f"Invalid burn transition: {self._step.value} → {target.value}. "
                f"Allowed: {', '.join(sorted(s.value for s in allowed))}"
            )
        logger.debug("Controller %s → %s", self._step.value, target.value)
        self._step = target

    def _require_idle(self) -> None:
        if self._pending is not None:
            raise ControllerBusyError(
                f"Transaction {self._pending.tx_ref} is still awaiting confirmation"
            )

    def _require_selection(self) -> None:
        if self._token is None or self._amount is None:
            raise BurnValidationError("No token or amount selected")

    def _require_valid(self) -> None:
        errors = self.validate()
        if errors:
            raise BurnValidationError("; ".join(errors))

    def _fail_submission(
        self,
        kind: SubmissionKind,
        exc: BlackholeError,
        fallback: BurnStep,
    ) -> None:
        self._last_error = exc
        logger.warning("%s submission failed: %s", kind.value, exc)
        if self._step != fallback:
            self._transition(fallback)
        failed = EventKind.APPROVAL_FAILED if kind == SubmissionKind.APPROVE else EventKind.BURN_FAILED
        self._record(failed, {
            "token": self._token.symbol,
            "amount": format_amount(self._amount),
            "reason": str(exc),
        })

    def _pending_for(self, tx_ref: str, kind: SubmissionKind) -> PendingSubmission:
        return PendingSubmission(
            tx_ref=tx_ref,
            kind=kind,
            token=self._token,
            amount=self._amount,
            submitted_utc=datetime.now(timezone.utc),
        )

    def _tx_payload(self, tx_ref: str) -> dict[str, Any]:
        return {
            "tx_ref": tx_ref,
            "token": self._token.symbol if self._token else None,
            "amount": format_amount(self._amount) if self._amount is not None else None,
        }

    def _record(self, kind: EventKind, payload: dict[str, Any]) -> None:
        if self._event_log is not None:
            self._event_log.record(kind, self._gateway.account, payload)


def _parse_amount(amount: Union[Decimal, str]) -> Decimal:
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount).strip())
    except InvalidOperation as exc:
        raise BurnValidationError(f"Invalid amount: {amount!r}") from exc
    if not value.is_finite():
        raise BurnValidationError(f"Invalid amount: {amount!r}")
    if value <= Decimal("0"):
        raise BurnValidationError(f"Amount must be positive, got {amount}")
    return value
