"""Error taxonomy for the burn engine.

Every error is local to one burn attempt or one verification request.
Nothing here is fatal to session state: the history is never touched
by a failed attempt.

    BlackholeError
    ├── BurnValidationError     detected locally, never reaches the ledger
    ├── TransitionError         illegal controller transition (fail-closed)
    ├── ControllerBusyError     submission while a transaction is in flight
    ├── SubmissionError         wallet/gateway rejected a submission (retryable)
    ├── ConfirmationError       transaction reverted on the ledger (retryable)
    ├── InvalidReferenceError   malformed transaction reference
    ├── ReferenceNotFoundError  well-formed reference, unknown to the ledger
    └── GatewayError            transport failure inside a gateway
"""

from __future__ import annotations


class BlackholeError(Exception):
    """Base class for all engine errors."""

    retryable: bool = False


class BurnValidationError(BlackholeError, ValueError):
    """Bad selection: no token, non-positive amount, amount above balance."""


class TransitionError(BlackholeError):
    """Raised when a controller state transition is not allowed."""


class ControllerBusyError(BlackholeError):
    """Raised when a submission is attempted while one is still pending."""

    retryable = True


class SubmissionError(BlackholeError):
    """The wallet or gateway refused a submission.

    The controller stays on the step it was on, with the selection intact.
    """

    retryable = True


class ConfirmationError(BlackholeError):
    """A submitted transaction was reverted by the ledger."""

    retryable = True

    def __init__(self, tx_ref: str, reason: str) -> None:
        super().__init__(f"Transaction {tx_ref} reverted: {reason}")
        self.tx_ref = tx_ref
        self.reason = reason


class InvalidReferenceError(BlackholeError, ValueError):
    """Transaction reference does not match the ledger's canonical format."""


class ReferenceNotFoundError(BlackholeError, LookupError):
    """Transaction reference is well-formed but unknown to the ledger."""


class GatewayError(BlackholeError):
    """Transport-level failure talking to the ledger (e.g. wallet disconnected)."""

    retryable = True
