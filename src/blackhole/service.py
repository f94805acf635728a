"""Blackhole service — unified facade over the burn engine.

This is the primary interface for a hosting application. It wires:
- Burn transaction controller (select, approve, burn, cancel, reset)
- Burn history (appended exactly once per confirmed burn)
- Reputation engine (score, tier, achievements, analytics)
- Proof engine (proofs, verification, certificates)
- Audit trail (session event log)

All operations return a ServiceResult. Engine errors are caught here
and reported as ``errors`` plus a stable ``error_code``; nothing is
raised to the caller for an expected failure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from blackhole.engine.controller import BurnTransactionController
from blackhole.errors import (
    BlackholeError,
    BurnValidationError,
    ControllerBusyError,
    GatewayError,
    InvalidReferenceError,
    ReferenceNotFoundError,
    SubmissionError,
    TransitionError,
)
from blackhole.ledger.gateway import LedgerGateway
from blackhole.models.burn import BurnCompletion, BurnRecord, format_amount
from blackhole.models.proof import BurnProof
from blackhole.models.reputation import ReputationSnapshot
from blackhole.persistence.event_log import EventKind
from blackhole.policy.resolver import BurnPolicy
from blackhole.proof.engine import ProofEngine
from blackhole.reputation.engine import ReputationEngine
from blackhole.session import BurnSession, SessionView

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_code: Optional[str] = None
    retryable: bool = False


def _failure(exc: BlackholeError) -> ServiceResult:
    return ServiceResult(
        success=False,
        errors=[str(exc)],
        error_code=_ERROR_CODES.get(type(exc), "error"),
        retryable=exc.retryable,
    )


_ERROR_CODES: dict[type, str] = {
    BurnValidationError: "validation",
    TransitionError: "invalid_transition",
    ControllerBusyError: "busy",
    InvalidReferenceError: "invalid_reference",
    ReferenceNotFoundError: "not_found",
    SubmissionError: "submission_rejected",
    GatewayError: "gateway",
}


class BlackholeService:
    """Burn-to-reputation facade for one session.

    Usage:
        policy = BurnPolicy.default()
        service = BlackholeService(policy, gateway)

        service.select_burn("DEMO", "10.5")
        service.approve()      # only if data["needs_approval"]
        service.burn()
        # ... receipts arrive through the gateway ...
        service.reputation()
        service.export_certificate(tx_ref)
    """

    def __init__(
        self,
        policy: BurnPolicy,
        gateway: LedgerGateway,
        session: Optional[BurnSession] = None,
    ) -> None:
        self._policy = policy
        self._gateway = gateway
        self._session = session or BurnSession.open(gateway.account, policy)
        self._controller = BurnTransactionController(
            gateway, policy, event_log=self._session.event_log,
        )
        self._controller.on_completion(self._record_burn)
        self._reputation = ReputationEngine(policy)
        self._proofs = ProofEngine(policy, gateway, self._reputation)

    @property
    def session(self) -> BurnSession:
        return self._session

    @property
    def controller(self) -> BurnTransactionController:
        return self._controller

    # ------------------------------------------------------------------
    # Burn flow
    # ------------------------------------------------------------------

    def select_burn(self, token_symbol: str, amount: Union[str, Decimal]) -> ServiceResult:
        """Choose token and amount, then report what the next step is."""
        try:
            self._controller.select(token_symbol, amount)
            errors = self._controller.validate()
            if errors:
                return ServiceResult(success=False, errors=errors, error_code="validation")
            needs_approval = self._controller.needs_approval()
        except BlackholeError as exc:
            return _failure(exc)
        return ServiceResult(
            success=True,
            data={
                **self.burn_state(),
                "needs_approval": needs_approval,
                "estimated_reputation": self._reputation.score_contribution(
                    self._controller.amount,
                ),
            },
        )

    def approve(self) -> ServiceResult:
        try:
            pending = self._controller.approve()
        except BlackholeError as exc:
            return _failure(exc)
        return ServiceResult(success=True, data={**self.burn_state(), "tx_ref": pending.tx_ref})

    def burn(self) -> ServiceResult:
        try:
            pending = self._controller.burn()
        except BlackholeError as exc:
            return _failure(exc)
        return ServiceResult(success=True, data={**self.burn_state(), "tx_ref": pending.tx_ref})

    def cancel(self) -> ServiceResult:
        try:
            self._controller.cancel()
        except BlackholeError as exc:
            return _failure(exc)
        return ServiceResult(success=True, data=self.burn_state())

    def reset(self) -> ServiceResult:
        try:
            self._controller.reset()
        except BlackholeError as exc:
            return _failure(exc)
        return ServiceResult(success=True, data=self.burn_state())

    def burn_state(self) -> dict[str, Any]:
        controller = self._controller
        completion = controller.completion
        return {
            "step": controller.step.value,
            "token": controller.token.symbol if controller.token else None,
            "amount": format_amount(controller.amount) if controller.amount is not None else None,
            "pending_tx": controller.pending.tx_ref if controller.pending else None,
            "last_error": str(controller.last_error) if controller.last_error else None,
            "completion": completion.as_event() if completion else None,
        }

    def preview(self, amount: Union[str, Decimal]) -> ServiceResult:
        """Estimated reputation gain for burning ``amount``."""
        try:
            value = Decimal(str(amount))
        except InvalidOperation:
            return ServiceResult(
                success=False, errors=[f"Invalid amount: {amount!r}"], error_code="validation",
            )
        if not value.is_finite() or value <= 0:
            return ServiceResult(
                success=False, errors=["Amount must be positive"], error_code="validation",
            )
        return ServiceResult(
            success=True,
            data={"amount": format_amount(value), "points": self._reputation.score_contribution(value)},
        )

    # ------------------------------------------------------------------
    # History and reputation
    # ------------------------------------------------------------------

    def history(self) -> ServiceResult:
        return ServiceResult(
            success=True,
            data={
                "burns": [
                    {**_record_dict(r), "points": self._reputation.score_contribution(r.amount),
                     "explorer_url": self._policy.explorer_url(r.tx_ref)}
                    for r in self._session.history.all()
                ],
                "capacity": self._session.history.capacity,
            },
        )

    def reputation(self) -> ServiceResult:
        snapshot = self._reputation.snapshot(self._session.history.all())
        return ServiceResult(success=True, data=_snapshot_dict(snapshot))

    def analytics(self, now: Optional[datetime] = None) -> ServiceResult:
        result = self._reputation.analytics(self._session.history.all(), now=now)
        return ServiceResult(
            success=True,
            data={
                "average_points_per_burn": result.average_points_per_burn,
                "average_tokens_per_burn": str(result.average_tokens_per_burn),
                "days_active": result.days_active,
                "token_types": result.token_types,
                "breakdown": [
                    {"token": e.symbol, "amount": format_amount(e.amount), "share_percent": e.share_percent}
                    for e in result.breakdown
                ],
            },
        )

    def set_view(self, view: Union[str, SessionView]) -> ServiceResult:
        try:
            self._session.active_view = SessionView(view)
        except ValueError:
            return ServiceResult(success=False, errors=[f"Unknown view: {view}"], error_code="validation")
        return ServiceResult(success=True, data={"active_view": self._session.active_view.value})

    # ------------------------------------------------------------------
    # Proofs
    # ------------------------------------------------------------------

    def burn_proofs(self) -> ServiceResult:
        """Proofs for every burn in the session history."""
        try:
            proofs = [self._proofs.proof_for(r) for r in self._session.history.all()]
        except BlackholeError as exc:
            return _failure(exc)
        return ServiceResult(success=True, data={"proofs": [_proof_dict(p) for p in proofs]})

    def verify(self, reference: str) -> ServiceResult:
        """Verify an externally supplied transaction reference."""
        try:
            proof = self._proofs.verify(reference)
        except BlackholeError as exc:
            self._session.event_log.record(
                EventKind.VERIFICATION_FAILED,
                self._session.account,
                {"reference": reference, "reason": str(exc)},
            )
            return _failure(exc)
        self._session.event_log.record(
            EventKind.PROOF_VERIFIED,
            self._session.account,
            {"reference": proof.tx_ref, "proof_hash": proof.proof_hash, "verified": proof.verified},
        )
        return ServiceResult(success=True, data=_proof_dict(proof))

    def export_certificate(self, tx_ref: str, now: Optional[datetime] = None) -> ServiceResult:
        """Certificate document for a burn in the session history."""
        record = self._session.history.get(tx_ref)
        if record is None:
            return ServiceResult(
                success=False,
                errors=[f"No burn in history with reference {tx_ref}"],
                error_code="not_found",
            )
        try:
            proof = self._proofs.proof_for(record)
        except BlackholeError as exc:
            return _failure(exc)
        certificate = self._proofs.export_certificate(proof, now=now)
        self._session.event_log.record(
            EventKind.CERTIFICATE_EXPORTED,
            self._session.account,
            {"tx_ref": proof.tx_ref, "proof_hash": proof.proof_hash},
        )
        return ServiceResult(
            success=True,
            data={
                "certificate": certificate,
                "filename": self._proofs.certificate_filename(proof),
            },
        )

    def verify_certificate(self, document: Union[str, dict[str, Any]]) -> ServiceResult:
        """Check that a certificate's fingerprint matches its own fields."""
        try:
            valid = self._proofs.verify_certificate(document)
        except ValueError as exc:
            return ServiceResult(success=False, errors=[str(exc)], error_code="invalid_certificate")
        if not valid:
            return ServiceResult(
                success=False, errors=["Proof hash does not match certificate fields"],
                error_code="fingerprint_mismatch",
            )
        return ServiceResult(success=True, data={"valid": True})

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        snapshot = self._reputation.snapshot(self._session.history.all())
        return {
            "account": self._session.account,
            "active_view": self._session.active_view.value,
            "burn": self.burn_state(),
            "burn_count": snapshot.burn_count,
            "score": snapshot.score,
            "tier": snapshot.tier.name,
            "events": self._session.event_log.count,
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _record_burn(self, completion: BurnCompletion) -> None:
        """Completion listener: the single writer of the burn history."""
        record = completion.to_record()
        evicted = self._session.history.append(record)
        self._session.event_log.record(
            EventKind.BURN_RECORDED,
            self._session.account,
            completion.as_event(),
        )
        if evicted is not None:
            logger.debug("History full, evicted %s", evicted.tx_ref)
            self._session.event_log.record(
                EventKind.HISTORY_EVICTED,
                self._session.account,
                {"tx_ref": evicted.tx_ref},
            )


def _record_dict(record: BurnRecord) -> dict[str, Any]:
    return {
        "tx_ref": record.tx_ref,
        "amount": format_amount(record.amount),
        "token": record.token.symbol,
        "timestamp": record.timestamp_ms,
    }


def _snapshot_dict(snapshot: ReputationSnapshot) -> dict[str, Any]:
    return {
        "score": snapshot.score,
        "total_burned": format_amount(snapshot.total_burned),
        "burn_count": snapshot.burn_count,
        "tier": snapshot.tier.name,
        "next_tier": snapshot.next_tier.name if snapshot.next_tier else None,
        "progress_percent": snapshot.progress_percent,
        "points_to_next_tier": snapshot.points_to_next_tier,
        "achievements": {
            a.achievement_id: a.unlocked for a in snapshot.achievements
        },
    }


def _proof_dict(proof: BurnProof) -> dict[str, Any]:
    return {
        "tx_ref": proof.tx_ref,
        "amount": format_amount(proof.amount),
        "token": proof.token_symbol,
        "timestamp": proof.timestamp_ms,
        "block_number": proof.block_number,
        "burner_address": proof.burner_address,
        "proof_hash": proof.proof_hash,
        "verified": proof.verified,
    }
