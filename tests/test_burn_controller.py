"""Tests for the burn transaction controller — proves the step machine fails closed."""

import pytest
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

from blackhole.engine.controller import BurnTransactionController
from blackhole.errors import (
    BurnValidationError,
    ConfirmationError,
    ControllerBusyError,
    GatewayError,
    SubmissionError,
    TransitionError,
)
from blackhole.ledger.gateway import InMemoryLedgerGateway
from blackhole.models.burn import BurnStep, Receipt, ReceiptStatus, SubmissionKind
from blackhole.persistence.event_log import EventKind, EventLog
from blackhole.policy.resolver import BurnPolicy


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"
ACCOUNT = "0x" + "1" * 40


def _now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def policy() -> BurnPolicy:
    return BurnPolicy.from_config_dir(CONFIG_DIR)


@pytest.fixture
def gateway(policy: BurnPolicy) -> InMemoryLedgerGateway:
    gw = InMemoryLedgerGateway(ACCOUNT, policy.tokens())
    gw.mint(ACCOUNT, policy.token("DEMO"), Decimal("50"))
    return gw


@pytest.fixture
def event_log() -> EventLog:
    return EventLog()


@pytest.fixture
def controller(
    gateway: InMemoryLedgerGateway, policy: BurnPolicy, event_log: EventLog,
) -> BurnTransactionController:
    return BurnTransactionController(gateway, policy, event_log=event_log)


@pytest.fixture
def completions(controller: BurnTransactionController) -> list:
    received: list = []
    controller.on_completion(received.append)
    return received


def _approve_and_confirm(
    controller: BurnTransactionController, gateway: InMemoryLedgerGateway,
) -> None:
    pending = controller.approve()
    gateway.confirm(pending.tx_ref, now=_now())


class TestHappyPath:
    def test_full_burn_with_approval(
        self,
        controller: BurnTransactionController,
        gateway: InMemoryLedgerGateway,
        completions: list,
    ) -> None:
        controller.select("DEMO", "10.5")
        assert controller.needs_approval()

        approval = controller.approve()
        assert controller.step == BurnStep.APPROVING
        assert controller.is_busy
        assert approval.kind == SubmissionKind.APPROVE

        gateway.confirm(approval.tx_ref, now=_now())
        assert controller.step == BurnStep.APPROVING
        assert not controller.is_busy
        assert not controller.needs_approval()

        burn = controller.burn()
        assert controller.step == BurnStep.BURNING
        gateway.confirm(burn.tx_ref, now=_now())

        assert controller.step == BurnStep.SUCCESS
        assert len(completions) == 1
        assert completions[0].as_event() == {
            "txRef": burn.tx_ref, "amount": "10.5", "token": "DEMO",
        }
        assert completions[0].timestamp == _now()
        assert gateway.read_balance(ACCOUNT, controller.token) == Decimal("39.5")

    def test_burn_directly_when_allowance_covers(
        self,
        controller: BurnTransactionController,
        gateway: InMemoryLedgerGateway,
        completions: list,
    ) -> None:
        controller.select("DEMO", "5")
        _approve_and_confirm(controller, gateway)
        gateway.confirm(controller.burn().tx_ref, now=_now())
        controller.reset()

        controller.select("DEMO", "5")
        assert not controller.needs_approval()
        controller.burn()
        assert controller.step == BurnStep.BURNING
        gateway.settle(now=_now())
        assert controller.step == BurnStep.SUCCESS
        assert len(completions) == 2

    def test_approval_is_for_exact_amount(
        self, controller: BurnTransactionController, gateway: InMemoryLedgerGateway, policy: BurnPolicy,
    ) -> None:
        controller.select("DEMO", "7.25")
        _approve_and_confirm(controller, gateway)
        allowance = gateway.read_allowance(ACCOUNT, policy.spender(), policy.token("DEMO"))
        assert allowance == Decimal("7.25")

    def test_reset_clears_selection(
        self, controller: BurnTransactionController, gateway: InMemoryLedgerGateway,
    ) -> None:
        controller.select("DEMO", "1")
        _approve_and_confirm(controller, gateway)
        gateway.confirm(controller.burn().tx_ref, now=_now())
        controller.reset()
        assert controller.step == BurnStep.SELECT
        assert controller.token is None
        assert controller.amount is None
        assert controller.completion is None


class TestValidation:
    def test_burn_without_approval_is_rejected(
        self, controller: BurnTransactionController, gateway: InMemoryLedgerGateway,
    ) -> None:
        controller.select("DEMO", "10")
        with pytest.raises(BurnValidationError, match="Approval required"):
            controller.burn()
        assert controller.step == BurnStep.SELECT
        assert gateway.pending_refs() == []

    def test_amount_above_balance(self, controller: BurnTransactionController) -> None:
        controller.select("DEMO", "50.01")
        errors = controller.validate()
        assert len(errors) == 1
        assert "Insufficient balance" in errors[0]
        with pytest.raises(BurnValidationError):
            controller.approve()
        assert controller.step == BurnStep.SELECT

    def test_excess_precision(
        self, controller: BurnTransactionController, gateway: InMemoryLedgerGateway, policy: BurnPolicy,
    ) -> None:
        gateway.mint(ACCOUNT, policy.token("USDT"), Decimal("10"))
        controller.select("USDT", "1.0000001")
        assert any("6 decimals" in e for e in controller.validate())

    @pytest.mark.parametrize("amount", ["0", "-1", "abc", "NaN", "Infinity", ""])
    def test_bad_amounts(self, controller: BurnTransactionController, amount: str) -> None:
        with pytest.raises(BurnValidationError):
            controller.select("DEMO", amount)

    def test_unknown_token(self, controller: BurnTransactionController) -> None:
        with pytest.raises(BurnValidationError, match="Unsupported token"):
            controller.select("DOGE", "1")

    def test_nothing_selected(self, controller: BurnTransactionController) -> None:
        assert controller.validate() == ["No token selected"]
        with pytest.raises(BurnValidationError):
            controller.needs_approval()

    def test_approve_when_not_needed(
        self, controller: BurnTransactionController, gateway: InMemoryLedgerGateway,
    ) -> None:
        controller.select("DEMO", "2")
        _approve_and_confirm(controller, gateway)
        with pytest.raises(BurnValidationError, match="already covers"):
            controller.approve()


class TestFailureRecovery:
    def test_refused_approval_returns_to_select(
        self, controller: BurnTransactionController, gateway: InMemoryLedgerGateway, event_log: EventLog,
    ) -> None:
        controller.select("DEMO", "10")
        gateway.reject_next_submission()
        with pytest.raises(SubmissionError):
            controller.approve()
        assert controller.step == BurnStep.SELECT
        assert controller.amount == Decimal("10")
        assert isinstance(controller.last_error, SubmissionError)
        assert event_log.events(EventKind.APPROVAL_FAILED)

    def test_reverted_approval_returns_to_select(
        self, controller: BurnTransactionController, gateway: InMemoryLedgerGateway,
    ) -> None:
        controller.select("DEMO", "10")
        pending = controller.approve()
        gateway.revert(pending.tx_ref, now=_now())
        assert controller.step == BurnStep.SELECT
        assert controller.token.symbol == "DEMO"
        assert isinstance(controller.last_error, ConfirmationError)

    def test_refused_burn_returns_to_approving(
        self, controller: BurnTransactionController, gateway: InMemoryLedgerGateway, completions: list,
    ) -> None:
        controller.select("DEMO", "10")
        _approve_and_confirm(controller, gateway)
        gateway.reject_next_submission()
        with pytest.raises(SubmissionError):
            controller.burn()
        assert controller.step == BurnStep.APPROVING
        assert controller.amount == Decimal("10")
        assert completions == []

    def test_reverted_burn_returns_to_approving(
        self, controller: BurnTransactionController, gateway: InMemoryLedgerGateway, completions: list,
    ) -> None:
        controller.select("DEMO", "10")
        _approve_and_confirm(controller, gateway)
        pending = controller.burn()
        gateway.revert(pending.tx_ref, reason="out of gas", now=_now())
        assert controller.step == BurnStep.APPROVING
        assert controller.amount == Decimal("10")
        assert "out of gas" in str(controller.last_error)
        assert completions == []

        # Retry from the recovered step succeeds
        gateway.confirm(controller.burn().tx_ref, now=_now())
        assert controller.step == BurnStep.SUCCESS
        assert len(completions) == 1

    def test_burn_reverted_for_balance_at_mining_time(
        self, controller: BurnTransactionController, gateway: InMemoryLedgerGateway, completions: list,
    ) -> None:
        controller.select("DEMO", "50")
        _approve_and_confirm(controller, gateway)
        pending = controller.burn()
        # Balance drained elsewhere before the transfer is mined
        gateway.mint(ACCOUNT, controller.token, Decimal("-49"))
        gateway.confirm(pending.tx_ref, now=_now())
        assert controller.step == BurnStep.APPROVING
        assert completions == []

    def test_reselect_after_burn_reverted_for_balance(
        self, controller: BurnTransactionController, gateway: InMemoryLedgerGateway, completions: list,
    ) -> None:
        controller.select("DEMO", "50")
        _approve_and_confirm(controller, gateway)
        pending = controller.burn()
        gateway.mint(ACCOUNT, controller.token, Decimal("-49"))
        gateway.confirm(pending.tx_ref, now=_now())
        assert controller.step == BurnStep.APPROVING

        controller.select("DEMO", "1")
        assert controller.step == BurnStep.SELECT
        assert controller.amount == Decimal("1")
        assert controller.last_error is None
        assert controller.validate() == []
        gateway.confirm(controller.burn().tx_ref, now=_now())
        assert controller.step == BurnStep.SUCCESS
        assert len(completions) == 1

    def test_bad_reselect_keeps_approving(
        self, controller: BurnTransactionController, gateway: InMemoryLedgerGateway,
    ) -> None:
        controller.select("DEMO", "10")
        _approve_and_confirm(controller, gateway)
        with pytest.raises(BurnValidationError):
            controller.select("NOPE", "1")
        assert controller.step == BurnStep.APPROVING
        assert controller.amount == Decimal("10")

    def test_disconnected_wallet_does_not_advance(
        self, controller: BurnTransactionController, gateway: InMemoryLedgerGateway,
    ) -> None:
        controller.select("DEMO", "10")
        gateway.disconnect()
        with pytest.raises(GatewayError, match="disconnected"):
            controller.approve()
        assert controller.step == BurnStep.SELECT
        assert not controller.is_busy
        gateway.connect()
        controller.approve()
        assert controller.step == BurnStep.APPROVING


class TestConcurrencyGuards:
    def test_busy_controller_rejects_resubmission(
        self, controller: BurnTransactionController, gateway: InMemoryLedgerGateway,
    ) -> None:
        controller.select("DEMO", "10")
        controller.approve()
        with pytest.raises(ControllerBusyError):
            controller.approve()
        with pytest.raises(ControllerBusyError):
            controller.burn()
        assert len(gateway.pending_refs()) == 1

    def test_selection_locked_outside_select(
        self, controller: BurnTransactionController,
    ) -> None:
        controller.select("DEMO", "10")
        controller.approve()
        with pytest.raises(TransitionError):
            controller.select("DEMO", "1")

    def test_duplicate_receipt_fires_completion_once(
        self, controller: BurnTransactionController, gateway: InMemoryLedgerGateway, completions: list,
    ) -> None:
        controller.select("DEMO", "10")
        _approve_and_confirm(controller, gateway)
        pending = controller.burn()
        receipt = gateway.confirm(pending.tx_ref, now=_now())
        assert controller.handle_receipt(receipt) is None
        assert len(completions) == 1
        assert controller.step == BurnStep.SUCCESS

    def test_cancelled_approval_ignores_late_confirmation(
        self, controller: BurnTransactionController, gateway: InMemoryLedgerGateway, event_log: EventLog,
    ) -> None:
        controller.select("DEMO", "10")
        pending = controller.approve()
        controller.cancel()
        assert controller.step == BurnStep.SELECT
        gateway.confirm(pending.tx_ref, now=_now())
        assert controller.step == BurnStep.SELECT
        ignored = event_log.events(EventKind.LATE_CONFIRMATION_IGNORED)
        assert len(ignored) == 1
        assert ignored[0].payload["abandoned"] is True

    def test_cancelled_burn_late_confirmation_is_noop(
        self, controller: BurnTransactionController, gateway: InMemoryLedgerGateway, completions: list,
    ) -> None:
        controller.select("DEMO", "10")
        _approve_and_confirm(controller, gateway)
        abandoned = controller.burn()
        controller.cancel()
        assert controller.step == BurnStep.APPROVING

        retry = controller.burn()
        gateway.confirm(abandoned.tx_ref, now=_now())
        assert controller.step == BurnStep.BURNING
        assert completions == []

        gateway.confirm(retry.tx_ref, now=_now())
        assert controller.step == BurnStep.SUCCESS
        assert [c.tx_ref for c in completions] == [retry.tx_ref]

    def test_abandoned_reference_matched_case_insensitively(
        self, controller: BurnTransactionController, event_log: EventLog,
    ) -> None:
        controller.select("DEMO", "10")
        pending = controller.approve()
        controller.cancel()
        upper_ref = "0x" + pending.tx_ref[2:].upper()
        controller.handle_receipt(
            Receipt(tx_ref=upper_ref, status=ReceiptStatus.CONFIRMED, timestamp=_now()),
        )
        ignored = event_log.events(EventKind.LATE_CONFIRMATION_IGNORED)
        assert ignored[-1].payload["abandoned"] is True

    def test_reset_forgets_abandoned_references(
        self, controller: BurnTransactionController, gateway: InMemoryLedgerGateway, event_log: EventLog,
    ) -> None:
        controller.select("DEMO", "10")
        abandoned = controller.approve()
        controller.cancel()
        _approve_and_confirm(controller, gateway)
        gateway.confirm(controller.burn().tx_ref, now=_now())
        controller.reset()
        controller.handle_receipt(
            Receipt(tx_ref=abandoned.tx_ref, status=ReceiptStatus.CONFIRMED, timestamp=_now()),
        )
        ignored = event_log.events(EventKind.LATE_CONFIRMATION_IGNORED)
        assert ignored[-1].payload["abandoned"] is False

    def test_cancel_with_nothing_in_flight(self, controller: BurnTransactionController) -> None:
        with pytest.raises(TransitionError):
            controller.cancel()


class TestTransitions:
    def test_reset_only_from_success(self, controller: BurnTransactionController) -> None:
        with pytest.raises(TransitionError, match="only allowed"):
            controller.reset()
        controller.select("DEMO", "1")
        controller.approve()
        with pytest.raises(TransitionError):
            controller.reset()

    def test_no_submission_from_success(
        self, controller: BurnTransactionController, gateway: InMemoryLedgerGateway,
    ) -> None:
        controller.select("DEMO", "1")
        _approve_and_confirm(controller, gateway)
        gateway.confirm(controller.burn().tx_ref, now=_now())
        with pytest.raises(TransitionError):
            controller.burn()
        with pytest.raises(TransitionError):
            controller.approve()

    def test_event_trail(
        self, controller: BurnTransactionController, gateway: InMemoryLedgerGateway, event_log: EventLog,
    ) -> None:
        controller.select("DEMO", "1")
        _approve_and_confirm(controller, gateway)
        gateway.confirm(controller.burn().tx_ref, now=_now())
        controller.reset()
        assert [e.event_kind for e in event_log.events()] == [
            EventKind.SELECTION_MADE,
            EventKind.APPROVAL_SUBMITTED,
            EventKind.APPROVAL_CONFIRMED,
            EventKind.BURN_SUBMITTED,
            EventKind.BURN_CONFIRMED,
            EventKind.SELECTION_RESET,
        ]
        assert all(e.verify_hash() for e in event_log.events())
