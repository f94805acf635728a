"""Tests for burn models — canonical amounts, timestamps, and the step map."""

from datetime import datetime, timezone
from decimal import Decimal

from blackhole.models.burn import (
    BURN_TRANSITIONS,
    BurnCompletion,
    BurnStep,
    TokenInfo,
    format_amount,
    from_epoch_ms,
    to_epoch_ms,
)


DEMO = TokenInfo(symbol="DEMO", decimals=18, address="0x" + "a" * 40)


def _now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)


class TestCanonicalForms:
    def test_format_amount(self) -> None:
        assert format_amount(Decimal("10.50")) == "10.5"
        assert format_amount(Decimal("100")) == "100"
        assert format_amount(Decimal("1E+2")) == "100"
        assert format_amount(Decimal("0.000001")) == "0.000001"

    def test_epoch_ms_truncates_microseconds(self) -> None:
        ms = to_epoch_ms(_now())
        assert ms % 1000 == 123
        assert from_epoch_ms(ms) == _now().replace(microsecond=123000)

    def test_naive_timestamps_are_utc(self) -> None:
        naive = _now().replace(tzinfo=None)
        assert to_epoch_ms(naive) == to_epoch_ms(_now())


class TestCompletion:
    def test_event_shape(self) -> None:
        completion = BurnCompletion(
            tx_ref="0x01", amount=Decimal("2.50"), token=DEMO, timestamp=_now(), block_number=7,
        )
        assert completion.as_event() == {"txRef": "0x01", "amount": "2.5", "token": "DEMO"}
        record = completion.to_record()
        assert record.tx_ref == "0x01"
        assert record.timestamp == _now()


class TestStepMap:
    def test_every_step_has_an_exit(self) -> None:
        for step in BurnStep:
            assert BURN_TRANSITIONS[step]

    def test_failure_edges(self) -> None:
        assert BurnStep.SELECT in BURN_TRANSITIONS[BurnStep.APPROVING]
        assert BurnStep.APPROVING in BURN_TRANSITIONS[BurnStep.BURNING]
        assert BurnStep.SELECT not in BURN_TRANSITIONS[BurnStep.BURNING]
        assert BURN_TRANSITIONS[BurnStep.SUCCESS] == frozenset({BurnStep.SELECT})
