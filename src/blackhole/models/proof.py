"""Burn proof model — the verifiable artifact derived from a burn.

A proof is never stored. It is rebuilt on demand from a BurnRecord
plus the block reference and burner identity reported by the ledger.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from blackhole.models.burn import to_epoch_ms


@dataclass(frozen=True)
class ProofContext:
    """Ledger-supplied context folded into the fingerprint."""
    block_number: int
    burner_address: str


@dataclass(frozen=True)
class BurnProof:
    """A burn plus its fingerprint.

    ``verified`` is True for proofs generated from the local history and
    reflects the ledger lookup for independently submitted references.
    """
    tx_ref: str
    amount: Decimal
    token_symbol: str
    timestamp: datetime
    block_number: int
    burner_address: str
    proof_hash: str
    verified: bool = True

    @property
    def timestamp_ms(self) -> int:
        return to_epoch_ms(self.timestamp)

    @property
    def context(self) -> ProofContext:
        return ProofContext(
            block_number=self.block_number,
            burner_address=self.burner_address,
        )
