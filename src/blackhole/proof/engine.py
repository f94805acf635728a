"""Proof engine — burn fingerprints, verification, and certificates.

Fingerprint:
  proof_hash = "0x" + SHA-256(canonical JSON of
      {txRef, amount, token, timestamp, blockNumber, burnerAddress})

Canonical form: sorted keys, lower-cased hex identifiers, amount as a
plain decimal string without trailing zeros, timestamp as integer
milliseconds. The same burn always produces the same fingerprint, and
changing any single field changes it.

Verification takes a bare transaction reference, checks its format
before touching the ledger, then rebuilds the proof from what the
ledger reports. A proof rebuilt this way carries the same fingerprint
as a certificate exported earlier from the local history, so a third
party can check a certificate without access to the session.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from blackhole.errors import InvalidReferenceError, ReferenceNotFoundError
from blackhole.ledger.gateway import LedgerGateway
from blackhole.models.burn import BurnRecord, format_amount, from_epoch_ms, to_epoch_ms
from blackhole.models.proof import BurnProof, ProofContext
from blackhole.policy.resolver import BurnPolicy
from blackhole.reputation.engine import ReputationEngine


def fingerprint(
    tx_ref: str,
    amount: Decimal,
    token_symbol: str,
    timestamp_ms: int,
    context: ProofContext,
) -> str:
    """Deterministic SHA-256 fingerprint of a burn."""
    canonical = json.dumps(
        {
            "txRef": tx_ref.lower(),
            "amount": format_amount(amount),
            "token": token_symbol,
            "timestamp": timestamp_ms,
            "blockNumber": context.block_number,
            "burnerAddress": context.burner_address.lower(),
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return "0x" + hashlib.sha256(canonical).hexdigest()


class ProofEngine:
    """Builds, verifies, and exports burn proofs.

    Usage:
        engine = ProofEngine(policy, gateway)
        proof = engine.proof_for(record)
        document = engine.export_certificate(proof)
        same = engine.verify(record.tx_ref)
        assert same.proof_hash == document["proof"]["proofHash"]
    """

    def __init__(
        self,
        policy: BurnPolicy,
        gateway: LedgerGateway,
        reputation: Optional[ReputationEngine] = None,
    ) -> None:
        self._policy = policy
        self._gateway = gateway
        self._reputation = reputation or ReputationEngine(policy)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    @staticmethod
    def build_proof(record: BurnRecord, context: ProofContext) -> BurnProof:
        """Proof for a locally recorded burn. Always verified."""
        return BurnProof(
            tx_ref=record.tx_ref,
            amount=record.amount,
            token_symbol=record.token.symbol,
            timestamp=record.timestamp,
            block_number=context.block_number,
            burner_address=context.burner_address,
            proof_hash=fingerprint(
                record.tx_ref,
                record.amount,
                record.token.symbol,
                record.timestamp_ms,
                context,
            ),
            verified=True,
        )

    def proof_for(self, record: BurnRecord) -> BurnProof:
        """Proof for a history record, with context read from the ledger."""
        lookup = self._gateway.lookup_transaction(record.tx_ref)
        if lookup is None:
            raise ReferenceNotFoundError(f"Transaction not found: {record.tx_ref}")
        context = ProofContext(
            block_number=lookup.block_number,
            burner_address=lookup.sender,
        )
        return self.build_proof(record, context)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def validate_reference(self, reference: str) -> str:
        """Return the trimmed reference, or raise InvalidReferenceError."""
        candidate = (reference or "").strip()
        if not self._policy.is_well_formed_reference(candidate):
            raise InvalidReferenceError(
                f"Invalid transaction reference format: {reference!r}"
            )
        return candidate

    def verify(self, reference: str) -> BurnProof:
        """Rebuild and check the proof for any transaction reference.

        Raises InvalidReferenceError before any lookup if the reference
        is malformed, and ReferenceNotFoundError if the ledger has no
        such transaction. ``verified`` on the result is True only if the
        transaction sent tokens to the burn sink.
        """
        candidate = self.validate_reference(reference)
        lookup = self._gateway.lookup_transaction(candidate)
        if lookup is None:
            raise ReferenceNotFoundError(f"Transaction not found: {candidate}")

        context = ProofContext(
            block_number=lookup.block_number,
            burner_address=lookup.sender,
        )
        burned = (
            lookup.destination is None
            or lookup.destination.lower() == self._policy.burn_sink().lower()
        )
        return BurnProof(
            tx_ref=lookup.tx_ref,
            amount=lookup.amount,
            token_symbol=lookup.token.symbol,
            timestamp=lookup.timestamp,
            block_number=lookup.block_number,
            burner_address=lookup.sender,
            proof_hash=fingerprint(
                lookup.tx_ref,
                lookup.amount,
                lookup.token.symbol,
                to_epoch_ms(lookup.timestamp),
                context,
            ),
            verified=burned,
        )

    # ------------------------------------------------------------------
    # Certificates
    # ------------------------------------------------------------------

    def export_certificate(
        self,
        proof: BurnProof,
        now: Optional[datetime] = None,
    ) -> dict[str, Any]:
        """Portable certificate document for a proof.

        Identical for the same proof apart from ``metadata.generatedAt``.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        return {
            "type": self._policy.certificate_type(),
            "version": self._policy.certificate_version(),
            "proof": {
                "transactionHash": proof.tx_ref,
                "amount": format_amount(proof.amount),
                "token": proof.token_symbol,
                "timestamp": proof.timestamp_ms,
                "blockNumber": proof.block_number,
                "burnerAddress": proof.burner_address,
                "proofHash": proof.proof_hash,
            },
            "metadata": {
                "generatedAt": now.strftime("%Y-%m-%dT%H:%M:%S.")
                + f"{now.microsecond // 1000:03d}Z",
                "reputation": self._reputation.score_contribution(proof.amount),
                "verified": proof.verified,
            },
        }

    def certificate_json(self, proof: BurnProof, now: Optional[datetime] = None) -> str:
        return json.dumps(self.export_certificate(proof, now), indent=2)

    @staticmethod
    def certificate_filename(proof: BurnProof) -> str:
        return f"burn-certificate-{proof.tx_ref[:10]}.json"

    def read_certificate(self, document: Union[str, dict[str, Any]]) -> BurnProof:
        """Parse a certificate back into a proof.

        Raises ValueError if the document is not a certificate this
        engine understands.
        """
        if isinstance(document, str):
            document = json.loads(document)
        if document.get("type") != self._policy.certificate_type():
            raise ValueError(f"Not a burn certificate: type={document.get('type')!r}")
        try:
            body = document["proof"]
            return BurnProof(
                tx_ref=body["transactionHash"],
                amount=Decimal(body["amount"]),
                token_symbol=body["token"],
                timestamp=from_epoch_ms(int(body["timestamp"])),
                block_number=int(body["blockNumber"]),
                burner_address=body["burnerAddress"],
                proof_hash=body["proofHash"],
                verified=bool(document.get("metadata", {}).get("verified", False)),
            )
        except (KeyError, TypeError, InvalidOperation) as exc:
            raise ValueError(f"Malformed burn certificate: {exc}") from exc

    def verify_certificate(self, document: Union[str, dict[str, Any]]) -> bool:
        """Recompute a certificate's fingerprint from its own fields."""
        proof = self.read_certificate(document)
        expected = fingerprint(
            proof.tx_ref,
            proof.amount,
            proof.token_symbol,
            proof.timestamp_ms,
            proof.context,
        )
        return expected == proof.proof_hash
