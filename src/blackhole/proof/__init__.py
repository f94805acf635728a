"""Burn proof generation and verification."""

from blackhole.proof.engine import ProofEngine, fingerprint

__all__ = ["ProofEngine", "fingerprint"]
