"""Ledger gateways — the boundary between the engine and the chain.

The live web3 gateway lives in ``blackhole.ledger.web3_gateway`` and is
imported only where a chain connection is configured.
"""

from blackhole.ledger.gateway import InMemoryLedgerGateway, LedgerGateway, ReceiptListener

__all__ = ["InMemoryLedgerGateway", "LedgerGateway", "ReceiptListener"]
