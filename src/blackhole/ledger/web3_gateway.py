"""Live ledger gateway — ERC-20 approvals and transfers over an Ethereum RPC.

Implements the LedgerGateway contract against a real chain. Transactions
are signed locally with an eth-account key and broadcast raw; no node
side wallet is needed.

Receipts are not pushed by the node. Call ``poll_receipts`` (or
``wait_for_receipt`` for a single reference) from the hosting event loop
to deliver confirmations to listeners.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from eth_account import Account
from web3 import Web3
from web3.exceptions import TimeExhausted, TransactionNotFound, Web3Exception
from web3.logs import DISCARD

from blackhole.errors import GatewayError, SubmissionError
from blackhole.ledger.gateway import ReceiptListener
from blackhole.models.burn import (
    Receipt,
    ReceiptStatus,
    TokenInfo,
    TransactionLookup,
)

logger = logging.getLogger(__name__)


ERC20_ABI: List[Dict[str, Any]] = [
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "approve",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "transfer",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "Transfer",
        "type": "event",
        "anonymous": False,
        "inputs": [
            {"name": "from", "type": "address", "indexed": True},
            {"name": "to", "type": "address", "indexed": True},
            {"name": "value", "type": "uint256", "indexed": False},
        ],
    },
]


class Web3LedgerGateway:
    """ERC-20 gateway backed by web3.py.

    Usage:
        gateway = Web3LedgerGateway(rpc_url, private_key, policy.tokens())
        ref = gateway.submit_transfer(token, policy.burn_sink(), Decimal("1"))
        gateway.poll_receipts()
    """

    def __init__(
        self,
        rpc_url: str,
        private_key: Optional[str],
        tokens: Iterable[TokenInfo],
        chain_id: int = 1,
        w3: Optional[Web3] = None,
    ) -> None:
        self._w3 = w3 or Web3(Web3.HTTPProvider(rpc_url))
        self._acct = Account.from_key(private_key) if private_key else None
        self._chain_id = chain_id
        self._tokens: Dict[str, TokenInfo] = {t.address.lower(): t for t in tokens}
        self._pending: Dict[str, str] = {}
        self._listeners: List[ReceiptListener] = []

    @property
    def account(self) -> str:
        return self._signer().address

    def read_balance(self, account: str, token: TokenInfo) -> Decimal:
        units = self._call(token, "balanceOf", Web3.to_checksum_address(account))
        return token.from_base_units(units)

    def read_allowance(self, account: str, spender: str, token: TokenInfo) -> Decimal:
        units = self._call(
            token,
            "allowance",
            Web3.to_checksum_address(account),
            Web3.to_checksum_address(spender),
        )
        return token.from_base_units(units)

    def submit_approve(self, token: TokenInfo, spender: str, amount: Decimal) -> str:
        return self._send(token, "approve", Web3.to_checksum_address(spender), amount)

    def submit_transfer(self, token: TokenInfo, destination: str, amount: Decimal) -> str:
        return self._send(token, "transfer", Web3.to_checksum_address(destination), amount)

    def lookup_transaction(self, reference: str) -> Optional[TransactionLookup]:
        try:
            tx = self._w3.eth.get_transaction(reference)
            receipt = self._w3.eth.get_transaction_receipt(reference)
        except TransactionNotFound:
            return None
        except (ConnectionError, OSError, Web3Exception) as exc:
            raise GatewayError(f"Lookup failed: {exc}") from exc

        token = self._tokens.get((tx.get("to") or "").lower())
        if token is None:
            logger.info("Transaction %s does not touch a supported token", reference)
            return None

        contract = self._contract(token)
        transfers = contract.events.Transfer().process_receipt(receipt, errors=DISCARD)
        if not transfers:
            return None
        args = transfers[0]["args"]
        block = self._w3.eth.get_block(receipt["blockNumber"])
        return TransactionLookup(
            tx_ref=Web3.to_hex(tx["hash"]),
            block_number=receipt["blockNumber"],
            sender=args["from"],
            amount=token.from_base_units(args["value"]),
            token=token,
            timestamp=datetime.fromtimestamp(block["timestamp"], tz=timezone.utc),
            destination=args["to"],
        )

    def add_receipt_listener(self, listener: ReceiptListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Confirmation delivery
    # ------------------------------------------------------------------

    def poll_receipts(self) -> List[Receipt]:
        """Deliver receipts for every pending transaction that has been mined."""
        delivered: List[Receipt] = []
        for tx_ref in list(self._pending):
            try:
                raw = self._w3.eth.get_transaction_receipt(tx_ref)
            except TransactionNotFound:
                continue
            except (ConnectionError, OSError, Web3Exception) as exc:
                raise GatewayError(f"Receipt poll failed for {tx_ref}: {exc}") from exc
            delivered.append(self._deliver(tx_ref, raw))
        return delivered

    def wait_for_receipt(self, tx_ref: str, timeout: float = 300) -> Receipt:
        """Block until ``tx_ref`` is mined, then deliver its receipt."""
        try:
            raw = self._w3.eth.wait_for_transaction_receipt(tx_ref, timeout=timeout)
        except TimeExhausted as exc:
            raise GatewayError(f"No receipt for {tx_ref} after {timeout}s") from exc
        except (ConnectionError, OSError, Web3Exception) as exc:
            raise GatewayError(f"Receipt wait failed for {tx_ref}: {exc}") from exc
        return self._deliver(tx_ref, raw)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _contract(self, token: TokenInfo) -> Any:
        return self._w3.eth.contract(
            address=Web3.to_checksum_address(token.address),
            abi=ERC20_ABI,
        )

    def _call(self, token: TokenInfo, fn_name: str, *args: Any) -> int:
        try:
            return getattr(self._contract(token).functions, fn_name)(*args).call()
        except (ConnectionError, OSError, Web3Exception) as exc:
            raise GatewayError(f"{fn_name} read failed: {exc}") from exc

    def _send(self, token: TokenInfo, fn_name: str, counterparty: str, amount: Decimal) -> str:
        try:
            units = token.to_base_units(amount)
        except ValueError as exc:
            raise SubmissionError(str(exc)) from exc

        signer = self._signer()
        try:
            nonce = self._w3.eth.get_transaction_count(signer.address)
            tx = getattr(self._contract(token).functions, fn_name)(
                counterparty, units,
            ).build_transaction({
                "from": signer.address,
                "nonce": nonce,
                "chainId": self._chain_id,
            })
            signed = signer.sign_transaction(tx)
            tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
        except (ConnectionError, OSError) as exc:
            raise GatewayError(f"{fn_name} submission failed: {exc}") from exc
        except (ValueError, Web3Exception) as exc:
            # Node-side rejection: insufficient funds, bad nonce, revert on estimate
            raise SubmissionError(str(exc)) from exc

        tx_ref = Web3.to_hex(tx_hash)
        self._pending[tx_ref.lower()] = fn_name
        logger.info("Broadcast %s of %s %s: %s", fn_name, amount, token.symbol, tx_ref)
        return tx_ref

    def _signer(self) -> Any:
        if self._acct is None:
            raise GatewayError("No signing key configured; gateway is read-only")
        return self._acct

    def _deliver(self, tx_ref: str, raw: Any) -> Receipt:
        fn_name = self._pending.pop(tx_ref.lower(), "transaction")
        block = self._w3.eth.get_block(raw["blockNumber"])
        succeeded = raw["status"] == 1
        receipt = Receipt(
            tx_ref=tx_ref,
            status=ReceiptStatus.CONFIRMED if succeeded else ReceiptStatus.REVERTED,
            timestamp=datetime.fromtimestamp(block["timestamp"], tz=timezone.utc),
            block_number=raw["blockNumber"],
            reason="" if succeeded else "execution reverted",
        )
        logger.info("Receipt for %s %s: %s", fn_name, tx_ref, receipt.status.value)
        for listener in list(self._listeners):
            listener(receipt)
        return receipt
