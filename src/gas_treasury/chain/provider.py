"""Web3 provider wrapper: balances, fees, signed sends and deployments."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware

logger = logging.getLogger("gas_treasury.chain.provider")

DEFAULT_PRIORITY_FEE = Web3.to_wei(1, "gwei")
DEFAULT_MAX_FEE = Web3.to_wei(50, "gwei")


class TransactionFailed(Exception):
    """A transaction was mined with ``status == 0``."""

    def __init__(self, tx_hash: str, receipt: Any = None) -> None:
        self.tx_hash = tx_hash
        self.receipt = receipt
        super().__init__(f"Transaction {tx_hash} reverted")


@dataclass(frozen=True)
class FeeData:
    """Fee hints in wei. ``max_fee_per_gas`` is what a sender should budget."""

    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    gas_price: Optional[int] = None
    eip1559: bool = True

    def tx_fields(self) -> dict:
        if self.eip1559:
            return {
                "maxFeePerGas": self.max_fee_per_gas,
                "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
            }
        return {"gasPrice": self.gas_price or self.max_fee_per_gas}


class Web3Provider:
    """One Web3 connection plus the signing helpers the toolkit needs."""

    def __init__(
        self,
        rpc_url: str,
        *,
        chain_id: Optional[int] = None,
        poa: bool = True,
        receipt_timeout: int = 120,
        w3: Optional[Web3] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.receipt_timeout = receipt_timeout
        self._chain_id = chain_id
        if w3 is None:
            w3 = Web3(Web3.HTTPProvider(rpc_url))
            if poa:
                w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        self.w3 = w3

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = int(self.w3.eth.chain_id)
        return self._chain_id

    def get_balance(self, address: str) -> int:
        """Native balance in wei."""
        return int(self.w3.eth.get_balance(Web3.to_checksum_address(address)))

    def fee_data(self) -> FeeData:
        """EIP-1559 fee hints, falling back to the legacy gas price."""
        gas_price: Optional[int]
        try:
            gas_price = int(self.w3.eth.gas_price)
        except Exception as e:
            logger.debug(f"gas_price unavailable: {e}")
            gas_price = None

        try:
            base_fee = self.w3.eth.get_block("latest").get("baseFeePerGas")
        except Exception as e:
            logger.debug(f"latest block unavailable: {e}")
            base_fee = None

        if base_fee is None:
            if gas_price is None:
                return FeeData(DEFAULT_MAX_FEE, DEFAULT_PRIORITY_FEE, None, eip1559=True)
            return FeeData(gas_price, 0, gas_price, eip1559=False)

        try:
            priority = int(self.w3.eth.max_priority_fee)
        except Exception:
            priority = DEFAULT_PRIORITY_FEE
        return FeeData(int(base_fee) * 2 + priority, priority, gas_price, eip1559=True)

    def account(self, private_key: str | bytes) -> LocalAccount:
        return Account.from_key(private_key)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _base_tx(self, sender: str) -> dict:
        return {
            "from": sender,
            "nonce": self.w3.eth.get_transaction_count(sender),
            "chainId": self.chain_id,
            **self.fee_data().tx_fields(),
        }

    def _sign_and_wait(self, tx: dict, private_key: str | bytes) -> Any:
        signed = self.w3.eth.account.sign_transaction(tx, private_key)
        tx_hash = Web3.to_hex(self.w3.eth.send_raw_transaction(signed.raw_transaction))
        logger.debug(f"Sent {tx_hash}, waiting for receipt")
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        if receipt.get("status") != 1:
            raise TransactionFailed(tx_hash, receipt)
        return receipt

    def send_value(self, private_key: str | bytes, to_address: str, value: int) -> Any:
        """Send *value* wei and wait for the receipt."""
        sender = self.account(private_key).address
        tx = self._base_tx(sender)
        tx["to"] = Web3.to_checksum_address(to_address)
        tx["value"] = int(value)
        tx["gas"] = self.w3.eth.estimate_gas(tx)
        receipt = self._sign_and_wait(tx, private_key)
        logger.info(f"Sent {value} wei from {sender} to {tx['to']}")
        return receipt

    def transact(
        self,
        call: Any,
        private_key: str | bytes,
        *,
        gas: Optional[int] = None,
        value: int = 0,
    ) -> Any:
        """Sign and send a bound contract call (``contract.functions.f(...)``).

        Without *gas* the node estimates it, which also surfaces reverts
        before anything is broadcast.
        """
        sender = self.account(private_key).address
        params = self._base_tx(sender)
        if value:
            params["value"] = int(value)
        if gas is not None:
            params["gas"] = int(gas)
        tx = call.build_transaction(params)
        return self._sign_and_wait(tx, private_key)

    def deploy(
        self,
        abi: list,
        bytecode: str,
        private_key: str | bytes,
        *args: Any,
    ) -> tuple[str, Any]:
        """Deploy a contract and return ``(address, receipt)``."""
        factory = self.w3.eth.contract(abi=abi, bytecode=bytecode)
        receipt = self.transact(factory.constructor(*args), private_key)
        address = Web3.to_checksum_address(receipt["contractAddress"])
        logger.info(f"Contract deployed at {address}")
        return address, receipt
