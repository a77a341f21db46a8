"""Typed client for a deployed Kazar contract."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from web3 import Web3
from web3.exceptions import ContractLogicError

from gas_treasury.chain.contract import ERROR_SELECTORS, KAZAR_ABI
from gas_treasury.chain.provider import Web3Provider
from gas_treasury.policy import (
    NULL_ADDRESS,
    DisbursementPlan,
    DisbursementRequest,
    InsufficientTreasury,
    NotMinter,
    TransferRejected,
    Unauthorized,
    is_valid_recipient,
    plan_disbursement,
)

logger = logging.getLogger("gas_treasury.chain.client")


@dataclass
class DistributionResult:
    """What a treasury distribution decided and, if sent, its receipt."""

    plan: DisbursementPlan
    tx_hash: Optional[str] = None
    receipt: Any = None

    @property
    def sent(self) -> bool:
        return self.tx_hash is not None

    def to_dict(self) -> dict:
        return {
            "txHash": self.tx_hash,
            "required": str(self.plan.required),
            "treasuryBefore": str(self.plan.treasury_balance),
            "outcomes": [o.to_dict() for o in self.plan.outcomes],
        }


def revert_name(exc: Exception) -> Optional[str]:
    """Name of the Kazar custom error carried by a revert, if any."""
    data = getattr(exc, "data", None)
    if isinstance(data, (bytes, bytearray)):
        data = Web3.to_hex(data)
    if isinstance(data, str) and len(data) >= 10:
        return ERROR_SELECTORS.get(data[:10].lower())
    return None


class KazarClient:
    """Reads and owner/user writes against one Kazar deployment.

    Parameters
    ----------
    provider:
        Connected :class:`Web3Provider`.
    address:
        Contract address (also the treasury account).
    owner_key:
        Private key of the contract owner, who is the treasury controller.
    """

    def __init__(
        self,
        provider: Web3Provider,
        address: str,
        owner_key: str,
        abi: list | None = None,
    ) -> None:
        self.provider = provider
        self.address = Web3.to_checksum_address(address)
        self.owner_key = owner_key
        self.contract = provider.w3.eth.contract(address=self.address, abi=abi or KAZAR_ABI)

    @property
    def owner_address(self) -> str:
        return self.provider.account(self.owner_key).address

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def owner(self) -> str:
        return self.contract.functions.owner().call()

    def balance_of(self, address: str) -> int:
        return int(self.contract.functions.balanceOf(Web3.to_checksum_address(address)).call())

    def owner_of(self, token_id: int) -> str:
        """Token owner. Raises ``ContractLogicError`` for unminted ids."""
        return self.contract.functions.ownerOf(int(token_id)).call()

    def token_uri(self, token_id: int) -> str:
        return self.contract.functions.tokenURI(int(token_id)).call()

    def is_minter(self, address: str) -> bool:
        return bool(self.contract.functions.minter(Web3.to_checksum_address(address)).call())

    def treasury_balance(self) -> int:
        return self.provider.get_balance(self.address)

    def estimate_mint_gas(self, to: str, token_id: int, sender: str) -> int:
        call = self.contract.functions.mintUniqueTokenTo(Web3.to_checksum_address(to), int(token_id))
        return int(call.estimate_gas({"from": Web3.to_checksum_address(sender)}))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _send(
        self,
        call: Any,
        private_key: str,
        *,
        action: str,
        gas: Optional[int] = None,
        **context: Any,
    ) -> Any:
        try:
            return self.provider.transact(call, private_key, gas=gas)
        except ContractLogicError as exc:
            translated = self._translate(exc, action, private_key, context)
            if translated is None:
                raise
            raise translated from exc

    def _translate(
        self,
        exc: ContractLogicError,
        action: str,
        private_key: str,
        context: dict,
    ) -> Optional[Exception]:
        name = revert_name(exc)
        if name == "NotMinter":
            return NotMinter(context.get("account", self.provider.account(private_key).address))
        if name == "InsufficientTreasury":
            return InsufficientTreasury(
                required=context.get("required", 0),
                available=self.treasury_balance(),
            )
        if name in ("SweepFailed", "TransferRejected"):
            return TransferRejected(context.get("to"), context.get("amount", 0), name)
        if name == "NotOwner" or "Ownable" in str(exc):
            return Unauthorized(self.provider.account(private_key).address, action)
        return None

    def add_minter(self, account: str) -> Any:
        account = Web3.to_checksum_address(account)
        receipt = self._send(
            self.contract.functions.addMinter(account), self.owner_key, action="add minters"
        )
        logger.info(f"Minter added: {account}")
        return receipt

    def remove_minter(self, account: str) -> Any:
        account = Web3.to_checksum_address(account)
        receipt = self._send(
            self.contract.functions.removeMinter(account),
            self.owner_key,
            action="remove minters",
            account=account,
        )
        logger.info(f"Minter removed: {account}")
        return receipt

    def sweep(self, to: str, value: int) -> Any:
        to = Web3.to_checksum_address(to)
        receipt = self._send(
            self.contract.functions.sweep(to, int(value)),
            self.owner_key,
            action="sweep",
            to=to,
            amount=int(value),
        )
        logger.info(f"Swept {value} wei from treasury to {to}")
        return receipt

    def mint_unique_token_to(self, to: str, token_id: int, private_key: str) -> Any:
        return self._send(
            self.contract.functions.mintUniqueTokenTo(Web3.to_checksum_address(to), int(token_id)),
            private_key,
            action="mint",
        )

    def check_in(self, token_id: int, private_key: str) -> Any:
        return self._send(
            self.contract.functions.checkIn(int(token_id)), private_key, action="check in"
        )

    # ------------------------------------------------------------------
    # Treasury distribution
    # ------------------------------------------------------------------

    def preview_distribution(
        self,
        recipients: Sequence[Optional[str]],
        amount: int,
        threshold: int,
    ) -> DisbursementPlan:
        """Evaluate the treasury rule against current chain balances.

        Raises :class:`InsufficientTreasury` with the short recipients when
        the contract would revert.
        """
        balances = [
            (r, self.provider.get_balance(r) if is_valid_recipient(r) else 0)
            for r in recipients
        ]
        request = DisbursementRequest.uniform(self.treasury_balance(), balances, amount, threshold)
        return plan_disbursement(request.treasury_balance, request.entries)

    def distribute_if_below(
        self,
        recipients: Sequence[Optional[str]],
        amount: int,
        threshold: int,
        *,
        gas: Optional[int] = None,
    ) -> DistributionResult:
        """Top up under-threshold recipients from the contract treasury."""
        plan = self.preview_distribution(recipients, amount, threshold)
        if not plan.payable:
            logger.info("No recipient below threshold; distribution skipped")
            return DistributionResult(plan=plan)

        addresses = [
            Web3.to_checksum_address(r) if is_valid_recipient(r) else NULL_ADDRESS
            for r in recipients
        ]
        receipt = self._send(
            self.contract.functions.distributeIfBelowFromTreasury(addresses, int(amount), int(threshold)),
            self.owner_key,
            action="distribute from treasury",
            gas=gas,
            required=plan.required,
            amount=int(amount),
        )
        tx_hash = Web3.to_hex(receipt["transactionHash"])
        logger.info(
            f"distributeIfBelowFromTreasury paid {plan.required} wei to "
            f"{len(plan.payable)} recipient(s): {tx_hash}"
        )
        return DistributionResult(plan=plan, tx_hash=tx_hash, receipt=receipt)
