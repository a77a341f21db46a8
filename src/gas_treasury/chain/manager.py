"""High-level workflows used by the REST API and the CLI.

The manager ties together the provider, the Kazar client and the user
store.  Policy errors from the treasury propagate unchanged; side steps
that the mint flow can live without (minter grant, gas top-up,
verification reads) are recorded as warnings instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError

from gas_treasury.chain.chains import CHAINS, chain_for_id
from gas_treasury.chain.client import DistributionResult, KazarClient
from gas_treasury.chain.contract import load_artifact
from gas_treasury.chain.provider import Web3Provider
from gas_treasury.config import ConfigError, Settings
from gas_treasury.policy import TreasuryError
from gas_treasury.retry import retry
from gas_treasury.storage import UserRecord, UserStore

logger = logging.getLogger("gas_treasury.chain.manager")

# Reverts and policy decisions are answers, not transient faults
_NO_RETRY = (TreasuryError, ContractLogicError, ValueError)


def to_wei(amount: str | Decimal | int | float) -> int:
    """Native units (e.g. ``"0.5"``) to wei."""
    try:
        return int(Web3.to_wei(Decimal(str(amount).strip()), "ether"))
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {amount!r}") from exc


def format_ether(value: int) -> str:
    return str(Web3.from_wei(int(value), "ether"))


class UserNotFound(LookupError):
    def __init__(self, username: str) -> None:
        self.username = username
        super().__init__(f"user '{username}' not found")


class MintError(Exception):
    """A mint could not be attempted or was not mined."""

    def __init__(self, message: str, detail: str = "", debug: Optional[dict] = None) -> None:
        self.detail = detail
        self.debug = debug or {}
        super().__init__(message)


@dataclass
class TopUpResult:
    """Outcome of the automatic gas top-up before a mint."""

    funded: bool
    total: int = 0
    balance: int = 0
    sent: int = 0
    balance_after: Optional[int] = None
    tx_hash: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "funded": self.funded,
            "sent": str(self.sent),
            "total": str(self.total),
            "balance": str(self.balance),
        }
        if self.balance_after is not None:
            data["balAfter"] = str(self.balance_after)
        if self.tx_hash:
            data["txHash"] = self.tx_hash
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class DemoReport:
    """Everything the end-to-end demo produced."""

    contract: str = ""
    treasury: int = 0
    child_address: str = ""
    child_balance_start: int = 0
    child_balance_after: int = 0
    distribution: Optional[DistributionResult] = None
    mint_tx: str = ""
    token_id: int = 0
    token_owner: str = ""
    token_balance: int = 0
    token_uri: str = ""
    steps: list[str] = field(default_factory=list)


class GasManager:
    """Orchestrates provider, contract client and user store."""

    def __init__(
        self,
        settings: Settings,
        provider: Web3Provider,
        store: UserStore,
        client: Optional[KazarClient] = None,
    ) -> None:
        self.settings = settings
        self.provider = provider
        self.store = store
        self.client = client
        self._retrying = retry(
            attempts=settings.retry.attempts,
            base_delay=settings.retry.base_delay,
            max_delay=settings.retry.max_delay,
            give_up_on=_NO_RETRY,
        )

    @classmethod
    def from_settings(cls, settings: Settings, *, contract: bool = True) -> GasManager:
        """Build a manager from configuration, validating what it needs."""
        settings.require_chain(contract=contract)
        preset = CHAINS.get(settings.chain.network)
        provider = Web3Provider(
            settings.rpc_url,
            chain_id=preset.chain_id if preset else None,
            poa=preset.poa if preset else True,
            receipt_timeout=settings.chain.receipt_timeout,
        )
        client = None
        if settings.chain.contract_address.startswith("0x"):
            client = KazarClient(provider, settings.chain.contract_address, settings.chain.parent_pk)
        store = UserStore(Path(settings.storage.users_db))
        store.ensure()
        return cls(settings, provider, store, client)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _read(self, func: Callable[..., Any], *args: Any) -> Any:
        return self._retrying(func)(*args)

    def explorer_link(self, tx_hash: str) -> Optional[str]:
        preset = CHAINS.get(self.settings.chain.network)
        return preset.explorer_tx(tx_hash) if preset else None

    @property
    def kazar(self) -> KazarClient:
        if self.client is None:
            raise ConfigError("CONTRACT_ADDRESS is not configured")
        return self.client

    def user(self, username: str) -> UserRecord:
        record = self.store.get(username)
        if record is None:
            raise UserNotFound(username)
        return record

    # ------------------------------------------------------------------
    # Status / users
    # ------------------------------------------------------------------

    def health(self) -> dict:
        kazar = self.kazar
        treasury = self._read(kazar.treasury_balance)
        chain_id = self._read(lambda: self.provider.chain_id)
        preset = chain_for_id(chain_id)
        return {
            "ok": True,
            "chainId": chain_id,
            "network": preset.name if preset else None,
            "contract": kazar.address,
            "owner": self._read(kazar.owner),
            "treasury": format_ether(treasury),
        }

    def create_user(self, username: str) -> tuple[UserRecord, bool]:
        return self.store.create(username)

    # ------------------------------------------------------------------
    # Treasury
    # ------------------------------------------------------------------

    def fund_contract(self, amount: str) -> dict:
        """Send native value from the owner wallet into the contract treasury."""
        kazar = self.kazar
        value = to_wei(amount)
        if value <= 0:
            raise ValueError("amount must be positive")
        receipt = self.provider.send_value(kazar.owner_key, kazar.address, value)
        treasury = self._read(kazar.treasury_balance)
        logger.info(f"Treasury funded with {amount}; balance now {format_ether(treasury)}")
        return {"hash": Web3.to_hex(receipt["transactionHash"]), "treasury": format_ether(treasury)}

    def top_up(
        self,
        recipients: Sequence[Optional[str]],
        amount: int,
        threshold: int,
        *,
        gas: Optional[int] = None,
    ) -> DistributionResult:
        """Run the treasury rule for explicit addresses (or ``None`` placeholders)."""
        return self.kazar.distribute_if_below(recipients, amount, threshold, gas=gas)

    def top_up_users(self, usernames: Sequence[str], amount: int, threshold: int) -> DistributionResult:
        addresses = [self.user(name).address for name in usernames]
        return self.top_up(addresses, amount, threshold)

    def sweep(self, to: str, amount: str) -> dict:
        kazar = self.kazar
        receipt = kazar.sweep(to, to_wei(amount))
        treasury = self._read(kazar.treasury_balance)
        return {"hash": Web3.to_hex(receipt["transactionHash"]), "treasury": format_ether(treasury)}

    # ------------------------------------------------------------------
    # Minters
    # ------------------------------------------------------------------

    def ensure_minter(self, address: str) -> bool:
        """Grant minting rights unless already held. Returns *True* if granted."""
        kazar = self.kazar
        if self._read(kazar.is_minter, address):
            return False
        kazar.add_minter(address)
        return True

    def remove_minter(self, address: str) -> None:
        self.kazar.remove_minter(address)

    # ------------------------------------------------------------------
    # Minting
    # ------------------------------------------------------------------

    def find_free_token_id(self, start: int = 1, limit: int = 1000) -> int:
        """First token id in ``[start, start + limit)`` that has no owner."""
        kazar = self.kazar
        for token_id in range(start, start + limit):
            try:
                self._read(kazar.owner_of, token_id)
            except ContractLogicError:
                return token_id
        raise LookupError(f"No free tokenId in range [{start}..{start + limit - 1}]")

    def auto_top_up(self, address: str, token_id: int) -> TopUpResult:
        """Fund *address* from the treasury so it can afford one mint."""
        kazar = self.kazar
        topup = self.settings.topup
        fee = self._read(self.provider.fee_data)
        if not fee.max_fee_per_gas:
            raise RuntimeError("No fee data from RPC")

        try:
            gas_limit = kazar.estimate_mint_gas(address, token_id, address)
        except Exception as e:
            logger.debug(f"Mint gas estimate failed, using fallback: {e}")
            gas_limit = topup.fallback_gas_limit

        est_cost = gas_limit * fee.max_fee_per_gas
        total = est_cost + (est_cost * topup.buffer_bps) // 10_000

        balance = self._read(self.provider.get_balance, address)
        if balance >= total:
            return TopUpResult(funded=False, total=total, balance=balance)

        needed = total - balance
        # threshold just above the current balance so the rule always fires
        result = kazar.distribute_if_below([address], needed, balance + 1)
        balance_after = self._read(self.provider.get_balance, address)
        return TopUpResult(
            funded=True,
            total=total,
            balance=balance,
            sent=needed,
            balance_after=balance_after,
            tx_hash=result.tx_hash,
        )

    def mint(
        self,
        username: str,
        token_id: Optional[int] = None,
        start_id: int = 1,
        scan_limit: int = 1000,
    ) -> dict:
        """Mint a token to a user, topping up their gas from the treasury first."""
        record = self.user(username)
        kazar = self.kazar
        warnings: list[str] = []

        try:
            self.ensure_minter(record.address)
        except Exception as e:
            logger.warning(f"ensure_minter warning: {e}")
            warnings.append(f"ensure_minter: {e}")

        try:
            token_id = int(token_id) if token_id is not None else self.find_free_token_id(start_id, scan_limit)
        except (LookupError, ValueError, TypeError) as e:
            raise MintError("failed to pick tokenId", detail=str(e)) from e

        try:
            topup = self.auto_top_up(record.address, token_id)
        except Exception as e:
            logger.warning(f"auto_top_up warning: {e}")
            topup = TopUpResult(funded=False, error=str(e))

        try:
            receipt = kazar.mint_unique_token_to(record.address, token_id, record.private_key)
        except Exception as e:
            logger.error(f"Mint tx error: {e}")
            debug = {}
            data = getattr(e, "data", None)
            if data:
                debug["data"] = str(data)
            raise MintError("mint transaction failed", detail=str(e), debug=debug) from e

        tx_hash = Web3.to_hex(receipt["transactionHash"])
        return {
            "ok": True,
            "txHash": tx_hash,
            "tokenId": str(token_id),
            "topup": topup.to_dict(),
            "verification": self._verify_mint(record.address, token_id, tx_hash),
            "warnings": warnings,
        }

    def _verify_mint(self, address: str, token_id: int, tx_hash: str) -> dict:
        """Best-effort reads after a mint; failures are reported, not raised."""
        kazar = self.kazar
        verification: dict[str, Any] = {}
        try:
            verification["owner"] = kazar.owner_of(token_id)
        except Exception as e:
            verification["ownerError"] = str(e)
            try:
                receipt = self.provider.w3.eth.get_transaction_receipt(tx_hash)
                verification["receipt"] = {
                    "txHash": Web3.to_hex(receipt["transactionHash"]),
                    "status": receipt["status"],
                    "blockNumber": receipt["blockNumber"],
                    "gasUsed": str(receipt["gasUsed"]),
                }
            except Exception as inner:
                verification["receiptError"] = str(inner)

        try:
            verification["balance"] = str(kazar.balance_of(address))
        except Exception as e:
            verification["balanceError"] = str(e)

        try:
            verification["tokenURI"] = kazar.token_uri(token_id)
        except Exception as e:
            verification["tokenURIError"] = str(e)
        return verification

    def check_in(self, username: str, token_id: int) -> dict:
        record = self.user(username)
        receipt = self.kazar.check_in(int(token_id), record.private_key)
        return {"ok": True, "tx": Web3.to_hex(receipt["transactionHash"])}

    # ------------------------------------------------------------------
    # Deploy / demo
    # ------------------------------------------------------------------

    def deploy(self, artifact: Path) -> str:
        """Deploy Kazar from a solc artifact and switch this manager to it."""
        abi, bytecode = load_artifact(artifact)
        parent_key = self.settings.chain.parent_pk
        address, _ = self.provider.deploy(abi, bytecode, parent_key)
        self.client = KazarClient(self.provider, address, parent_key, abi=abi)
        self.settings.chain.contract_address = address
        return address

    def run_demo(
        self,
        artifact: Path,
        on_step: Optional[Callable[[str], None]] = None,
    ) -> DemoReport:
        """Deploy, fund the treasury, top up a fresh child from it, and mint."""
        topup = self.settings.topup
        report = DemoReport()

        def step(msg: str) -> None:
            report.steps.append(msg)
            logger.info(msg)
            if on_step is not None:
                on_step(msg)

        step(f"Parent: {self.provider.account(self.settings.chain.parent_pk).address}")
        report.contract = self.deploy(artifact)
        step(f"NFT deployed at: {report.contract}")

        kazar = self.kazar
        self.provider.send_value(kazar.owner_key, kazar.address, to_wei(topup.fund_contract))
        report.treasury = self._read(kazar.treasury_balance)
        step(f"Contract funded. Treasury balance: {format_ether(report.treasury)}")

        child = Account.create()
        report.child_address = child.address
        report.child_balance_start = self._read(self.provider.get_balance, child.address)
        step(f"Child wallet: {child.address} (balance {format_ether(report.child_balance_start)})")

        report.distribution = kazar.distribute_if_below(
            [child.address],
            to_wei(topup.topup_amount),
            to_wei(topup.threshold),
            gas=topup.distribute_gas_limit,
        )
        report.child_balance_after = self._read(self.provider.get_balance, child.address)
        step(f"Child balance after distribute: {format_ether(report.child_balance_after)}")

        kazar.add_minter(child.address)
        step(f"Minter added: {child.address}")

        report.token_id = topup.token_id
        receipt = kazar.mint_unique_token_to(child.address, report.token_id, Web3.to_hex(child.key))
        report.mint_tx = Web3.to_hex(receipt["transactionHash"])
        step(f"mintUniqueTokenTo tx: {report.mint_tx}")

        report.token_owner = self._read(kazar.owner_of, report.token_id)
        report.token_uri = self._read(kazar.token_uri, report.token_id)
        report.token_balance = self._read(kazar.balance_of, child.address)
        return report
