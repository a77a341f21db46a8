import json
from unittest.mock import MagicMock

import pytest
from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError

from gas_treasury.chain import manager as manager_module
from gas_treasury.chain.client import DistributionResult
from gas_treasury.chain.manager import (
    GasManager,
    MintError,
    UserNotFound,
    format_ether,
    to_wei,
)
from gas_treasury.chain.provider import FeeData
from gas_treasury.config import ConfigError, Settings
from gas_treasury.policy import DisbursementPlan, InsufficientTreasury
from gas_treasury.storage import UserStore

TX_HASH = b"\xab" * 32
CONTRACT = "0x" + "c0" * 20


@pytest.fixture
def provider():
    return MagicMock()


@pytest.fixture
def kazar():
    kazar = MagicMock()
    kazar.address = "0x" + "c0" * 20
    kazar.distribute_if_below.return_value = DistributionResult(
        plan=DisbursementPlan(treasury_balance=0, required=0, outcomes=[]),
        tx_hash="0xfeed",
    )
    kazar.mint_unique_token_to.return_value = {"transactionHash": TX_HASH}
    return kazar


@pytest.fixture
def manager(tmp_path, provider, kazar):
    settings = Settings.model_validate({"retry": {"attempts": 1}})
    return GasManager(settings, provider, UserStore(tmp_path / "users.json"), kazar)


class TestUnits:

    def test_to_wei(self):
        assert to_wei("0.0002") == 200_000_000_000_000
        assert to_wei(1) == 10**18

    @pytest.mark.parametrize("amount", ["abc", "", "1,5"])
    def test_to_wei_rejects_non_numbers(self, amount):
        with pytest.raises(ValueError, match="invalid amount"):
            to_wei(amount)

    def test_format_ether(self):
        assert format_ether(10**18) == "1"


class TestFindFreeTokenId:

    def test_first_unowned_id(self, manager, kazar):
        def owner_of(token_id):
            if token_id < 3:
                return "0xowner"
            raise ContractLogicError("execution reverted: ERC721: invalid token ID")

        kazar.owner_of.side_effect = owner_of

        assert manager.find_free_token_id(1, 10) == 3

    def test_range_exhausted(self, manager, kazar):
        kazar.owner_of.return_value = "0xowner"

        with pytest.raises(LookupError):
            manager.find_free_token_id(1, 5)


class TestAutoTopUp:

    def test_tops_up_the_difference(self, manager, provider, kazar):
        provider.fee_data.return_value = FeeData(max_fee_per_gas=100, max_priority_fee_per_gas=1)
        kazar.estimate_mint_gas.return_value = 1000
        provider.get_balance.side_effect = [2000, 102_000]

        result = manager.auto_top_up("0xchild", 1)

        # 1000 gas * 100 wei + 2% buffer
        assert result.total == 102_000
        assert result.sent == 100_000
        assert result.balance_after == 102_000
        assert result.tx_hash == "0xfeed"
        kazar.distribute_if_below.assert_called_once_with(["0xchild"], 100_000, 2001)

    def test_funded_child_left_alone(self, manager, provider, kazar):
        provider.fee_data.return_value = FeeData(max_fee_per_gas=100, max_priority_fee_per_gas=1)
        kazar.estimate_mint_gas.return_value = 1000
        provider.get_balance.return_value = 500_000

        result = manager.auto_top_up("0xchild", 1)

        assert not result.funded
        kazar.distribute_if_below.assert_not_called()

    def test_fallback_gas_limit(self, manager, provider, kazar):
        provider.fee_data.return_value = FeeData(max_fee_per_gas=10, max_priority_fee_per_gas=1)
        kazar.estimate_mint_gas.side_effect = ContractLogicError("NotMinter")
        provider.get_balance.return_value = 0

        result = manager.auto_top_up("0xchild", 1)

        assert result.total == 120_000 * 10 * 10_200 // 10_000


class TestMint:

    def test_best_effort_steps_become_warnings(self, manager, provider, kazar):
        manager.create_user("alice")
        kazar.is_minter.side_effect = RuntimeError("rpc down")
        provider.fee_data.side_effect = RuntimeError("no fees")
        kazar.owner_of.return_value = "0xalice"
        kazar.balance_of.return_value = 1
        kazar.token_uri.return_value = "ipfs://kazar/7"

        result = manager.mint("alice", token_id=7)

        assert result["ok"]
        assert result["tokenId"] == "7"
        assert result["txHash"] == "0x" + "ab" * 32
        assert result["warnings"] == ["ensure_minter: rpc down"]
        assert result["topup"]["funded"] is False
        assert result["topup"]["error"] == "no fees"
        assert result["verification"]["balance"] == "1"

    def test_grants_minter_when_missing(self, manager, provider, kazar):
        record, _ = manager.create_user("alice")
        kazar.is_minter.return_value = False
        provider.fee_data.side_effect = RuntimeError("no fees")

        manager.mint("alice", token_id=1)

        kazar.add_minter.assert_called_once_with(record.address)

    def test_failed_mint_raises(self, manager, provider, kazar):
        manager.create_user("alice")
        kazar.is_minter.return_value = True
        provider.fee_data.side_effect = RuntimeError("no fees")
        kazar.mint_unique_token_to.side_effect = ContractLogicError("reverted", data="0xdeadbeef")

        with pytest.raises(MintError) as exc_info:
            manager.mint("alice", token_id=1)

        assert exc_info.value.debug == {"data": "0xdeadbeef"}

    def test_unknown_user(self, manager):
        with pytest.raises(UserNotFound):
            manager.mint("ghost")


class TestTreasury:

    def test_top_up_users_resolves_addresses(self, manager, kazar):
        alice, _ = manager.create_user("alice")

        manager.top_up_users(["alice"], 30, 10)

        kazar.distribute_if_below.assert_called_once_with([alice.address], 30, 10, gas=None)

    def test_fund_rejects_zero(self, manager):
        with pytest.raises(ValueError):
            manager.fund_contract("0")

    def test_fund_rejects_non_numeric(self, manager, provider):
        with pytest.raises(ValueError):
            manager.fund_contract("abc")
        provider.send_value.assert_not_called()

    def test_fund_sends_to_contract(self, manager, provider, kazar):
        provider.send_value.return_value = {"transactionHash": TX_HASH}
        kazar.treasury_balance.return_value = 5 * 10**17

        result = manager.fund_contract("0.5")

        provider.send_value.assert_called_once_with(kazar.owner_key, kazar.address, 5 * 10**17)
        assert result["treasury"] == "0.5"

    def test_health(self, manager, provider, kazar):
        provider.chain_id = 1328
        kazar.treasury_balance.return_value = 10**18
        kazar.owner.return_value = "0xowner"

        info = manager.health()

        assert info["network"] == "sei-testnet"
        assert info["treasury"] == "1"
        assert info["owner"] == "0xowner"

    def test_no_contract_configured(self, tmp_path, provider):
        manager = GasManager(Settings(), provider, UserStore(tmp_path / "users.json"))

        with pytest.raises(ConfigError):
            manager.health()


class TestUserActions:

    def test_check_in_signs_with_user_key(self, manager, kazar):
        record, _ = manager.create_user("alice")
        kazar.check_in.return_value = {"transactionHash": TX_HASH}

        result = manager.check_in("alice", "7")

        kazar.check_in.assert_called_once_with(7, record.private_key)
        assert result == {"ok": True, "tx": "0x" + "ab" * 32}

    def test_check_in_unknown_user(self, manager, kazar):
        with pytest.raises(UserNotFound):
            manager.check_in("ghost", 1)
        kazar.check_in.assert_not_called()

    def test_sweep_converts_amount(self, manager, kazar):
        kazar.sweep.return_value = {"transactionHash": TX_HASH}
        kazar.treasury_balance.return_value = 25 * 10**16

        result = manager.sweep("0xcold", "0.75")

        kazar.sweep.assert_called_once_with("0xcold", 75 * 10**16)
        assert result == {"hash": "0x" + "ab" * 32, "treasury": "0.25"}

    def test_sweep_rejects_bad_amount(self, manager, kazar):
        with pytest.raises(ValueError):
            manager.sweep("0xcold", "lots")
        kazar.sweep.assert_not_called()


class TestDeployAndDemo:

    @pytest.fixture
    def artifact(self, tmp_path):
        path = tmp_path / "Kazar.json"
        path.write_text(json.dumps({"abi": [{"type": "constructor", "inputs": []}], "bytecode": "0x6080"}))
        return path

    @pytest.fixture
    def demo_manager(self, tmp_path, provider, kazar, monkeypatch):
        parent_key = Web3.to_hex(Account.create().key)
        settings = Settings.model_validate({
            "chain": {"parent_pk": parent_key},
            "retry": {"attempts": 1},
        })
        provider.account.side_effect = Account.from_key
        provider.deploy.return_value = (CONTRACT, {"status": 1})
        provider.get_balance.return_value = 0
        kazar.treasury_balance.return_value = 10**18
        built = []

        def client_factory(*args, **kwargs):
            built.append((args, kwargs))
            return kazar

        monkeypatch.setattr(manager_module, "KazarClient", client_factory)
        manager = GasManager(settings, provider, UserStore(tmp_path / "users.json"))
        manager.built_clients = built
        return manager

    def test_deploy_switches_to_new_contract(self, demo_manager, provider, kazar, artifact):
        address = demo_manager.deploy(artifact)

        assert address == CONTRACT
        assert demo_manager.settings.chain.contract_address == CONTRACT
        assert demo_manager.kazar is kazar
        provider.deploy.assert_called_once_with(
            [{"type": "constructor", "inputs": []}], "0x6080", demo_manager.settings.chain.parent_pk
        )
        (args, kwargs), = demo_manager.built_clients
        assert args == (provider, CONTRACT, demo_manager.settings.chain.parent_pk)
        assert kwargs == {"abi": [{"type": "constructor", "inputs": []}]}

    def test_demo_runs_every_step_in_order(self, demo_manager, provider, kazar, artifact):
        seen = []

        report = demo_manager.run_demo(artifact, on_step=seen.append)

        assert [s.split(":")[0] for s in report.steps] == [
            "Parent",
            "NFT deployed at",
            "Contract funded. Treasury balance",
            "Child wallet",
            "Child balance after distribute",
            "Minter added",
            "mintUniqueTokenTo tx",
        ]
        assert seen == report.steps
        assert report.contract == CONTRACT
        assert report.treasury == 10**18
        assert report.mint_tx == "0x" + "ab" * 32

        provider.send_value.assert_called_once_with(kazar.owner_key, kazar.address, to_wei("1.0"))
        kazar.distribute_if_below.assert_called_once_with(
            [report.child_address], to_wei("0.0002"), to_wei("0.0001"), gas=200_000
        )
        kazar.add_minter.assert_called_once_with(report.child_address)
        child, token_id, key = kazar.mint_unique_token_to.call_args.args
        assert (child, token_id) == (report.child_address, 1)
        assert Account.from_key(key).address == report.child_address

        order = [name for name, _, _ in kazar.method_calls]
        assert order.index("distribute_if_below") < order.index("add_minter")
        assert order.index("add_minter") < order.index("mint_unique_token_to")

    def test_demo_stops_when_treasury_refuses(self, demo_manager, kazar, artifact):
        kazar.distribute_if_below.side_effect = InsufficientTreasury(required=2, available=1)

        with pytest.raises(InsufficientTreasury):
            demo_manager.run_demo(artifact)

        kazar.add_minter.assert_not_called()
        kazar.mint_unique_token_to.assert_not_called()
