import json

import pytest

from gas_treasury.chain.contract import (
    ERROR_SELECTORS,
    KAZAR_ABI,
    ArtifactError,
    error_selector,
    load_artifact,
    read_source,
)


ABI = [{"type": "function", "name": "owner", "inputs": [], "outputs": []}]


def write(tmp_path, data):
    path = tmp_path / "kazar.json"
    path.write_text(json.dumps(data))
    return path


class TestLoadArtifact:

    def test_plain_artifact(self, tmp_path):
        abi, bytecode = load_artifact(write(tmp_path, {"abi": ABI, "bytecode": "6080"}))

        assert abi == ABI
        assert bytecode == "0x6080"

    def test_combined_json(self, tmp_path):
        path = write(tmp_path, {
            "contracts": {
                "src/Ownable.sol:Ownable": {"abi": "[]", "bin": "00"},
                "src/gas_treasury/contracts/Kazar.sol:Kazar": {
                    "abi": json.dumps(ABI),
                    "bin": "6080",
                },
            },
        })

        abi, bytecode = load_artifact(path)

        assert abi == ABI
        assert bytecode == "0x6080"

    def test_standard_json(self, tmp_path):
        path = write(tmp_path, {
            "errors": [{"severity": "warning", "formattedMessage": "unused"}],
            "contracts": {
                "Kazar.sol": {
                    "Kazar": {"abi": ABI, "evm": {"bytecode": {"object": "6080"}}},
                },
            },
        })

        assert load_artifact(path) == (ABI, "0x6080")

    def test_compiler_errors_reported(self, tmp_path):
        path = write(tmp_path, {
            "errors": [{"severity": "error", "formattedMessage": "ParserError: oops"}],
            "contracts": {},
        })

        with pytest.raises(ArtifactError, match="ParserError"):
            load_artifact(path)

    def test_missing_contract(self, tmp_path):
        path = write(tmp_path, {"contracts": {"Other.sol:Other": {"abi": "[]", "bin": "00"}}})

        with pytest.raises(ArtifactError, match="Kazar"):
            load_artifact(path)

    def test_unreadable_file(self, tmp_path):
        path = tmp_path / "kazar.json"
        path.write_text("not json")

        with pytest.raises(ArtifactError):
            load_artifact(path)


class TestInterface:

    def test_selectors_are_four_bytes(self):
        for selector in ERROR_SELECTORS:
            assert selector.startswith("0x")
            assert len(selector) == 10

    def test_selector_lookup(self):
        assert ERROR_SELECTORS[error_selector("NotMinter()")] == "NotMinter"
        assert ERROR_SELECTORS[error_selector("TransferRejected(address,uint256)")] == "TransferRejected"

    def test_abi_has_distribution_entry_point(self):
        names = {item.get("name") for item in KAZAR_ABI}

        assert "distributeIfBelowFromTreasury" in names
        assert "sweep" in names

    def test_abi_parameter_lists_are_lists(self):
        for item in KAZAR_ABI:
            assert isinstance(item.get("inputs", []), list), item.get("name", item["type"])
            assert isinstance(item.get("outputs", []), list), item.get("name", item["type"])

    def test_source_declares_distribution(self):
        source = read_source()

        assert "function distributeIfBelowFromTreasury" in source
        assert "contract Kazar" in source
