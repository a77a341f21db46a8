"""Kazar contract interface: ABI, Solidity source and compiled artifacts.

Compiling is left to ``solc``; :func:`load_artifact` reads its output, e.g.::

    solc --optimize --combined-json abi,bin \\
        --base-path . --include-path node_modules \\
        src/gas_treasury/contracts/Kazar.sol > kazar.json
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Sequence

from web3 import Web3

CONTRACT_NAME = "Kazar"
SOURCE_PATH = Path(__file__).resolve().parent.parent / "contracts" / "Kazar.sol"


class ArtifactError(Exception):
    """A compiled artifact could not be read or lacks the Kazar contract."""


def _param(name: str, type_: str, indexed: bool | None = None) -> dict:
    p = {"name": name, "type": type_, "internalType": type_}
    if indexed is not None:
        p["indexed"] = indexed
    return p


def _fn(name: str, inputs: Sequence[dict], outputs: Sequence[dict] = (), mutability: str = "nonpayable") -> dict:
    return {
        "type": "function",
        "name": name,
        "inputs": list(inputs),
        "outputs": list(outputs),
        "stateMutability": mutability,
    }


def _error(name: str, inputs: Sequence[dict] = ()) -> dict:
    return {"type": "error", "name": name, "inputs": list(inputs)}


def _event(name: str, inputs: list[dict]) -> dict:
    return {"type": "event", "name": name, "inputs": inputs, "anonymous": False}


KAZAR_ABI: list[dict] = [
    {"type": "constructor", "inputs": [], "stateMutability": "nonpayable"},
    {"type": "receive", "stateMutability": "payable"},
    {"type": "fallback", "stateMutability": "payable"},
    # ERC-721 / Ownable reads
    _fn("owner", [], [_param("", "address")], "view"),
    _fn("name", [], [_param("", "string")], "view"),
    _fn("symbol", [], [_param("", "string")], "view"),
    _fn("balanceOf", [_param("owner", "address")], [_param("", "uint256")], "view"),
    _fn("ownerOf", [_param("tokenId", "uint256")], [_param("", "address")], "view"),
    _fn("tokenURI", [_param("tokenId", "uint256")], [_param("", "string")], "view"),
    _fn("minter", [_param("", "address")], [_param("", "bool")], "view"),
    # Writes
    _fn("transferOwnership", [_param("newOwner", "address")]),
    _fn("addMinter", [_param("account", "address")]),
    _fn("removeMinter", [_param("account", "address")]),
    _fn("mintUniqueTokenTo", [_param("to", "address"), _param("tokenId", "uint256")]),
    _fn("mintToMany", [_param("addresses", "address[]"), _param("tokenIds", "uint256[]")]),
    _fn("checkIn", [_param("tokenId", "uint256")]),
    _fn("sweep", [_param("to", "address"), _param("value", "uint256")]),
    _fn(
        "distributeIfBelowFromTreasury",
        [
            _param("recipients", "address[]"),
            _param("amount", "uint256"),
            _param("threshold", "uint256"),
        ],
    ),
    # Custom errors
    _error("NotOwner"),
    _error("NonexistentToken"),
    _error("NotMinter"),
    _error("LengthMismatch"),
    _error("SweepFailed"),
    _error("InsufficientTreasury"),
    _error("TransferRejected", [_param("to", "address"), _param("amount", "uint256")]),
    # Events
    _event("MinterAdded", [_param("account", "address", True)]),
    _event("MinterRemoved", [_param("account", "address", True)]),
    _event("Checked", [_param("player", "address", True), _param("tokenId", "uint256", True)]),
]


def error_selector(signature: str) -> str:
    """``"NotMinter()"`` -> ``"0x..."`` 4-byte selector."""
    return Web3.to_hex(Web3.keccak(text=signature)[:4])


# Selector -> error name, for decoding reverts
ERROR_SELECTORS: dict[str, str] = {
    error_selector(sig): sig.split("(")[0]
    for sig in (
        "NotOwner()",
        "NonexistentToken()",
        "NotMinter()",
        "LengthMismatch()",
        "SweepFailed()",
        "InsufficientTreasury()",
        "TransferRejected(address,uint256)",
    )
}


def read_source() -> str:
    """Return the Solidity source shipped with the package."""
    return SOURCE_PATH.read_text(encoding="utf-8")


def _find_contract(contracts: dict[str, Any]) -> tuple[str, Any]:
    for key, value in contracts.items():
        # combined-json keys look like "path/Kazar.sol:Kazar"
        if key == CONTRACT_NAME or key.endswith(f":{CONTRACT_NAME}"):
            return key, value
        # standard-json nests {"Kazar.sol": {"Kazar": {...}}}
        if isinstance(value, dict) and CONTRACT_NAME in value:
            return key, value[CONTRACT_NAME]
    raise ArtifactError(f"No '{CONTRACT_NAME}' contract in artifact (found: {list(contracts)})")


def load_artifact(path: Path) -> tuple[list, str]:
    """Read ``(abi, bytecode)`` from solc output.

    Accepts ``solc --combined-json abi,bin`` output, standard-JSON output, or
    a plain ``{"abi": [...], "bytecode": "0x..."}`` file.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ArtifactError(f"Cannot read artifact {path}: {exc}") from exc

    if "errors" in data:
        fatal = [e for e in data["errors"] if e.get("severity") == "error"]
        if fatal:
            raise ArtifactError("\n".join(e.get("formattedMessage", str(e)) for e in fatal))

    if "abi" in data and ("bytecode" in data or "bin" in data):
        entry = data
    elif "contracts" in data:
        _, entry = _find_contract(data["contracts"])
    else:
        raise ArtifactError(f"Unrecognised artifact format in {path}")

    abi = entry.get("abi")
    if isinstance(abi, str):
        abi = json.loads(abi)
    bytecode = (
        entry.get("bytecode")
        or entry.get("bin")
        or entry.get("evm", {}).get("bytecode", {}).get("object")
    )
    if isinstance(bytecode, dict):
        bytecode = bytecode.get("object")
    if not abi or not bytecode:
        raise ArtifactError(f"Artifact {path} has no ABI or bytecode")
    if not bytecode.startswith("0x"):
        bytecode = "0x" + bytecode
    return abi, bytecode
