"""Network presets.

A preset lets ``CHAIN=sei-testnet`` stand in for an explicit ``RPC_URL``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Chain:
    name: str
    chain_id: int
    rpc_url: str
    native_symbol: str
    explorer_url: str = ""
    # block headers carry extra data (SEI, most L2s); needs the PoA middleware
    poa: bool = True

    def explorer_tx(self, tx_hash: str) -> Optional[str]:
        if not self.explorer_url:
            return None
        suffix = "?chain=atlantic-2" if self.name == "sei-testnet" else ""
        return f"{self.explorer_url}/tx/{tx_hash}{suffix}"


CHAINS: dict[str, Chain] = {
    c.name: c
    for c in (
        Chain("sei-testnet", 1328, "https://evm-rpc-testnet.sei-apis.com", "SEI", "https://seitrace.com"),
        Chain("sei", 1329, "https://evm-rpc.sei-apis.com", "SEI", "https://seitrace.com"),
        Chain("ethereum", 1, "https://eth.llamarpc.com", "ETH", "https://etherscan.io", poa=False),
        Chain("base", 8453, "https://mainnet.base.org", "ETH", "https://basescan.org"),
        Chain("localhost", 31337, "http://127.0.0.1:8545", "ETH", poa=False),
    )
}


def get_chain(name: str) -> Chain:
    """Preset by name. Raises ``KeyError`` naming the known presets."""
    try:
        return CHAINS[name]
    except KeyError:
        raise KeyError(f"Unknown chain '{name}'. Available: {', '.join(CHAINS)}") from None


def chain_for_id(chain_id: int) -> Optional[Chain]:
    """Preset whose chain id matches, if any."""
    for chain in CHAINS.values():
        if chain.chain_id == chain_id:
            return chain
    return None
