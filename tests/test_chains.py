import pytest

from gas_treasury.chain.chains import CHAINS, chain_for_id, get_chain


class TestPresets:

    def test_sei_testnet_is_default_network(self):
        chain = get_chain("sei-testnet")

        assert chain.chain_id == 1328
        assert chain.poa

    def test_unknown_name_lists_presets(self):
        with pytest.raises(KeyError, match="sei-testnet"):
            get_chain("solana")

    def test_lookup_by_id(self):
        assert chain_for_id(1329).name == "sei"
        assert chain_for_id(424242) is None

    def test_explorer_links(self):
        assert CHAINS["sei-testnet"].explorer_tx("0xab") == "https://seitrace.com/tx/0xab?chain=atlantic-2"
        assert CHAINS["base"].explorer_tx("0xab") == "https://basescan.org/tx/0xab"
        assert CHAINS["localhost"].explorer_tx("0xab") is None

    def test_mainnet_without_poa(self):
        assert not CHAINS["ethereum"].poa
