import os

import pytest
import yaml

from gas_treasury.config import (
    _ENV_OVERRIDES,
    ConfigError,
    Settings,
    load_settings,
    save_settings,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for var in list(_ENV_OVERRIDES) + ["TEST_PK"]:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


def load(tmp_path, path=None):
    return load_settings(path, env_file=tmp_path / "missing.env")


class TestLoadSettings:

    def test_defaults_without_file(self, tmp_path):
        settings = load(tmp_path)

        assert settings.chain.network == "sei-testnet"
        assert settings.topup.topup_amount == "0.0002"
        assert settings.api.port == 3000
        assert settings.rpc_url == "https://evm-rpc-testnet.sei-apis.com"

    def test_yaml_file_with_placeholders(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_PK", "0xabc")
        cfg = tmp_path / "gas-treasury.yaml"
        cfg.write_text(yaml.safe_dump({
            "chain": {"network": "localhost", "parent_pk": "${TEST_PK}"},
            "api": {"port": 8080},
        }))

        settings = load(tmp_path)

        assert settings.chain.parent_pk == "0xabc"
        assert settings.api.port == 8080
        assert settings.rpc_url == "http://127.0.0.1:8545"

    def test_environment_wins_over_file(self, tmp_path, monkeypatch):
        cfg = tmp_path / "custom.yaml"
        cfg.write_text(yaml.safe_dump({"topup": {"token_id": 5}}))
        monkeypatch.setenv("TOKEN_ID", "9")
        monkeypatch.setenv("RPC_URL", "http://node:8545")

        settings = load(tmp_path, cfg)

        assert settings.topup.token_id == 9
        assert settings.rpc_url == "http://node:8545"

    def test_env_file_loaded(self, tmp_path):
        env = tmp_path / ".env"
        env.write_text("CONTRACT_ADDRESS=0x1111111111111111111111111111111111111111\n")

        try:
            settings = load_settings(env_file=env)
        finally:
            os.environ.pop("CONTRACT_ADDRESS", None)

        assert settings.chain.contract_address.startswith("0x1111")

    def test_env_file_found_from_working_directory(self, tmp_path):
        (tmp_path / ".env").write_text("RPC_URL=http://from-cwd-dotenv:8545\n")

        try:
            settings = load_settings()
        finally:
            os.environ.pop("RPC_URL", None)

        assert settings.rpc_url == "http://from-cwd-dotenv:8545"

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load(tmp_path, tmp_path / "nope.yaml")


class TestRequireChain:

    def test_reports_every_missing_value(self):
        settings = Settings.model_validate({"chain": {"network": "custom"}})

        with pytest.raises(ConfigError) as exc_info:
            settings.require_chain()

        message = str(exc_info.value)
        for name in ("RPC_URL", "PARENT_PK", "CONTRACT_ADDRESS"):
            assert name in message

    def test_preset_network_needs_no_rpc(self):
        settings = Settings.model_validate({"chain": {"parent_pk": "0x1"}})

        settings.require_chain(contract=False)

    def test_unexpanded_placeholder_counts_as_missing(self):
        settings = Settings.model_validate({"chain": {"parent_pk": "${PARENT_PK}"}})

        with pytest.raises(ConfigError, match="PARENT_PK"):
            settings.require_chain(contract=False)


class TestSaveSettings:

    def test_secret_replaced_by_placeholder(self, tmp_path):
        settings = Settings.model_validate({"chain": {"parent_pk": "0xsecret"}})
        path = tmp_path / "out" / "gas-treasury.yaml"

        save_settings(settings, path)

        data = yaml.safe_load(path.read_text())
        assert data["chain"]["parent_pk"] == "${PARENT_PK}"
        assert data["topup"]["threshold"] == "0.0001"

    def test_include_secrets(self, tmp_path):
        settings = Settings.model_validate({"chain": {"parent_pk": "0xsecret"}})
        path = tmp_path / "gas-treasury.yaml"

        save_settings(settings, path, include_secrets=True)

        assert yaml.safe_load(path.read_text())["chain"]["parent_pk"] == "0xsecret"
