"""Configuration system for gas-treasury.

Settings come from three layers, later ones winning:

1. defaults declared on the pydantic models below,
2. an optional ``gas-treasury.yaml`` file (``${VAR}`` placeholders are
   expanded from the environment),
3. the plain environment variables the demo scripts have always used
   (``RPC_URL``, ``PARENT_PK``, ``CONTRACT_ADDRESS``, ...), which may also
   be supplied through a ``.env`` file.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field


DEFAULT_CONFIG_NAME = "gas-treasury.yaml"


class ConfigError(Exception):
    """Required configuration is missing or invalid."""


# ---------------------------------------------------------------------------
# Environment-variable expansion helper
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")


def _expand_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with their environment values.

    If the variable is not set the placeholder is left as-is so that
    validation can catch it later.
    """

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))

    return _ENV_VAR_RE.sub(_replace, value)


def _expand_env_recursive(obj: object) -> object:
    """Walk an arbitrary nested structure and expand env vars in strings."""
    if isinstance(obj, str):
        return _expand_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _expand_env_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_recursive(item) for item in obj]
    return obj


def _unexpanded(value: Optional[str]) -> bool:
    return not value or bool(_ENV_VAR_RE.search(value))


# ---------------------------------------------------------------------------
# Pydantic v2 models
# ---------------------------------------------------------------------------


class ChainSettings(BaseModel):
    """Which network to talk to and as whom."""

    network: str = "sei-testnet"     # preset name, see chain/chains.py
    rpc_url: str = ""                # overrides the preset's RPC endpoint
    parent_pk: str = ""              # ${PARENT_PK}; owner/controller key
    contract_address: str = ""       # ${CONTRACT_ADDRESS}
    receipt_timeout: int = 120       # seconds to wait for a mined tx


class TopUpSettings(BaseModel):
    """Amounts used by the demo flow and the automatic gas top-up."""

    fund_contract: str = "1.0"       # native units sent to the treasury by `demo`
    topup_amount: str = "0.0002"     # native units per child in `demo`
    threshold: str = "0.0001"        # child balance threshold in `demo`
    token_id: int = 1
    buffer_bps: int = 200            # added on top of the mint gas estimate
    fallback_gas_limit: int = 120_000
    distribute_gas_limit: int = 200_000


class ApiSettings(BaseModel):
    """REST API server settings."""

    host: str = "127.0.0.1"
    port: int = 3000


class RetrySettings(BaseModel):
    """Backoff for RPC reads made by the orchestration layer."""

    attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0


class StorageSettings(BaseModel):
    """Flat-file user store location (dev only: keys are stored in clear)."""

    users_db: str = "db/users.json"


class Settings(BaseModel):
    """Root configuration object."""

    chain: ChainSettings = Field(default_factory=ChainSettings)
    topup: TopUpSettings = Field(default_factory=TopUpSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    @property
    def rpc_url(self) -> str:
        if not _unexpanded(self.chain.rpc_url):
            return self.chain.rpc_url
        from gas_treasury.chain.chains import get_chain

        return get_chain(self.chain.network).rpc_url

    def require_chain(self, *, contract: bool = True) -> None:
        """Raise :class:`ConfigError` naming every missing chain setting."""
        from gas_treasury.chain.chains import CHAINS

        missing = []
        if _unexpanded(self.chain.rpc_url) and self.chain.network not in CHAINS:
            missing.append("RPC_URL")
        if _unexpanded(self.chain.parent_pk):
            missing.append("PARENT_PK")
        if contract and _unexpanded(self.chain.contract_address):
            missing.append("CONTRACT_ADDRESS")
        if missing:
            raise ConfigError(f"Set {', '.join(missing)} in the environment, .env or config file")


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------

# Environment variable -> (section, field)
_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "CHAIN": ("chain", "network"),
    "RPC_URL": ("chain", "rpc_url"),
    "PARENT_PK": ("chain", "parent_pk"),
    "CONTRACT_ADDRESS": ("chain", "contract_address"),
    "FUND_CONTRACT": ("topup", "fund_contract"),
    "TOPUP_AMOUNT": ("topup", "topup_amount"),
    "THRESHOLD": ("topup", "threshold"),
    "TOKEN_ID": ("topup", "token_id"),
    "TOPUP_BUFFER_BPS": ("topup", "buffer_bps"),
    "FALLBACK_GAS_LIMIT": ("topup", "fallback_gas_limit"),
    "HOST": ("api", "host"),
    "PORT": ("api", "port"),
    "USERS_DB": ("storage", "users_db"),
}


def _apply_env_overrides(data: dict) -> dict:
    for var, (section, key) in _ENV_OVERRIDES.items():
        value = os.environ.get(var)
        if value is not None and value != "":
            data.setdefault(section, {})[key] = value
    return data


def load_settings(path: Path | None = None, *, env_file: Path | None = None) -> Settings:
    """Load settings from ``.env``, an optional YAML file and the environment.

    Parameters
    ----------
    path:
        YAML config file.  Defaults to ``gas-treasury.yaml`` in the current
        directory; a missing default file is not an error, a missing
        explicit one is.
    env_file:
        ``.env`` file to load.  Defaults to the nearest ``.env`` at or above
        the working directory.
    """
    load_dotenv(env_file or find_dotenv(usecwd=True), override=False)

    explicit = path is not None
    if path is None:
        path = Path.cwd() / DEFAULT_CONFIG_NAME

    raw_data: dict = {}
    if path.exists():
        raw_data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    elif explicit:
        raise ConfigError(f"Config file not found: {path}")

    expanded = _expand_env_recursive(raw_data)
    return Settings.model_validate(_apply_env_overrides(expanded))


def save_settings(settings: Settings, path: Path, *, include_secrets: bool = False) -> None:
    """Serialize :class:`Settings` to a YAML file.

    The private key is written as a ``${PARENT_PK}`` placeholder unless
    *include_secrets* is set.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    data = settings.model_dump(mode="python", exclude_none=True)
    if not include_secrets:
        data["chain"]["parent_pk"] = "${PARENT_PK}"
    with open(path, "w", encoding="utf-8") as fh:
        yaml.dump(data, fh, default_flow_style=False, sort_keys=False)
