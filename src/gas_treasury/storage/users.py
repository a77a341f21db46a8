"""Flat JSON file of demo users and their child wallets.

Layout::

    {"users": {"player_123": {"address": "0x...", "private_key": "0x...", ...}}}

Keys are stored unencrypted. This store is for local development only.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from eth_account import Account
from pydantic import BaseModel, Field
from web3 import Web3

logger = logging.getLogger("gas_treasury.storage.users")


class UserRecord(BaseModel):
    """One user and their generated wallet."""

    address: str
    private_key: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def generate(cls) -> UserRecord:
        acct = Account.create()
        return cls(address=acct.address, private_key=Web3.to_hex(acct.key))


class UserStore:
    """Load/modify/save access to the users file, one writer at a time."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # File I/O
    # ------------------------------------------------------------------

    def _load(self) -> dict:
        if not self.path.exists():
            return {"users": {}}
        data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        data.setdefault("users", {})
        return data

    def _save(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
        os.replace(tmp, self.path)

    def ensure(self) -> None:
        """Create an empty users file if none exists."""
        with self._lock:
            if not self.path.exists():
                self._save({"users": {}})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, username: str) -> Optional[UserRecord]:
        with self._lock:
            raw = self._load()["users"].get(username)
        if raw is None:
            return None
        return UserRecord.model_validate(_normalize(raw))

    def list_users(self) -> dict[str, UserRecord]:
        with self._lock:
            users = self._load()["users"]
        return {name: UserRecord.model_validate(_normalize(raw)) for name, raw in users.items()}

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def upsert(self, username: str, record: UserRecord) -> None:
        with self._lock:
            data = self._load()
            data["users"][username] = record.model_dump(mode="json")
            self._save(data)

    def create(self, username: str) -> tuple[UserRecord, bool]:
        """Return the user's record, generating a wallet if they are new.

        The second element is *True* when a wallet was created.
        """
        if not username or not username.strip():
            raise ValueError("username required")
        with self._lock:
            data = self._load()
            existing = data["users"].get(username)
            if existing is not None:
                return UserRecord.model_validate(_normalize(existing)), False
            record = UserRecord.generate()
            data["users"][username] = record.model_dump(mode="json")
            self._save(data)
        logger.info(f"Created wallet {record.address} for user '{username}'")
        return record, True


def _normalize(raw: dict) -> dict:
    # Older users.json files used camelCase keys
    if "privateKey" in raw and "private_key" not in raw:
        raw = {**raw, "private_key": raw["privateKey"]}
    return raw
