"""gas-treasury storage layer -- flat-file user store."""

from gas_treasury.storage.users import UserRecord, UserStore

__all__ = [
    "UserRecord",
    "UserStore",
]
