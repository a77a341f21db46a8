"""Exceptions raised by the treasury policy.

Every failure mode is a distinct subclass of :class:`TreasuryError` so that
callers can tell them apart and decide whether to refund, retry, or report.
"""

from __future__ import annotations

from typing import Optional, Sequence

from gas_treasury.policy.models import ShortRecipient


class TreasuryError(Exception):
    """Base class for all treasury policy failures."""


class Unauthorized(TreasuryError):
    """The caller is not the treasury controller."""

    def __init__(self, caller: object, action: str) -> None:
        self.caller = caller
        self.action = action
        super().__init__(f"{caller} is not allowed to {action}")


class InsufficientTreasury(TreasuryError):
    """The batch needs more than the treasury holds. Nothing was sent."""

    def __init__(
        self,
        required: int,
        available: int,
        short: Sequence[ShortRecipient] = (),
    ) -> None:
        self.required = required
        self.available = available
        self.short = list(short)
        super().__init__(
            f"treasury holds {available} but batch requires {required} "
            f"(short by {self.shortfall}, {len(self.short)} recipient(s) under threshold)"
        )

    @property
    def shortfall(self) -> int:
        return max(0, self.required - self.available)

    def to_dict(self) -> dict:
        return {
            "required": str(self.required),
            "available": str(self.available),
            "shortfall": str(self.shortfall),
            "recipients": [s.to_dict() for s in self.short],
        }


class TransferRejected(TreasuryError):
    """A ledger-level send failed; the whole operation was rolled back."""

    def __init__(
        self,
        recipient: object,
        amount: int,
        reason: Optional[str] = None,
    ) -> None:
        self.recipient = recipient
        self.amount = amount
        self.reason = reason
        msg = f"transfer of {amount} to {recipient} rejected"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class NotMinter(TreasuryError):
    """Attempt to remove an account that is not in the minter set."""

    def __init__(self, account: object) -> None:
        self.account = account
        super().__init__(f"{account} is not a minter")


class ReentrantCall(TreasuryError):
    """A mutating operation was re-entered while another was in flight."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"re-entrant call to {operation} while treasury is busy")
