"""Value types for the treasury disbursement policy.

All amounts are integers in the ledger's smallest unit (wei on EVM chains).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional


NULL_ADDRESS = "0x" + "0" * 40


def is_valid_recipient(recipient_id: object) -> bool:
    """Return False for ``None``, empty ids and the all-zero address."""
    if recipient_id is None:
        return False
    if isinstance(recipient_id, int):
        return recipient_id != 0
    text = str(recipient_id).strip()
    if not text:
        return False
    if text.lower().startswith("0x"):
        digits = text[2:]
        return bool(digits) and set(digits) != {"0"}
    return True


def _check_amount(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class OutcomeStatus(str, Enum):
    SENT = "sent"
    SKIPPED = "skipped"


class SkipReason(str, Enum):
    INVALID_RECIPIENT = "invalid_recipient"
    AT_OR_ABOVE_THRESHOLD = "at_or_above_threshold"


# ---------------------------------------------------------------------------
# Request side
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Disbursement:
    """One entry of a batch: who, what they hold now, how much, below what."""

    recipient_id: Optional[str]
    current_balance: int
    topup_amount: int
    threshold: int

    def __post_init__(self) -> None:
        _check_amount("current_balance", self.current_balance)
        _check_amount("topup_amount", self.topup_amount)
        _check_amount("threshold", self.threshold)

    @property
    def is_valid(self) -> bool:
        return is_valid_recipient(self.recipient_id)

    @property
    def below_threshold(self) -> bool:
        # Strict comparison: a recipient sitting exactly on the threshold is not paid.
        return self.current_balance < self.threshold

    @property
    def eligible(self) -> bool:
        return self.is_valid and self.below_threshold


@dataclass
class DisbursementRequest:
    """A batch of disbursements evaluated against one treasury snapshot."""

    treasury_balance: int
    entries: list[Disbursement] = field(default_factory=list)

    def __post_init__(self) -> None:
        _check_amount("treasury_balance", self.treasury_balance)
        self.entries = list(self.entries)

    @classmethod
    def uniform(
        cls,
        treasury_balance: int,
        balances: Iterable[tuple[Optional[str], int]],
        amount: int,
        threshold: int,
    ) -> DisbursementRequest:
        """Build a batch where every recipient shares one amount and threshold.

        This is the shape of the on-chain ``distributeIfBelowFromTreasury`` call.
        """
        entries = [
            Disbursement(
                recipient_id=recipient,
                current_balance=balance,
                topup_amount=amount,
                threshold=threshold,
            )
            for recipient, balance in balances
        ]
        return cls(treasury_balance=treasury_balance, entries=entries)


# ---------------------------------------------------------------------------
# Result side
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ShortRecipient:
    """An under-threshold recipient counted towards an unaffordable batch."""

    index: int
    recipient_id: Optional[str]
    current_balance: int
    threshold: int
    amount: int

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "recipient": self.recipient_id,
            "balance": str(self.current_balance),
            "threshold": str(self.threshold),
            "amount": str(self.amount),
        }


@dataclass(frozen=True)
class RecipientOutcome:
    index: int
    recipient_id: Optional[str]
    status: OutcomeStatus
    amount: int = 0
    reason: Optional[SkipReason] = None

    @property
    def sent(self) -> bool:
        return self.status is OutcomeStatus.SENT

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "recipient": self.recipient_id,
            "status": self.status.value,
            "amount": str(self.amount),
            "reason": self.reason.value if self.reason else None,
        }


@dataclass
class DisbursementPlan:
    """Decision for a batch before any value moves."""

    treasury_balance: int
    required: int
    outcomes: list[RecipientOutcome]

    @property
    def payable(self) -> list[RecipientOutcome]:
        return [o for o in self.outcomes if o.sent]

    @property
    def remaining(self) -> int:
        return self.treasury_balance - self.required


@dataclass
class DisbursementOutcome:
    """Result of one executed (or refused) batch."""

    success: bool
    treasury_before: int
    treasury_after: int
    required: int
    outcomes: list[RecipientOutcome] = field(default_factory=list)
    error: Optional[Exception] = None

    @property
    def paid(self) -> list[RecipientOutcome]:
        return [o for o in self.outcomes if o.sent]

    @property
    def skipped(self) -> list[RecipientOutcome]:
        return [o for o in self.outcomes if not o.sent]

    @property
    def total_paid(self) -> int:
        return sum(o.amount for o in self.paid)

    def to_dict(self) -> dict:
        data = {
            "success": self.success,
            "treasuryBefore": str(self.treasury_before),
            "treasuryAfter": str(self.treasury_after),
            "required": str(self.required),
            "totalPaid": str(self.total_paid),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }
        if self.error is not None:
            data["error"] = str(self.error)
        return data
