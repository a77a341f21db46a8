"""Treasury disbursement policy: plan, execute, and authorize top-ups."""

from gas_treasury.policy.engine import Treasury, plan_disbursement
from gas_treasury.policy.errors import (
    InsufficientTreasury,
    NotMinter,
    ReentrantCall,
    TransferRejected,
    TreasuryError,
    Unauthorized,
)
from gas_treasury.policy.ledger import InMemoryLedger, Ledger, LedgerError
from gas_treasury.policy.models import (
    NULL_ADDRESS,
    Disbursement,
    DisbursementOutcome,
    DisbursementPlan,
    DisbursementRequest,
    OutcomeStatus,
    RecipientOutcome,
    ShortRecipient,
    SkipReason,
    is_valid_recipient,
)

__all__ = [
    "Treasury",
    "plan_disbursement",
    "TreasuryError",
    "Unauthorized",
    "InsufficientTreasury",
    "TransferRejected",
    "NotMinter",
    "ReentrantCall",
    "Ledger",
    "LedgerError",
    "InMemoryLedger",
    "NULL_ADDRESS",
    "Disbursement",
    "DisbursementRequest",
    "DisbursementPlan",
    "DisbursementOutcome",
    "OutcomeStatus",
    "RecipientOutcome",
    "ShortRecipient",
    "SkipReason",
    "is_valid_recipient",
]
