"""Treasury-gated conditional disbursement.

A :class:`Treasury` owns one account on a :class:`~gas_treasury.policy.ledger.Ledger`
and a small authorization model (one controller, a set of minters).  Its
main operation, :meth:`Treasury.distribute_if_below`, tops up every
recipient whose observed balance is under a threshold, provided the
treasury can cover all of them at once.

The decision itself lives in :func:`plan_disbursement`, a pure function of
the treasury balance and the batch, so callers that cannot execute
transfers locally (the on-chain client) can still preview it.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from typing import Iterable, Iterator, Optional, Sequence

from gas_treasury.policy.errors import (
    InsufficientTreasury,
    NotMinter,
    ReentrantCall,
    TransferRejected,
    Unauthorized,
)
from gas_treasury.policy.ledger import Ledger, LedgerError
from gas_treasury.policy.models import (
    Disbursement,
    DisbursementOutcome,
    DisbursementPlan,
    OutcomeStatus,
    RecipientOutcome,
    ShortRecipient,
    SkipReason,
    is_valid_recipient,
)

logger = logging.getLogger("gas_treasury.policy")


def plan_disbursement(
    treasury_balance: int,
    entries: Sequence[Disbursement],
) -> DisbursementPlan:
    """Decide which entries of a batch get paid.

    Eligibility is evaluated once against the supplied balances; paying one
    recipient never changes the decision for another, so the set of paid
    recipients does not depend on their order in the batch.

    Raises
    ------
    InsufficientTreasury
        If the top-ups of all valid under-threshold entries add up to more
        than *treasury_balance*.
    """
    required = 0
    short: list[ShortRecipient] = []
    outcomes: list[RecipientOutcome] = []

    for index, entry in enumerate(entries):
        if not entry.is_valid:
            outcomes.append(RecipientOutcome(
                index=index,
                recipient_id=entry.recipient_id,
                status=OutcomeStatus.SKIPPED,
                reason=SkipReason.INVALID_RECIPIENT,
            ))
            continue
        if not entry.below_threshold:
            outcomes.append(RecipientOutcome(
                index=index,
                recipient_id=entry.recipient_id,
                status=OutcomeStatus.SKIPPED,
                reason=SkipReason.AT_OR_ABOVE_THRESHOLD,
            ))
            continue
        required += entry.topup_amount
        short.append(ShortRecipient(
            index=index,
            recipient_id=entry.recipient_id,
            current_balance=entry.current_balance,
            threshold=entry.threshold,
            amount=entry.topup_amount,
        ))
        outcomes.append(RecipientOutcome(
            index=index,
            recipient_id=entry.recipient_id,
            status=OutcomeStatus.SENT,
            amount=entry.topup_amount,
        ))

    if required > treasury_balance:
        raise InsufficientTreasury(required=required, available=treasury_balance, short=short)

    return DisbursementPlan(
        treasury_balance=treasury_balance,
        required=required,
        outcomes=outcomes,
    )


class Treasury:
    """A controller-owned balance with a minter set.

    Parameters
    ----------
    ledger:
        Where value actually lives.  The treasury's own balance is the
        ledger balance of *account*.
    account:
        The ledger account holding treasury funds.
    controller:
        The single identity allowed to disburse, sweep and manage minters.
        It starts out as a minter too.
    """

    def __init__(
        self,
        ledger: Ledger,
        account: str,
        controller: str,
        minters: Iterable[str] = (),
    ) -> None:
        self.ledger = ledger
        self.account = account
        self._controller = controller
        self._minters: set[str] = {controller, *minters}
        self._lock = threading.Lock()
        self._busy_thread: Optional[int] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def controller(self) -> str:
        return self._controller

    @property
    def balance(self) -> int:
        return self.ledger.balance_of(self.account)

    @property
    def minters(self) -> frozenset[str]:
        return frozenset(self._minters)

    def is_minter(self, account: str) -> bool:
        return account in self._minters

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _require_controller(self, caller: str, action: str) -> None:
        if caller != self._controller:
            raise Unauthorized(caller, action)

    @contextlib.contextmanager
    def _exclusive(self, operation: str) -> Iterator[None]:
        """Serialize mutating operations; refuse nested ones on the same thread."""
        me = threading.get_ident()
        if self._busy_thread == me:
            raise ReentrantCall(operation)
        with self._lock:
            self._busy_thread = me
            try:
                yield
            finally:
                self._busy_thread = None

    # ------------------------------------------------------------------
    # Reads for callers building a batch
    # ------------------------------------------------------------------

    def observe(
        self,
        recipients: Iterable[Optional[str]],
        amount: int,
        threshold: int,
    ) -> list[Disbursement]:
        """Build a uniform batch from the ledger's current balances."""
        return [
            Disbursement(
                recipient_id=r,
                current_balance=self.ledger.balance_of(r) if is_valid_recipient(r) else 0,
                topup_amount=amount,
                threshold=threshold,
            )
            for r in recipients
        ]

    # ------------------------------------------------------------------
    # Value movements
    # ------------------------------------------------------------------

    def deposit(self, sender: str, amount: int) -> int:
        """Move *amount* from *sender* into the treasury. Anyone may deposit."""
        with self._exclusive("deposit"):
            try:
                with self.ledger.atomic():
                    self.ledger.transfer(sender, self.account, amount)
            except LedgerError as exc:
                raise TransferRejected(self.account, amount, str(exc)) from exc
            balance = self.balance
        logger.info(f"Deposit of {amount} from {sender}; treasury now {balance}")
        return balance

    def sweep(self, caller: str, to: str, value: int) -> int:
        """Send *value* out of the treasury unconditionally."""
        with self._exclusive("sweep"):
            self._require_controller(caller, "sweep")
            try:
                with self.ledger.atomic():
                    self.ledger.transfer(self.account, to, value)
            except LedgerError as exc:
                raise TransferRejected(to, value, str(exc)) from exc
            balance = self.balance
        logger.info(f"Swept {value} to {to}; treasury now {balance}")
        return balance

    def distribute_if_below(
        self,
        caller: str,
        entries: Sequence[Disbursement],
        *,
        raise_on_failure: bool = True,
    ) -> DisbursementOutcome:
        """Top up every valid recipient under its threshold, or nobody.

        The balances in *entries* are the caller's snapshot and are not
        re-read between transfers.  Duplicate recipients are paid once per
        occurrence; deduplication is up to the caller.

        With ``raise_on_failure=False``, :class:`InsufficientTreasury` and
        :class:`TransferRejected` are reported through the returned outcome
        instead of raised.  :class:`Unauthorized` always raises.
        """
        with self._exclusive("distribute_if_below"):
            self._require_controller(caller, "distribute from treasury")
            before = self.balance
            try:
                plan = plan_disbursement(before, entries)
                with self.ledger.atomic():
                    for outcome in plan.payable:
                        try:
                            self.ledger.transfer(self.account, outcome.recipient_id, outcome.amount)
                        except LedgerError as exc:
                            raise TransferRejected(
                                outcome.recipient_id, outcome.amount, str(exc)
                            ) from exc
            except (InsufficientTreasury, TransferRejected) as exc:
                logger.warning(f"Disbursement batch of {len(entries)} refused: {exc}")
                if raise_on_failure:
                    raise
                required = exc.required if isinstance(exc, InsufficientTreasury) else 0
                return DisbursementOutcome(
                    success=False,
                    treasury_before=before,
                    treasury_after=self.balance,
                    required=required,
                    error=exc,
                )
            after = self.balance

        for skipped in plan.outcomes:
            if not skipped.sent:
                logger.debug(
                    f"Skipped #{skipped.index} {skipped.recipient_id}: {skipped.reason.value}"
                )
        logger.info(
            f"Disbursed {plan.required} to {len(plan.payable)} of {len(entries)} "
            f"recipient(s); treasury {before} -> {after}"
        )
        return DisbursementOutcome(
            success=True,
            treasury_before=before,
            treasury_after=after,
            required=plan.required,
            outcomes=plan.outcomes,
        )

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def add_minter(self, caller: str, account: str) -> None:
        with self._exclusive("add_minter"):
            self._require_controller(caller, "add minters")
            self._minters.add(account)
        logger.info(f"Minter added: {account}")

    def remove_minter(self, caller: str, account: str) -> None:
        with self._exclusive("remove_minter"):
            self._require_controller(caller, "remove minters")
            if account not in self._minters:
                raise NotMinter(account)
            self._minters.discard(account)
        logger.info(f"Minter removed: {account}")

    def transfer_control(self, caller: str, new_controller: str) -> None:
        with self._exclusive("transfer_control"):
            self._require_controller(caller, "transfer control")
            if not is_valid_recipient(new_controller):
                raise ValueError("new controller must be a valid identity")
            self._controller = new_controller
        logger.info(f"Treasury control transferred from {caller} to {new_controller}")
