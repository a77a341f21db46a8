"""Ledger abstraction the treasury spends through.

The policy only needs two capabilities from a ledger: read a balance and move
value between accounts, plus a way to group several moves so that they are
committed together or not at all.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from typing import Callable, Iterator, Protocol


logger = logging.getLogger("gas_treasury.policy.ledger")


class LedgerError(Exception):
    """A single send could not be completed by the ledger."""


class Ledger(Protocol):
    def balance_of(self, account: str) -> int: ...

    def transfer(self, source: str, dest: str, amount: int) -> None: ...

    def atomic(self) -> contextlib.AbstractContextManager: ...


ReceiveHook = Callable[[str, str, int], None]


class InMemoryLedger:
    """Dictionary-backed ledger.

    Accounts can be configured to refuse incoming value (like a contract
    without a payable ``receive``) or to run a hook on every credit, which
    is how tests simulate recipients that call back into the treasury.
    """

    def __init__(self, balances: dict[str, int] | None = None) -> None:
        self._balances: dict[str, int] = dict(balances or {})
        self._rejecting: set[str] = set()
        self._hooks: dict[str, ReceiveHook] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def balance_of(self, account: str) -> int:
        with self._lock:
            return self._balances.get(account, 0)

    def balances(self) -> dict[str, int]:
        with self._lock:
            return dict(self._balances)

    # ------------------------------------------------------------------
    # Test/setup helpers
    # ------------------------------------------------------------------

    def credit(self, account: str, amount: int) -> None:
        """Create value out of thin air (faucet)."""
        if amount < 0:
            raise ValueError("credit amount must be non-negative")
        with self._lock:
            self._balances[account] = self._balances.get(account, 0) + amount

    def reject_incoming(self, account: str) -> None:
        self._rejecting.add(account)

    def accept_incoming(self, account: str) -> None:
        self._rejecting.discard(account)

    def on_receive(self, account: str, hook: ReceiveHook | None) -> None:
        if hook is None:
            self._hooks.pop(account, None)
        else:
            self._hooks[account] = hook

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def transfer(self, source: str, dest: str, amount: int) -> None:
        if amount < 0:
            raise LedgerError(f"negative amount {amount}")
        with self._lock:
            if dest in self._rejecting:
                raise LedgerError(f"{dest} does not accept value")
            held = self._balances.get(source, 0)
            if held < amount:
                raise LedgerError(f"{source} holds {held}, cannot send {amount}")
            self._balances[source] = held - amount
            self._balances[dest] = self._balances.get(dest, 0) + amount
        hook = self._hooks.get(dest)
        if hook is not None:
            try:
                hook(source, dest, amount)
            except Exception as exc:
                raise LedgerError(f"{dest} failed while receiving: {exc}") from exc

    @contextlib.contextmanager
    def atomic(self) -> Iterator[None]:
        """Snapshot balances and restore them if the block raises."""
        with self._lock:
            snapshot = dict(self._balances)
            try:
                yield
            except BaseException:
                self._balances = snapshot
                logger.debug("Ledger rolled back to snapshot")
                raise
