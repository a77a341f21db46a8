import pytest

from gas_treasury.policy import InMemoryLedger, Treasury


CONTROLLER = "controller"
TREASURY = "treasury"


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def make_treasury(ledger):
    """Build a treasury holding *balance* on the shared ledger."""

    def _make(balance: int = 0, **kwargs) -> Treasury:
        ledger.credit(TREASURY, balance)
        return Treasury(ledger, TREASURY, CONTROLLER, **kwargs)

    return _make
