"""gas-treasury: a contract-held gas treasury for child wallets on EVM chains.

The heart of the package is :mod:`gas_treasury.policy`, the rule that tops
up every recipient below a threshold if, and only if, the treasury can pay
all of them.  :mod:`gas_treasury.chain` drives the on-chain Kazar contract
that implements the same rule, and :mod:`gas_treasury.api` and
:mod:`gas_treasury.cli` expose the workflows.
"""

__version__ = "0.1.0"
