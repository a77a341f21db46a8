"""EVM chain access for gas-treasury.

Wraps web3.py for the Kazar ERC-721 contract, whose contract balance is the
treasury that tops up child wallets with gas.  The owner key is the
treasury controller; child wallets are generated per user and granted
minting rights on demand.
"""
