"""
Transfer Ledger Core

Peer-to-peer balance transfers between accounts identified by 10-digit
account numbers. Balances are fixed-point Decimal amounts, every transfer is
applied as one atomic unit, and every state change is audited.
"""

__version__ = "1.0.0"
