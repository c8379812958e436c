"""
Teller Banking Back-Office

User authentication, bank-account lifecycle and teller-style credit/debit
transactions with non-negative balances and an append-only ledger.
"""

__version__ = "1.0.0"
