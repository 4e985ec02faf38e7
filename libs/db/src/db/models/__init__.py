"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the ledger models used by ``finance_tracker``.
"""

from .ledger import Base, Statement, Transaction

__all__ = [
    "Base",
    "Statement",
    "Transaction",
]
