"""DB-related modules for the image engine.

This package centralizes the DB operator, the derivative store and its
schema migrations.
"""

from .db_operator import DbOperator
from .derivative_store import DerivativeStore

__all__ = [
    "DbOperator",
    "DerivativeStore",
]
