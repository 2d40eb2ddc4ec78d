"""
Fault types raised by the ledger core.

Business conditions (shortfalls, zero-work runs, integrity findings) are
returned as data; only infrastructure failures surface as exceptions.
"""

from typing import Optional, Any


class LedgerError(Exception):
    """Base exception for ledger faults."""
    pass


class PersistenceError(LedgerError):
    """
    An atomic write to the record store failed and was rolled back.

    The storage error is chained as ``__cause__``; ``result`` carries the
    itemized log of the run that was aborted.
    """

    def __init__(self, operation: str, cause: Exception, result: Optional[Any] = None):
        self.operation = operation
        self.cause = cause
        self.result = result
        super().__init__(f"{operation} failed: {cause}")
