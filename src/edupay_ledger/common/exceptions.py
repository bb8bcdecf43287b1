"""
This file contains custom, application-specific exceptions.

Business-rule rejections of a payment are never raised; they come back as a
PaymentValidation. Everything here is either a referential failure, a store
failure, or an illegal state transition requested by a caller.
"""

class LedgerError(Exception):
    """Base class for every error raised by the ledger engine."""
    pass

class StudentNotFoundError(LedgerError):
    """Raised when a student ID is not found in the student repository."""
    pass

class FeeStructureNotFoundError(LedgerError):
    """Raised when no fee structure exists for a (school, class, term) key."""
    pass

class CarryoverNotFoundError(LedgerError):
    """Raised when a carryover ID is not found."""
    pass

class PromiseNotFoundError(LedgerError):
    """Raised when a payment promise ID is not found."""
    pass

class ConcurrencyConflictError(LedgerError):
    """Raised when a ledger was modified by another writer since it was read."""
    pass

class RecordDecodeError(LedgerError):
    """Raised when a stored record cannot be decoded into its typed model."""
    pass

class CarryoverStateError(LedgerError):
    """Raised when a carryover is asked to leave a terminal status."""
    pass

class PromiseStateError(LedgerError):
    """Raised when an action is not allowed for a promise's current status."""
    pass

class InvalidInstallmentPlanError(LedgerError):
    """Raised when installment rules cannot form a valid plan."""
    pass
