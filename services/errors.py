"""
Domain errors shared by the services.

Every error carries the HTTP status the route layer answers with, and
`to_dict()` gives the JSON body.
"""


class LedgerError(Exception):
    """Base class for every error a service raises on purpose"""
    status_code = 400

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__

    def to_dict(self):
        return {"error": self.message, "kind": self.__class__.__name__}


class ValidationError(LedgerError):
    """Raised when user input is invalid"""
    pass


class InvalidSplitError(ValidationError):
    """Raised when split amounts don't add up to the total or one is negative"""

    def __init__(self, message=None, errors=None):
        super().__init__(message)
        self.errors = list(errors or [])

    def to_dict(self):
        data = super().to_dict()
        if self.errors:
            data["errors"] = self.errors
        return data


class InvalidUtrError(ValidationError):
    """Raised when a UTR reference isn't 12-16 digits"""
    pass


class MissingPayoutHandleError(ValidationError):
    """Raised when the receiver has no UPI ID to be paid on"""
    pass


class InvalidTransitionError(ValidationError):
    """Raised when a settlement can't move from its current state"""
    status_code = 409


class OverSettlementError(LedgerError):
    """Raised when confirming would settle more than is actually owed"""
    status_code = 409

    def __init__(self, actual, pending, message=None):
        self.actual = actual
        self.pending = pending
        self.excess = pending - actual
        super().__init__(
            message
            or f"Settlements total {pending:.2f} but only {actual:.2f} is owed "
               f"({self.excess:.2f} more than the actual debt)."
        )

    def to_dict(self):
        data = super().to_dict()
        data.update({
            "actual": f"{self.actual:.2f}",
            "pending": f"{self.pending:.2f}",
            "excess": f"{self.excess:.2f}",
            "requires_override": True,
        })
        return data


class ConfirmedSettlementError(LedgerError):
    """Raised when deleting a confirmed settlement without override"""
    status_code = 409

    def to_dict(self):
        data = super().to_dict()
        data["requires_override"] = True
        return data


class NotFoundError(LedgerError):
    """Raised when a record doesn't exist"""
    status_code = 404


class ExpenseNotFoundError(NotFoundError):
    """Raised when an expense is not found"""
    pass


class SettlementNotFoundError(NotFoundError):
    """Raised when a settlement is not found"""
    pass


class GroupNotFoundError(NotFoundError):
    """Raised when a group is not found"""
    pass


class PersistenceError(LedgerError):
    """Raised when the database write fails and the operation is aborted"""
    status_code = 500


class PermissionError(LedgerError):
    """Raised when user doesn't have permission for an operation"""
    status_code = 403
