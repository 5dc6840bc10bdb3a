"""Application error hierarchy.

Errors are raised where a rule is broken and converted to the JSON envelope
once, by the exception handlers registered in ``main.py``.
"""

from typing import Optional


class AppError(Exception):
    """Base error carrying an HTTP status and a machine-readable code"""

    status_code = 500
    code = "INTERNAL_ERROR"
    # Operational errors are expected and safe to show to the caller
    is_operational = True

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.details = details


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: Optional[str] = None):
        message = f"{resource} with id {identifier} not found" if identifier else f"{resource} not found"
        super().__init__(message)


class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT"


class DatabaseError(AppError):
    status_code = 500
    code = "DATABASE_ERROR"
    is_operational = False

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.original_error = original_error


class BusinessRuleError(AppError):
    """A request that is well formed but breaks an order lifecycle rule"""

    status_code = 400
    code = "BUSINESS_RULE_VIOLATION"


class InvalidTransition(BusinessRuleError):
    code = "INVALID_TRANSITION"

    def __init__(self, current_status: str, new_status: str):
        super().__init__(f"Invalid status transition from {current_status} to {new_status}")
        self.current_status = current_status
        self.new_status = new_status


class NotCompleted(BusinessRuleError):
    code = "NOT_COMPLETED"

    def __init__(self, status: str):
        super().__init__(
            f"Order must be completed before marking ready for billing (current status: {status})"
        )
        self.status = status


class InvalidAmount(BusinessRuleError):
    code = "INVALID_AMOUNT"

    def __init__(self, amount):
        super().__init__(f"Payment amount must be positive (got {amount})")
        self.amount = amount
