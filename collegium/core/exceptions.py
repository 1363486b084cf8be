"""
Custom exceptions for the Collegium rule engine.

Business-rule rejections are terminal and surfaced verbatim. Store
unavailability is transient and safe to retry, because every validating
operation re-reads state from scratch.
"""

from typing import Optional, Any, Dict


class CollegiumException(Exception):
    """Base exception for all Collegium-related errors."""

    retryable = False

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code()
        self.details = details or {}

    @classmethod
    def default_code(cls) -> str:
        """Derive an error code from the class name (CapacityExceededError -> CAPACITY_EXCEEDED)."""
        name = cls.__name__
        if name.endswith("Error"):
            name = name[:-len("Error")]
        chars = []
        for index, char in enumerate(name):
            if char.isupper() and index > 0:
                chars.append("_")
            chars.append(char.upper())
        return "".join(chars)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the error to a serializable dictionary."""
        return {
            'code': self.error_code,
            'message': self.message,
            'details': self.details,
        }


class ValidationError(CollegiumException):
    """Raised when input data validation fails."""
    pass


class NotFoundError(CollegiumException):
    """Raised when a referenced entity does not exist."""

    def __init__(self, entity_type: str, entity_id: Any, message: Optional[str] = None):
        super().__init__(
            message or f"{entity_type} {entity_id!r} not found",
            details={'entity_type': entity_type, 'entity_id': entity_id},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class BusinessRuleError(CollegiumException):
    """Raised when a request violates a business invariant."""
    pass


class CapacityExceededError(BusinessRuleError):
    """Raised when a section has no remaining seats."""
    pass


class DuplicateEnrollmentError(BusinessRuleError):
    """Raised when a student is already enrolled in a section."""
    pass


class ScheduleConflictError(BusinessRuleError):
    """Raised when an instructor time slot overlaps an existing one."""
    pass


class InvalidPaymentError(BusinessRuleError):
    """Raised when a payment references unknown entities or has a negative amount."""
    pass


class NoGradedWorkError(BusinessRuleError):
    """Raised when a GPA is requested for a student with no weighted grades."""
    pass


class DuplicateGradeError(BusinessRuleError):
    """Raised when a grade already exists for an (assessment, student) pair."""
    pass


class InvalidTransitionError(BusinessRuleError):
    """Raised when a student status transition is not allowed."""
    pass


class StoreUnavailableError(CollegiumException):
    """Raised when the entity store cannot be reached in time."""

    retryable = True


class LockTimeoutError(StoreUnavailableError):
    """Raised when a resource lock cannot be acquired before the timeout."""
    pass


class PersistenceError(CollegiumException):
    """Raised when persistence operations fail."""
    pass


class ConfigurationError(CollegiumException):
    """Raised when configuration is invalid."""
    pass
