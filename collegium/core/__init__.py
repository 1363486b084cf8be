"""
Core module containing records, enumerations and the error taxonomy.
"""

from .entities import *
from .exceptions import *
from .enums import *

__all__ = [
    # Records
    "Record",
    "Room",
    "Term",
    "Program",
    "Student",
    "Instructor",
    "Course",
    "Section",
    "Enrollment",
    "ScheduleSlot",
    "Assessment",
    "Grade",
    "Payment",
    "PaymentLogEntry",
    "RECORD_TYPES",

    # Enums
    "StudentStatus",
    "DegreeLevel",
    "AssessmentKind",
    "DayOfWeek",
    "EntityType",
    "IMMUTABLE_ENTITY_TYPES",

    # Exceptions
    "CollegiumException",
    "ValidationError",
    "NotFoundError",
    "BusinessRuleError",
    "CapacityExceededError",
    "DuplicateEnrollmentError",
    "ScheduleConflictError",
    "InvalidPaymentError",
    "NoGradedWorkError",
    "DuplicateGradeError",
    "InvalidTransitionError",
    "StoreUnavailableError",
    "LockTimeoutError",
    "PersistenceError",
    "ConfigurationError",
]
