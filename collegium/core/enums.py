"""
Enumerations and constants for the Collegium rule engine.
"""

from enum import Enum
from typing import Union

from .exceptions import ValidationError


class StudentStatus(Enum):
    """Lifecycle status of a student."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    GRADUATED = "graduated"


class DegreeLevel(Enum):
    """Academic level of a program."""
    BACHELOR = "Bachelor"
    MASTER = "Master"
    PHD = "PhD"


class AssessmentKind(Enum):
    """Kinds of assessment that can be weighted into a GPA."""
    QUIZ = "quiz"
    EXAM = "exam"
    ASSIGNMENT = "assignment"


class DayOfWeek(Enum):
    """Canonical days of the week, in calendar order."""
    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"
    SATURDAY = "Saturday"
    SUNDAY = "Sunday"

    @property
    def ordinal(self) -> int:
        """Position of the day in the week (Monday = 0)."""
        return list(DayOfWeek).index(self)

    @classmethod
    def parse(cls, value: Union[str, "DayOfWeek"]) -> "DayOfWeek":
        """Accept a DayOfWeek or a case-insensitive day name."""
        if isinstance(value, DayOfWeek):
            return value
        if isinstance(value, str):
            for day in cls:
                if day.value.lower() == value.strip().lower():
                    return day
        raise ValidationError(f"Invalid day of week: {value!r}", details={'day': str(value)})


class EntityType(Enum):
    """Entity kinds held by the entity store."""
    ROOM = "room"
    TERM = "term"
    PROGRAM = "program"
    STUDENT = "student"
    INSTRUCTOR = "instructor"
    COURSE = "course"
    SECTION = "section"
    ENROLLMENT = "enrollment"
    SCHEDULE_SLOT = "schedule_slot"
    ASSESSMENT = "assessment"
    GRADE = "grade"
    PAYMENT = "payment"
    PAYMENT_LOG = "payment_log"


# Entity types that are append-only once written.
IMMUTABLE_ENTITY_TYPES = frozenset({
    EntityType.ENROLLMENT,
    EntityType.SCHEDULE_SLOT,
    EntityType.GRADE,
    EntityType.PAYMENT,
    EntityType.PAYMENT_LOG,
})
