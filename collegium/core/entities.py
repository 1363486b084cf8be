"""
Core records handled by the Collegium rule engine.

Records are plain dataclasses. Identity and durability belong to the entity
store; the engine only reads and writes records through it.
"""

import typing
import uuid
from dataclasses import dataclass, field, fields
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional, Type, TypeVar

from .enums import AssessmentKind, DayOfWeek, DegreeLevel, EntityType, StudentStatus
from .exceptions import ValidationError


R = TypeVar('R', bound='Record')


def new_id() -> str:
    """Generate a new opaque record identifier."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_decimal(value: Any, name: str) -> Decimal:
    """Coerce a finite numeric value to Decimal without going through binary floats."""
    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{name} must be numeric, got {value!r}", details={'field': name})
    if not value.is_finite():
        raise ValidationError(f"{name} must be a finite number, got {value}", details={'field': name})
    return value


def encode_value(value: Any) -> Any:
    """Convert a field value to its primitive storage form."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return value


def _decode(value: Any, hint: Any) -> Any:
    if value is None:
        return None
    if typing.get_origin(hint) is typing.Union:
        hint = next(arg for arg in typing.get_args(hint) if arg is not type(None))
    if isinstance(value, hint):
        return value
    if isinstance(hint, type) and issubclass(hint, Enum):
        return hint(value)
    if hint is Decimal:
        return Decimal(str(value))
    if hint is datetime:
        return datetime.fromisoformat(value)
    if hint is date:
        return date.fromisoformat(value)
    if hint is time:
        return time.fromisoformat(value)
    return hint(value)


class Record:
    """Mixin giving dataclass records a primitive dictionary form."""

    entity_type: typing.ClassVar[EntityType]

    def to_dict(self) -> Dict[str, Any]:
        """Convert the record to a dictionary of JSON/SQL friendly values."""
        return {f.name: encode_value(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_dict(cls: Type[R], data: Dict[str, Any]) -> R:
        """Rebuild a record from the output of to_dict (or a database row)."""
        hints = typing.get_type_hints(cls)
        kwargs = {}
        for f in fields(cls):
            if f.name in data:
                kwargs[f.name] = _decode(data[f.name], hints[f.name])
        return cls(**kwargs)


@dataclass
class Room(Record):
    """A physical classroom."""
    building: str
    room_number: str
    capacity: int
    room_type: Optional[str] = None
    id: str = field(default_factory=new_id)

    entity_type = EntityType.ROOM

    def __post_init__(self):
        if self.capacity <= 0:
            raise ValidationError("Room capacity must be positive")


@dataclass
class Term(Record):
    """An academic term, e.g. Fall 2025."""
    name: str
    start_date: date
    end_date: date
    id: str = field(default_factory=new_id)

    entity_type = EntityType.TERM

    def __post_init__(self):
        if self.end_date < self.start_date:
            raise ValidationError("Term cannot end before it starts")


@dataclass
class Program(Record):
    """An academic program and its graduation threshold."""
    name: str
    credits_required: int
    degree_level: DegreeLevel = DegreeLevel.BACHELOR
    id: str = field(default_factory=new_id)

    entity_type = EntityType.PROGRAM

    def __post_init__(self):
        self.degree_level = DegreeLevel(self.degree_level)
        if self.credits_required <= 0:
            raise ValidationError("Program credits_required must be positive")


@dataclass
class Student(Record):
    """A student. Status is mutated by the engine only."""
    program_id: str
    first_name: str
    last_name: str
    email: str
    status: StudentStatus = StudentStatus.ACTIVE
    id: str = field(default_factory=new_id)

    entity_type = EntityType.STUDENT

    def __post_init__(self):
        self.status = StudentStatus(self.status)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@dataclass
class Instructor(Record):
    """A university instructor."""
    first_name: str
    last_name: str
    email: str
    rank_title: Optional[str] = None
    id: str = field(default_factory=new_id)

    entity_type = EntityType.INSTRUCTOR


@dataclass
class Course(Record):
    """A course and its credit value."""
    title: str
    credits: int
    description: Optional[str] = None
    id: str = field(default_factory=new_id)

    entity_type = EntityType.COURSE

    def __post_init__(self):
        if self.credits <= 0:
            raise ValidationError("Course credits must be positive")


@dataclass
class Section(Record):
    """A scheduled offering of a course in a term."""
    course_id: str
    term_id: str
    section_code: str
    capacity: int
    language: Optional[str] = None
    id: str = field(default_factory=new_id)

    entity_type = EntityType.SECTION

    def __post_init__(self):
        if self.capacity <= 0:
            raise ValidationError("Section capacity must be positive")


@dataclass
class Enrollment(Record):
    """A binding of a student to a section."""
    student_id: str
    section_id: str
    id: str = field(default_factory=new_id)

    entity_type = EntityType.ENROLLMENT


@dataclass
class ScheduleSlot(Record):
    """A weekly time slot of a section taught by an instructor, optionally in a room."""
    section_id: str
    instructor_id: str
    day_of_week: DayOfWeek
    start_time: time
    end_time: time
    room_id: Optional[str] = None
    id: str = field(default_factory=new_id)

    entity_type = EntityType.SCHEDULE_SLOT

    def __post_init__(self):
        self.day_of_week = DayOfWeek.parse(self.day_of_week)
        if self.start_time.tzinfo is not None or self.end_time.tzinfo is not None:
            raise ValidationError("Slot times must be local wall-clock times without a UTC offset")
        if self.end_time <= self.start_time:
            raise ValidationError(
                "Slot end time must be after its start time",
                details={'start_time': self.start_time.isoformat(), 'end_time': self.end_time.isoformat()},
            )

    def overlaps(self, start: time, end: time) -> bool:
        """Half-open overlap test; touching intervals do not overlap."""
        return self.start_time < end and self.end_time > start


@dataclass
class Assessment(Record):
    """A weighted piece of work in a section."""
    section_id: str
    kind: AssessmentKind
    title: str
    weight_pct: Decimal
    due_date: date
    id: str = field(default_factory=new_id)

    entity_type = EntityType.ASSESSMENT

    def __post_init__(self):
        self.kind = AssessmentKind(self.kind)
        self.weight_pct = to_decimal(self.weight_pct, "weight_pct")
        if not Decimal(0) <= self.weight_pct <= Decimal(100):
            raise ValidationError("Assessment weight must be between 0 and 100")


@dataclass
class Grade(Record):
    """A student's score on an assessment."""
    assessment_id: str
    student_id: str
    score: Decimal
    graded_at: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=new_id)

    entity_type = EntityType.GRADE

    def __post_init__(self):
        self.score = to_decimal(self.score, "score")
        if not Decimal(0) <= self.score <= Decimal(100):
            raise ValidationError("Score must be between 0 and 100", details={'score': str(self.score)})


@dataclass
class Payment(Record):
    """A student payment for a term. Immutable once recorded."""
    student_id: str
    term_id: str
    amount: Decimal
    payment_date: date
    method: Optional[str] = None
    invoice_payload: Optional[str] = None
    id: str = field(default_factory=new_id)

    entity_type = EntityType.PAYMENT

    def __post_init__(self):
        self.amount = to_decimal(self.amount, "amount")


@dataclass
class PaymentLogEntry(Record):
    """Append-only mirror of a payment write."""
    payment_id: str
    student_id: str
    term_id: str
    amount: Decimal
    payment_date: date
    logged_at: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=new_id)

    entity_type = EntityType.PAYMENT_LOG


RECORD_TYPES: Dict[EntityType, Type[Record]] = {
    cls.entity_type: cls
    for cls in (
        Room, Term, Program, Student, Instructor, Course, Section,
        Enrollment, ScheduleSlot, Assessment, Grade, Payment, PaymentLogEntry,
    )
}
