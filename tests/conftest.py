"""Root conftest: shared stores, services and seed data."""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List

import pytest

from collegium.core import (
    Assessment, AssessmentKind, Course, Instructor, Program, Room, Section, Student, Term,
)
from collegium.persistence import InMemoryEntityStore, SQLiteDatabase, SQLiteEntityStore
from collegium.services import (
    AuditService, ConcurrencyManager, EnrollmentService, GradingService, MetricsService,
    SchedulerService, StatusTransitionEngine,
)


@dataclass
class Campus:
    """Reference data every test starts from."""
    program: Program
    term: Term
    spring: Term
    course: Course
    section: Section
    instructors: List[Instructor]
    rooms: List[Room]
    students: List[Student] = field(default_factory=list)


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    """Each test runs against both store backends."""
    if request.param == "memory":
        entity_store = InMemoryEntityStore(timeout=2.0)
    else:
        entity_store = SQLiteEntityStore(SQLiteDatabase(str(tmp_path / "collegium.db"), timeout=5.0))
    yield entity_store
    entity_store.close()


@pytest.fixture
def memory_store():
    return InMemoryEntityStore(timeout=2.0)


@pytest.fixture
def manager():
    return ConcurrencyManager(default_timeout=2.0, max_retries=3, backoff_factor=0.01)


@pytest.fixture
def campus(store):
    program = Program(name="Computer Science", credits_required=6)
    term = Term(name="Fall 2025", start_date=date(2025, 9, 1), end_date=date(2025, 12, 20))
    spring = Term(name="Spring 2026", start_date=date(2026, 2, 1), end_date=date(2026, 6, 15))
    course = Course(title="Databases", credits=3)
    section = Section(course_id=course.id, term_id=term.id, section_code="DB-01", capacity=2)
    instructors = [
        Instructor(first_name="Ada", last_name="Lovelace", email="ada@uni.edu"),
        Instructor(first_name="Alan", last_name="Turing", email="alan@uni.edu"),
    ]
    rooms = [
        Room(building="Main", room_number="101", capacity=40),
        Room(building="Main", room_number="102", capacity=30),
    ]
    students = [
        Student(program_id=program.id, first_name=name, last_name="Doe", email=f"{name.lower()}@uni.edu")
        for name in ("Alice", "Bob", "Carol")
    ]
    store.insert_many([program, term, spring, course, section, *instructors, *rooms, *students])
    return Campus(
        program=program,
        term=term,
        spring=spring,
        course=course,
        section=section,
        instructors=instructors,
        rooms=rooms,
        students=students,
    )


@pytest.fixture
def add_assessment(store):
    """Factory inserting an assessment with the given weight into a section."""

    def _add(section: Section, weight, title: str = "Exam",
             kind: AssessmentKind = AssessmentKind.EXAM) -> Assessment:
        assessment = Assessment(
            section_id=section.id, kind=kind, title=title, weight_pct=Decimal(str(weight)),
            due_date=date(2025, 12, 1),
        )
        store.insert(assessment)
        return assessment

    return _add


@pytest.fixture
def enrollment_service(store, manager):
    return EnrollmentService(store, manager, lock_timeout=2.0)


@pytest.fixture
def scheduler_service(store, manager):
    return SchedulerService(store, manager, lock_timeout=2.0)


@pytest.fixture
def metrics_service(store):
    return MetricsService(store, hot_section_threshold_pct=Decimal(90))


@pytest.fixture
def audit_service(store, manager):
    return AuditService(store, manager, lock_timeout=2.0)


@pytest.fixture
def status_engine(store, manager):
    return StatusTransitionEngine(store, manager, passing_score=50, lock_timeout=2.0)


@pytest.fixture
def grading_service(store, manager, status_engine):
    return GradingService(store, manager, status_engine, lock_timeout=2.0)
