"""Concurrency tests: racing writers, lock timeouts and retry behaviour."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from collegium.core import (
    CapacityExceededError, EntityType, LockTimeoutError, ScheduleConflictError, Section, Student,
    StoreUnavailableError, ValidationError,
)
from collegium.persistence import InMemoryEntityStore
from collegium.services import ConcurrencyManager, EnrollmentService, LockType
from collegium.services.concurrency_manager import section_key


def _race(tasks):
    """Start all tasks together and collect (result, error) pairs."""
    barrier = threading.Barrier(len(tasks))

    def run(task):
        barrier.wait()
        try:
            return task(), None
        except Exception as e:
            return None, e

    with ThreadPoolExecutor(max_workers=len(tasks)) as pool:
        return list(pool.map(run, tasks))


def test_last_seat_race_admits_exactly_one(campus, store, enrollment_service):
    last_seat = Section(course_id=campus.course.id, term_id=campus.term.id, section_code="SEM-01", capacity=1)
    students = [
        Student(program_id=campus.program.id, first_name=f"S{i}", last_name="Racer", email=f"s{i}@uni.edu")
        for i in range(8)
    ]
    store.insert_many([last_seat, *students])

    outcomes = _race([
        (lambda student_id=student.id: enrollment_service.enroll(student_id, last_seat.id))
        for student in students
    ])

    successes = [result for result, error in outcomes if error is None]
    failures = [error for _, error in outcomes if error is not None]
    assert len(successes) == 1
    assert len(failures) == 7
    assert all(isinstance(error, CapacityExceededError) for error in failures)
    assert len(store.query(EntityType.ENROLLMENT, section_id=last_seat.id)) == 1


def test_overlapping_assignments_race(campus, store, scheduler_service):
    instructor = campus.instructors[0]
    starts = ["09:00", "09:30", "10:00", "10:30"]

    outcomes = _race([
        (lambda start=start: scheduler_service.assign_instructor(
            instructor.id, campus.section.id, "Monday", start, "11:00"))
        for start in starts
    ])

    assert len([result for result, error in outcomes if error is None]) == 1
    assert all(isinstance(error, ScheduleConflictError) for _, error in outcomes if error is not None)
    assert len(store.query(EntityType.SCHEDULE_SLOT, instructor_id=instructor.id)) == 1


def test_lock_timeout_raises_retryable_error():
    manager = ConcurrencyManager(default_timeout=0.05, max_retries=0)
    held = threading.Event()
    release = threading.Event()

    def holder():
        with manager.lock("section:x"):
            held.set()
            release.wait(2.0)

    thread = threading.Thread(target=holder)
    thread.start()
    held.wait(2.0)
    try:
        with pytest.raises(LockTimeoutError) as exc_info:
            manager.acquire_lock("section:x")
        assert exc_info.value.retryable
        assert isinstance(exc_info.value, StoreUnavailableError)
    finally:
        release.set()
        thread.join()

    assert manager.get_lock_info("section:x") == []


def test_lock_is_reentrant_and_read_locks_shared():
    manager = ConcurrencyManager(default_timeout=0.05)
    with manager.lock("student:a"):
        with manager.lock("student:a"):
            assert len(manager.get_lock_info("student:a")) == 2

    first = manager.acquire_lock("room:1", LockType.READ, holder_id="reader-1")
    second = manager.acquire_lock("room:1", LockType.READ, holder_id="reader-2")
    with pytest.raises(LockTimeoutError):
        manager.acquire_lock("room:1", LockType.WRITE, holder_id="writer")
    assert manager.release_lock(first)
    assert manager.release_lock(second)
    assert not manager.release_lock(second)
    assert len(manager.get_holder_locks("reader-1")) == 0


def test_execute_with_retry_retries_only_retryable_errors():
    manager = ConcurrencyManager(max_retries=3, backoff_factor=0.001)
    attempts = []

    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise StoreUnavailableError("busy")
        return "ok"

    assert manager.execute_with_retry(flaky) == "ok"
    assert len(attempts) == 3

    attempts.clear()

    def invalid():
        attempts.append(1)
        raise ValidationError("bad")

    with pytest.raises(ValidationError):
        manager.execute_with_retry(invalid)
    assert len(attempts) == 1

    attempts.clear()

    def down():
        attempts.append(1)
        raise StoreUnavailableError("down")

    with pytest.raises(StoreUnavailableError):
        manager.execute_with_retry(down, max_retries=1)
    assert len(attempts) == 2


def test_enroll_gives_up_after_lock_timeouts(campus):
    store = InMemoryEntityStore()
    store.insert_many([campus.program, campus.term, campus.course, campus.section, campus.students[0]])
    manager = ConcurrencyManager(default_timeout=0.02, max_retries=2, backoff_factor=0.001)
    service = EnrollmentService(store, manager)
    lock_id = manager.acquire_lock(section_key(campus.section.id), holder_id="admin")

    try:
        with pytest.raises(LockTimeoutError):
            service.enroll(campus.students[0].id, campus.section.id)
    finally:
        manager.release_lock(lock_id)

    assert store.query(EntityType.ENROLLMENT) == []
    service.enroll(campus.students[0].id, campus.section.id)
    assert service.enrolled_count(campus.section.id) == 1


def test_memory_store_write_lock_timeout(campus):
    store = InMemoryEntityStore(timeout=0.02)
    entered = threading.Event()
    release = threading.Event()

    def long_writer():
        with store.transaction():
            entered.set()
            release.wait(2.0)

    thread = threading.Thread(target=long_writer)
    thread.start()
    entered.wait(2.0)
    try:
        with pytest.raises(StoreUnavailableError):
            store.insert(campus.program)
    finally:
        release.set()
        thread.join()

    store.insert(campus.program)
    assert store.exists(EntityType.PROGRAM, campus.program.id)
