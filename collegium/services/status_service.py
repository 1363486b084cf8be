"""
Student status transitions.

    active <-> inactive      (administrative)
    active/inactive -> graduated   (engine, on credit completion)

graduated is terminal.
"""

import logging
from decimal import Decimal
from typing import List, Optional, Set, Union

from ..core.entities import Grade, Program, Section, Student
from ..core.enums import EntityType, StudentStatus
from ..core.exceptions import InvalidTransitionError, ValidationError
from ..persistence.store import EntityStore, StoreSession
from .concurrency_manager import ConcurrencyManager, LockType, student_key

logger = logging.getLogger(__name__)

ADMIN_TRANSITIONS = {
    StudentStatus.ACTIVE: {StudentStatus.INACTIVE},
    StudentStatus.INACTIVE: {StudentStatus.ACTIVE},
}


class StatusTransitionEngine:
    """Re-evaluates student status from completed credits."""

    def __init__(self, store: EntityStore, concurrency_manager: ConcurrencyManager,
                 passing_score: Union[int, Decimal] = 50, lock_timeout: Optional[float] = None):
        self._store = store
        self._concurrency_manager = concurrency_manager
        self._passing_score = Decimal(str(passing_score))
        self._lock_timeout = lock_timeout

    @property
    def passing_score(self) -> Decimal:
        return self._passing_score

    def _completed_credits(self, session: StoreSession, student_id: str) -> int:
        grades: List[Grade] = session.query(EntityType.GRADE, student_id=student_id)
        passed_assessments = sorted({g.assessment_id for g in grades if g.score >= self._passing_score})
        if not passed_assessments:
            return 0
        passed_sections: Set[str] = {
            assessment.section_id
            for assessment in session.query(EntityType.ASSESSMENT, id=passed_assessments)
        }
        enrolled = [
            enrollment.section_id
            for enrollment in session.query(EntityType.ENROLLMENT, student_id=student_id)
            if enrollment.section_id in passed_sections
        ]
        if not enrolled:
            return 0
        sections: List[Section] = session.query(EntityType.SECTION, id=enrolled)
        courses = {
            course.id: course
            for course in session.query(EntityType.COURSE, id=sorted({s.course_id for s in sections}))
        }
        return sum(courses[section.course_id].credits for section in sections)

    def current_status(self, student_id: str) -> StudentStatus:
        student: Student = self._store.get(EntityType.STUDENT, student_id)
        return student.status

    def completed_credits(self, student_id: str) -> int:
        """Credits from enrolled sections with at least one passing grade."""
        with self._store.snapshot() as session:
            session.get(EntityType.STUDENT, student_id)
            return self._completed_credits(session, student_id)

    def reevaluate(self, session: StoreSession, student_id: str) -> StudentStatus:
        """Apply the graduation rule inside the caller's transaction.

        Must run in the same transaction as the grade write that triggered
        it, with the student's lock held.
        """
        student: Student = session.get(EntityType.STUDENT, student_id)
        if student.status == StudentStatus.GRADUATED:
            return student.status

        program: Program = session.get(EntityType.PROGRAM, student.program_id)
        credits = self._completed_credits(session, student_id)
        if credits >= program.credits_required:
            session.update(EntityType.STUDENT, student_id, status=StudentStatus.GRADUATED)
            logger.info(
                "Student graduated with %d/%d credits", credits, program.credits_required,
                extra={'student_id': student_id, 'program_id': program.id},
            )
            return StudentStatus.GRADUATED
        return student.status

    def set_status(self, student_id: str, status: Union[StudentStatus, str]) -> Student:
        """Administrative transition between active and inactive."""
        try:
            target = StudentStatus(status)
        except ValueError:
            raise ValidationError(f"Invalid student status: {status!r}", details={'status': str(status)})

        def apply() -> Student:
            with self._concurrency_manager.lock(student_key(student_id), LockType.WRITE,
                                                timeout=self._lock_timeout):
                with self._store.transaction() as session:
                    student: Student = session.get(EntityType.STUDENT, student_id)
                    if student.status == target and target in ADMIN_TRANSITIONS:
                        return student
                    if target not in ADMIN_TRANSITIONS.get(student.status, set()):
                        raise InvalidTransitionError(
                            f"Cannot change status from {student.status.value} to {target.value}",
                            details={'student_id': student_id, 'from': student.status.value,
                                     'to': target.value},
                        )
                    updated = session.update(EntityType.STUDENT, student_id, status=target)
            logger.info(
                "Student status changed to %s", target.value, extra={'student_id': student_id},
            )
            return updated

        return self._concurrency_manager.execute_with_retry(apply)
