"""
Enrollment service enforcing section capacity and enrollment uniqueness.
"""

import logging
from typing import List, Optional

from ..core.entities import Enrollment, Section
from ..core.enums import EntityType
from ..core.exceptions import CapacityExceededError, DuplicateEnrollmentError
from ..persistence.store import EntityStore, StoreSession
from .concurrency_manager import ConcurrencyManager, LockType, section_key

logger = logging.getLogger(__name__)


class EnrollmentService:
    """Service for validating and committing student enrollments.

    The enrolled count is always derived from the Enrollment set inside the
    same transaction as the insert, while the section's write lock is held,
    so two callers can never both claim the last seat.
    """

    def __init__(self, store: EntityStore, concurrency_manager: ConcurrencyManager,
                 lock_timeout: Optional[float] = None):
        self._store = store
        self._concurrency_manager = concurrency_manager
        self._lock_timeout = lock_timeout

    def enroll(self, student_id: str, section_id: str) -> str:
        """Enroll a student in a section and return the new enrollment id."""
        return self._concurrency_manager.execute_with_retry(
            lambda: self._enroll_once(student_id, section_id)
        )

    def _enroll_once(self, student_id: str, section_id: str) -> str:
        with self._concurrency_manager.lock(section_key(section_id), LockType.WRITE, timeout=self._lock_timeout):
            with self._store.transaction() as session:
                session.get(EntityType.STUDENT, student_id)
                section: Section = session.get(EntityType.SECTION, section_id)

                if session.query(EntityType.ENROLLMENT, student_id=student_id, section_id=section_id):
                    logger.info(
                        "Duplicate enrollment rejected",
                        extra={'student_id': student_id, 'section_id': section_id},
                    )
                    raise DuplicateEnrollmentError(
                        f"Student {student_id} is already enrolled in section {section_id}",
                        details={'student_id': student_id, 'section_id': section_id},
                    )

                enrolled = self._count(session, section_id)
                if enrolled >= section.capacity:
                    logger.info(
                        "Section full: %d/%d", enrolled, section.capacity,
                        extra={'student_id': student_id, 'section_id': section_id},
                    )
                    raise CapacityExceededError(
                        f"Section {section_id} is full ({enrolled}/{section.capacity})",
                        details={'section_id': section_id, 'capacity': section.capacity, 'enrolled': enrolled},
                    )

                enrollment = Enrollment(student_id=student_id, section_id=section_id)
                session.insert(enrollment)

        logger.info(
            "Student enrolled", extra={'student_id': student_id, 'section_id': section_id},
        )
        return enrollment.id

    @staticmethod
    def _count(session: StoreSession, section_id: str) -> int:
        return session.count(EntityType.ENROLLMENT, section_id=section_id)

    def enrolled_count(self, section_id: str) -> int:
        """Get number of students enrolled in a section."""
        with self._store.snapshot() as session:
            session.get(EntityType.SECTION, section_id)
            return self._count(session, section_id)

    def seats_remaining(self, section_id: str) -> int:
        """Get number of free seats in a section."""
        with self._store.snapshot() as session:
            section: Section = session.get(EntityType.SECTION, section_id)
            return max(section.capacity - self._count(session, section_id), 0)

    def get_enrollments(self, student_id: str) -> List[Enrollment]:
        """Get all enrollments of a student."""
        return self._store.query(EntityType.ENROLLMENT, student_id=student_id)

    def get_roster(self, section_id: str) -> List[Enrollment]:
        """Get all enrollments of a section, in enrollment order."""
        return self._store.query(EntityType.ENROLLMENT, section_id=section_id)
