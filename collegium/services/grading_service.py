"""
Grade recording service.
"""

import logging
from datetime import datetime
from typing import Any, List, Optional

from ..core.entities import Grade, utc_now
from ..core.enums import EntityType
from ..core.exceptions import DuplicateGradeError
from ..persistence.store import EntityStore
from .concurrency_manager import ConcurrencyManager, LockType, student_key
from .status_service import StatusTransitionEngine

logger = logging.getLogger(__name__)


class GradingService:
    """Records grades and triggers status re-evaluation in the same transaction."""

    def __init__(self, store: EntityStore, concurrency_manager: ConcurrencyManager,
                 status_engine: StatusTransitionEngine, lock_timeout: Optional[float] = None):
        self._store = store
        self._concurrency_manager = concurrency_manager
        self._status_engine = status_engine
        self._lock_timeout = lock_timeout

    def record_grade(self, assessment_id: str, student_id: str, score: Any,
                     graded_at: Optional[datetime] = None) -> str:
        """Record a student's score on an assessment and return the grade id."""
        grade = Grade(
            assessment_id=assessment_id,
            student_id=student_id,
            score=score,
            graded_at=graded_at or utc_now(),
        )
        return self._concurrency_manager.execute_with_retry(lambda: self._record_once(grade))

    def _record_once(self, grade: Grade) -> str:
        with self._concurrency_manager.lock(student_key(grade.student_id), LockType.WRITE,
                                            timeout=self._lock_timeout):
            with self._store.transaction() as session:
                session.get(EntityType.ASSESSMENT, grade.assessment_id)
                session.get(EntityType.STUDENT, grade.student_id)
                if session.query(EntityType.GRADE, assessment_id=grade.assessment_id,
                                 student_id=grade.student_id):
                    raise DuplicateGradeError(
                        f"Student {grade.student_id} already has a grade for assessment {grade.assessment_id}",
                        details={'assessment_id': grade.assessment_id, 'student_id': grade.student_id},
                    )
                session.insert(grade)
                status = self._status_engine.reevaluate(session, grade.student_id)

        logger.info(
            "Grade recorded: %s (status %s)", grade.score, status.value,
            extra={'student_id': grade.student_id, 'assessment_id': grade.assessment_id},
        )
        return grade.id

    def get_grades(self, student_id: str) -> List[Grade]:
        """Get all grades of a student."""
        return self._store.query(EntityType.GRADE, student_id=student_id)
