"""
Services module containing the rule-engine components.
"""

from .concurrency_manager import ConcurrencyManager, LockType
from .enrollment_service import EnrollmentService
from .scheduler_service import RoomConflict, SchedulerService
from .metrics_service import AboveAverageStudent, MetricsService, RankedStudent, SectionUtilization
from .audit_service import AuditService, MethodTermTotal
from .status_service import StatusTransitionEngine
from .grading_service import GradingService

__all__ = [
    "ConcurrencyManager",
    "LockType",
    "EnrollmentService",
    "SchedulerService",
    "RoomConflict",
    "MetricsService",
    "RankedStudent",
    "AboveAverageStudent",
    "SectionUtilization",
    "AuditService",
    "MethodTermTotal",
    "StatusTransitionEngine",
    "GradingService",
]
