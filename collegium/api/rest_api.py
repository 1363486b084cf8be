"""
REST API implementation for the Collegium platform using FastAPI.

Routes call the engine operations verbatim; every rejection surfaces as a
CollegiumException and is rendered by the handlers in error_handlers.
"""

from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, field_validator

from .. import __version__
from ..core.enums import StudentStatus
from ..services import (
    AuditService, EnrollmentService, GradingService, MetricsService, SchedulerService,
    StatusTransitionEngine,
)
from .error_handlers import register_error_handlers


# Pydantic models for API
class EnrollmentRequest(BaseModel):
    student_id: str = Field(..., min_length=1)
    section_id: str = Field(..., min_length=1)


class EnrollmentResponse(BaseModel):
    enrollment_id: str
    student_id: str
    section_id: str


class ScheduleRequest(BaseModel):
    instructor_id: str = Field(..., min_length=1)
    section_id: str = Field(..., min_length=1)
    day_of_week: str = Field(..., min_length=1)
    start_time: time
    end_time: time
    room_id: Optional[str] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def reject_utc_offset(cls, v: time) -> time:
        if v.tzinfo is not None:
            raise ValueError("slot times must not carry a UTC offset")
        return v


class ScheduleResponse(BaseModel):
    slot_id: str
    instructor_id: str
    section_id: str


class GradeRequest(BaseModel):
    assessment_id: str = Field(..., min_length=1)
    student_id: str = Field(..., min_length=1)
    score: Decimal
    graded_at: Optional[datetime] = None


class GradeResponse(BaseModel):
    grade_id: str
    student_status: str


class PaymentRequest(BaseModel):
    student_id: str = Field(..., min_length=1)
    term_id: str = Field(..., min_length=1)
    amount: Decimal
    payment_date: date
    method: Optional[str] = Field(None, max_length=50)
    invoice_payload: Optional[str] = None


class PaymentResponse(BaseModel):
    payment_id: str


class StatusChangeRequest(BaseModel):
    status: str = Field(..., pattern=r'^(active|inactive|graduated)$')


class GPAResponse(BaseModel):
    student_id: str
    term_id: Optional[str] = None
    gpa: str


class CollegiumRestAPI:
    """REST API implementation for the Collegium platform."""

    def __init__(self, enrollment_service: EnrollmentService, scheduler_service: SchedulerService,
                 metrics_service: MetricsService, audit_service: AuditService,
                 grading_service: GradingService, status_engine: StatusTransitionEngine,
                 cors_origins: Optional[List[str]] = None):
        self._enrollment_service = enrollment_service
        self._scheduler_service = scheduler_service
        self._metrics_service = metrics_service
        self._audit_service = audit_service
        self._grading_service = grading_service
        self._status_engine = status_engine

        # Create FastAPI app
        self.app = FastAPI(
            title="Collegium API",
            description="Business-rule and consistency layer for academic records",
            version=__version__,
            docs_url="/docs",
            redoc_url="/redoc",
        )

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins or ["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        register_error_handlers(self.app)
        self._setup_routes()

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/health", response_model=Dict[str, str])
        def health_check():
            """Health check endpoint."""
            return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

        # Enrollment endpoints
        @self.app.post("/enrollments", response_model=EnrollmentResponse, status_code=status.HTTP_201_CREATED)
        def enroll_student(request: EnrollmentRequest):
            """Enroll a student in a section."""
            enrollment_id = self._enrollment_service.enroll(request.student_id, request.section_id)
            return EnrollmentResponse(
                enrollment_id=enrollment_id,
                student_id=request.student_id,
                section_id=request.section_id,
            )

        @self.app.get("/sections/utilization", response_model=List[Dict[str, Any]])
        def section_utilization(term_id: Optional[str] = None, threshold_pct: Optional[Decimal] = None,
                                hot: bool = False):
            """Fill rate per section; hot=true applies the configured hot-section threshold."""
            if hot:
                rows = self._metrics_service.hot_sections(term_id)
            else:
                rows = self._metrics_service.section_utilization(term_id, threshold_pct)
            return [row.to_dict() for row in rows]

        @self.app.get("/sections/{section_id}/seats", response_model=Dict[str, Any])
        def section_seats(section_id: str):
            """Enrolled count and remaining seats of a section."""
            return {
                "section_id": section_id,
                "enrolled": self._enrollment_service.enrolled_count(section_id),
                "seats_remaining": self._enrollment_service.seats_remaining(section_id),
            }

        # Scheduling endpoints
        @self.app.post("/schedules", response_model=ScheduleResponse, status_code=status.HTTP_201_CREATED)
        def assign_instructor(request: ScheduleRequest):
            """Assign an instructor to a weekly slot."""
            slot_id = self._scheduler_service.assign_instructor(
                request.instructor_id,
                request.section_id,
                request.day_of_week,
                request.start_time,
                request.end_time,
                room_id=request.room_id,
            )
            return ScheduleResponse(
                slot_id=slot_id,
                instructor_id=request.instructor_id,
                section_id=request.section_id,
            )

        @self.app.get("/rooms/conflicts", response_model=List[Dict[str, Any]])
        def room_conflicts(room_id: Optional[str] = None):
            """Room double-bookings."""
            return [conflict.to_dict() for conflict in self._scheduler_service.find_room_conflicts(room_id)]

        @self.app.get("/instructors/{instructor_id}/timetable", response_model=List[Dict[str, Any]])
        def instructor_timetable(instructor_id: str):
            """Weekly timetable of an instructor."""
            return [slot.to_dict() for slot in self._scheduler_service.instructor_timetable(instructor_id)]

        # Grade and status endpoints
        @self.app.post("/grades", response_model=GradeResponse, status_code=status.HTTP_201_CREATED)
        def record_grade(request: GradeRequest):
            """Record a grade; may graduate the student."""
            grade_id = self._grading_service.record_grade(
                request.assessment_id, request.student_id, request.score, graded_at=request.graded_at,
            )
            student_status = self._status_engine.current_status(request.student_id)
            return GradeResponse(grade_id=grade_id, student_status=student_status.value)

        @self.app.get("/students/{student_id}/gpa", response_model=GPAResponse)
        def student_gpa(student_id: str, term_id: Optional[str] = None):
            """Weighted GPA of a student, optionally for one term."""
            gpa = self._metrics_service.compute_gpa(student_id, term_id)
            return GPAResponse(student_id=student_id, term_id=term_id, gpa=str(gpa))

        @self.app.get("/students/{student_id}/credits", response_model=Dict[str, Any])
        def student_credits(student_id: str):
            """Completed credits of a student."""
            return {
                "student_id": student_id,
                "completed_credits": self._status_engine.completed_credits(student_id),
            }

        @self.app.put("/students/{student_id}/status", response_model=Dict[str, Any])
        def change_status(student_id: str, request: StatusChangeRequest):
            """Administrative status change (active <-> inactive)."""
            student = self._status_engine.set_status(student_id, StudentStatus(request.status))
            return student.to_dict()

        @self.app.get("/programs/{program_id}/rankings", response_model=List[Dict[str, Any]])
        def program_rankings(program_id: str, term_id: Optional[str] = None):
            """Program cohort ranked by GPA."""
            return [row.to_dict() for row in self._metrics_service.rank_program(program_id, term_id)]

        @self.app.get("/programs/{program_id}/terms/{term_id}/above-average", response_model=List[Dict[str, Any]])
        def above_average(program_id: str, term_id: str):
            """Students above their program's term average."""
            return [row.to_dict() for row in self._metrics_service.above_average(program_id, term_id)]

        # Payment endpoints
        @self.app.post("/payments", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
        def record_payment(request: PaymentRequest):
            """Record a payment and its audit log entry."""
            payment_id = self._audit_service.record_payment(
                request.student_id,
                request.term_id,
                request.amount,
                request.payment_date,
                method=request.method,
                invoice_payload=request.invoice_payload,
            )
            return PaymentResponse(payment_id=payment_id)

        @self.app.get("/students/{student_id}/payments", response_model=List[Dict[str, Any]])
        def student_payments(student_id: str):
            """A student's payments, most recent first."""
            return [payment.to_dict() for payment in self._audit_service.summarize_payments(student_id)]

        @self.app.get("/payments/totals", response_model=List[Dict[str, Any]])
        def payment_totals():
            """Payment totals by method and term."""
            return [total.to_dict() for total in self._audit_service.totals_by_method_and_term()]
