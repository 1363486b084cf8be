"""
GPA and metric aggregation.

All aggregations are read-only: they run on a store snapshot, take no
locks, and may observe data that is slightly stale relative to concurrent
writers.
"""

import logging
from collections import OrderedDict, defaultdict
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from ..core.entities import Assessment, Grade, Section, Student
from ..core.enums import EntityType
from ..core.exceptions import NoGradedWorkError
from ..persistence.store import EntityStore, StoreSession

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")
HUNDRED = Decimal(100)


def quantize(value: Decimal) -> Decimal:
    """Round to two decimal places, halves away from zero."""
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def weighted_mean(pairs: Iterable[Tuple[Decimal, Decimal]]) -> Optional[Decimal]:
    """Weighted mean of (score, weight_pct) pairs on the 0-100 scale.

    Returns None when the weights sum to zero. Summation is exact, so the
    result does not depend on the order of the pairs.
    """
    numerator = Decimal(0)
    denominator = Decimal(0)
    for score, weight_pct in pairs:
        weight = weight_pct / HUNDRED
        numerator += score * weight
        denominator += weight
    if denominator == 0:
        return None
    return numerator / denominator


@dataclass
class RankedStudent:
    """A student's position within a program cohort."""
    student_id: str
    program_id: str
    gpa: Decimal
    rank: int
    percentile: float

    def to_dict(self) -> Dict:
        return {
            'student_id': self.student_id,
            'program_id': self.program_id,
            'gpa': str(self.gpa),
            'rank': self.rank,
            'percentile': self.percentile,
        }


@dataclass
class AboveAverageStudent:
    """A student whose term GPA strictly exceeds the mean of their (program, term) group."""
    student_id: str
    program_id: str
    term_id: str
    term_gpa: Decimal
    group_average: Decimal

    def to_dict(self) -> Dict:
        return {
            'student_id': self.student_id,
            'program_id': self.program_id,
            'term_id': self.term_id,
            'term_gpa': str(self.term_gpa),
            'group_average': str(self.group_average),
        }


@dataclass
class SectionUtilization:
    """Fill rate of a section, ranked by enrolled count within its term."""
    section_id: str
    term_id: str
    section_code: str
    capacity: int
    enrolled: int
    fill_rate_pct: Decimal
    rank_in_term: int

    def to_dict(self) -> Dict:
        return {
            'section_id': self.section_id,
            'term_id': self.term_id,
            'section_code': self.section_code,
            'capacity': self.capacity,
            'enrolled': self.enrolled,
            'fill_rate_pct': str(self.fill_rate_pct),
            'rank_in_term': self.rank_in_term,
        }


class MetricsService:
    """Service computing weighted GPAs, rankings and section utilization."""

    def __init__(self, store: EntityStore, hot_section_threshold_pct: Decimal = Decimal(90)):
        self._store = store
        self._hot_section_threshold_pct = Decimal(str(hot_section_threshold_pct))

    # -- GPA ---------------------------------------------------------------

    def _raw_gpas(self, session: StoreSession, student_ids: List[str],
                  term_id: Optional[str] = None) -> Dict[str, Optional[Decimal]]:
        """Unrounded GPA per student id (None when there is no graded work), in input order.

        Every recorded grade counts, whether or not the student holds an
        Enrollment in the assessment's section; enrollment only gates credit
        completion in the status engine.
        """
        grades: List[Grade] = session.query(EntityType.GRADE, student_id=student_ids) if student_ids else []
        assessments: Dict[str, Assessment] = {
            assessment.id: assessment
            for assessment in session.query(EntityType.ASSESSMENT, id=sorted({g.assessment_id for g in grades}))
        }
        if term_id is not None:
            term_sections = {section.id for section in session.query(EntityType.SECTION, term_id=term_id)}
            assessments = {
                assessment_id: assessment
                for assessment_id, assessment in assessments.items()
                if assessment.section_id in term_sections
            }

        pairs: Dict[str, List[Tuple[Decimal, Decimal]]] = defaultdict(list)
        for grade in grades:
            assessment = assessments.get(grade.assessment_id)
            if assessment is not None:
                pairs[grade.student_id].append((grade.score, assessment.weight_pct))

        return OrderedDict((student_id, weighted_mean(pairs[student_id])) for student_id in student_ids)

    def compute_gpa(self, student_id: str, term_id: Optional[str] = None) -> Decimal:
        """Compute a student's weighted GPA, optionally restricted to one term."""
        with self._store.snapshot() as session:
            session.get(EntityType.STUDENT, student_id)
            if term_id is not None:
                session.get(EntityType.TERM, term_id)
            gpa = self._raw_gpas(session, [student_id], term_id)[student_id]

        if gpa is None:
            raise NoGradedWorkError(
                f"Student {student_id} has no weighted graded work",
                details={'student_id': student_id, 'term_id': term_id},
            )
        return quantize(gpa)

    def term_gpas(self, term_id: str) -> Dict[str, Decimal]:
        """Get the term GPA of every student with graded work in that term."""
        with self._store.snapshot() as session:
            session.get(EntityType.TERM, term_id)
            student_ids = [student.id for student in session.query(EntityType.STUDENT)]
            gpas = self._raw_gpas(session, student_ids, term_id)
        return {student_id: quantize(gpa) for student_id, gpa in gpas.items() if gpa is not None}

    # -- Rankings ----------------------------------------------------------

    @staticmethod
    def _rank(program_id: str, gpas: Dict[str, Optional[Decimal]]) -> List[RankedStudent]:
        graded = [(student_id, gpa) for student_id, gpa in gpas.items() if gpa is not None]
        # sorted() is stable, so ties keep cohort insertion order
        ordered = sorted(graded, key=lambda item: item[1], reverse=True)
        total = len(ordered)
        values = [gpa for _, gpa in ordered]
        return [
            RankedStudent(
                student_id=student_id,
                program_id=program_id,
                gpa=quantize(gpa),
                rank=position,
                percentile=sum(1 for other in values if other <= gpa) / total,
            )
            for position, (student_id, gpa) in enumerate(ordered, start=1)
        ]

    def rank_program(self, program_id: str, term_id: Optional[str] = None) -> List[RankedStudent]:
        """Rank a program's students by GPA, best first.

        Students without graded work are left out. Ranks are 1..n without
        gaps; the percentile is the share of the cohort at or below the
        student's GPA.
        Grades count without an enrollment check, as in compute_gpa.
        """
        with self._store.snapshot() as session:
            session.get(EntityType.PROGRAM, program_id)
            if term_id is not None:
                session.get(EntityType.TERM, term_id)
            cohort: List[Student] = session.query(EntityType.STUDENT, program_id=program_id)
            gpas = self._raw_gpas(session, [student.id for student in cohort], term_id)
        return self._rank(program_id, gpas)

    def rank_all_programs(self, term_id: Optional[str] = None) -> Dict[str, List[RankedStudent]]:
        """Rank every program's cohort."""
        with self._store.snapshot() as session:
            students: List[Student] = session.query(EntityType.STUDENT)
            gpas = self._raw_gpas(session, [student.id for student in students], term_id)
            program_ids = [program.id for program in session.query(EntityType.PROGRAM)]

        rankings: Dict[str, List[RankedStudent]] = {}
        for program_id in program_ids:
            cohort = OrderedDict(
                (student.id, gpas[student.id]) for student in students if student.program_id == program_id
            )
            rankings[program_id] = self._rank(program_id, cohort)
        return rankings

    # -- Above average -----------------------------------------------------

    @staticmethod
    def _above_group_mean(program_id: str, term_id: str,
                          gpas: Dict[str, Optional[Decimal]]) -> List[AboveAverageStudent]:
        graded = {student_id: gpa for student_id, gpa in gpas.items() if gpa is not None}
        if not graded:
            return []
        average = sum(graded.values(), Decimal(0)) / len(graded)
        return [
            AboveAverageStudent(
                student_id=student_id,
                program_id=program_id,
                term_id=term_id,
                term_gpa=quantize(gpa),
                group_average=quantize(average),
            )
            for student_id, gpa in graded.items()
            if gpa > average
        ]

    def above_average(self, program_id: str, term_id: str) -> List[AboveAverageStudent]:
        """Students whose term GPA is strictly above their (program, term) group mean."""
        with self._store.snapshot() as session:
            session.get(EntityType.PROGRAM, program_id)
            session.get(EntityType.TERM, term_id)
            cohort = session.query(EntityType.STUDENT, program_id=program_id)
            gpas = self._raw_gpas(session, [student.id for student in cohort], term_id)
        return self._above_group_mean(program_id, term_id, gpas)

    def above_average_report(self) -> List[AboveAverageStudent]:
        """Above-average students across every (program, term) group with graded work."""
        with self._store.snapshot() as session:
            students: List[Student] = session.query(EntityType.STUDENT)
            programs = session.query(EntityType.PROGRAM)
            terms = sorted(session.query(EntityType.TERM), key=lambda term: (term.start_date, term.id))
            per_term = {
                term.id: self._raw_gpas(session, [student.id for student in students], term.id)
                for term in terms
            }

        report: List[AboveAverageStudent] = []
        for program in programs:
            members = [student.id for student in students if student.program_id == program.id]
            for term in terms:
                gpas = OrderedDict((student_id, per_term[term.id][student_id]) for student_id in members)
                report.extend(self._above_group_mean(program.id, term.id, gpas))
        return report

    # -- Section utilization -----------------------------------------------

    def section_utilization(self, term_id: Optional[str] = None,
                            threshold_pct: Optional[Decimal] = None) -> List[SectionUtilization]:
        """Fill rate per section, ranked by enrolled count within each term.

        Ranks are computed before the optional threshold filter is applied,
        so a filtered row keeps its position among all sections of its term.
        """
        with self._store.snapshot() as session:
            if term_id is not None:
                session.get(EntityType.TERM, term_id)
                sections: List[Section] = session.query(EntityType.SECTION, term_id=term_id)
            else:
                sections = session.query(EntityType.SECTION)
            counts: Dict[str, int] = defaultdict(int)
            for enrollment in session.query(EntityType.ENROLLMENT, section_id=[s.id for s in sections]):
                counts[enrollment.section_id] += 1

        by_term: Dict[str, List[Section]] = OrderedDict()
        for section in sections:
            by_term.setdefault(section.term_id, []).append(section)

        rows: List[SectionUtilization] = []
        for term_sections in by_term.values():
            ordered = sorted(term_sections, key=lambda s: counts[s.id], reverse=True)
            for position, section in enumerate(ordered, start=1):
                enrolled = counts[section.id]
                rows.append(SectionUtilization(
                    section_id=section.id,
                    term_id=section.term_id,
                    section_code=section.section_code,
                    capacity=section.capacity,
                    enrolled=enrolled,
                    fill_rate_pct=quantize(Decimal(enrolled) * HUNDRED / Decimal(section.capacity)),
                    rank_in_term=position,
                ))

        if threshold_pct is not None:
            threshold = Decimal(str(threshold_pct))
            rows = [row for row in rows if row.fill_rate_pct >= threshold]
        return rows

    def hot_sections(self, term_id: Optional[str] = None) -> List[SectionUtilization]:
        """Sections at or above the configured fill-rate threshold."""
        return self.section_utilization(term_id, self._hot_section_threshold_pct)
