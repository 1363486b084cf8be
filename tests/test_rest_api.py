"""HTTP adapter tests: routes call the engine and errors map onto statuses."""

from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from collegium.config import Settings
from collegium.core import (
    Assessment, AssessmentKind, Course, Instructor, Program, Room, Section, Student, Term,
)
from collegium.main import CollegiumPlatform


@pytest.fixture
def platform():
    settings = Settings(_env_file=None, store_backend="memory", lock_timeout_seconds=1.0)
    return CollegiumPlatform(settings)


@pytest.fixture
def client(platform):
    return TestClient(platform.app)


@pytest.fixture
def seeded(platform):
    program = Program(name="Physics", credits_required=3)
    term = Term(name="Fall 2025", start_date=date(2025, 9, 1), end_date=date(2025, 12, 20))
    course = Course(title="Mechanics", credits=3)
    section = Section(course_id=course.id, term_id=term.id, section_code="PHY-01", capacity=1)
    students = [
        Student(program_id=program.id, first_name=name, last_name="Curie", email=f"{name}@uni.edu")
        for name in ("marie", "pierre")
    ]
    instructor = Instructor(first_name="Emmy", last_name="Noether", email="emmy@uni.edu")
    room = Room(building="Lab", room_number="1", capacity=20)
    midterm = Assessment(section_id=section.id, kind=AssessmentKind.EXAM, title="Midterm",
                         weight_pct=Decimal(50), due_date=date(2025, 10, 15))
    final = Assessment(section_id=section.id, kind=AssessmentKind.EXAM, title="Final",
                       weight_pct=Decimal(50), due_date=date(2025, 12, 15))
    platform.store.insert_many([program, term, course, section, *students, instructor, room, midterm, final])
    return {
        'program': program, 'term': term, 'section': section, 'students': students,
        'instructor': instructor, 'room': room, 'midterm': midterm, 'final': final,
    }


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_enrollment_capacity_maps_to_conflict(client, seeded):
    marie, pierre = seeded['students']
    section_id = seeded['section'].id

    created = client.post("/enrollments", json={"student_id": marie.id, "section_id": section_id})
    assert created.status_code == 201
    assert created.json()["student_id"] == marie.id

    full = client.post("/enrollments", json={"student_id": pierre.id, "section_id": section_id})
    assert full.status_code == 409
    assert full.json()["error"]["code"] == "CAPACITY_EXCEEDED"
    assert full.json()["error"]["details"]["capacity"] == 1

    seats = client.get(f"/sections/{section_id}/seats").json()
    assert seats == {"section_id": section_id, "enrolled": 1, "seats_remaining": 0}


def test_unknown_entity_maps_to_not_found(client, seeded):
    response = client.post("/enrollments", json={"student_id": "ghost", "section_id": seeded['section'].id})
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"
    assert response.json()["error"]["details"]["entity_type"] == "student"


def test_malformed_body_maps_to_bad_request(client):
    response = client.post("/enrollments", json={"student_id": ""})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION"


def test_schedule_conflict_and_room_scan(client, seeded):
    body = {
        "instructor_id": seeded['instructor'].id,
        "section_id": seeded['section'].id,
        "day_of_week": "Monday",
        "start_time": "10:00",
        "end_time": "12:00",
        "room_id": seeded['room'].id,
    }
    first = client.post("/schedules", json=body)
    assert first.status_code == 201

    overlap = client.post("/schedules", json={**body, "start_time": "11:00", "end_time": "13:00"})
    assert overlap.status_code == 409
    assert overlap.json()["error"]["details"]["conflicting_slot_ids"] == [first.json()["slot_id"]]

    bad_day = client.post("/schedules", json={**body, "day_of_week": "Caturday"})
    assert bad_day.status_code == 400

    assert client.get("/rooms/conflicts").json() == []
    timetable = client.get(f"/instructors/{seeded['instructor'].id}/timetable").json()
    assert [slot["day_of_week"] for slot in timetable] == ["Monday"]


def test_grades_gpa_and_graduation(client, seeded):
    marie = seeded['students'][0]
    client.post("/enrollments", json={"student_id": marie.id, "section_id": seeded['section'].id})

    no_work = client.get(f"/students/{marie.id}/gpa")
    assert no_work.status_code == 422
    assert no_work.json()["error"]["code"] == "NO_GRADED_WORK"

    first = client.post("/grades", json={"assessment_id": seeded['midterm'].id, "student_id": marie.id, "score": 80})
    assert first.status_code == 201
    assert first.json()["student_status"] == "graduated"

    client.post("/grades", json={"assessment_id": seeded['final'].id, "student_id": marie.id, "score": 60})
    gpa = client.get(f"/students/{marie.id}/gpa")
    assert gpa.json() == {"student_id": marie.id, "term_id": None, "gpa": "70.00"}

    duplicate = client.post("/grades", json={"assessment_id": seeded['final'].id, "student_id": marie.id, "score": 90})
    assert duplicate.status_code == 409

    out_of_range = client.post(
        "/grades", json={"assessment_id": seeded['final'].id, "student_id": seeded['students'][1].id, "score": 120},
    )
    assert out_of_range.status_code == 400

    rankings = client.get(f"/programs/{seeded['program'].id}/rankings").json()
    assert [(row["student_id"], row["rank"], row["gpa"]) for row in rankings] == [(marie.id, 1, "70.00")]
    above = client.get(f"/programs/{seeded['program'].id}/terms/{seeded['term'].id}/above-average")
    assert above.json() == []
    assert client.get(f"/students/{marie.id}/credits").json()["completed_credits"] == 3

    reopen = client.put(f"/students/{marie.id}/status", json={"status": "active"})
    assert reopen.status_code == 409
    assert reopen.json()["error"]["code"] == "INVALID_TRANSITION"


def test_payments(client, seeded):
    pierre = seeded['students'][1]
    body = {
        "student_id": pierre.id,
        "term_id": seeded['term'].id,
        "amount": "450.00",
        "payment_date": "2025-09-10",
        "invoice_payload": "<invoice><method>cash</method></invoice>",
    }
    created = client.post("/payments", json=body)
    assert created.status_code == 201

    negative = client.post("/payments", json={**body, "amount": "-5"})
    assert negative.status_code == 409
    assert negative.json()["error"]["code"] == "INVALID_PAYMENT"

    payments = client.get(f"/students/{pierre.id}/payments").json()
    assert [p["id"] for p in payments] == [created.json()["payment_id"]]
    assert payments[0]["amount"] == "450.00"

    totals = client.get("/payments/totals").json()
    assert totals == [{
        "method": "cash",
        "term_id": seeded['term'].id,
        "term_name": "Fall 2025",
        "total_amount": "450.00",
        "payments_count": 1,
    }]


def test_section_utilization(client, seeded):
    client.post("/enrollments", json={"student_id": seeded['students'][0].id, "section_id": seeded['section'].id})

    rows = client.get("/sections/utilization", params={"hot": "true"}).json()
    assert [(row["section_code"], row["fill_rate_pct"]) for row in rows] == [("PHY-01", "100.00")]


@pytest.mark.parametrize("start, end", [("11:00Z", "13:00Z"), ("11:00+02:00", "13:00+02:00")])
def test_schedule_times_with_utc_offset_rejected(client, seeded, start, end):
    body = {
        "instructor_id": seeded['instructor'].id,
        "section_id": seeded['section'].id,
        "day_of_week": "Monday",
        "start_time": "10:00",
        "end_time": "12:00",
    }
    assert client.post("/schedules", json=body).status_code == 201

    response = client.post("/schedules", json={**body, "start_time": start, "end_time": end})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION"


@pytest.mark.parametrize("score", ["NaN", "Infinity"])
def test_non_finite_score_rejected(client, seeded, score):
    marie = seeded['students'][0]
    response = client.post(
        "/grades", json={"assessment_id": seeded['midterm'].id, "student_id": marie.id, "score": score},
    )
    assert response.status_code == 400
    assert client.get(f"/students/{marie.id}/gpa").status_code == 422
