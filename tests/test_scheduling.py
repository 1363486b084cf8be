"""Schedule conflict tests: instructor overlap rule and the room double-booking scan."""

from datetime import time, timezone

import pytest

from collegium.core import (
    DayOfWeek, EntityType, NotFoundError, ScheduleConflictError, ValidationError,
)


def test_overlapping_slot_rejected_touching_slot_allowed(campus, scheduler_service, store):
    instructor = campus.instructors[0]
    section_id = campus.section.id

    first = scheduler_service.assign_instructor(instructor.id, section_id, "Monday", "10:00", "12:00")
    with pytest.raises(ScheduleConflictError) as exc_info:
        scheduler_service.assign_instructor(instructor.id, section_id, DayOfWeek.MONDAY, "11:00", "13:00")
    assert exc_info.value.details['conflicting_slot_ids'] == [first]

    second = scheduler_service.assign_instructor(instructor.id, section_id, "Monday", "12:00", "14:00")

    slots = store.query(EntityType.SCHEDULE_SLOT, instructor_id=instructor.id)
    assert [slot.id for slot in slots] == [first, second]


def test_conflict_lists_every_overlapping_slot(campus, scheduler_service):
    instructor = campus.instructors[0]
    section_id = campus.section.id
    morning = scheduler_service.assign_instructor(instructor.id, section_id, "Tuesday", "09:00", "10:00")
    late = scheduler_service.assign_instructor(instructor.id, section_id, "Tuesday", "10:30", "11:30")

    with pytest.raises(ScheduleConflictError) as exc_info:
        scheduler_service.assign_instructor(instructor.id, section_id, "Tuesday", "09:30", "11:00")
    assert sorted(exc_info.value.details['conflicting_slot_ids']) == sorted([morning, late])


def test_same_time_other_day_or_instructor_allowed(campus, scheduler_service):
    ada, alan = campus.instructors
    section_id = campus.section.id
    scheduler_service.assign_instructor(ada.id, section_id, "Monday", "10:00", "12:00")

    scheduler_service.assign_instructor(ada.id, section_id, "Wednesday", "10:00", "12:00")
    scheduler_service.assign_instructor(alan.id, section_id, "Monday", "10:00", "12:00")

    assert len(scheduler_service.instructor_timetable(ada.id)) == 2


def test_day_is_case_insensitive(campus, scheduler_service, store):
    slot_id = scheduler_service.assign_instructor(
        campus.instructors[0].id, campus.section.id, "friday", time(8, 0), time(9, 0),
    )
    assert store.get(EntityType.SCHEDULE_SLOT, slot_id).day_of_week == DayOfWeek.FRIDAY


@pytest.mark.parametrize("day, start, end", [
    ("Funday", "10:00", "11:00"),
    ("Monday", "11:00", "11:00"),
    ("Monday", "12:00", "11:00"),
    ("Monday", "ten", "11:00"),
])
def test_invalid_slot_input_rejected(campus, scheduler_service, store, day, start, end):
    with pytest.raises(ValidationError):
        scheduler_service.assign_instructor(campus.instructors[0].id, campus.section.id, day, start, end)
    assert store.query(EntityType.SCHEDULE_SLOT) == []


def test_unknown_references_not_found(campus, scheduler_service):
    instructor_id = campus.instructors[0].id
    with pytest.raises(NotFoundError):
        scheduler_service.assign_instructor("ghost", campus.section.id, "Monday", "10:00", "11:00")
    with pytest.raises(NotFoundError):
        scheduler_service.assign_instructor(instructor_id, "ghost", "Monday", "10:00", "11:00")
    with pytest.raises(NotFoundError):
        scheduler_service.assign_instructor(
            instructor_id, campus.section.id, "Monday", "10:00", "11:00", room_id="ghost",
        )


def test_room_scan_flags_double_booking(campus, scheduler_service):
    ada, alan = campus.instructors
    room = campus.rooms[0]
    section_id = campus.section.id
    first = scheduler_service.assign_instructor(ada.id, section_id, "Monday", "09:00", "11:00", room_id=room.id)
    second = scheduler_service.assign_instructor(alan.id, section_id, "Monday", "10:00", "12:00", room_id=room.id)
    # touching and unroomed slots are not conflicts
    scheduler_service.assign_instructor(ada.id, section_id, "Monday", "12:00", "13:00", room_id=room.id)
    scheduler_service.assign_instructor(alan.id, section_id, "Monday", "12:30", "13:30")

    conflicts = scheduler_service.find_room_conflicts()

    assert len(conflicts) == 1
    conflict = conflicts[0]
    assert conflict.slot_id == second
    assert conflict.previous_slot_id == first
    assert conflict.previous_end_time == time(11, 0)
    assert conflict.room_id == room.id
    assert conflict.day_of_week == DayOfWeek.MONDAY
    assert conflict.to_dict()['start_time'] == "10:00:00"


def test_room_scan_is_idempotent_and_ordered(campus, scheduler_service):
    ada, alan = campus.instructors
    section_id = campus.section.id
    room_a, room_b = campus.rooms
    scheduler_service.assign_instructor(ada.id, section_id, "Tuesday", "09:00", "11:00", room_id=room_b.id)
    scheduler_service.assign_instructor(alan.id, section_id, "Tuesday", "10:00", "12:00", room_id=room_b.id)
    scheduler_service.assign_instructor(ada.id, section_id, "Wednesday", "09:00", "11:00", room_id=room_a.id)
    scheduler_service.assign_instructor(alan.id, section_id, "Wednesday", "09:30", "10:00", room_id=room_a.id)
    scheduler_service.assign_instructor(ada.id, section_id, "Monday", "14:00", "16:00", room_id=room_a.id)
    scheduler_service.assign_instructor(alan.id, section_id, "Monday", "15:00", "17:00", room_id=room_a.id)

    first_run = scheduler_service.find_room_conflicts()
    second_run = scheduler_service.find_room_conflicts()

    assert first_run == second_run
    assert [(c.room_number, c.day_of_week) for c in first_run] == [
        ("101", DayOfWeek.MONDAY),
        ("101", DayOfWeek.WEDNESDAY),
        ("102", DayOfWeek.TUESDAY),
    ]
    assert [c.room_id for c in scheduler_service.find_room_conflicts(room_b.id)] == [room_b.id]


def test_timetable_ordered_by_day_then_start(campus, scheduler_service):
    ada = campus.instructors[0]
    section_id = campus.section.id
    scheduler_service.assign_instructor(ada.id, section_id, "Friday", "08:00", "09:00")
    scheduler_service.assign_instructor(ada.id, section_id, "Monday", "13:00", "14:00")
    scheduler_service.assign_instructor(ada.id, section_id, "Monday", "09:00", "10:00")

    timetable = scheduler_service.instructor_timetable(ada.id)

    assert [(slot.day_of_week, slot.start_time) for slot in timetable] == [
        (DayOfWeek.MONDAY, time(9, 0)),
        (DayOfWeek.MONDAY, time(13, 0)),
        (DayOfWeek.FRIDAY, time(8, 0)),
    ]


@pytest.mark.parametrize("start, end", [
    ("11:00+00:00", "13:00+00:00"),
    (time(11, 0, tzinfo=timezone.utc), time(13, 0, tzinfo=timezone.utc)),
    ("11:00", time(13, 0, tzinfo=timezone.utc)),
])
def test_times_with_utc_offset_rejected(campus, scheduler_service, store, start, end):
    instructor = campus.instructors[0]
    first = scheduler_service.assign_instructor(instructor.id, campus.section.id, "Monday", "10:00", "12:00")

    with pytest.raises(ValidationError):
        scheduler_service.assign_instructor(instructor.id, campus.section.id, "Monday", start, end)

    assert [slot.id for slot in store.query(EntityType.SCHEDULE_SLOT)] == [first]
