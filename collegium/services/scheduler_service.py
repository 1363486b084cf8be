"""
Scheduler service for instructor time slots and room assignments.
"""

import logging
from dataclasses import dataclass
from datetime import time
from itertools import groupby
from typing import Dict, List, Optional, Union

from ..core.entities import Room, ScheduleSlot
from ..core.enums import DayOfWeek, EntityType
from ..core.exceptions import ScheduleConflictError, ValidationError
from ..persistence.store import EntityStore
from .concurrency_manager import ConcurrencyManager, LockType, instructor_day_key

logger = logging.getLogger(__name__)

TimeLike = Union[time, str]


@dataclass
class RoomConflict:
    """A slot that starts before the previous slot in the same room and day ends."""
    room_id: str
    building: str
    room_number: str
    day_of_week: DayOfWeek
    slot_id: str
    section_id: str
    start_time: time
    end_time: time
    previous_slot_id: str
    previous_end_time: time

    def to_dict(self) -> Dict[str, str]:
        return {
            'room_id': self.room_id,
            'building': self.building,
            'room_number': self.room_number,
            'day_of_week': self.day_of_week.value,
            'slot_id': self.slot_id,
            'section_id': self.section_id,
            'start_time': self.start_time.isoformat(),
            'end_time': self.end_time.isoformat(),
            'previous_slot_id': self.previous_slot_id,
            'previous_end_time': self.previous_end_time.isoformat(),
        }


def parse_time(value: TimeLike, name: str) -> time:
    """Accept a naive time or an ISO 'HH:MM[:SS]' string without a UTC offset."""
    if not isinstance(value, time):
        try:
            value = time.fromisoformat(str(value))
        except ValueError:
            raise ValidationError(f"Invalid {name}: {value!r}", details={'field': name})
    if value.tzinfo is not None:
        raise ValidationError(f"{name} must not carry a UTC offset, got {value.isoformat()}",
                              details={'field': name})
    return value


class SchedulerService:
    """Service for assigning instructors to weekly slots without overlaps."""

    def __init__(self, store: EntityStore, concurrency_manager: ConcurrencyManager,
                 lock_timeout: Optional[float] = None):
        self._store = store
        self._concurrency_manager = concurrency_manager
        self._lock_timeout = lock_timeout

    def assign_instructor(self, instructor_id: str, section_id: str, day: Union[DayOfWeek, str],
                          start: TimeLike, end: TimeLike, room_id: Optional[str] = None) -> str:
        """Assign an instructor to a section slot and return the new slot id."""
        day = DayOfWeek.parse(day)
        start_time = parse_time(start, "start_time")
        end_time = parse_time(end, "end_time")
        if end_time <= start_time:
            raise ValidationError(
                "Slot end time must be after its start time",
                details={'start_time': start_time.isoformat(), 'end_time': end_time.isoformat()},
            )

        return self._concurrency_manager.execute_with_retry(
            lambda: self._assign_once(instructor_id, section_id, day, start_time, end_time, room_id)
        )

    def _assign_once(self, instructor_id: str, section_id: str, day: DayOfWeek,
                     start_time: time, end_time: time, room_id: Optional[str]) -> str:
        with self._concurrency_manager.lock(instructor_day_key(instructor_id, day), LockType.WRITE,
                                            timeout=self._lock_timeout):
            with self._store.transaction() as session:
                session.get(EntityType.INSTRUCTOR, instructor_id)
                session.get(EntityType.SECTION, section_id)
                if room_id is not None:
                    session.get(EntityType.ROOM, room_id)

                existing = session.query(EntityType.SCHEDULE_SLOT, instructor_id=instructor_id, day_of_week=day)
                conflicts = [slot.id for slot in existing if slot.overlaps(start_time, end_time)]
                if conflicts:
                    logger.info(
                        "Instructor slot conflict on %s %s-%s", day.value, start_time, end_time,
                        extra={'instructor_id': instructor_id, 'section_id': section_id},
                    )
                    raise ScheduleConflictError(
                        f"Instructor {instructor_id} already teaches during {day.value} "
                        f"{start_time.isoformat()}-{end_time.isoformat()}",
                        details={'instructor_id': instructor_id, 'day_of_week': day.value,
                                 'conflicting_slot_ids': conflicts},
                    )

                slot = ScheduleSlot(
                    section_id=section_id,
                    instructor_id=instructor_id,
                    day_of_week=day,
                    start_time=start_time,
                    end_time=end_time,
                    room_id=room_id,
                )
                session.insert(slot)

        logger.info(
            "Instructor assigned on %s %s-%s", day.value, start_time, end_time,
            extra={'instructor_id': instructor_id, 'section_id': section_id},
        )
        return slot.id

    def find_room_conflicts(self, room_id: Optional[str] = None) -> List[RoomConflict]:
        """Scan for room double-bookings.

        Slots sharing a room and day are sorted by (start time, slot id) and
        each one is compared with the slot right before it; a conflict is a
        start earlier than that previous slot's end. Slots without a room
        take no part in the scan.
        """
        with self._store.snapshot() as session:
            if room_id is not None:
                session.get(EntityType.ROOM, room_id)
                slots = session.query(EntityType.SCHEDULE_SLOT, room_id=room_id)
            else:
                slots = [slot for slot in session.query(EntityType.SCHEDULE_SLOT) if slot.room_id is not None]
            rooms: Dict[str, Room] = {
                room.id: room
                for room in session.query(EntityType.ROOM, id=sorted({slot.room_id for slot in slots}))
            }

        def partition(slot: ScheduleSlot):
            room = rooms[slot.room_id]
            return room.building, room.room_number, room.id, slot.day_of_week.ordinal

        conflicts: List[RoomConflict] = []
        ordered = sorted(slots, key=lambda slot: partition(slot) + (slot.start_time, slot.id))
        for _, group in groupby(ordered, key=partition):
            previous: Optional[ScheduleSlot] = None
            for slot in group:
                if previous is not None and slot.start_time < previous.end_time:
                    room = rooms[slot.room_id]
                    conflicts.append(RoomConflict(
                        room_id=room.id,
                        building=room.building,
                        room_number=room.room_number,
                        day_of_week=slot.day_of_week,
                        slot_id=slot.id,
                        section_id=slot.section_id,
                        start_time=slot.start_time,
                        end_time=slot.end_time,
                        previous_slot_id=previous.id,
                        previous_end_time=previous.end_time,
                    ))
                previous = slot

        if conflicts:
            logger.warning("Room scan found %d double-booking(s)", len(conflicts))
        return conflicts

    def instructor_timetable(self, instructor_id: str) -> List[ScheduleSlot]:
        """Get an instructor's weekly slots ordered by day then start time."""
        with self._store.snapshot() as session:
            session.get(EntityType.INSTRUCTOR, instructor_id)
            slots = session.query(EntityType.SCHEDULE_SLOT, instructor_id=instructor_id)
        return sorted(slots, key=lambda slot: (slot.day_of_week.ordinal, slot.start_time, slot.id))
