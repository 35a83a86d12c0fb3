"""
Type definitions for the tutoring schedule.
Provides strict typing for people, class sessions, time slots and timetable rows.
"""
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Weekday(str, Enum):
    """Days a class can be scheduled on, in display order."""
    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"


WEEKDAY_ORDER = [day.value for day in Weekday]

_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


def parse_clock(value: str) -> int:
    """
    Parse a 24-hour 'HH:MM' string into minutes from midnight.
    Postgres TIME values ('HH:MM:SS') are accepted; seconds are dropped.
    """
    if not isinstance(value, str):
        raise ValueError(f"Time must be a string in HH:MM format, got {value!r}")
    match = _CLOCK_RE.match(value.strip())
    if not match:
        raise ValueError(f"Time must be in HH:MM format, got {value!r}")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ValueError(f"Time out of range: {value!r}")
    return hours * 60 + minutes


def format_clock(minutes: int) -> str:
    """Format minutes from midnight as a 24-hour 'HH:MM' string."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def weekday_rank(day: str) -> int:
    """Sort key for day names; anything that is not Monday-Friday sorts last."""
    try:
        return WEEKDAY_ORDER.index(day)
    except ValueError:
        return len(WEEKDAY_ORDER)


@dataclass
class TimeSlot:
    """A half-open [start, end) interval within a day."""
    start_time: int  # Minutes from midnight (e.g., 540 = 09:00)
    end_time: int    # Minutes from midnight (e.g., 600 = 10:00)

    def overlaps(self, other: "TimeSlot") -> bool:
        """Touching endpoints (one ends exactly when the other starts) do not overlap."""
        return not (self.end_time <= other.start_time or self.start_time >= other.end_time)

    def to_display(self) -> str:
        return f"{format_clock(self.start_time)}-{format_clock(self.end_time)}"


@dataclass
class Person:
    """A teacher or a student. Names are not unique; the id is the identity."""
    id: int
    name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name}

    @classmethod
    def from_db_row(cls, row: Dict[str, Any]) -> "Person":
        return cls(id=int(row["id"]), name=row.get("name", ""))


@dataclass
class ClassSession:
    """One subject taught by one teacher on one weekday within one time slot."""
    id: Optional[int]
    teacher_id: int
    subject: str
    day: str
    start_time: int
    end_time: int

    @property
    def slot(self) -> TimeSlot:
        return TimeSlot(start_time=self.start_time, end_time=self.end_time)

    def to_db_row(self) -> Dict[str, Any]:
        row = {
            "teacher_id": self.teacher_id,
            "subject": self.subject,
            "day": self.day,
            "start_time": format_clock(self.start_time),
            "end_time": format_clock(self.end_time),
        }
        if self.id is not None:
            row["id"] = self.id
        return row

    @classmethod
    def from_db_row(cls, row: Dict[str, Any]) -> "ClassSession":
        return cls(
            id=int(row["id"]) if row.get("id") is not None else None,
            teacher_id=int(row["teacher_id"]),
            subject=row.get("subject", ""),
            day=row.get("day", ""),
            start_time=parse_clock(row["start_time"]),
            end_time=parse_clock(row["end_time"]),
        )


@dataclass
class TimetableRow:
    """A class session joined with teacher and student names for display."""
    id: int
    teacher: str
    subject: str
    day: str
    start_time: int
    end_time: int
    students: Optional[List[str]] = None  # None for student timetables

    def sort_key(self):
        return (weekday_rank(self.day), self.start_time)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "teacher": self.teacher,
            "subject": self.subject,
            "day": self.day,
            "start_time": format_clock(self.start_time),
            "end_time": format_clock(self.end_time),
        }
        if self.students is not None:
            data["students"] = ", ".join(self.students)
        return data


@dataclass
class ConflictInfo:
    """Which existing assignment a proposed class clashed with."""
    kind: str        # "teacher" or "student"
    party_id: int    # teacher id or student id
    class_id: int    # the existing class that clashes
    day: str
    time_range: str  # e.g., "09:00-10:00" of the existing class
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "partyId": self.party_id,
            "classId": self.class_id,
            "day": self.day,
            "timeRange": self.time_range,
            "message": self.message,
        }


@dataclass
class ClassRequest:
    """A validated create/update request as submitted by a caller."""
    teacher_id: int
    subject: str
    day: str
    start_time: int
    end_time: int
    student_names: List[str] = field(default_factory=list)

    @property
    def slot(self) -> TimeSlot:
        return TimeSlot(start_time=self.start_time, end_time=self.end_time)

    def to_session(self, class_id: Optional[int] = None) -> ClassSession:
        return ClassSession(
            id=class_id,
            teacher_id=self.teacher_id,
            subject=self.subject,
            day=self.day,
            start_time=self.start_time,
            end_time=self.end_time,
        )
