"""
Timetable Service - ordered timetables for teachers and students.
"""
from typing import Any, Dict, List

from tutoring.models.schedule_types import TimetableRow
from tutoring.services.record_store import RecordStore


def order_timetable(rows: List[TimetableRow]) -> List[TimetableRow]:
    """Monday..Friday, then by start time. Unknown day names sort last."""
    return sorted(rows, key=lambda row: row.sort_key())


def teacher_timetable(store: RecordStore, teacher_id: int) -> List[Dict[str, Any]]:
    """Rows include a comma-joined `students` field."""
    return [row.to_dict() for row in order_timetable(store.teacher_timetable(teacher_id))]


def student_timetable(store: RecordStore, student_id: int) -> List[Dict[str, Any]]:
    return [row.to_dict() for row in order_timetable(store.student_timetable(student_id))]
