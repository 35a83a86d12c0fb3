"""
In-process RecordStore for local development and tests.
All reads and writes go through one lock, so each call is atomic.
"""
import itertools
import threading
from dataclasses import replace
from typing import Dict, List, Optional, Sequence

from tutoring.models.schedule_types import ClassSession, Person, TimetableRow
from tutoring.services.record_store import MissingRecord, RecordStore


class MemoryRecordStore(RecordStore):
    backend_name = "memory"

    def __init__(self):
        self._lock = threading.RLock()
        self._teacher_ids = itertools.count(1)
        self._student_ids = itertools.count(1)
        self._class_ids = itertools.count(1)
        self._teachers: Dict[int, Person] = {}
        self._students: Dict[int, Person] = {}
        self._classes: Dict[int, ClassSession] = {}
        self._rosters: Dict[int, List[int]] = {}

    def create_teacher(self, name: str) -> Person:
        with self._lock:
            person = Person(id=next(self._teacher_ids), name=name)
            self._teachers[person.id] = person
            return person

    def create_student(self, name: str) -> Person:
        with self._lock:
            person = Person(id=next(self._student_ids), name=name)
            self._students[person.id] = person
            return person

    def list_teachers(self) -> List[Person]:
        with self._lock:
            return sorted(self._teachers.values(), key=lambda p: (p.name, p.id))

    def list_students(self) -> List[Person]:
        with self._lock:
            return sorted(self._students.values(), key=lambda p: (p.name, p.id))

    def get_teacher(self, teacher_id: int) -> Optional[Person]:
        with self._lock:
            return self._teachers.get(teacher_id)

    def find_student_id(self, name: str) -> Optional[int]:
        with self._lock:
            matches = [s.id for s in self._students.values() if s.name == name]
            return min(matches) if matches else None

    def find_or_create_student(self, name: str) -> int:
        # lookup and insert under one lock so concurrent callers agree on the id
        with self._lock:
            return super().find_or_create_student(name)

    def get_class(self, class_id: int) -> Optional[ClassSession]:
        with self._lock:
            session = self._classes.get(class_id)
            return replace(session) if session else None

    def classes_for_teacher(
        self, teacher_id: int, day: str, exclude_class_id: Optional[int] = None
    ) -> List[ClassSession]:
        with self._lock:
            return [
                replace(c) for c in self._classes.values()
                if c.teacher_id == teacher_id and c.day == day and c.id != exclude_class_id
            ]

    def classes_for_student(
        self, student_id: int, day: str, exclude_class_id: Optional[int] = None
    ) -> List[ClassSession]:
        with self._lock:
            return [
                replace(self._classes[class_id])
                for class_id, roster in self._rosters.items()
                if student_id in roster
                and self._classes[class_id].day == day
                and class_id != exclude_class_id
            ]

    def insert_class(self, session: ClassSession, student_ids: Sequence[int]) -> int:
        with self._lock:
            class_id = next(self._class_ids)
            self._classes[class_id] = replace(session, id=class_id)
            self._rosters[class_id] = list(student_ids)
            return class_id

    def update_class(self, session: ClassSession, student_ids: Sequence[int]) -> None:
        with self._lock:
            if session.id not in self._classes:
                raise MissingRecord(f"Class {session.id} no longer exists")
            self._classes[session.id] = replace(session)
            self._rosters[session.id] = list(student_ids)

    def delete_class(self, class_id: int) -> None:
        with self._lock:
            self._classes.pop(class_id, None)
            self._rosters.pop(class_id, None)

    def _timetable_row(self, session: ClassSession, with_students: bool) -> TimetableRow:
        teacher = self._teachers.get(session.teacher_id)
        students = None
        if with_students:
            students = [
                self._students[sid].name
                for sid in self._rosters.get(session.id, [])
                if sid in self._students
            ]
        return TimetableRow(
            id=session.id,
            teacher=teacher.name if teacher else "",
            subject=session.subject,
            day=session.day,
            start_time=session.start_time,
            end_time=session.end_time,
            students=students,
        )

    def teacher_timetable(self, teacher_id: int) -> List[TimetableRow]:
        with self._lock:
            return [
                self._timetable_row(c, with_students=True)
                for c in self._classes.values()
                if c.teacher_id == teacher_id
            ]

    def student_timetable(self, student_id: int) -> List[TimetableRow]:
        with self._lock:
            return [
                self._timetable_row(self._classes[class_id], with_students=False)
                for class_id, roster in self._rosters.items()
                if student_id in roster
            ]
