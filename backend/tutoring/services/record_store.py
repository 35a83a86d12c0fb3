"""
Record Store - durable storage for teachers, students, classes and enrollments.

The Scheduler only talks to the RecordStore interface. Two backends exist:
SupabaseRecordStore (PostgREST over HTTP, schema in db/migrations) and
MemoryRecordStore (in-process, see memory_store.py).
"""
import logging
import os
import threading
from typing import Any, Dict, List, Optional, Sequence

from tutoring.models.schedule_types import ClassSession, Person, TimetableRow, parse_clock
from tutoring.services.supabase_client import (
    SupabaseClientError,
    SupabaseError,
    check_connection,
    supabase_configured,
    supabase_request,
    supabase_rpc,
)

logger = logging.getLogger(__name__)

# Postgres SQLSTATE raised by the range exclusion constraint and the roster trigger
EXCLUSION_VIOLATION = "23P01"
# raised by reschedule_class() when the class row is gone
NO_DATA_FOUND = "P0002"

CLASS_COLUMNS = "id,teacher_id,subject,day,start_time,end_time"


class RecordStoreError(Exception):
    """A storage failure. Surfaces to callers as an internal error."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.original_error = original_error


class ExclusionViolation(RecordStoreError):
    """The storage layer refused a write because it would double-book someone."""
    pass


class MissingRecord(RecordStoreError):
    """A write targeted a row that no longer exists."""
    pass


class RecordStore:
    """Row-level operations the Scheduler and the HTTP layer rely on."""

    backend_name = "abstract"

    # People
    def create_teacher(self, name: str) -> Person:
        raise NotImplementedError

    def create_student(self, name: str) -> Person:
        raise NotImplementedError

    def list_teachers(self) -> List[Person]:
        raise NotImplementedError

    def list_students(self) -> List[Person]:
        raise NotImplementedError

    def get_teacher(self, teacher_id: int) -> Optional[Person]:
        raise NotImplementedError

    def find_student_id(self, name: str) -> Optional[int]:
        """Exact-name lookup that never creates anything."""
        raise NotImplementedError

    def find_or_create_student(self, name: str) -> int:
        student_id = self.find_student_id(name)
        if student_id is not None:
            return student_id
        return self.create_student(name).id

    # Classes
    def get_class(self, class_id: int) -> Optional[ClassSession]:
        raise NotImplementedError

    def classes_for_teacher(
        self, teacher_id: int, day: str, exclude_class_id: Optional[int] = None
    ) -> List[ClassSession]:
        raise NotImplementedError

    def classes_for_student(
        self, student_id: int, day: str, exclude_class_id: Optional[int] = None
    ) -> List[ClassSession]:
        raise NotImplementedError

    def insert_class(self, session: ClassSession, student_ids: Sequence[int]) -> int:
        """Insert a class and its roster as one atomic write. Returns the new id."""
        raise NotImplementedError

    def update_class(self, session: ClassSession, student_ids: Sequence[int]) -> None:
        """
        Rewrite a class row and replace its whole roster as one atomic write.
        Raises MissingRecord if the class does not exist.
        """
        raise NotImplementedError

    def delete_class(self, class_id: int) -> None:
        """Delete a class and its enrollments. Missing ids are ignored."""
        raise NotImplementedError

    # Timetables (unordered, see timetable_service for display order)
    def teacher_timetable(self, teacher_id: int) -> List[TimetableRow]:
        raise NotImplementedError

    def student_timetable(self, student_id: int) -> List[TimetableRow]:
        raise NotImplementedError

    def ping(self) -> bool:
        return True


class SupabaseRecordStore(RecordStore):
    """RecordStore backed by the Supabase PostgREST API."""

    backend_name = "supabase"

    def _request(self, method: str, path: str, **kwargs: Any) -> List[Dict[str, Any]]:
        try:
            resp = supabase_request(method, path, raise_on_error=True, **kwargs)
        except SupabaseClientError as e:
            raise self._translate(e) from e
        except SupabaseError as e:
            raise RecordStoreError(f"Record store request failed: {method} {path}", original_error=e) from e
        if resp.status_code == 204 or not resp.content:
            return []
        return resp.json() or []

    def _rpc(self, function: str, params: Dict[str, Any]) -> Any:
        try:
            return supabase_rpc(function, params)
        except SupabaseClientError as e:
            raise self._translate(e) from e
        except SupabaseError as e:
            raise RecordStoreError(f"Record store call failed: {function}", original_error=e) from e

    @staticmethod
    def _translate(error: SupabaseClientError) -> RecordStoreError:
        if error.code == EXCLUSION_VIOLATION:
            logger.warning(f"Storage exclusion constraint rejected a write: {error.response_body}")
            return ExclusionViolation("Write would double-book a teacher or student", original_error=error)
        if error.code == NO_DATA_FOUND:
            return MissingRecord("Class no longer exists", original_error=error)
        return RecordStoreError(
            f"Record store rejected the request ({error.status_code}): {error.response_body}",
            original_error=error,
        )

    def _insert_person(self, table: str, name: str) -> Person:
        rows = self._request(
            "POST",
            f"/rest/v1/{table}",
            json={"name": name},
            headers={"Prefer": "return=representation"},
        )
        if not rows:
            raise RecordStoreError(f"No data returned from insert into {table}")
        return Person.from_db_row(rows[0])

    def create_teacher(self, name: str) -> Person:
        return self._insert_person("teachers", name)

    def create_student(self, name: str) -> Person:
        return self._insert_person("students", name)

    def list_teachers(self) -> List[Person]:
        rows = self._request("GET", "/rest/v1/teachers", params={"select": "id,name", "order": "name.asc,id.asc"})
        return [Person.from_db_row(row) for row in rows]

    def list_students(self) -> List[Person]:
        rows = self._request("GET", "/rest/v1/students", params={"select": "id,name", "order": "name.asc,id.asc"})
        return [Person.from_db_row(row) for row in rows]

    def get_teacher(self, teacher_id: int) -> Optional[Person]:
        rows = self._request("GET", "/rest/v1/teachers", params={"select": "id,name", "id": f"eq.{teacher_id}"})
        return Person.from_db_row(rows[0]) if rows else None

    def find_student_id(self, name: str) -> Optional[int]:
        rows = self._request(
            "GET",
            "/rest/v1/students",
            params={"select": "id", "name": f"eq.{name}", "order": "id.asc", "limit": "1"},
        )
        return int(rows[0]["id"]) if rows else None

    def get_class(self, class_id: int) -> Optional[ClassSession]:
        rows = self._request("GET", "/rest/v1/classes", params={"select": CLASS_COLUMNS, "id": f"eq.{class_id}"})
        return ClassSession.from_db_row(rows[0]) if rows else None

    def classes_for_teacher(
        self, teacher_id: int, day: str, exclude_class_id: Optional[int] = None
    ) -> List[ClassSession]:
        params = {"select": CLASS_COLUMNS, "teacher_id": f"eq.{teacher_id}", "day": f"eq.{day}"}
        if exclude_class_id is not None:
            params["id"] = f"neq.{exclude_class_id}"
        return [ClassSession.from_db_row(row) for row in self._request("GET", "/rest/v1/classes", params=params)]

    def classes_for_student(
        self, student_id: int, day: str, exclude_class_id: Optional[int] = None
    ) -> List[ClassSession]:
        params = {
            "select": f"{CLASS_COLUMNS},class_students!inner(student_id)",
            "class_students.student_id": f"eq.{student_id}",
            "day": f"eq.{day}",
        }
        if exclude_class_id is not None:
            params["id"] = f"neq.{exclude_class_id}"
        return [ClassSession.from_db_row(row) for row in self._request("GET", "/rest/v1/classes", params=params)]

    @staticmethod
    def _write_params(session: ClassSession, student_ids: Sequence[int]) -> Dict[str, Any]:
        row = session.to_db_row()
        return {
            "p_teacher_id": row["teacher_id"],
            "p_subject": row["subject"],
            "p_day": row["day"],
            "p_start_time": row["start_time"],
            "p_end_time": row["end_time"],
            "p_student_ids": list(student_ids),
        }

    def insert_class(self, session: ClassSession, student_ids: Sequence[int]) -> int:
        new_id = self._rpc("schedule_class", self._write_params(session, student_ids))
        if new_id is None:
            raise RecordStoreError("schedule_class returned no id")
        return int(new_id)

    def update_class(self, session: ClassSession, student_ids: Sequence[int]) -> None:
        params = self._write_params(session, student_ids)
        params["p_class_id"] = session.id
        self._rpc("reschedule_class", params)

    def delete_class(self, class_id: int) -> None:
        # enrollments go with it: class_students.class_id is ON DELETE CASCADE
        self._request("DELETE", "/rest/v1/classes", params={"id": f"eq.{class_id}"})

    @staticmethod
    def _timetable_row(row: Dict[str, Any], with_students: bool) -> TimetableRow:
        teacher = row.get("teachers") or {}
        students = None
        if with_students:
            enrollments = sorted(row.get("class_students") or [], key=lambda e: e.get("position", 0))
            students = [(e.get("students") or {}).get("name", "") for e in enrollments]
        return TimetableRow(
            id=int(row["id"]),
            teacher=teacher.get("name", ""),
            subject=row.get("subject", ""),
            day=row.get("day", ""),
            start_time=parse_clock(row["start_time"]),
            end_time=parse_clock(row["end_time"]),
            students=students,
        )

    def teacher_timetable(self, teacher_id: int) -> List[TimetableRow]:
        rows = self._request(
            "GET",
            "/rest/v1/classes",
            params={
                "select": "id,subject,day,start_time,end_time,teachers(name),class_students(position,students(name))",
                "teacher_id": f"eq.{teacher_id}",
            },
        )
        return [self._timetable_row(row, with_students=True) for row in rows]

    def student_timetable(self, student_id: int) -> List[TimetableRow]:
        rows = self._request(
            "GET",
            "/rest/v1/classes",
            params={
                "select": "id,subject,day,start_time,end_time,teachers(name),class_students!inner(student_id)",
                "class_students.student_id": f"eq.{student_id}",
            },
        )
        return [self._timetable_row(row, with_students=False) for row in rows]

    def ping(self) -> bool:
        return check_connection()


_store: Optional[RecordStore] = None
_store_lock = threading.Lock()


def _configured_backend() -> str:
    backend = (os.getenv("RECORD_STORE_BACKEND") or "").strip().lower()
    if backend:
        return backend
    return "supabase" if supabase_configured() else "memory"


def _build_store(backend: str) -> RecordStore:
    if backend == "supabase":
        return SupabaseRecordStore()
    if backend == "memory":
        from tutoring.services.memory_store import MemoryRecordStore
        return MemoryRecordStore()
    raise RecordStoreError(f"Unknown RECORD_STORE_BACKEND: {backend!r}")


def get_record_store() -> RecordStore:
    """The process-wide store, built on first use from RECORD_STORE_BACKEND."""
    global _store
    with _store_lock:
        if _store is None:
            backend = _configured_backend()
            _store = _build_store(backend)
            logger.info(f"Using {backend} record store")
        return _store


def use_record_store(store: Optional[RecordStore]) -> None:
    """Replace the process-wide store. Passing None rebuilds it from config on next use."""
    global _store
    with _store_lock:
        _store = store
