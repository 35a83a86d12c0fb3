"""
Scheduler - conflict detection and roster mutation for class sessions.

Every create/update runs check-then-write under per-(teacher, day) and
per-(student, day) locks, so two overlapping requests in this process cannot
both pass the check. The Supabase schema carries exclusion backstops for
multi-instance deployments; their violations come back as ConflictError too.
"""
import logging
import threading
from collections.abc import Sequence
from contextlib import contextmanager
from typing import Any, Dict, Hashable, Iterable, Iterator, List, Optional

from tutoring.models.schedule_types import ClassRequest, ConflictInfo, TimeSlot
from tutoring.services.record_store import (
    ExclusionViolation,
    MissingRecord,
    RecordStore,
    get_record_store,
)

logger = logging.getLogger(__name__)

CLASH_DETECTED = "clash_detected"


class ScheduleError(Exception):
    """Base exception for scheduling operations."""
    status_code = 500


class ValidationError(ScheduleError):
    """Malformed request input, e.g. students not submitted as a list."""
    status_code = 400


class ConflictError(ScheduleError):
    """The proposed class would double-book its teacher or one of its students."""
    status_code = 409

    def __init__(self, conflict: Optional[ConflictInfo] = None):
        super().__init__(CLASH_DETECTED)
        self.conflict = conflict

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": CLASH_DETECTED}
        if self.conflict is not None:
            body["conflict"] = self.conflict.to_dict()
        return body


class NotFoundError(ScheduleError):
    """The class or teacher a request refers to does not exist."""
    status_code = 404


def normalize_student_names(names: Any) -> List[str]:
    """
    Validate a submitted roster and trim each name.
    Order and duplicates are preserved.
    """
    if isinstance(names, (str, bytes)) or not isinstance(names, Sequence):
        raise ValidationError("students must be array")
    cleaned = []
    for name in names:
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("student names must be non-empty strings")
        cleaned.append(name.strip())
    return cleaned


def _unique(ids: Iterable[int]) -> List[int]:
    """Drop repeated ids, keeping first-seen order."""
    seen = set()
    ordered = []
    for item in ids:
        if item not in seen:
            seen.add(item)
            ordered.append(item)
    return ordered


class _LockEntry:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = threading.Lock()
        self.holders = 0


class KeyedLocks:
    """
    A lock per key, created on demand and dropped once nobody holds or waits on it.
    Keys are always acquired in sorted order so two holders cannot deadlock.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: Dict[Hashable, _LockEntry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def _checkout(self, key: Hashable) -> _LockEntry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _LockEntry()
            entry.holders += 1
            return entry

    def _checkin(self, key: Hashable, entry: _LockEntry) -> None:
        with self._guard:
            entry.holders -= 1
            if entry.holders == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, keys: Iterable[Hashable]) -> Iterator[None]:
        held = []
        try:
            for key in sorted(set(keys)):
                entry = self._checkout(key)
                entry.lock.acquire()
                held.append((key, entry))
            yield
        finally:
            for key, entry in reversed(held):
                entry.lock.release()
                self._checkin(key, entry)


# shared by every Scheduler in the process
_schedule_locks = KeyedLocks()


class Scheduler:
    """Validates class assignments against the record store and applies them."""

    def __init__(self, store: RecordStore, locks: Optional[KeyedLocks] = None):
        self.store = store
        self.locks = locks if locks is not None else _schedule_locks

    # ------------------------------------------------------------------
    # Name resolution
    # ------------------------------------------------------------------

    def resolve_students(self, names: Any) -> List[int]:
        """
        Resolve names to student ids, creating students that do not exist yet.
        Returns one id per input name, in input order, duplicates included.
        """
        return [self.store.find_or_create_student(name) for name in normalize_student_names(names)]

    def _lookup_students(self, names: List[str]) -> List[Optional[int]]:
        """Lookup-only resolution; None where no student has that name yet."""
        return [self.store.find_student_id(name) for name in names]

    # ------------------------------------------------------------------
    # Conflict detection
    # ------------------------------------------------------------------

    def find_conflict(
        self,
        teacher_id: int,
        student_ids: Sequence[int],
        day: str,
        start: int,
        end: int,
        exclude_class_id: Optional[int] = None,
    ) -> Optional[ConflictInfo]:
        """
        First existing assignment that overlaps [start, end) on `day`, or None.
        The teacher is checked before any student, then students in list order.
        """
        proposed = TimeSlot(start_time=start, end_time=end)

        for existing in self.store.classes_for_teacher(teacher_id, day, exclude_class_id):
            if existing.slot.overlaps(proposed):
                return ConflictInfo(
                    kind="teacher",
                    party_id=teacher_id,
                    class_id=existing.id,
                    day=day,
                    time_range=existing.slot.to_display(),
                    message=f"Teacher {teacher_id} already teaches class {existing.id} on {day} "
                            f"{existing.slot.to_display()}",
                )

        for student_id in student_ids:
            for existing in self.store.classes_for_student(student_id, day, exclude_class_id):
                if existing.slot.overlaps(proposed):
                    return ConflictInfo(
                        kind="student",
                        party_id=student_id,
                        class_id=existing.id,
                        day=day,
                        time_range=existing.slot.to_display(),
                        message=f"Student {student_id} already attends class {existing.id} on {day} "
                                f"{existing.slot.to_display()}",
                    )
        return None

    def check_overlap(
        self,
        teacher_id: int,
        student_ids: Sequence[int],
        day: str,
        start: int,
        end: int,
        exclude_class_id: Optional[int] = None,
    ) -> bool:
        return self.find_conflict(teacher_id, student_ids, day, start, end, exclude_class_id) is not None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _require_teacher(self, teacher_id: int) -> None:
        if self.store.get_teacher(teacher_id) is None:
            raise NotFoundError(f"Teacher {teacher_id} not found")

    @staticmethod
    def _lock_keys(request: ClassRequest, names: List[str]) -> List[tuple]:
        # students are keyed by name: that is what concurrent requests share
        # before ids exist for new students
        keys = [("teacher", str(request.teacher_id), request.day)]
        keys.extend(("student", name, request.day) for name in names)
        return keys

    def _checked_roster(
        self, request: ClassRequest, names: List[str], exclude_class_id: Optional[int]
    ) -> List[int]:
        """
        Run the conflict check and return the roster ids to write.
        Students that do not exist yet have no classes, so they are only
        created once the check has passed.
        """
        known_ids = self._lookup_students(names)
        conflict = self.find_conflict(
            request.teacher_id,
            [sid for sid in known_ids if sid is not None],
            request.day,
            request.start_time,
            request.end_time,
            exclude_class_id,
        )
        if conflict is not None:
            logger.info(f"Rejected class for teacher {request.teacher_id}: {conflict.message}")
            raise ConflictError(conflict)

        resolved = [
            sid if sid is not None else self.store.find_or_create_student(name)
            for sid, name in zip(known_ids, names)
        ]
        return _unique(resolved)

    def schedule_class(self, request: ClassRequest) -> int:
        """Create a class and its roster. Returns the new class id."""
        names = normalize_student_names(request.student_names)
        self._require_teacher(request.teacher_id)

        with self.locks.hold(self._lock_keys(request, names)):
            roster = self._checked_roster(request, names, exclude_class_id=None)
            try:
                class_id = self.store.insert_class(request.to_session(), roster)
            except ExclusionViolation as e:
                raise ConflictError() from e

        logger.info(
            f"Scheduled class {class_id} for teacher {request.teacher_id} on {request.day} "
            f"{request.slot.to_display()} with {len(roster)} students"
        )
        return class_id

    def reschedule_class(self, class_id: int, request: ClassRequest) -> None:
        """Rewrite a class in place and replace its whole roster."""
        names = normalize_student_names(request.student_names)
        if self.store.get_class(class_id) is None:
            raise NotFoundError(f"Class {class_id} not found")
        self._require_teacher(request.teacher_id)

        with self.locks.hold(self._lock_keys(request, names)):
            roster = self._checked_roster(request, names, exclude_class_id=class_id)
            try:
                self.store.update_class(request.to_session(class_id), roster)
            except ExclusionViolation as e:
                raise ConflictError() from e
            except MissingRecord as e:
                raise NotFoundError(f"Class {class_id} not found") from e

        logger.info(
            f"Rescheduled class {class_id} for teacher {request.teacher_id} on {request.day} "
            f"{request.slot.to_display()} with {len(roster)} students"
        )

    def delete_class(self, class_id: int) -> None:
        """Delete a class and its enrollments. Unknown ids are a no-op."""
        self.store.delete_class(class_id)
        logger.info(f"Deleted class {class_id}")


def get_scheduler() -> Scheduler:
    return Scheduler(get_record_store())
