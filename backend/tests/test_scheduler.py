"""
Unit tests for the scheduler: conflict detection, roster replacement and
name resolution, run against the in-memory record store.
"""
import threading
import time

import pytest

from tutoring.models.schedule_types import ClassRequest, parse_clock
from tutoring.services.memory_store import MemoryRecordStore
from tutoring.services.record_store import ExclusionViolation
from tutoring.services.scheduler import (
    ConflictError,
    KeyedLocks,
    NotFoundError,
    Scheduler,
    ValidationError,
)


def make_request(teacher_id, students=(), day="Monday", start="09:00", end="10:00", subject="Math"):
    return ClassRequest(
        teacher_id=teacher_id,
        subject=subject,
        day=day,
        start_time=parse_clock(start),
        end_time=parse_clock(end),
        student_names=list(students),
    )


@pytest.fixture
def store():
    return MemoryRecordStore()


@pytest.fixture
def locks():
    return KeyedLocks()


@pytest.fixture
def scheduler(store, locks):
    return Scheduler(store, locks=locks)


@pytest.fixture
def teacher(store):
    return store.create_teacher("Ms. Frizzle")


def student_names(store):
    return [s.name for s in store.list_students()]


class TestResolveStudents:
    """Tests for name -> id resolution."""

    def test_existing_name_returns_existing_id(self, scheduler, store):
        ada = store.create_student("Ada")
        assert scheduler.resolve_students(["Ada"]) == [ada.id]
        assert len(store.list_students()) == 1

    def test_unknown_name_creates_one_student(self, scheduler, store):
        ids = scheduler.resolve_students(["Grace"])
        assert len(ids) == 1
        assert student_names(store) == ["Grace"]

    def test_preserves_order_and_duplicates(self, scheduler, store):
        ids = scheduler.resolve_students(["Grace", "Ada", "Grace"])
        assert ids[0] == ids[2]
        assert ids[0] != ids[1]
        assert sorted(student_names(store)) == ["Ada", "Grace"]

    def test_names_are_trimmed(self, scheduler, store):
        first = scheduler.resolve_students(["  Ada "])
        second = scheduler.resolve_students(["Ada"])
        assert first == second

    def test_single_string_is_rejected(self, scheduler, store):
        with pytest.raises(ValidationError):
            scheduler.resolve_students("Ada")
        assert store.list_students() == []

    def test_non_sequence_is_rejected(self, scheduler):
        for bad in [None, 5, {"name": "Ada"}]:
            with pytest.raises(ValidationError):
                scheduler.resolve_students(bad)

    def test_blank_or_non_string_names_are_rejected(self, scheduler):
        with pytest.raises(ValidationError):
            scheduler.resolve_students(["Ada", "  "])
        with pytest.raises(ValidationError):
            scheduler.resolve_students(["Ada", 42])


class TestTeacherConflicts:

    def test_back_to_back_classes_are_allowed(self, scheduler, teacher):
        scheduler.schedule_class(make_request(teacher.id, start="09:00", end="10:00"))
        second = scheduler.schedule_class(make_request(teacher.id, start="10:00", end="11:00"))
        assert second is not None

    def test_overlapping_class_is_rejected(self, scheduler, teacher, store):
        first = scheduler.schedule_class(make_request(teacher.id, start="09:00", end="10:00"))

        with pytest.raises(ConflictError) as exc:
            scheduler.schedule_class(make_request(teacher.id, start="09:30", end="10:30"))

        assert str(exc.value) == "clash_detected"
        assert exc.value.conflict.kind == "teacher"
        assert exc.value.conflict.class_id == first
        assert exc.value.to_dict()["error"] == "clash_detected"
        assert len(store.teacher_timetable(teacher.id)) == 1

    def test_same_time_on_another_day_is_allowed(self, scheduler, teacher):
        scheduler.schedule_class(make_request(teacher.id, day="Monday"))
        scheduler.schedule_class(make_request(teacher.id, day="Tuesday"))

    def test_teachers_sharing_a_name_stay_distinct(self, scheduler, store):
        sam_a = store.create_teacher("Sam")
        sam_b = store.create_teacher("Sam")
        assert sam_a.id != sam_b.id

        scheduler.schedule_class(make_request(sam_a.id))
        scheduler.schedule_class(make_request(sam_b.id))

        assert len(store.teacher_timetable(sam_a.id)) == 1
        assert len(store.teacher_timetable(sam_b.id)) == 1


class TestStudentConflicts:

    def test_student_clash_across_teachers(self, scheduler, store, teacher):
        other = store.create_teacher("Mr. Ratburn")
        scheduler.schedule_class(make_request(teacher.id, ["Arnold"], start="09:00", end="10:00"))

        with pytest.raises(ConflictError) as exc:
            scheduler.schedule_class(make_request(other.id, ["Arnold"], start="09:30", end="09:45"))

        arnold_id = store.find_student_id("Arnold")
        assert exc.value.conflict.kind == "student"
        assert exc.value.conflict.party_id == arnold_id

    def test_teacher_conflict_is_reported_first(self, scheduler, store, teacher):
        other = store.create_teacher("Mr. Ratburn")
        scheduler.schedule_class(make_request(teacher.id, start="09:00", end="10:00"))
        scheduler.schedule_class(make_request(other.id, ["Arnold"], start="09:00", end="10:00"))

        with pytest.raises(ConflictError) as exc:
            scheduler.schedule_class(make_request(teacher.id, ["Arnold"], start="09:15", end="09:45"))

        assert exc.value.conflict.kind == "teacher"

    def test_students_are_checked_in_list_order(self, scheduler, store):
        t1 = store.create_teacher("T1")
        t2 = store.create_teacher("T2")
        t3 = store.create_teacher("T3")
        scheduler.schedule_class(make_request(t1.id, ["Wanda"]))
        scheduler.schedule_class(make_request(t2.id, ["Carlos"]))

        with pytest.raises(ConflictError) as exc:
            scheduler.schedule_class(make_request(t3.id, ["Carlos", "Wanda"]))

        assert exc.value.conflict.party_id == store.find_student_id("Carlos")

    def test_conflict_creates_no_students(self, scheduler, store, teacher):
        scheduler.schedule_class(make_request(teacher.id, ["Ada"]))

        with pytest.raises(ConflictError):
            scheduler.schedule_class(make_request(teacher.id, ["Ada", "Newcomer"], start="09:30", end="10:30"))

        assert student_names(store) == ["Ada"]

    def test_check_overlap_honours_exclusion(self, scheduler, store, teacher):
        class_id = scheduler.schedule_class(make_request(teacher.id, ["Ada"]))
        ada = store.find_student_id("Ada")
        start, end = parse_clock("09:00"), parse_clock("10:00")

        assert scheduler.check_overlap(teacher.id, [ada], "Monday", start, end) is True
        assert scheduler.check_overlap(teacher.id, [ada], "Monday", start, end, exclude_class_id=class_id) is False
        assert scheduler.check_overlap(teacher.id, [ada], "Tuesday", start, end) is False


class TestScheduleClass:

    def test_roster_is_written_in_order(self, scheduler, store, teacher):
        scheduler.schedule_class(make_request(teacher.id, ["Wanda", "Arnold", "Keesha"]))
        [row] = store.teacher_timetable(teacher.id)
        assert row.students == ["Wanda", "Arnold", "Keesha"]

    def test_repeated_name_is_enrolled_once(self, scheduler, store, teacher):
        scheduler.schedule_class(make_request(teacher.id, ["Ada", "Ada"]))
        [row] = store.teacher_timetable(teacher.id)
        assert row.students == ["Ada"]

    def test_unknown_teacher(self, scheduler, store):
        with pytest.raises(NotFoundError):
            scheduler.schedule_class(make_request(999, ["Ada"]))
        assert store.list_students() == []

    def test_storage_exclusion_becomes_conflict(self, locks):
        class RejectingStore(MemoryRecordStore):
            def insert_class(self, session, student_ids):
                raise ExclusionViolation("double-booked")

        store = RejectingStore()
        store.create_teacher("Ms. Frizzle")
        with pytest.raises(ConflictError) as exc:
            Scheduler(store, locks=locks).schedule_class(make_request(1))
        assert exc.value.conflict is None
        assert exc.value.to_dict() == {"error": "clash_detected"}


class TestRescheduleClass:

    def test_unchanged_interval_does_not_conflict_with_itself(self, scheduler, teacher):
        class_id = scheduler.schedule_class(make_request(teacher.id, ["Ada"]))
        scheduler.reschedule_class(class_id, make_request(teacher.id, ["Ada"]))

    def test_roster_is_fully_replaced(self, scheduler, store, teacher):
        class_id = scheduler.schedule_class(make_request(teacher.id, ["A", "B"]))
        scheduler.reschedule_class(class_id, make_request(teacher.id, ["A", "C"]))

        [row] = store.teacher_timetable(teacher.id)
        assert row.students == ["A", "C"]
        assert store.student_timetable(store.find_student_id("B")) == []

    def test_fields_are_rewritten(self, scheduler, store, teacher):
        class_id = scheduler.schedule_class(make_request(teacher.id, subject="Math"))
        scheduler.reschedule_class(
            class_id, make_request(teacher.id, subject="Art", day="Thursday", start="13:00", end="14:00")
        )
        session = store.get_class(class_id)
        assert session.subject == "Art"
        assert session.day == "Thursday"
        assert session.start_time == parse_clock("13:00")

    def test_moving_onto_another_class_conflicts(self, scheduler, store, teacher):
        scheduler.schedule_class(make_request(teacher.id, start="09:00", end="10:00"))
        second = scheduler.schedule_class(make_request(teacher.id, start="11:00", end="12:00"))

        with pytest.raises(ConflictError):
            scheduler.reschedule_class(second, make_request(teacher.id, start="09:30", end="10:30"))

        assert store.get_class(second).start_time == parse_clock("11:00")

    def test_missing_class(self, scheduler, store, teacher):
        with pytest.raises(NotFoundError):
            scheduler.reschedule_class(42, make_request(teacher.id, ["Ada"]))
        assert store.list_students() == []

    def test_malformed_roster_is_reported_before_missing_class(self, scheduler, teacher):
        request = make_request(teacher.id)
        request.student_names = "Ada"
        with pytest.raises(ValidationError):
            scheduler.reschedule_class(42, request)

    def test_class_deleted_mid_update(self, locks):
        class VanishingStore(MemoryRecordStore):
            def update_class(self, session, student_ids):
                self.delete_class(session.id)
                super().update_class(session, student_ids)

        store = VanishingStore()
        store.create_teacher("Ms. Frizzle")
        scheduler = Scheduler(store, locks=locks)
        class_id = scheduler.schedule_class(make_request(1))
        with pytest.raises(NotFoundError):
            scheduler.reschedule_class(class_id, make_request(1))


class TestDeleteClass:

    def test_removed_from_all_timetables(self, scheduler, store, teacher):
        class_id = scheduler.schedule_class(make_request(teacher.id, ["Ada", "Grace"]))
        scheduler.delete_class(class_id)

        assert store.teacher_timetable(teacher.id) == []
        assert store.student_timetable(store.find_student_id("Ada")) == []
        assert store.student_timetable(store.find_student_id("Grace")) == []

    def test_frees_the_slot(self, scheduler, teacher):
        class_id = scheduler.schedule_class(make_request(teacher.id))
        scheduler.delete_class(class_id)
        scheduler.schedule_class(make_request(teacher.id))

    def test_unknown_id_is_a_no_op(self, scheduler):
        scheduler.delete_class(12345)


class TestConcurrency:

    def test_overlapping_requests_cannot_both_succeed(self, locks):
        class SlowStore(MemoryRecordStore):
            def classes_for_teacher(self, teacher_id, day, exclude_class_id=None):
                rows = super().classes_for_teacher(teacher_id, day, exclude_class_id)
                time.sleep(0.05)
                return rows

        store = SlowStore()
        teacher = store.create_teacher("Ms. Frizzle")
        scheduler = Scheduler(store, locks=locks)
        barrier = threading.Barrier(2)
        outcomes = []

        def attempt(start, end):
            barrier.wait()
            try:
                outcomes.append(scheduler.schedule_class(make_request(teacher.id, start=start, end=end)))
            except ConflictError:
                outcomes.append("clash")

        threads = [
            threading.Thread(target=attempt, args=("09:00", "10:00")),
            threading.Thread(target=attempt, args=("09:30", "10:30")),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert outcomes.count("clash") == 1
        assert len(store.teacher_timetable(teacher.id)) == 1

    def test_unrelated_keys_do_not_block(self, locks):
        entered = threading.Event()

        def other_teacher():
            with locks.hold([("teacher", "2", "Monday")]):
                entered.set()

        with locks.hold([("teacher", "1", "Monday")]):
            worker = threading.Thread(target=other_teacher)
            worker.start()
            assert entered.wait(timeout=1)
            worker.join(timeout=1)

    def test_locks_are_released(self, scheduler, locks, teacher):
        scheduler.schedule_class(make_request(teacher.id, ["Ada"]))
        with pytest.raises(ConflictError):
            scheduler.schedule_class(make_request(teacher.id, ["Ada"]))
        assert len(locks) == 0
