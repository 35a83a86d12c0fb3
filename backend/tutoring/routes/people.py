"""
People API Routes - teachers, students and their timetables.
"""
import logging

from flask import Blueprint, jsonify, request

from tutoring.services.record_store import RecordStoreError, get_record_store
from tutoring.services.timetable_service import student_timetable, teacher_timetable

logger = logging.getLogger(__name__)

people_bp = Blueprint("people", __name__)


def _name_from_body():
    data = request.get_json(silent=True) or {}
    name = data.get("name") if isinstance(data, dict) else None
    if not isinstance(name, str) or not name.strip():
        return None
    return name.strip()


@people_bp.route("/teachers", methods=["GET"])
def list_teachers():
    """All teachers ordered by name: [{ "id", "name" }, ...]"""
    try:
        teachers = get_record_store().list_teachers()
    except RecordStoreError as e:
        logger.error(f"List Teachers Error: {e}")
        return jsonify({"error": "Failed to load teachers"}), 500
    return jsonify([t.to_dict() for t in teachers]), 200


@people_bp.route("/teachers", methods=["POST"])
def create_teacher():
    """
    Add a teacher. Names need not be unique; every call creates a new teacher.

    Request Body:
        { "name": "Ms. Frizzle" }

    Returns:
        200: { "id": number, "name": string }
        400: Missing name
    """
    name = _name_from_body()
    if name is None:
        return jsonify({"error": "name is required"}), 400
    try:
        teacher = get_record_store().create_teacher(name)
    except RecordStoreError as e:
        logger.error(f"Create Teacher Error: {e}")
        return jsonify({"error": "Failed to create teacher"}), 500
    return jsonify(teacher.to_dict()), 200


@people_bp.route("/teachers/<int:teacher_id>/timetable", methods=["GET"])
def get_teacher_timetable(teacher_id: int):
    """
    A teacher's week, Monday to Friday then by start time.

    Returns:
        [{ "id", "teacher", "subject", "day", "start_time", "end_time", "students" }, ...]
    """
    try:
        rows = teacher_timetable(get_record_store(), teacher_id)
    except RecordStoreError as e:
        logger.error(f"Teacher Timetable Error: {e}")
        return jsonify({"error": "Failed to load timetable"}), 500
    return jsonify(rows), 200


@people_bp.route("/students", methods=["GET"])
def list_students():
    """All students ordered by name: [{ "id", "name" }, ...]"""
    try:
        students = get_record_store().list_students()
    except RecordStoreError as e:
        logger.error(f"List Students Error: {e}")
        return jsonify({"error": "Failed to load students"}), 500
    return jsonify([s.to_dict() for s in students]), 200


@people_bp.route("/students", methods=["POST"])
def create_student():
    """
    Add a student. Like teachers, every call creates a new row.

    Request Body:
        { "name": "Arnold" }
    """
    name = _name_from_body()
    if name is None:
        return jsonify({"error": "name is required"}), 400
    try:
        student = get_record_store().create_student(name)
    except RecordStoreError as e:
        logger.error(f"Create Student Error: {e}")
        return jsonify({"error": "Failed to create student"}), 500
    return jsonify(student.to_dict()), 200


@people_bp.route("/students/<int:student_id>/timetable", methods=["GET"])
def get_student_timetable(student_id: int):
    """Same shape as the teacher timetable, without the students field."""
    try:
        rows = student_timetable(get_record_store(), student_id)
    except RecordStoreError as e:
        logger.error(f"Student Timetable Error: {e}")
        return jsonify({"error": "Failed to load timetable"}), 500
    return jsonify(rows), 200
