"""
Class API Routes - create, reschedule and delete class sessions.
All double-booking checks live in the Scheduler; this layer validates the
request shape and maps scheduling errors to status codes.
"""
import logging
from typing import Any, Dict

from flask import Blueprint, jsonify, request

from tutoring.models.schedule_types import WEEKDAY_ORDER, ClassRequest, parse_clock
from tutoring.services.record_store import RecordStoreError
from tutoring.services.scheduler import (
    ConflictError,
    NotFoundError,
    ValidationError,
    get_scheduler,
    normalize_student_names,
)

logger = logging.getLogger(__name__)

classes_bp = Blueprint("classes", __name__)


def _parse_class_payload(data: Dict[str, Any]) -> ClassRequest:
    """
    Validate a class body. Raises ValidationError with a message fit for the client.
    """
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object")
    # roster shape is checked before any other field
    students = normalize_student_names(data.get("students"))

    teacher_id = data.get("teacher_id")
    if isinstance(teacher_id, (bool, float)):
        raise ValidationError("teacher_id must be an integer")
    try:
        teacher_id = int(teacher_id)
    except (TypeError, ValueError):
        raise ValidationError("teacher_id must be an integer")

    subject = data.get("subject")
    if not isinstance(subject, str) or not subject.strip():
        raise ValidationError("subject is required")

    day = data.get("day")
    if day not in WEEKDAY_ORDER:
        raise ValidationError(f"day must be one of {', '.join(WEEKDAY_ORDER)}")

    try:
        start_time = parse_clock(data.get("start_time"))
        end_time = parse_clock(data.get("end_time"))
    except ValueError as e:
        raise ValidationError(str(e))
    if start_time >= end_time:
        raise ValidationError("start_time must be before end_time")

    return ClassRequest(
        teacher_id=teacher_id,
        subject=subject.strip(),
        day=day,
        start_time=start_time,
        end_time=end_time,
        student_names=students,
    )


@classes_bp.route("/classes", methods=["POST"])
def create_class():
    """
    Schedule a new class.

    Request Body:
        {
            "teacher_id": 1,
            "subject": "Algebra",
            "day": "Monday",
            "start_time": "09:00",
            "end_time": "10:00",
            "students": ["Ada", "Grace"]
        }

    Returns:
        200: { "id": number }
        400: Invalid request
        404: Teacher not found
        409: { "error": "clash_detected", "conflict": {...} }
    """
    data = request.get_json(silent=True) or {}
    try:
        class_request = _parse_class_payload(data)
        class_id = get_scheduler().schedule_class(class_request)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify(e.to_dict()), 409
    except RecordStoreError as e:
        logger.error(f"Create Class Error: {e}")
        return jsonify({"error": "Failed to schedule class"}), 500

    return jsonify({"id": class_id}), 200


@classes_bp.route("/classes/<int:class_id>", methods=["PUT"])
def update_class(class_id: int):
    """
    Rewrite a class and replace its whole roster.

    Request Body: same as POST /classes

    Returns:
        200: { "success": true }
        400: Invalid request
        404: Class or teacher not found
        409: { "error": "clash_detected", "conflict": {...} }
    """
    data = request.get_json(silent=True) or {}
    try:
        class_request = _parse_class_payload(data)
        get_scheduler().reschedule_class(class_id, class_request)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify(e.to_dict()), 409
    except RecordStoreError as e:
        logger.error(f"Update Class Error: {e}")
        return jsonify({"error": "Failed to update class"}), 500

    return jsonify({"success": True}), 200


@classes_bp.route("/classes/<int:class_id>", methods=["DELETE"])
def delete_class(class_id: int):
    """
    Delete a class and its enrollments. Deleting an unknown id still succeeds.

    Returns:
        200: { "success": true }
    """
    try:
        get_scheduler().delete_class(class_id)
    except RecordStoreError as e:
        logger.error(f"Delete Class Error: {e}")
        return jsonify({"error": "Failed to delete class"}), 500

    return jsonify({"success": True}), 200
