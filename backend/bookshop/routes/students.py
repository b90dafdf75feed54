# Overview: Flask API routes for student operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify

from ..services import student_service, reporting_service
from ..validation import ValidationError, NotFoundError, ConflictError
from ..decorators import require_auth, require_admin

students_bp = Blueprint("students", __name__, url_prefix="/api/students")


@students_bp.get("")
@require_auth
def list_students_route():
    limit = min(max(request.args.get("limit", 100, type=int), 1), 500)
    offset = max(request.args.get("offset", 0, type=int), 0)

    students, total = student_service.list_students(
        class_name=request.args.get("class_name"),
        search=request.args.get("search"),
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [s.to_dict() for s in students],
        "count": total,
        "limit": limit,
        "offset": offset,
    })


@students_bp.post("")
@require_auth
@require_admin
def create_student_route():
    payload = request.get_json(silent=True) or {}
    try:
        student = student_service.create_student(payload)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(student.to_dict()), 201


@students_bp.post("/import")
@require_auth
@require_admin
def import_students_route():
    """
    Bulk import.

    Request body: {"students": [{"name": "...", "class_name": "...", "roll_number": "..."}]}
    Duplicate roll numbers are skipped and reported, not failed.
    """
    data = request.get_json(silent=True) or {}
    try:
        result = student_service.import_students(data.get("students"))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(result), 201


@students_bp.get("/<int:student_id>")
@require_auth
def get_student_route(student_id: int):
    try:
        student = student_service.get_student(student_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(student.to_dict())


@students_bp.put("/<int:student_id>")
@require_auth
@require_admin
def update_student_route(student_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        student = student_service.update_student(student_id, payload)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(student.to_dict())


@students_bp.delete("/<int:student_id>")
@require_auth
@require_admin
def delete_student_route(student_id: int):
    try:
        student_service.delete_student(student_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    return jsonify({"ok": True}), 200


@students_bp.get("/<int:student_id>/purchases")
@require_auth
def student_history_route(student_id: int):
    try:
        history = reporting_service.student_history(student_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(history)
