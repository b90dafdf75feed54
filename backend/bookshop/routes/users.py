# Overview: Flask API routes for user operations; parses input and returns JSON responses.

"""
User management routes.

SECURITY: Admin only. Roles are the closed set admin/cashier.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import auth_service
from ..validation import ValidationError, NotFoundError, ConflictError
from ..decorators import require_auth, require_admin

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("")
@require_auth
@require_admin
def list_users_route():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    users = auth_service.list_users(include_inactive=include_inactive)
    return jsonify({"users": [u.to_dict() for u in users], "count": len(users)})


@users_bp.post("")
@require_auth
@require_admin
def create_user_route():
    """
    Create a new user.

    Request body:
    {
        "username": "ama",          // required
        "email": "ama@school.edu",  // required
        "password": "...",          // required, strength-checked
        "name": "Ama Mensah",       // optional, defaults to username
        "role": "cashier"           // optional: admin, cashier
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        user = auth_service.create_user(
            username=data.get("username"),
            name=data.get("name"),
            email=data.get("email"),
            password=data.get("password") or "",
            role=data.get("role") or auth_service.ROLE_CASHIER,
        )
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    current_app.logger.info("User %s created by %s", user.username, g.current_user.username)
    return jsonify({"user": user.to_dict()}), 201


@users_bp.get("/<int:user_id>")
@require_auth
@require_admin
def get_user_route(user_id: int):
    try:
        user = auth_service.get_user(user_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"user": user.to_dict()})


@users_bp.patch("/<int:user_id>")
@require_auth
@require_admin
def update_user_route(user_id: int):
    """Update name, email, role or active flag."""
    data = request.get_json(silent=True) or {}

    if user_id == g.current_user.id and data.get("is_active") is False:
        return jsonify({"error": "You cannot deactivate your own account"}), 400

    try:
        user = auth_service.update_user(
            user_id,
            name=data.get("name"),
            email=data.get("email"),
            role=data.get("role"),
            is_active=data.get("is_active"),
        )
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({"user": user.to_dict()})


@users_bp.post("/<int:user_id>/reset-password")
@require_auth
@require_admin
def reset_password_route(user_id: int):
    """Set a new password. All of the user's sessions are revoked."""
    data = request.get_json(silent=True) or {}

    try:
        user = auth_service.reset_password(user_id, data.get("password") or "")
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({"user": user.to_dict(), "message": "Password reset"})
