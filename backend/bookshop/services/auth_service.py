# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

WHY: Every sale and stock movement must be attributable. Uses bcrypt for
secure password hashing and validates password strength.

ROLES: The closed set admin / cashier. Role strings arriving from anywhere
(payloads, CLI, legacy data) go through normalize_role() once; every other
comparison uses the constants below.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, upper, lower, digit and special char required
- Session tokens managed separately (see session_service.py)
"""

import bcrypt
import re
from ..extensions import db
from ..models import User
from ..validation import ValidationError, NotFoundError, ConflictError
from bookshop.time_utils import utcnow


ROLE_ADMIN = "admin"
ROLE_CASHIER = "cashier"

VALID_ROLES = [ROLE_ADMIN, ROLE_CASHIER]


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    pass


def normalize_role(role) -> str:
    """Lower-case and validate a role name ("ADMIN" and "admin" are the same role)."""
    if not isinstance(role, str):
        raise ValidationError("role must be a string")
    normalized = role.strip().lower()
    if normalized not in VALID_ROLES:
        raise ValidationError(f"Invalid role: {role}. Must be one of {VALID_ROLES}")
    return normalized


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Hash password using bcrypt with cost factor 12 (strength checked first)."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    Returns True if password matches hash, False otherwise (including
    malformed hashes).
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    *,
    username: str,
    name: str,
    email: str,
    password: str,
    role: str = ROLE_CASHIER,
) -> User:
    """
    Create new user with bcrypt password hashing.

    Raises:
        ValidationError: Bad role, blank fields or weak password
        ConflictError: Username or email already taken
    """
    username = (username or "").strip()
    email = (email or "").strip().lower()
    name = (name or "").strip() or username
    if not username or not email:
        raise ValidationError("username and email are required")

    role = normalize_role(role)

    existing = db.session.query(User).filter(
        db.or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise ConflictError("Username or email already exists")

    user = User(
        username=username,
        name=name,
        email=email,
        role=role,
        password_hash=hash_password(password),
    )

    db.session.add(user)
    db.session.commit()
    return user


def get_user(user_id: int) -> User:
    user = db.session.query(User).filter_by(id=user_id).first()
    if not user:
        raise NotFoundError(f"User {user_id} not found")
    return user


def list_users(include_inactive: bool = False) -> list[User]:
    query = db.session.query(User)
    if not include_inactive:
        query = query.filter(User.is_active.is_(True))
    return query.order_by(User.username.asc()).all()


def update_user(
    user_id: int,
    *,
    name: str | None = None,
    email: str | None = None,
    role: str | None = None,
    is_active: bool | None = None,
) -> User:
    """Update profile fields; deactivating a user revokes their sessions."""
    from .session_service import revoke_all_user_sessions

    user = get_user(user_id)

    if name is not None:
        if not name.strip():
            raise ValidationError("name cannot be blank")
        user.name = name.strip()

    if email is not None:
        email = email.strip().lower()
        clash = db.session.query(User).filter(User.email == email, User.id != user_id).first()
        if clash:
            raise ConflictError("Email already exists")
        user.email = email

    if role is not None:
        user.role = normalize_role(role)

    deactivated = False
    if is_active is not None:
        deactivated = user.is_active and not is_active
        user.is_active = bool(is_active)

    db.session.commit()

    if deactivated:
        revoke_all_user_sessions(user.id, reason="User account deactivated")
    return user


def reset_password(user_id: int, new_password: str) -> User:
    from .session_service import revoke_all_user_sessions

    user = get_user(user_id)
    user.password_hash = hash_password(new_password)
    db.session.commit()
    revoke_all_user_sessions(user.id, reason="Password reset")
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Authenticate user with username (or email) and password.

    Returns User if credentials valid, None otherwise.
    Updates last_login_at timestamp on successful authentication.
    """
    user = db.session.query(User).filter(
        db.or_(User.username == username, User.email == (username or "").lower()),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None
