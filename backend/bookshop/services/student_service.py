# Overview: Service-layer operations for students; encapsulates business logic and database work.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Receipt, Student
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    validate_payload,
)


STUDENT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "class_name", "roll_number"},
    required_on_create={"name", "class_name"},
)


def _roll_number_taken(roll_number: str | None, exclude_id: int | None = None) -> bool:
    if not roll_number:
        return False
    query = db.session.query(Student.id).filter(Student.roll_number == roll_number)
    if exclude_id:
        query = query.filter(Student.id != exclude_id)
    return query.first() is not None


def create_student(payload: dict) -> Student:
    patch = validate_payload(model=Student, payload=payload, policy=STUDENT_POLICY, partial=False)
    patch["roll_number"] = patch.get("roll_number") or None
    if _roll_number_taken(patch["roll_number"]):
        raise ConflictError(f"Roll number {patch['roll_number']} already exists")

    student = Student(**patch)
    db.session.add(student)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Roll number {patch['roll_number']} already exists")
    return student


def get_student(student_id: int) -> Student:
    student = db.session.query(Student).filter_by(id=student_id).first()
    if not student:
        raise NotFoundError(f"Student {student_id} not found")
    return student


def update_student(student_id: int, payload: dict) -> Student:
    patch = validate_payload(model=Student, payload=payload, policy=STUDENT_POLICY, partial=True)
    student = get_student(student_id)

    if "roll_number" in patch:
        patch["roll_number"] = patch["roll_number"] or None
        if _roll_number_taken(patch["roll_number"], exclude_id=student.id):
            raise ConflictError(f"Roll number {patch['roll_number']} already exists")

    for key, value in patch.items():
        setattr(student, key, value)
    db.session.commit()
    return student


def delete_student(student_id: int) -> None:
    """Receipts keep a reference to the student, so buyers are never deleted."""
    student = get_student(student_id)
    if db.session.query(Receipt.id).filter_by(student_id=student.id).first():
        raise ConflictError("Student has receipts and cannot be deleted")
    db.session.delete(student)
    db.session.commit()


def list_students(
    *,
    class_name: str | None = None,
    search: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Student], int]:
    query = db.session.query(Student)
    if class_name:
        query = query.filter(Student.class_name == class_name)
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(db.or_(Student.name.ilike(term), Student.roll_number.ilike(term)))

    total = query.count()
    students = (
        query.order_by(Student.class_name.asc(), Student.name.asc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return students, total


def import_students(rows: list[dict]) -> dict:
    """
    Bulk create students.

    Rows whose roll number already exists (in the DB or earlier in the batch)
    are skipped, not failed. Invalid rows are reported with their index.
    """
    if not isinstance(rows, list):
        raise ValidationError("students must be a list")

    created: list[Student] = []
    skipped: list[dict] = []
    errors: list[dict] = []
    seen_rolls: set[str] = set()

    for index, row in enumerate(rows):
        try:
            patch = validate_payload(model=Student, payload=row, policy=STUDENT_POLICY, partial=False)
        except ValidationError as e:
            errors.append({"row": index, "error": str(e)})
            continue

        roll = patch.get("roll_number") or None
        patch["roll_number"] = roll
        if roll and (roll in seen_rolls or _roll_number_taken(roll)):
            skipped.append({"row": index, "roll_number": roll, "reason": "duplicate roll number"})
            continue
        if roll:
            seen_rolls.add(roll)

        student = Student(**patch)
        db.session.add(student)
        created.append(student)

    db.session.commit()
    return {
        "created": [s.to_dict() for s in created],
        "created_count": len(created),
        "skipped": skipped,
        "errors": errors,
    }
