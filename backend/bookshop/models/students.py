from __future__ import annotations

from ..extensions import db
from bookshop.time_utils import to_utc_z

class Student(db.Model):
    """Students who buy books. Roll numbers are unique school-wide."""
    __tablename__ = "students"
    __table_args__ = (
        db.Index("ix_students_class_name", "class_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    class_name = db.Column(db.String(64), nullable=False)
    roll_number = db.Column(db.String(64), nullable=True, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "class_name": self.class_name,
            "roll_number": self.roll_number,
            "created_at": to_utc_z(self.created_at),
        }
