# Overview: Database-backed document number allocation.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..validation import ValidationError


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    start: int = 1,
    pad: int = 6,
) -> str:
    """
    Atomically allocate the next document number for a document type.

    The increment is a single UPDATE on the sequence row, so two concurrent
    callers can never read the same value. The first call for a type creates
    the row seeded at `start`.

    Does not commit: the number belongs to the caller's transaction and is
    released again if that transaction rolls back.
    """
    if not document_type:
        raise ValidationError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        db.session.flush()
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type)
            .scalar()
        )
        next_num = current - 1
    else:
        seq = DocumentSequence(document_type=document_type, next_number=start + 1)
        try:
            with db.session.begin_nested():
                db.session.add(seq)
            next_num = start
        except IntegrityError:
            # Another writer created the row first; take the next value from it.
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            db.session.flush()
            current = (
                db.session.query(DocumentSequence.next_number)
                .filter_by(document_type=document_type)
                .scalar()
            )
            next_num = current - 1

    return f"{prefix}-{next_num:0{pad}d}"
