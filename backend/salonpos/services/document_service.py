# Overview: Atomic per-branch document numbering (sale numbers, batch numbers).

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..errors import ValidationError


class DocumentSequenceError(ValidationError):
    """Raised when document sequence operations fail."""
    pass


def _current_number(branch_id: str, document_type: str) -> int:
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(branch_id=branch_id, document_type=document_type)
        .scalar()
    )
    return current - 1


def _next_document_number_inner(
    *,
    branch_id: str,
    document_type: str,
    prefix: str,
    pad: int = 4,
) -> str:
    """
    Allocate the next number inside the caller's transaction.

    No retry and no rollback here: finalize_sale and receive_delivery call
    this while they hold their own write transaction.
    """
    if not branch_id:
        raise DocumentSequenceError("branch_id is required")
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.branch_id == branch_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _current_number(branch_id, document_type)
    else:
        try:
            with db.session.begin_nested():
                db.session.add(
                    DocumentSequence(branch_id=branch_id, document_type=document_type, next_number=2)
                )
            next_num = 1
        except IntegrityError:
            # Another writer created the row first; bump theirs
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _current_number(branch_id, document_type)

    return f"{prefix}-{branch_id}-{next_num:0{pad}d}"
