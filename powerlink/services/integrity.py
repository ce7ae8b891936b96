"""
PowerLink — Referential integrity for Worker → Loan → Installment

Deleting a worker removes its loans and every installment on those loans;
deleting a loan removes its installments. Children go first (the foreign keys
forbid anything else) and the whole cascade commits as one transaction, so
an observer never sees installments pointing at a deleted loan and a failure
part-way leaves nothing deleted.

Deleting an already-deleted worker or loan raises NotFoundError without
touching any child rows.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from powerlink.core.exceptions import NotFoundError
from powerlink.core.logging import get_logger
from powerlink.models.ledger import Installment, Loan, Worker

logger = get_logger(__name__)


@dataclass
class CascadeResult:
    worker_id: Optional[str]
    loan_ids: List[str]
    loans_deleted: int
    installments_deleted: int


def _purge_installments(db: Session, loan_ids: Sequence[str]) -> int:
    if not loan_ids:
        return 0
    result = db.execute(delete(Installment).where(Installment.loan_id.in_(loan_ids)))
    return result.rowcount or 0


def _purge_loans(db: Session, loan_ids: Sequence[str]) -> int:
    if not loan_ids:
        return 0
    result = db.execute(delete(Loan).where(Loan.id.in_(loan_ids)))
    return result.rowcount or 0


def _purge_worker(db: Session, worker_id: str) -> int:
    result = db.execute(delete(Worker).where(Worker.id == worker_id))
    return result.rowcount or 0


def delete_worker(db: Session, worker_id: str) -> CascadeResult:
    """Delete a worker together with its loans and their installments."""
    if db.scalar(select(Worker.id).where(Worker.id == worker_id)) is None:
        raise NotFoundError("Worker not found", details={"id": worker_id})

    loan_ids = list(db.scalars(select(Loan.id).where(Loan.worker_id == worker_id)))
    try:
        installments = _purge_installments(db, loan_ids)
        loans = _purge_loans(db, loan_ids)
        if _purge_worker(db, worker_id) == 0:
            # lost a race with a concurrent delete
            db.rollback()
            raise NotFoundError("Worker not found", details={"id": worker_id})
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Cascade delete of worker %s rolled back", worker_id)
        raise

    logger.info(
        "Deleted worker %s with %d loan(s) and %d installment(s)",
        worker_id,
        loans,
        installments,
    )
    return CascadeResult(worker_id, loan_ids, loans, installments)


def delete_loan(db: Session, loan_id: str) -> CascadeResult:
    """Delete a loan together with its installments."""
    if db.scalar(select(Loan.id).where(Loan.id == loan_id)) is None:
        raise NotFoundError("Loan not found", details={"id": loan_id})

    try:
        installments = _purge_installments(db, [loan_id])
        if _purge_loans(db, [loan_id]) == 0:
            db.rollback()
            raise NotFoundError("Loan not found", details={"id": loan_id})
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Cascade delete of loan %s rolled back", loan_id)
        raise

    logger.info("Deleted loan %s with %d installment(s)", loan_id, installments)
    return CascadeResult(None, [loan_id], 1, installments)
