"""
PowerLink — Loan balance derivation

remaining = max(0, loan.amount - sum(installment.amount)) is computed at read
time from the installments table for both list and single reads; it is never
persisted.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, Iterable, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from powerlink.models.ledger import Installment, Loan

ZERO = Decimal("0")


def _as_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def remaining_balance(amount, paid) -> Decimal:
    """Principal minus repayments, clamped at zero for overpaid loans."""
    return max(ZERO, _as_decimal(amount) - _as_decimal(paid))


def paid_by_loan(db: Session, loan_ids: Iterable[str]) -> Dict[str, Decimal]:
    """Sum of installment amounts per loan id. Loans without installments are absent."""
    ids = list(loan_ids)
    if not ids:
        return {}
    rows = db.execute(
        select(Installment.loan_id, func.sum(Installment.amount))
        .where(Installment.loan_id.in_(ids))
        .group_by(Installment.loan_id)
    )
    return {loan_id: _as_decimal(total) for loan_id, total in rows}


def loan_paid(db: Session, loan_id: str) -> Decimal:
    return paid_by_loan(db, [loan_id]).get(loan_id, ZERO)


def worker_totals(db: Session, worker_ids: Iterable[str]) -> Dict[str, Tuple[Decimal, Decimal]]:
    """
    Per worker: (total principal lent, remaining across all loans).
    Remaining is clamped at the worker level, not per loan.
    """
    ids = list(worker_ids)
    if not ids:
        return {}

    loans = db.execute(
        select(Loan.id, Loan.worker_id, Loan.amount).where(Loan.worker_id.in_(ids))
    ).all()
    paid = paid_by_loan(db, [loan_id for loan_id, _, _ in loans])

    lent: Dict[str, Decimal] = {}
    repaid: Dict[str, Decimal] = {}
    for loan_id, worker_id, amount in loans:
        lent[worker_id] = lent.get(worker_id, ZERO) + _as_decimal(amount)
        repaid[worker_id] = repaid.get(worker_id, ZERO) + paid.get(loan_id, ZERO)

    return {
        worker_id: (
            lent.get(worker_id, ZERO),
            remaining_balance(lent.get(worker_id, ZERO), repaid.get(worker_id, ZERO)),
        )
        for worker_id in ids
    }
