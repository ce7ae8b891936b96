"""
PowerLink — Dashboard summary and expense breakdowns
"""

from __future__ import annotations

from collections import OrderedDict
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from powerlink.core.exceptions import ValidationError
from powerlink.models.ledger import Installment, Loan, Worker
from powerlink.models.records import Baana, Beam, Expense
from powerlink.services.ledger import ZERO, remaining_balance

EXPENSE_GROUPS = ("month", "category")


def _total(db: Session, column, date_column, date_from: Optional[date], date_to: Optional[date]) -> Decimal:
    stmt = select(func.sum(column))
    if date_from:
        stmt = stmt.where(date_column >= date_from)
    if date_to:
        stmt = stmt.where(date_column <= date_to)
    value = db.scalar(stmt)
    return ZERO if value is None else Decimal(str(value))


def summary(db: Session, date_from: Optional[date] = None, date_to: Optional[date] = None) -> Dict[str, Any]:
    loans_issued = _total(db, Loan.amount, Loan.loan_date, date_from, date_to)
    received = _total(db, Installment.amount, Installment.date, date_from, date_to)

    return {
        "workers": db.scalar(select(func.count()).select_from(Worker)) or 0,
        "loans_issued": loans_issued,
        "installments_received": received,
        "outstanding": remaining_balance(loans_issued, received),
        "expenses": _total(db, Expense.amount, Expense.date, date_from, date_to),
        "last_baana_date": db.scalar(select(func.max(Baana.date))),
        "last_beam_date": db.scalar(select(func.max(Beam.date))),
    }


def expense_breakdown(
    db: Session,
    group: str = "month",
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """Expense totals per calendar month (ascending) or per category (largest first)."""
    if group not in EXPENSE_GROUPS:
        raise ValidationError(
            f"Unknown expense grouping {group!r}", details={"group": list(EXPENSE_GROUPS)}
        )

    stmt = select(Expense.date, Expense.category, Expense.amount)
    if date_from:
        stmt = stmt.where(Expense.date >= date_from)
    if date_to:
        stmt = stmt.where(Expense.date <= date_to)

    buckets: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for spent_on, category, amount in db.execute(stmt.order_by(Expense.date)):
        if group == "month":
            key = f"{spent_on.year:04d}-{spent_on.month:02d}"
            bucket = buckets.setdefault(
                key,
                {"key": key, "year": spent_on.year, "month": spent_on.month, "total": ZERO, "count": 0},
            )
        else:
            bucket = buckets.setdefault(
                category, {"key": category, "category": category, "total": ZERO, "count": 0}
            )
        bucket["total"] += Decimal(str(amount))
        bucket["count"] += 1

    rows = list(buckets.values())
    if group == "category":
        rows.sort(key=lambda row: row["total"], reverse=True)
    return rows
