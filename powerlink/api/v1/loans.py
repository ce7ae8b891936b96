"""
PowerLink — API v1: Loans
Every loan response carries `remaining`, derived from its installments at read time.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from powerlink.api.v1.schemas import APIModel, PageMeta
from powerlink.core.exceptions import NotFoundError
from powerlink.core.pagination import ListParams, list_params
from powerlink.core.security import CurrentUser, get_current_user
from powerlink.database import get_db
from powerlink.models.ledger import Loan, Worker
from powerlink.services import integrity, ledger
from powerlink.services.crud import CrudService
from powerlink.services.rbac import require_permission

router = APIRouter(prefix="/loans", tags=["loans"])

loans = CrudService(
    Loan,
    label="Loan",
    date_field="loan_date",
    sort_fields={"loanDate": "loan_date", "amount": "amount"},
)


class LoanCreate(APIModel):
    worker_id: str
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    loan_date: date
    notes: Optional[str] = Field(None, max_length=2000)


class LoanUpdate(APIModel):
    amount: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    loan_date: Optional[date] = None
    notes: Optional[str] = Field(None, max_length=2000)


class LoanOut(APIModel):
    id: str
    worker_id: str
    worker_name: Optional[str] = None
    amount: float
    loan_date: date
    notes: Optional[str] = None
    paid: float
    remaining: float
    created_at: datetime


class LoanEnvelope(APIModel):
    loan: LoanOut


class LoanPage(APIModel):
    data: List[LoanOut]
    meta: PageMeta


class LoanExport(APIModel):
    data: List[LoanOut]
    total: int


def worker_names(db: Session, worker_ids) -> Dict[str, str]:
    ids = list(set(worker_ids))
    if not ids:
        return {}
    return dict(db.execute(select(Worker.id, Worker.name).where(Worker.id.in_(ids))).all())


def build_loan_out(loan: Loan, paid: Decimal, worker_name: Optional[str] = None) -> LoanOut:
    return LoanOut(
        id=loan.id,
        worker_id=loan.worker_id,
        worker_name=worker_name,
        amount=float(loan.amount),
        loan_date=loan.loan_date,
        notes=loan.notes,
        paid=float(paid),
        remaining=float(ledger.remaining_balance(loan.amount, paid)),
        created_at=loan.created_at,
    )


def serialize_loans(db: Session, rows: List[Loan]) -> List[LoanOut]:
    paid = ledger.paid_by_loan(db, [loan.id for loan in rows])
    names = worker_names(db, [loan.worker_id for loan in rows])
    return [
        build_loan_out(loan, paid.get(loan.id, ledger.ZERO), names.get(loan.worker_id))
        for loan in rows
    ]


def _filters(worker_id: Optional[str]):
    return [Loan.worker_id == worker_id] if worker_id else []


@router.get("", response_model=LoanPage)
def list_loans(
    worker_id: Optional[str] = Query(None, alias="workerId"),
    params: ListParams = Depends(list_params),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    rows, total = loans.list(db, params, _filters(worker_id))
    return LoanPage(
        data=serialize_loans(db, rows),
        meta=PageMeta(page=params.page, page_size=params.page_size, total=total),
    )


@router.get("/export", response_model=LoanExport)
def export_loans(
    worker_id: Optional[str] = Query(None, alias="workerId"),
    params: ListParams = Depends(list_params),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("export")),
):
    rows = loans.export(db, params, _filters(worker_id))
    return LoanExport(data=serialize_loans(db, rows), total=len(rows))


@router.get("/{loan_id}", response_model=LoanEnvelope)
def get_loan(
    loan_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    loan = loans.get(db, loan_id)
    return LoanEnvelope(loan=serialize_loans(db, [loan])[0])


@router.post("", response_model=LoanEnvelope, status_code=status.HTTP_201_CREATED)
def create_loan(
    req: LoanCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("write")),
):
    if db.get(Worker, req.worker_id) is None:
        raise NotFoundError("Worker not found", details={"workerId": req.worker_id})
    loan = loans.create(db, req.model_dump())
    return LoanEnvelope(loan=serialize_loans(db, [loan])[0])


@router.put("/{loan_id}", response_model=LoanEnvelope)
def update_loan(
    loan_id: str,
    req: LoanUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("write")),
):
    loan = loans.update(db, loan_id, req.changes(clearable=("notes",)))
    return LoanEnvelope(loan=serialize_loans(db, [loan])[0])


@router.delete("/{loan_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_loan(
    loan_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("delete")),
):
    integrity.delete_loan(db, loan_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
