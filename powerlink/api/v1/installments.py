"""
PowerLink — API v1: Installments (loan repayments)
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from powerlink.api.v1.loans import worker_names
from powerlink.api.v1.schemas import APIModel, PageMeta
from powerlink.core.exceptions import NotFoundError
from powerlink.core.pagination import ListParams, list_params
from powerlink.core.security import CurrentUser, get_current_user
from powerlink.database import get_db
from powerlink.models.ledger import Installment, Loan
from powerlink.services.crud import CrudService
from powerlink.services.rbac import require_permission

router = APIRouter(prefix="/installments", tags=["installments"])

installments = CrudService(
    Installment,
    label="Installment",
    date_field="date",
    searchable=("method", "notes"),
    sort_fields={"date": "date", "amount": "amount"},
)


class InstallmentCreate(APIModel):
    loan_id: str
    date: dt.date
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    method: Optional[str] = Field(None, max_length=40)
    notes: Optional[str] = Field(None, max_length=2000)


class InstallmentUpdate(APIModel):
    date: Optional[dt.date] = None
    amount: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    method: Optional[str] = Field(None, max_length=40)
    notes: Optional[str] = Field(None, max_length=2000)


class InstallmentOut(APIModel):
    id: str
    loan_id: str
    worker_id: Optional[str] = None
    worker_name: Optional[str] = None
    date: dt.date
    amount: float
    method: Optional[str] = None
    notes: Optional[str] = None
    created_at: dt.datetime


class InstallmentEnvelope(APIModel):
    installment: InstallmentOut


class InstallmentPage(APIModel):
    data: List[InstallmentOut]
    meta: PageMeta


class InstallmentExport(APIModel):
    data: List[InstallmentOut]
    total: int


def serialize_installments(db: Session, rows: List[Installment]) -> List[InstallmentOut]:
    loan_ids = list({row.loan_id for row in rows})
    owners = (
        dict(db.execute(select(Loan.id, Loan.worker_id).where(Loan.id.in_(loan_ids))).all())
        if loan_ids
        else {}
    )
    names = worker_names(db, owners.values())
    out = []
    for row in rows:
        worker_id = owners.get(row.loan_id)
        out.append(
            InstallmentOut(
                id=row.id,
                loan_id=row.loan_id,
                worker_id=worker_id,
                worker_name=names.get(worker_id) if worker_id else None,
                date=row.date,
                amount=float(row.amount),
                method=row.method,
                notes=row.notes,
                created_at=row.created_at,
            )
        )
    return out


def _filters(loan_id: Optional[str], worker_id: Optional[str]):
    clauses = []
    if loan_id:
        clauses.append(Installment.loan_id == loan_id)
    if worker_id:
        clauses.append(
            Installment.loan_id.in_(select(Loan.id).where(Loan.worker_id == worker_id))
        )
    return clauses


@router.get("", response_model=InstallmentPage)
def list_installments(
    loan_id: Optional[str] = Query(None, alias="loanId"),
    worker_id: Optional[str] = Query(None, alias="workerId"),
    params: ListParams = Depends(list_params),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    rows, total = installments.list(db, params, _filters(loan_id, worker_id))
    return InstallmentPage(
        data=serialize_installments(db, rows),
        meta=PageMeta(page=params.page, page_size=params.page_size, total=total),
    )


@router.get("/export", response_model=InstallmentExport)
def export_installments(
    loan_id: Optional[str] = Query(None, alias="loanId"),
    worker_id: Optional[str] = Query(None, alias="workerId"),
    params: ListParams = Depends(list_params),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("export")),
):
    rows = installments.export(db, params, _filters(loan_id, worker_id))
    return InstallmentExport(data=serialize_installments(db, rows), total=len(rows))


@router.get("/{installment_id}", response_model=InstallmentEnvelope)
def get_installment(
    installment_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    row = installments.get(db, installment_id)
    return InstallmentEnvelope(installment=serialize_installments(db, [row])[0])


@router.post("", response_model=InstallmentEnvelope, status_code=status.HTTP_201_CREATED)
def create_installment(
    req: InstallmentCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("write")),
):
    if db.get(Loan, req.loan_id) is None:
        raise NotFoundError("Loan not found", details={"loanId": req.loan_id})
    row = installments.create(db, req.model_dump())
    return InstallmentEnvelope(installment=serialize_installments(db, [row])[0])


@router.put("/{installment_id}", response_model=InstallmentEnvelope)
def update_installment(
    installment_id: str,
    req: InstallmentUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("write")),
):
    row = installments.update(db, installment_id, req.changes(clearable=("method", "notes")))
    return InstallmentEnvelope(installment=serialize_installments(db, [row])[0])


@router.delete("/{installment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_installment(
    installment_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("delete")),
):
    installments.delete(db, installment_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
