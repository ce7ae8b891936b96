"""
PowerLink — API v1: Workers

List rows carry the worker's loan totals; the detail view adds every loan
(with paid/remaining) and every installment on those loans. Deleting a
worker removes its loans and their installments in one transaction.
"""

from __future__ import annotations

import datetime as dt
import re
from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import Field, field_validator
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from powerlink.api.v1.installments import InstallmentOut, serialize_installments
from powerlink.api.v1.loans import LoanOut, serialize_loans
from powerlink.api.v1.schemas import APIModel, PageMeta
from powerlink.core.exceptions import PhoneInUseError
from powerlink.core.pagination import ListParams, list_params
from powerlink.core.security import CurrentUser, get_current_user
from powerlink.database import get_db
from powerlink.models.ledger import Installment, Loan, Worker
from powerlink.services import integrity, ledger
from powerlink.services.crud import CrudService
from powerlink.services.rbac import require_permission

router = APIRouter(prefix="/workers", tags=["workers"])

workers = CrudService(
    Worker,
    label="Worker",
    date_field="joining_date",
    searchable=("name", "phone", "address"),
    sort_fields={"name": "name", "joiningDate": "joining_date"},
)

AADHAAR_RE = re.compile(r"^\d{12}$")


def _clean_aadhaar(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    digits = re.sub(r"\s+", "", value)
    if not digits:
        return None
    if not AADHAAR_RE.match(digits):
        raise ValueError("Aadhaar number must be 12 digits")
    return digits


# ── Schemas ───────────────────────────────────────────────────────────────────


class WorkerCreate(APIModel):
    name: str = Field(..., min_length=1, max_length=120)
    phone: str = Field(..., min_length=1, max_length=20)
    address: str = Field(..., min_length=1, max_length=1000)
    joining_date: dt.date
    aadhaar: Optional[str] = None
    photo: Optional[str] = None

    @field_validator("name", "phone", "address")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("aadhaar")
    @classmethod
    def check_aadhaar(cls, v: Optional[str]) -> Optional[str]:
        return _clean_aadhaar(v)


class WorkerUpdate(APIModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    phone: Optional[str] = Field(None, min_length=1, max_length=20)
    address: Optional[str] = Field(None, min_length=1, max_length=1000)
    joining_date: Optional[dt.date] = None
    aadhaar: Optional[str] = None
    photo: Optional[str] = None

    @field_validator("name", "phone", "address")
    @classmethod
    def strip_text(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("aadhaar")
    @classmethod
    def check_aadhaar(cls, v: Optional[str]) -> Optional[str]:
        return _clean_aadhaar(v)


class WorkerOut(APIModel):
    id: str
    name: str
    phone: str
    address: str
    joining_date: dt.date
    aadhaar: Optional[str] = None
    photo: Optional[str] = None
    total_loan: float = 0.0
    remaining_loan: float = 0.0
    created_at: dt.datetime


class WorkerDetail(WorkerOut):
    loans: List[LoanOut] = []
    installments: List[InstallmentOut] = []


class WorkerEnvelope(APIModel):
    worker: WorkerOut


class WorkerDetailEnvelope(APIModel):
    worker: WorkerDetail


class WorkerPage(APIModel):
    data: List[WorkerOut]
    meta: PageMeta


class WorkerExport(APIModel):
    data: List[WorkerOut]
    total: int


# ── Helpers ───────────────────────────────────────────────────────────────────


def serialize_workers(db: Session, rows: List[Worker]) -> List[WorkerOut]:
    totals = ledger.worker_totals(db, [w.id for w in rows])
    out = []
    for worker in rows:
        lent, remaining = totals.get(worker.id, (ledger.ZERO, ledger.ZERO))
        item = WorkerOut.model_validate(worker)
        item.total_loan = float(lent)
        item.remaining_loan = float(remaining)
        out.append(item)
    return out


def _ensure_phone_free(db: Session, phone: str, worker_id: Optional[str] = None) -> None:
    stmt = select(Worker.id).where(Worker.phone == phone)
    if worker_id:
        stmt = stmt.where(Worker.id != worker_id)
    if db.scalar(stmt) is not None:
        raise PhoneInUseError(phone)


# ── Endpoints ─────────────────────────────────────────────────────────────────


@router.get("", response_model=WorkerPage)
def list_workers(
    params: ListParams = Depends(list_params),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    rows, total = workers.list(db, params)
    return WorkerPage(
        data=serialize_workers(db, rows),
        meta=PageMeta(page=params.page, page_size=params.page_size, total=total),
    )


@router.get("/export", response_model=WorkerExport)
def export_workers(
    params: ListParams = Depends(list_params),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("export")),
):
    rows = workers.export(db, params)
    return WorkerExport(data=serialize_workers(db, rows), total=len(rows))


@router.get("/{worker_id}", response_model=WorkerDetailEnvelope)
def get_worker(
    worker_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    worker = workers.get(db, worker_id)
    loans = list(
        db.scalars(
            select(Loan)
            .where(Loan.worker_id == worker_id)
            .order_by(Loan.loan_date.desc(), Loan.id)
        )
    )
    installments = list(
        db.scalars(
            select(Installment)
            .where(Installment.loan_id.in_([loan.id for loan in loans]))
            .order_by(Installment.date.desc(), Installment.id)
        )
    ) if loans else []

    summary = serialize_workers(db, [worker])[0]
    detail = WorkerDetail(
        **summary.model_dump(),
        loans=serialize_loans(db, loans),
        installments=serialize_installments(db, installments),
    )
    return WorkerDetailEnvelope(worker=detail)


@router.post("", response_model=WorkerEnvelope, status_code=status.HTTP_201_CREATED)
def create_worker(
    req: WorkerCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("write")),
):
    _ensure_phone_free(db, req.phone)
    try:
        worker = workers.create(db, req.model_dump())
    except IntegrityError:
        db.rollback()
        raise PhoneInUseError(req.phone)
    return WorkerEnvelope(worker=serialize_workers(db, [worker])[0])


@router.put("/{worker_id}", response_model=WorkerEnvelope)
def update_worker(
    worker_id: str,
    req: WorkerUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("write")),
):
    changes = req.changes(clearable=("aadhaar", "photo"))
    if "phone" in changes:
        _ensure_phone_free(db, changes["phone"], worker_id)
    try:
        worker = workers.update(db, worker_id, changes)
    except IntegrityError:
        db.rollback()
        raise PhoneInUseError(changes.get("phone", ""))
    return WorkerEnvelope(worker=serialize_workers(db, [worker])[0])


@router.delete("/{worker_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_worker(
    worker_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("delete")),
):
    integrity.delete_worker(db, worker_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
