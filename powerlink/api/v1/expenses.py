"""
PowerLink — API v1: Expenses
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import Field, field_validator
from sqlalchemy.orm import Session

from powerlink.api.v1.schemas import APIModel, PageMeta
from powerlink.core.pagination import ListParams, list_params
from powerlink.core.security import CurrentUser, get_current_user
from powerlink.database import get_db
from powerlink.models.records import Expense
from powerlink.services import stats
from powerlink.services.crud import CrudService
from powerlink.services.rbac import require_permission

router = APIRouter(prefix="/expenses", tags=["expenses"])

expenses = CrudService(
    Expense,
    label="Expense",
    date_field="date",
    searchable=("category", "notes"),
    sort_fields={"date": "date", "amount": "amount", "category": "category"},
)


class ExpenseCreate(APIModel):
    date: dt.date
    category: str = Field(..., min_length=1, max_length=80)
    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("category")
    @classmethod
    def strip_category(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class ExpenseUpdate(APIModel):
    date: Optional[dt.date] = None
    category: Optional[str] = Field(None, min_length=1, max_length=80)
    amount: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    notes: Optional[str] = Field(None, max_length=2000)


class ExpenseOut(APIModel):
    id: str
    date: dt.date
    category: str
    amount: float
    notes: Optional[str] = None
    created_at: dt.datetime


class ExpenseEnvelope(APIModel):
    item: ExpenseOut


class ExpensePage(APIModel):
    data: List[ExpenseOut]
    meta: PageMeta


class ExpenseExport(APIModel):
    data: List[ExpenseOut]
    total: int


class ExpenseBucket(APIModel):
    key: str
    total: float
    count: int
    year: Optional[int] = None
    month: Optional[int] = None
    category: Optional[str] = None


class ExpenseAggregate(APIModel):
    group: str
    data: List[ExpenseBucket]


@router.get("", response_model=ExpensePage)
def list_expenses(
    params: ListParams = Depends(list_params),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    rows, total = expenses.list(db, params)
    return ExpensePage(
        data=[ExpenseOut.model_validate(row) for row in rows],
        meta=PageMeta(page=params.page, page_size=params.page_size, total=total),
    )


@router.get("/export", response_model=ExpenseExport)
def export_expenses(
    params: ListParams = Depends(list_params),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("export")),
):
    rows = expenses.export(db, params)
    return ExpenseExport(data=[ExpenseOut.model_validate(row) for row in rows], total=len(rows))


@router.get("/aggregate", response_model=ExpenseAggregate)
def aggregate_expenses(
    group: str = Query("month"),
    date_from: Optional[dt.date] = Query(None, alias="from"),
    date_to: Optional[dt.date] = Query(None, alias="to"),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Totals per month (oldest first) or per category (largest first)."""
    rows = stats.expense_breakdown(db, group, date_from, date_to)
    return ExpenseAggregate(
        group=group,
        data=[ExpenseBucket(**{**row, "total": float(row["total"])}) for row in rows],
    )


@router.get("/{expense_id}", response_model=ExpenseEnvelope)
def get_expense(
    expense_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return ExpenseEnvelope(item=ExpenseOut.model_validate(expenses.get(db, expense_id)))


@router.post("", response_model=ExpenseEnvelope, status_code=status.HTTP_201_CREATED)
def create_expense(
    req: ExpenseCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("write")),
):
    return ExpenseEnvelope(item=ExpenseOut.model_validate(expenses.create(db, req.model_dump())))


@router.put("/{expense_id}", response_model=ExpenseEnvelope)
def update_expense(
    expense_id: str,
    req: ExpenseUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("write")),
):
    item = expenses.update(db, expense_id, req.changes(clearable=("notes",)))
    return ExpenseEnvelope(item=ExpenseOut.model_validate(item))


@router.delete("/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_expense(
    expense_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("delete")),
):
    expenses.delete(db, expense_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
