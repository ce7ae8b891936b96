"""
PowerLink — API v1: Baana arrivals (weft yarn, counted in sacks)
"""

from __future__ import annotations

import datetime as dt
from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import Field
from sqlalchemy.orm import Session

from powerlink.api.v1.schemas import APIModel, PageMeta
from powerlink.core.pagination import ListParams, list_params
from powerlink.core.security import CurrentUser, get_current_user
from powerlink.database import get_db
from powerlink.models.records import Baana
from powerlink.services.crud import CrudService
from powerlink.services.rbac import require_permission

router = APIRouter(prefix="/baana", tags=["baana"])

baana = CrudService(
    Baana,
    label="Baana entry",
    date_field="date",
    searchable=("notes",),
    sort_fields={"date": "date", "sacks": "sacks"},
)


class BaanaCreate(APIModel):
    date: dt.date
    sacks: int = Field(..., ge=0)
    notes: Optional[str] = Field(None, max_length=2000)


class BaanaUpdate(APIModel):
    date: Optional[dt.date] = None
    sacks: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=2000)


class BaanaOut(APIModel):
    id: str
    date: dt.date
    sacks: int
    notes: Optional[str] = None
    created_at: dt.datetime


class BaanaEnvelope(APIModel):
    item: BaanaOut


class BaanaPage(APIModel):
    data: List[BaanaOut]
    meta: PageMeta


class BaanaExport(APIModel):
    data: List[BaanaOut]
    total: int


@router.get("", response_model=BaanaPage)
def list_baana(
    params: ListParams = Depends(list_params),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    rows, total = baana.list(db, params)
    return BaanaPage(
        data=[BaanaOut.model_validate(row) for row in rows],
        meta=PageMeta(page=params.page, page_size=params.page_size, total=total),
    )


@router.get("/export", response_model=BaanaExport)
def export_baana(
    params: ListParams = Depends(list_params),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("export")),
):
    rows = baana.export(db, params)
    return BaanaExport(data=[BaanaOut.model_validate(row) for row in rows], total=len(rows))


@router.get("/{item_id}", response_model=BaanaEnvelope)
def get_baana(
    item_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return BaanaEnvelope(item=BaanaOut.model_validate(baana.get(db, item_id)))


@router.post("", response_model=BaanaEnvelope, status_code=status.HTTP_201_CREATED)
def create_baana(
    req: BaanaCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("write")),
):
    return BaanaEnvelope(item=BaanaOut.model_validate(baana.create(db, req.model_dump())))


@router.put("/{item_id}", response_model=BaanaEnvelope)
def update_baana(
    item_id: str,
    req: BaanaUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("write")),
):
    item = baana.update(db, item_id, req.changes(clearable=("notes",)))
    return BaanaEnvelope(item=BaanaOut.model_validate(item))


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_baana(
    item_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("delete")),
):
    baana.delete(db, item_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
