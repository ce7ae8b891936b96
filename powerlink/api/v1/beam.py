"""
PowerLink — API v1: Beam arrivals (warp beams, counted in bunches)
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
from powerlink.models.records import Beam
from powerlink.services.crud import CrudService
from powerlink.services.rbac import require_permission

router = APIRouter(prefix="/beam", tags=["beam"])

beam = CrudService(
    Beam,
    label="Beam entry",
    date_field="date",
    searchable=("notes",),
    sort_fields={"date": "date", "bunches": "bunches"},
)


class BeamCreate(APIModel):
    date: dt.date
    bunches: int = Field(..., ge=0)
    notes: Optional[str] = Field(None, max_length=2000)


class BeamUpdate(APIModel):
    date: Optional[dt.date] = None
    bunches: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=2000)


class BeamOut(APIModel):
    id: str
    date: dt.date
    bunches: int
    notes: Optional[str] = None
    created_at: dt.datetime


class BeamEnvelope(APIModel):
    item: BeamOut


class BeamPage(APIModel):
    data: List[BeamOut]
    meta: PageMeta


class BeamExport(APIModel):
    data: List[BeamOut]
    total: int


@router.get("", response_model=BeamPage)
def list_beam(
    params: ListParams = Depends(list_params),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    rows, total = beam.list(db, params)
    return BeamPage(
        data=[BeamOut.model_validate(row) for row in rows],
        meta=PageMeta(page=params.page, page_size=params.page_size, total=total),
    )


@router.get("/export", response_model=BeamExport)
def export_beam(
    params: ListParams = Depends(list_params),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("export")),
):
    rows = beam.export(db, params)
    return BeamExport(data=[BeamOut.model_validate(row) for row in rows], total=len(rows))


@router.get("/{item_id}", response_model=BeamEnvelope)
def get_beam(
    item_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return BeamEnvelope(item=BeamOut.model_validate(beam.get(db, item_id)))


@router.post("", response_model=BeamEnvelope, status_code=status.HTTP_201_CREATED)
def create_beam(
    req: BeamCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("write")),
):
    return BeamEnvelope(item=BeamOut.model_validate(beam.create(db, req.model_dump())))


@router.put("/{item_id}", response_model=BeamEnvelope)
def update_beam(
    item_id: str,
    req: BeamUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("write")),
):
    item = beam.update(db, item_id, req.changes(clearable=("notes",)))
    return BeamEnvelope(item=BeamOut.model_validate(item))


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_beam(
    item_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("delete")),
):
    beam.delete(db, item_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
