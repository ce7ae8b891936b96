"""
PowerLink — API v1: Dashboard summary
"""

from __future__ import annotations

import datetime as dt
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from powerlink.api.v1.schemas import APIModel
from powerlink.core.security import CurrentUser, get_current_user
from powerlink.database import get_db
from powerlink.services import stats

router = APIRouter(prefix="/stats", tags=["stats"])


class SummaryResponse(APIModel):
    workers: int
    loans_issued: float
    installments_received: float
    outstanding: float
    expenses: float
    last_baana_date: Optional[dt.date] = None
    last_beam_date: Optional[dt.date] = None


@router.get("/summary", response_model=SummaryResponse)
def get_summary(
    date_from: Optional[dt.date] = Query(None, alias="from"),
    date_to: Optional[dt.date] = Query(None, alias="to"),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Headline figures for the dashboard; money totals honour the optional date range."""
    return SummaryResponse(**stats.summary(db, date_from, date_to))
