"""
PowerLink — Generic collection service

One CrudService per table: paginated/filterable/sortable list, export, get,
create, update and plain delete. Resources with relationships (workers,
loans) route their deletes through powerlink.services.integrity instead.
"""

from __future__ import annotations

from typing import Any, Dict, Generic, List, Optional, Sequence, Tuple, Type, TypeVar

from sqlalchemy import Select, delete, func, or_, select
from sqlalchemy.orm import Session

from powerlink.core.exceptions import NotFoundError, ValidationError
from powerlink.core.pagination import ListParams
from powerlink.database import Base

ModelT = TypeVar("ModelT", bound=Base)

EXPORT_LIMIT = 5000


class CrudService(Generic[ModelT]):
    def __init__(
        self,
        model: Type[ModelT],
        *,
        label: str,
        date_field: str,
        searchable: Sequence[str] = (),
        sort_fields: Optional[Dict[str, str]] = None,
    ) -> None:
        self.model = model
        self.label = label
        self.date_field = date_field
        self.searchable = tuple(searchable)
        # camelCase query value → model attribute
        self.sort_fields = dict(sort_fields or {})
        self.sort_fields.setdefault("createdAt", "created_at")

    # ── Query building ───────────────────────────────────────────────────────

    def _filtered(self, params: ListParams, filters: Sequence[Any] = ()) -> Select:
        stmt = select(self.model)
        for clause in filters:
            stmt = stmt.where(clause)

        if params.q and self.searchable:
            pattern = f"%{params.q}%"
            stmt = stmt.where(
                or_(*[getattr(self.model, col).ilike(pattern) for col in self.searchable])
            )

        date_col = getattr(self.model, self.date_field)
        if params.date_from:
            stmt = stmt.where(date_col >= params.date_from)
        if params.date_to:
            stmt = stmt.where(date_col <= params.date_to)
        return stmt

    def _order_column(self, params: ListParams):
        if not params.sort_by:
            attr = self.date_field
        elif params.sort_by in self.sort_fields:
            attr = self.sort_fields[params.sort_by]
        else:
            raise ValidationError(
                f"Unsupported sort field {params.sort_by!r}",
                details={"sortBy": sorted(self.sort_fields)},
            )
        column = getattr(self.model, attr)
        return column.asc() if params.sort_dir == "asc" else column.desc()

    # ── Reads ────────────────────────────────────────────────────────────────

    def list(
        self, db: Session, params: ListParams, filters: Sequence[Any] = ()
    ) -> Tuple[List[ModelT], int]:
        """Return one page of rows plus the total count for the filter."""
        stmt = self._filtered(params, filters)
        total = db.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        rows = db.scalars(
            stmt.order_by(self._order_column(params), self.model.id)
            .offset(params.offset)
            .limit(params.page_size)
        ).all()
        return list(rows), int(total)

    def export(
        self, db: Session, params: ListParams, filters: Sequence[Any] = ()
    ) -> List[ModelT]:
        """All rows for the filter (no pagination), capped at EXPORT_LIMIT."""
        stmt = self._filtered(params, filters)
        rows = db.scalars(
            stmt.order_by(self._order_column(params), self.model.id).limit(EXPORT_LIMIT)
        ).all()
        return list(rows)

    def get(self, db: Session, item_id: str) -> ModelT:
        item = db.get(self.model, item_id)
        if item is None:
            raise NotFoundError(f"{self.label} not found", details={"id": item_id})
        return item

    # ── Writes ───────────────────────────────────────────────────────────────

    def create(self, db: Session, data: Dict[str, Any]) -> ModelT:
        item = self.model(**data)
        db.add(item)
        db.commit()
        db.refresh(item)
        return item

    def update(self, db: Session, item_id: str, data: Dict[str, Any]) -> ModelT:
        item = self.get(db, item_id)
        for key, value in data.items():
            setattr(item, key, value)
        db.commit()
        db.refresh(item)
        return item

    def delete(self, db: Session, item_id: str) -> None:
        result = db.execute(delete(self.model).where(self.model.id == item_id))
        if result.rowcount == 0:
            db.rollback()
            raise NotFoundError(f"{self.label} not found", details={"id": item_id})
        db.commit()
