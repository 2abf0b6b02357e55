"""
Shared listing helpers: filter folding, sort composition and pagination.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from sqlalchemy import nulls_last
from sqlalchemy.orm import Query

T = TypeVar("T")

DEFAULT_PER = 10
MAX_PER = 100

FilterHandler = Callable[[Query, Any], Query]
# name -> (relationship attribute to outer join, column on the joined entity)
VirtualColumns = Mapping[str, tuple[Any, Any]]


def _pairs(filters: Mapping[str, Any] | Iterable[tuple[str, Any]]):
    if isinstance(filters, Mapping):
        return filters.items()
    return filters


def apply_filters(
    query: Query,
    filters: Mapping[str, Any] | Iterable[tuple[str, Any]] | None,
    handlers: Mapping[str, FilterHandler],
) -> Query:
    """Fold (attribute, value) pairs into the query. Unknown keys and blank values pass through."""
    if not filters:
        return query
    for key, value in _pairs(filters):
        handler = handlers.get(key)
        if handler is None or value is None or value == "" or value == []:
            continue
        query = handler(query, value)
    return query


def parse_day(value: str) -> datetime | None:
    """YYYY-MM-DD to a UTC midnight datetime; None when unparseable."""
    try:
        return datetime.strptime(str(value), "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def parse_id(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_ids(values: Any) -> list[int]:
    """Integer ids from a scalar or list; unparseable entries are dropped."""
    if isinstance(values, (str, int)):
        values = [values]
    try:
        candidates = list(values)
    except TypeError:
        return []
    return [i for i in (parse_id(v) for v in candidates) if i is not None]


def id_filter(column: Any) -> FilterHandler:
    """Equality on an integer column. Values that are not integers leave the query as is."""

    def handler(query: Query, value: Any) -> Query:
        ident = parse_id(value)
        if ident is None:
            return query
        return query.filter(column == ident)

    return handler


def _ordering(column: Any, direction: Any):
    if direction == "asc":
        return nulls_last(column.asc())
    if direction == "desc":
        return nulls_last(column.desc())
    return None


def apply_sort(
    query: Query,
    model: Any,
    sort: Mapping[str, str] | None,
    virtual: VirtualColumns | None = None,
) -> Query:
    """
    Fold a {column: "asc"|"desc"} map into ORDER BY.

    - empty or missing sort, or an unknown column: primary key descending
    - any unrecognised direction: no explicit ordering
    - virtual columns join the related entity and order on its column
    """
    if not sort:
        return query.order_by(nulls_last(model.id.desc()))

    for name, (relationship, column) in (virtual or {}).items():
        if name in sort:
            query = query.outerjoin(relationship)
            clause = _ordering(column, sort[name])
            return query if clause is None else query.order_by(clause)

    clauses = []
    columns = model.__table__.columns
    for name, direction in sort.items():
        if direction not in ("asc", "desc"):
            return query
        if name not in columns:
            return query.order_by(nulls_last(model.id.desc()))
        clauses.append(_ordering(getattr(model, name), direction))

    return query.order_by(*clauses)


@dataclass
class Page(Generic[T]):
    items: list[T] = field(default_factory=list)
    total: int = 0
    page: int = 1
    per: int = DEFAULT_PER

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.total / self.per)) if self.per else 1


def _positive(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def paginate(query: Query, page: Any = None, per: Any = None) -> Page:
    page_number = _positive(page, 1)
    per_page = min(_positive(per, DEFAULT_PER), MAX_PER)
    total = query.order_by(None).count()
    items = query.offset((page_number - 1) * per_page).limit(per_page).all()
    return Page(items=items, total=total, page=page_number, per=per_page)
