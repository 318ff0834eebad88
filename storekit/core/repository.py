"""SQLModel adapter that executes query-builder plans with SQLAlchemy.

Translates the ORM-neutral ``where`` / ``orderBy`` / ``select`` /
``include`` argument dicts produced by ``QueryBuilder`` into ``select()``
statements against one table model.
"""

from __future__ import annotations

import asyncio
import enum
import uuid
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import and_, func, inspect, not_, or_, true
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlmodel import SQLModel, select

from storekit.core.errors import QueryValidationError
from storekit.core.subscription import as_naive_utc

_COMPARISONS = {
    "lt": lambda col, v: col < v,
    "lte": lambda col, v: col <= v,
    "gt": lambda col, v: col > v,
    "gte": lambda col, v: col >= v,
}
_TEXT_MATCHES = {
    "contains": ("contains", "icontains"),
    "startsWith": ("startswith", "istartswith"),
    "endsWith": ("endswith", "iendswith"),
}
_OPERATORS = frozenset({"equals", "not", "in", "notIn", "mode", *_COMPARISONS, *_TEXT_MATCHES})


def _is_operator_dict(value: Any) -> bool:
    return isinstance(value, Mapping) and bool(value) and set(value) <= _OPERATORS


def coerce_value(column: Any, value: Any) -> Any:
    """Convert a query-string literal to the column's Python type."""
    if value is None:
        return None
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value
    if python_type is datetime and isinstance(value, datetime):
        return as_naive_utc(value)
    if isinstance(value, python_type) and not (python_type is int and isinstance(value, bool)):
        return value

    try:
        if isinstance(value, str):
            if python_type is bool:
                lowered = value.lower()
                if lowered not in ("true", "false", "1", "0"):
                    raise ValueError(value)
                return lowered in ("true", "1")
            if python_type is datetime:
                return as_naive_utc(datetime.fromisoformat(value))
            if python_type is date:
                return date.fromisoformat(value)
            if python_type is uuid.UUID:
                return uuid.UUID(value)
            if python_type is Decimal:
                return Decimal(value)
            return python_type(value)
        if python_type is float and isinstance(value, int):
            return float(value)
        if python_type is Decimal and isinstance(value, (int, float)):
            return Decimal(str(value))
        if python_type is int and isinstance(value, float) and value.is_integer():
            return int(value)
        if issubclass(python_type, enum.Enum):
            return python_type(value)
    except (ValueError, TypeError, InvalidOperation) as exc:
        raise QueryValidationError(
            f"Invalid value {value!r} for field '{column.key}'"
        ) from exc
    return value


class SQLModelRepository:
    """``find_many`` / ``count`` over one SQLModel table."""

    def __init__(self, session: AsyncSession, model: type[SQLModel]) -> None:
        self.session = session
        self.model = model
        mapper = inspect(model)
        self._columns = {attr.key: attr for attr in mapper.column_attrs}
        self._relations = dict(mapper.relationships.items())
        # One AsyncSession cannot run two statements at once.
        self._lock = asyncio.Lock()

    @property
    def field_names(self) -> frozenset[str]:
        return frozenset(self._columns)

    @property
    def relation_names(self) -> frozenset[str]:
        return frozenset(self._relations)

    # ── Statement building ───────────────────────────────────

    def _where_clause(self, model: type[SQLModel], where: Mapping[str, Any] | None):
        clauses = _compile_where(model, where or {})
        return and_(true(), *clauses)

    def _order_by(self, order_by: list[Mapping[str, str]] | None) -> list[Any]:
        terms = []
        for entry in order_by or []:
            for field, direction in entry.items():
                if field not in self._columns:
                    raise QueryValidationError(f"Unknown sort field '{field}'")
                column = getattr(self.model, field)
                terms.append(column.desc() if direction == "desc" else column.asc())
        return terms

    def _relation_loads(self, names: list[str]) -> list[Any]:
        options = []
        for name in names:
            if name not in self._relations:
                raise QueryValidationError(f"Unknown relation '{name}'")
            options.append(selectinload(getattr(self.model, name)))
        return options

    # ── DataModel protocol ───────────────────────────────────

    async def find_many(self, args: dict[str, Any]) -> list[Any]:
        stmt = select(self.model).where(self._where_clause(self.model, args.get("where")))
        stmt = stmt.order_by(*self._order_by(args.get("orderBy")))

        projection = args.get("select")
        includes = projection if projection else (args.get("include") or {})
        wanted_relations = [name for name, enabled in includes.items() if enabled and name in self._relations]
        if not projection:
            unknown = [name for name in includes if name not in self._relations]
            if unknown:
                raise QueryValidationError(f"Unknown relation '{unknown[0]}'")
        stmt = stmt.options(*self._relation_loads(wanted_relations))

        if args.get("skip"):
            stmt = stmt.offset(args["skip"])
        if args.get("take") is not None:
            stmt = stmt.limit(args["take"])

        async with self._lock:
            result = await self.session.execute(stmt)
            rows = list(result.scalars().all())

        if not projection:
            return rows
        return [self._project(row, projection) for row in rows]

    async def count(self, args: dict[str, Any]) -> int:
        stmt = (
            select(func.count())
            .select_from(self.model)
            .where(self._where_clause(self.model, args.get("where")))
        )
        async with self._lock:
            return (await self.session.execute(stmt)).scalar_one()

    def _project(self, row: SQLModel, projection: Mapping[str, Any]) -> dict[str, Any]:
        item: dict[str, Any] = {}
        for name, enabled in projection.items():
            if not enabled:
                continue
            if name in self._columns:
                item[name] = getattr(row, name)
            elif name in self._relations:
                related = getattr(row, name)
                if isinstance(related, list):
                    item[name] = [r.model_dump() for r in related]
                else:
                    item[name] = related.model_dump() if related is not None else None
            else:
                raise QueryValidationError(f"Unknown projection field '{name}'")
        return item


# ── where compilation ────────────────────────────────────────

def _compile_where(model: type[SQLModel], where: Mapping[str, Any]) -> list[Any]:
    mapper = inspect(model)
    columns = {attr.key for attr in mapper.column_attrs}
    relations = dict(mapper.relationships.items())
    clauses: list[Any] = []

    for key, value in where.items():
        if key == "OR":
            branches = [and_(true(), *_compile_where(model, branch)) for branch in value]
            clauses.append(or_(*branches))
        elif key == "AND":
            parts = value if isinstance(value, list) else [value]
            for part in parts:
                clauses.extend(_compile_where(model, part))
        elif key == "NOT":
            clauses.append(not_(and_(true(), *_compile_where(model, value))))
        elif key in relations:
            attr = getattr(model, key)
            target = relations[key].mapper.class_
            inner = and_(true(), *_compile_where(target, value))
            clauses.append(attr.any(inner) if relations[key].uselist else attr.has(inner))
        elif key in columns:
            clauses.extend(_column_clauses(getattr(model, key), value))
        else:
            raise QueryValidationError(f"Unknown filter field '{key}'")
    return clauses


def _column_clauses(column: Any, value: Any) -> list[Any]:
    if not _is_operator_dict(value):
        coerced = coerce_value(column, value)
        return [column.is_(None) if coerced is None else column == coerced]

    insensitive = value.get("mode") == "insensitive"
    clauses: list[Any] = []
    for op, operand in value.items():
        if op == "mode":
            continue
        if op == "equals":
            clauses.extend(_column_clauses(column, operand))
        elif op == "not":
            coerced = coerce_value(column, operand)
            clauses.append(column.is_not(None) if coerced is None else column != coerced)
        elif op == "in":
            clauses.append(column.in_([coerce_value(column, v) for v in operand]))
        elif op == "notIn":
            clauses.append(column.not_in([coerce_value(column, v) for v in operand]))
        elif op in _COMPARISONS:
            clauses.append(_COMPARISONS[op](column, coerce_value(column, operand)))
        else:
            sensitive_name, insensitive_name = _TEXT_MATCHES[op]
            method = getattr(column, insensitive_name if insensitive else sensitive_name)
            clauses.append(method(str(operand), autoescape=True))
    return clauses
