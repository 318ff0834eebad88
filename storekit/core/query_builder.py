"""Fluent, tenant-scoped query builder for paginated list endpoints.

A builder turns an untrusted query-string bag into an ORM-neutral argument
plan (``where`` / ``orderBy`` / ``skip`` / ``take`` / ``select`` /
``include``) and runs it against any object exposing async
``find_many(args)`` and ``count(args)``::

    builder = TenantScopedQueryBuilder(
        repo, dict(request.query_params),
        tenant_id=auth.tenant_id,
        search_fields=["name", "category"],
    )
    result = await (
        builder.add_base_where({"is_deleted": False})
        .search()
        .filter()
        .sort()
        .paginate()
        .execute()
    )

Trusted conditions (``add_base_where`` and the tenant predicate) are kept
apart from user filters, so a query parameter can never replace them.
A builder accumulates state and is meant for a single request.
"""

from __future__ import annotations

import asyncio
import math
import re
from collections.abc import Collection, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

from storekit.core.config import get_settings
from storekit.core.errors import QueryValidationError

# Query-string keys that steer the builder and are never entity filters.
EXCLUDED_FIELDS: frozenset[str] = frozenset({
    "searchTerm",
    "q",
    "sort",
    "sortBy",
    "sortOrder",
    "order",
    "limit",
    "page",
    "fields",
    "enabled",   # legacy alias of is_active
    "newest",    # UI-only
    "popular",   # UI-only
    "featured",  # handled by callers
})

LOGICAL_KEYS: frozenset[str] = frozenset({"OR", "AND", "NOT"})

# Longest prefixes first so ">=" is not read as ">".
_PREFIX_OPERATORS: tuple[tuple[str, str], ...] = (
    (">=", "gte"),
    ("<=", "lte"),
    (">", "gt"),
    ("<", "lt"),
)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_NUMBER = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_INTEGER = re.compile(r"^[+-]?\d+$")


class DataModel(Protocol):
    """Anything the builder can execute against."""

    async def find_many(self, args: dict[str, Any]) -> list[Any]: ...

    async def count(self, args: dict[str, Any]) -> int: ...


class PaginationMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    page: int
    limit: int
    total: int
    total_page: int = Field(alias="totalPage")

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> PaginationMeta:
        return cls(page=page, limit=limit, total=total, total_page=math.ceil(total / limit))


@dataclass
class PaginatedResult:
    data: list[Any]
    meta: PaginationMeta


@dataclass(frozen=True)
class FieldPath:
    """A dotted field reference such as ``customer.full_name``."""

    segments: tuple[str, ...]

    @classmethod
    def parse(cls, raw: str) -> FieldPath:
        segments = tuple(raw.strip().split("."))
        for segment in segments:
            if not _IDENTIFIER.match(segment):
                raise QueryValidationError(f"Invalid field path '{raw}'")
        return cls(segments)

    @property
    def root(self) -> str:
        return self.segments[0]

    def nest(self, condition: Any) -> dict[str, Any]:
        """Wrap ``condition`` in one dict level per segment, innermost last."""
        nested: Any = condition
        for segment in reversed(self.segments):
            nested = {segment: nested}
        return nested

    def __str__(self) -> str:
        return ".".join(self.segments)


def parse_value(value: str) -> str | int | float | bool:
    """Coerce an operator operand: booleans, then numbers, else the raw string."""
    if value == "true":
        return True
    if value == "false":
        return False
    text = value.strip()
    if _INTEGER.match(text):
        return int(text)
    if _NUMBER.match(text):
        return float(text)
    return value


def _positive_int(raw: Any, name: str, default: int) -> int:
    if raw is None or raw == "":
        return default
    if isinstance(raw, bool):
        raise QueryValidationError(f"'{name}' must be a positive integer")
    if isinstance(raw, int):
        number = raw
    elif isinstance(raw, str) and _INTEGER.match(raw.strip()):
        number = int(raw.strip())
    else:
        raise QueryValidationError(f"'{name}' must be a positive integer")
    if number < 1:
        raise QueryValidationError(f"'{name}' must be a positive integer")
    return number


class QueryBuilder:
    """Compose search, filter, sort, pagination and projection into one plan."""

    def __init__(
        self,
        model: DataModel,
        query: Mapping[str, Any] | None = None,
        *,
        search_fields: Sequence[str] = (),
        default_sort: str = "-created_at",
        known_fields: Collection[str] | None = None,
        known_relations: Collection[str] | None = None,
        default_limit: int | None = None,
        max_limit: int | None = None,
    ) -> None:
        settings = get_settings()
        self.model = model
        self.query: dict[str, Any] = dict(query or {})
        self.search_fields = list(search_fields)
        self.default_sort = default_sort
        if known_fields is None:
            known_fields = getattr(model, "field_names", None)
        if known_relations is None:
            known_relations = getattr(model, "relation_names", None)
        self.known_fields = frozenset(known_fields) if known_fields is not None else None
        self.known_relations = frozenset(known_relations or ())
        self.default_limit = default_limit or settings.default_page_size
        self.max_limit = max_limit or settings.max_page_size

        self._base_where: dict[str, Any] = {}
        self._filters: dict[str, Any] = {}
        self._search: list[dict[str, Any]] | None = None
        self._order_by: list[dict[str, str]] = []
        self._skip = 0
        self._take = self.default_limit
        self._select: dict[str, bool] | None = None
        self._include: dict[str, Any] | None = None

    # ── Validation helpers ───────────────────────────────────

    def _check_field(self, name: str, purpose: str) -> None:
        if self.known_fields is not None and name not in self.known_fields:
            raise QueryValidationError(f"Unknown {purpose} field '{name}'")

    def _check_path(self, path: FieldPath) -> None:
        if self.known_fields is None:
            return
        if len(path.segments) == 1:
            self._check_field(path.root, "search")
        elif path.root not in self.known_relations:
            raise QueryValidationError(f"Unknown relation '{path.root}' in '{path}'")

    def _page(self) -> int:
        return _positive_int(self.query.get("page"), "page", 1)

    def _limit(self) -> int:
        return min(_positive_int(self.query.get("limit"), "limit", self.default_limit), self.max_limit)

    # ── Chain ────────────────────────────────────────────────

    def add_base_where(self, conditions: Mapping[str, Any]) -> QueryBuilder:
        """Merge trusted conditions; they can never be replaced by filters."""
        clashes = sorted(set(conditions) & set(self._filters))
        if clashes:
            raise QueryValidationError(
                f"Filter on protected field(s) {', '.join(clashes)} is not allowed"
            )
        self._base_where.update(conditions)
        return self

    def search(self, fields: Iterable[str] | None = None) -> QueryBuilder:
        """Case-insensitive substring match of ``searchTerm``/``q`` over ``fields``."""
        term = self.query.get("searchTerm") or self.query.get("q")
        names = list(fields) if fields is not None else self.search_fields
        if not term or not names:
            return self

        conditions = []
        for name in names:
            path = FieldPath.parse(name)
            self._check_path(path)
            conditions.append(path.nest({"contains": str(term), "mode": "insensitive"}))
        self._search = conditions
        return self

    def filter(self) -> QueryBuilder:
        """Turn the remaining query keys into equality / comparison filters."""
        for key, value in self.query.items():
            if key in EXCLUDED_FIELDS:
                continue
            if value is None or value == "":
                continue
            if key in LOGICAL_KEYS:
                raise QueryValidationError(f"'{key}' cannot be used as a filter")
            if key in self._base_where:
                raise QueryValidationError(f"Filter on protected field '{key}' is not allowed")
            self._check_field(key, "filter")
            self._filters[key] = self._filter_condition(value)
        return self

    @staticmethod
    def _filter_condition(value: Any) -> Any:
        if not isinstance(value, str):
            return value
        for prefix, operator in _PREFIX_OPERATORS:
            if value.startswith(prefix):
                return {operator: parse_value(value[len(prefix):])}
        if value in ("true", "false"):
            return value == "true"
        # Plain equality keeps the string type.
        return value

    def sort(self) -> QueryBuilder:
        raw = self.query.get("sort") or self.default_sort
        order_by = []
        for token in str(raw).split(","):
            token = token.strip()
            if not token:
                continue
            direction = "asc"
            if token.startswith("-"):
                token, direction = token[1:], "desc"
            self._check_field(token, "sort")
            order_by.append({token: direction})
        self._order_by = order_by
        return self

    def paginate(self) -> QueryBuilder:
        limit = self._limit()
        self._take = limit
        self._skip = (self._page() - 1) * limit
        return self

    def fields(self) -> QueryBuilder:
        raw = self.query.get("fields")
        if not raw:
            return self

        tokens = [t.strip() for t in str(raw).split(",") if t.strip()]
        excluded = {t[1:] for t in tokens if t.startswith("-")}
        included = [t for t in tokens if not t.startswith("-")]
        if excluded and included:
            raise QueryValidationError("Cannot mix included and excluded fields")

        if excluded:
            if self.known_fields is None:
                raise QueryValidationError("Field exclusion is not supported for this resource")
            for name in excluded:
                self._check_field(name, "projection")
            self._select = {name: True for name in sorted(self.known_fields - excluded)}
        else:
            for name in included:
                self._check_field(name, "projection")
            self._select = {name: True for name in included}
        return self

    def include(self, includes: Mapping[str, Any]) -> QueryBuilder:
        self._include = {**(self._include or {}), **includes}
        return self

    # ── Plan ─────────────────────────────────────────────────

    def get_where(self) -> dict[str, Any]:
        where: dict[str, Any] = {**self._filters, **self._base_where}
        if self._search:
            if "OR" in where:
                extra = where.pop("AND", [])
                if isinstance(extra, Mapping):
                    extra = [extra]
                where["AND"] = [*extra, {"OR": where.pop("OR")}, {"OR": self._search}]
            else:
                where["OR"] = self._search
        return where

    def get_raw_args(self) -> dict[str, Any]:
        return {
            "where": self.get_where(),
            "orderBy": list(self._order_by),
            "skip": self._skip,
            "take": self._take,
            "select": self._select,
            "include": self._include,
        }

    def _find_args(self) -> dict[str, Any]:
        args: dict[str, Any] = {
            "where": self.get_where(),
            "skip": self._skip,
            "take": self._take,
        }
        if self._order_by:
            args["orderBy"] = list(self._order_by)
        if self._select:
            # Relations requested alongside a projection are embedded in it.
            args["select"] = {**self._select, **(self._include or {})}
        elif self._include:
            args["include"] = dict(self._include)
        return args

    # ── Terminal operations ──────────────────────────────────

    async def execute(self, serialized: bool = False) -> PaginatedResult:
        """Fetch one page plus the total count for the same ``where``.

        The two calls are independent reads: rows written between them can
        make ``total`` disagree with ``data``. ``serialized`` runs them one
        after the other for models that cannot take concurrent calls.
        """
        find_args = self._find_args()
        count_args = {"where": find_args["where"]}
        if serialized:
            data = await self.model.find_many(find_args)
            total = await self.model.count(count_args)
        else:
            data, total = await asyncio.gather(
                self.model.find_many(find_args),
                self.model.count(count_args),
            )
        return PaginatedResult(
            data=list(data),
            meta=PaginationMeta.build(self._page(), self._take, total),
        )

    async def count_total(self) -> PaginationMeta:
        total = await self.model.count({"where": self.get_where()})
        return PaginationMeta.build(self._page(), self._limit(), total)


class TenantScopedQueryBuilder(QueryBuilder):
    """A builder that cannot exist without its tenant predicate."""

    def __init__(
        self,
        model: DataModel,
        query: Mapping[str, Any] | None = None,
        *,
        tenant_id: Any,
        tenant_field: str = "tenant_id",
        **options: Any,
    ) -> None:
        if tenant_id is None:
            raise ValueError("tenant_id is required")
        super().__init__(model, query, **options)
        self.tenant_field = tenant_field
        self.add_base_where({tenant_field: tenant_id})
