"""Query builder tests against an in-memory fake model."""

import uuid
from datetime import datetime, timedelta

import pytest

from storekit.core.errors import QueryValidationError
from storekit.core.query_builder import (
    FieldPath,
    PaginationMeta,
    QueryBuilder,
    TenantScopedQueryBuilder,
    parse_value,
)

T0 = datetime(2024, 1, 1)


def _matches(row: dict, where: dict) -> bool:
    for key, cond in where.items():
        if key == "OR":
            if not any(_matches(row, branch) for branch in cond):
                return False
        elif key == "AND":
            if not all(_matches(row, part) for part in cond):
                return False
        elif isinstance(cond, dict) and key in row and isinstance(row[key], dict):
            if not _matches(row[key], cond):
                return False
        elif isinstance(cond, dict):
            value = row.get(key)
            for op, operand in cond.items():
                if op == "mode":
                    continue
                if op == "contains":
                    if operand.lower() not in str(value or "").lower():
                        return False
                elif op == "gte" and not value >= operand:
                    return False
                elif op == "lte" and not value <= operand:
                    return False
                elif op == "gt" and not value > operand:
                    return False
                elif op == "lt" and not value < operand:
                    return False
        elif row.get(key) != cond:
            return False
    return True


class FakeModel:
    """Evaluates builder plans over a list of dicts and records the calls."""

    field_names = frozenset({
        "id", "tenant_id", "name", "category", "price", "created_at", "is_deleted",
    })
    relation_names = frozenset({"customer"})

    def __init__(self, rows: list[dict]) -> None:
        self.rows = rows
        self.calls: list[tuple[str, dict]] = []

    async def find_many(self, args: dict) -> list[dict]:
        self.calls.append(("find_many", args))
        rows = [r for r in self.rows if _matches(r, args.get("where", {}))]
        for entry in reversed(args.get("orderBy", [])):
            (field, direction), = entry.items()
            rows.sort(key=lambda r: r[field], reverse=direction == "desc")
        skip, take = args.get("skip", 0), args.get("take")
        rows = rows[skip:skip + take] if take is not None else rows[skip:]
        if args.get("select"):
            rows = [{k: r[k] for k in args["select"] if k in r} for r in rows]
        return rows

    async def count(self, args: dict) -> int:
        self.calls.append(("count", args))
        return len([r for r in self.rows if _matches(r, args.get("where", {}))])


class BareModel(FakeModel):
    """A model that does not advertise its fields."""

    field_names = None
    relation_names = None


TENANT_A = uuid.uuid4()
TENANT_B = uuid.uuid4()


def _product(name: str, tenant=TENANT_A, **extra) -> dict:
    row = {
        "id": uuid.uuid4(),
        "tenant_id": tenant,
        "name": name,
        "category": "grocery",
        "price": 10,
        "created_at": T0,
        "is_deleted": False,
    }
    row.update(extra)
    return row


@pytest.fixture
def catalog() -> FakeModel:
    return FakeModel([
        _product("Milk Powder", price=120, created_at=T0 + timedelta(days=1)),
        _product("Oatmeal", price=40, created_at=T0 + timedelta(days=2)),
        _product("Almond Milk", category="dairy", price=100, created_at=T0 + timedelta(days=3)),
        _product("Rice", price=25, created_at=T0 + timedelta(days=4), is_deleted=True),
        _product("Milk Chocolate", tenant=TENANT_B, price=5),
    ])


# ── Search ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_search_matches_case_insensitively():
    model = FakeModel([_product("Milk Powder"), _product("Oatmeal")])
    builder = QueryBuilder(model, {"searchTerm": "milk"}, search_fields=["name", "category"])
    result = await builder.search().execute()

    assert [r["name"] for r in result.data] == ["Milk Powder"]
    assert builder.get_where() == {"OR": [
        {"name": {"contains": "milk", "mode": "insensitive"}},
        {"category": {"contains": "milk", "mode": "insensitive"}},
    ]}


def test_search_accepts_q_alias_and_dotted_paths():
    builder = QueryBuilder(FakeModel([]), {"q": "ali"}, search_fields=["customer.name"])
    builder.search()
    assert builder.get_where() == {
        "OR": [{"customer": {"name": {"contains": "ali", "mode": "insensitive"}}}]
    }


def test_search_without_term_is_a_no_op():
    builder = QueryBuilder(FakeModel([]), {}, search_fields=["name"])
    assert builder.search().get_where() == {}


def test_search_rejects_unknown_field():
    builder = QueryBuilder(FakeModel([]), {"searchTerm": "x"})
    with pytest.raises(QueryValidationError):
        builder.search(["nope"])


def test_search_rejects_malformed_path():
    builder = QueryBuilder(FakeModel([]), {"searchTerm": "x"})
    with pytest.raises(QueryValidationError):
        builder.search(["customer..name"])


def test_search_combines_with_existing_or_under_and():
    builder = QueryBuilder(FakeModel([]), {"searchTerm": "milk"}, search_fields=["name"])
    builder.add_base_where({"OR": [{"category": "dairy"}, {"category": "grocery"}]})
    where = builder.search().get_where()
    assert where == {"AND": [
        {"OR": [{"category": "dairy"}, {"category": "grocery"}]},
        {"OR": [{"name": {"contains": "milk", "mode": "insensitive"}}]},
    ]}


# ── Filter ───────────────────────────────────────────────────

def test_comparison_prefix_produces_numeric_operand():
    builder = QueryBuilder(FakeModel([]), {"price": ">=100"})
    assert builder.filter().get_where() == {"price": {"gte": 100}}


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("<=5", {"lte": 5}),
        (">2.5", {"gt": 2.5}),
        ("<0", {"lt": 0}),
        (">=2024-01-01", {"gte": "2024-01-01"}),
    ],
)
def test_comparison_prefixes(raw, expected):
    builder = QueryBuilder(FakeModel([]), {"price": raw})
    assert builder.filter().get_where()["price"] == expected


def test_equality_keeps_string_type_but_parses_booleans():
    builder = QueryBuilder(FakeModel([]), {"name": "123", "is_deleted": "true"})
    assert builder.filter().get_where() == {"name": "123", "is_deleted": True}


def test_control_keys_and_blank_values_are_not_filters():
    query = {
        "searchTerm": "x", "sort": "name", "page": "2", "limit": "5", "fields": "name",
        "enabled": "true", "featured": "1", "category": "",
    }
    builder = QueryBuilder(FakeModel([]), query)
    assert builder.filter().get_where() == {}


def test_unknown_filter_field_rejected():
    builder = QueryBuilder(FakeModel([]), {"colour": "red"})
    with pytest.raises(QueryValidationError, match="colour"):
        builder.filter()


def test_logical_keys_cannot_be_filters():
    with pytest.raises(QueryValidationError):
        QueryBuilder(FakeModel([]), {"OR": "1"}).filter()


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("true", True), ("false", False), ("42", 42), ("-3", -3), ("2.5", 2.5), ("abc", "abc")],
)
def test_parse_value(raw, expected):
    assert parse_value(raw) == expected
    assert type(parse_value(raw)) is type(expected)


# ── Tenant scoping ───────────────────────────────────────────

@pytest.mark.asyncio
async def test_tenant_scope_and_base_where_combine_with_filters(catalog):
    builder = TenantScopedQueryBuilder(
        catalog, {"category": "grocery", "searchTerm": "milk"},
        tenant_id=TENANT_A, search_fields=["name"],
    )
    builder.add_base_where({"is_deleted": False})
    result = await builder.search().filter().execute()

    assert builder.get_where() == {
        "category": "grocery",
        "tenant_id": TENANT_A,
        "is_deleted": False,
        "OR": [{"name": {"contains": "milk", "mode": "insensitive"}}],
    }
    assert [r["name"] for r in result.data] == ["Milk Powder"]
    assert result.meta.total == 1


def test_tenant_id_is_required():
    with pytest.raises(ValueError):
        TenantScopedQueryBuilder(FakeModel([]), {}, tenant_id=None)


def test_filter_on_tenant_field_is_rejected():
    builder = TenantScopedQueryBuilder(FakeModel([]), {"tenant_id": str(TENANT_B)}, tenant_id=TENANT_A)
    with pytest.raises(QueryValidationError, match="protected"):
        builder.filter()


def test_base_where_added_after_colliding_filter_is_rejected():
    builder = QueryBuilder(FakeModel([]), {"is_deleted": "true"})
    builder.filter()
    with pytest.raises(QueryValidationError, match="is_deleted"):
        builder.add_base_where({"is_deleted": False})


# ── Sort ─────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_multi_field_sort_breaks_ties_in_order():
    model = FakeModel([
        _product("b", created_at=T0),
        _product("a", created_at=T0),
        _product("c", created_at=T0 + timedelta(days=1)),
    ])
    builder = QueryBuilder(model, {"sort": "-created_at,name"})
    result = await builder.sort().execute()

    assert builder.get_raw_args()["orderBy"] == [{"created_at": "desc"}, {"name": "asc"}]
    assert [r["name"] for r in result.data] == ["c", "a", "b"]


def test_default_sort_is_newest_first():
    builder = QueryBuilder(FakeModel([]), {})
    assert builder.sort().get_raw_args()["orderBy"] == [{"created_at": "desc"}]


def test_sort_on_unknown_field_rejected():
    with pytest.raises(QueryValidationError):
        QueryBuilder(FakeModel([]), {"sort": "-password"}).sort()


# ── Pagination ───────────────────────────────────────────────

@pytest.mark.asyncio
async def test_paginate_returns_requested_window(catalog):
    builder = TenantScopedQueryBuilder(catalog, {"page": "2", "limit": "2", "sort": "name"}, tenant_id=TENANT_A)
    result = await builder.sort().paginate().execute()

    assert [r["name"] for r in result.data] == ["Oatmeal", "Rice"]
    assert result.meta.model_dump(by_alias=True) == {"page": 2, "limit": 2, "total": 4, "totalPage": 2}
    assert builder.get_raw_args()["skip"] == 2


def test_paginate_defaults_and_clamps_limit():
    builder = QueryBuilder(FakeModel([]), {}, default_limit=10, max_limit=100)
    args = builder.paginate().get_raw_args()
    assert (args["skip"], args["take"]) == (0, 10)

    builder = QueryBuilder(FakeModel([]), {"limit": "1000"}, max_limit=100)
    assert builder.paginate().get_raw_args()["take"] == 100


@pytest.mark.parametrize("query", [{"page": "0"}, {"limit": "0"}, {"page": "-1"}, {"limit": "ten"}, {"page": "1.5"}])
def test_non_positive_or_non_integer_page_and_limit_rejected(query):
    with pytest.raises(QueryValidationError, match="positive integer"):
        QueryBuilder(FakeModel([]), query).paginate()


@pytest.mark.parametrize(("total", "limit", "pages"), [(0, 10, 0), (1, 10, 1), (10, 10, 1), (11, 10, 2), (95, 7, 14)])
def test_total_page_is_ceiling(total, limit, pages):
    assert PaginationMeta.build(1, limit, total).total_page == pages


@pytest.mark.asyncio
async def test_count_total_uses_the_same_where(catalog):
    builder = TenantScopedQueryBuilder(catalog, {"limit": "3"}, tenant_id=TENANT_B)
    meta = await builder.filter().count_total()
    assert (meta.total, meta.total_page, meta.limit) == (1, 1, 3)


@pytest.mark.asyncio
async def test_serialized_execute_runs_calls_in_order(catalog):
    builder = TenantScopedQueryBuilder(catalog, {}, tenant_id=TENANT_A)
    await builder.execute(serialized=True)
    assert [name for name, _ in catalog.calls] == ["find_many", "count"]
    assert catalog.calls[1][1] == {"where": {"tenant_id": TENANT_A}}


# ── Projection / include ─────────────────────────────────────

@pytest.mark.asyncio
async def test_fields_projects_selected_columns(catalog):
    builder = TenantScopedQueryBuilder(catalog, {"fields": "name,price", "sort": "name"}, tenant_id=TENANT_A)
    result = await builder.sort().fields().execute()
    assert result.data[0] == {"name": "Almond Milk", "price": 100}


def test_excluded_fields_select_everything_else():
    builder = QueryBuilder(FakeModel([]), {"fields": "-created_at,-is_deleted"})
    select = builder.fields().get_raw_args()["select"]
    assert set(select) == {"id", "tenant_id", "name", "category", "price"}


def test_exclusion_without_known_fields_rejected():
    builder = QueryBuilder(BareModel([]), {"fields": "-name"})
    assert builder.known_fields is None
    with pytest.raises(QueryValidationError):
        builder.fields()


def test_mixing_included_and_excluded_fields_rejected():
    with pytest.raises(QueryValidationError, match="mix"):
        QueryBuilder(FakeModel([]), {"fields": "name,-price"}).fields()


def test_include_is_merged_into_select():
    builder = QueryBuilder(FakeModel([]), {"fields": "name"})
    builder.fields().include({"customer": True})
    args = builder._find_args()
    assert args["select"] == {"name": True, "customer": True}
    assert "include" not in args


def test_include_without_projection_is_passed_through():
    builder = QueryBuilder(FakeModel([]), {})
    builder.include({"customer": True})
    assert builder._find_args()["include"] == {"customer": True}


def test_field_path_nesting():
    path = FieldPath.parse("customer.address.city")
    assert path.root == "customer"
    assert str(path) == "customer.address.city"
    assert path.nest({"equals": "x"}) == {"customer": {"address": {"city": {"equals": "x"}}}}
