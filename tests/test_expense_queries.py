from datetime import date, datetime
from decimal import Decimal

import pytest

from conftest import add_expense, make_user
from database import SQLExecutor
from errors import MissingPeriod, NotFoundError, ValidationError
from filters import QueryFilterSet
from services import ExpenseQueryService


class ExplodingExecutor(SQLExecutor):
    def execute(self, sql, params=()):
        raise AssertionError("storage should not be touched")


class RecordingExecutor(SQLExecutor):
    def __init__(self, session) -> None:
        super().__init__(session)
        self.calls: list[tuple[str, tuple]] = []

    def execute(self, sql, params=()):
        self.calls.append((sql, tuple(params)))
        return super().execute(sql, params)


@pytest.fixture
def owner(session):
    return make_user(session)


@pytest.fixture
def queries(session, owner):
    return ExpenseQueryService(session, owner.id)


def test_unfiltered_list_returns_all_by_date_descending(session, owner, queries) -> None:
    add_expense(session, owner.id, "10.00", "Food", datetime(2025, 1, 2))
    add_expense(session, owner.id, "20.00", "Rent", datetime(2025, 3, 1))
    add_expense(session, owner.id, "30.00", "Fun", datetime(2025, 2, 14))

    rows = queries.list_expenses(QueryFilterSet())

    assert [row["date"] for row in rows] == [
        datetime(2025, 3, 1),
        datetime(2025, 2, 14),
        datetime(2025, 1, 2),
    ]
    assert rows[0]["amount"] == Decimal("20.00")
    assert set(rows[0]) == {
        "id",
        "user_id",
        "amount",
        "category",
        "description",
        "date",
        "created_at",
        "updated_at",
    }


def test_list_is_scoped_to_owner(session, owner, queries) -> None:
    intruder = make_user(session, email="intruder@example.com")
    add_expense(session, owner.id, "10.00", "Food", datetime(2025, 1, 2))
    add_expense(session, intruder.id, "99.00", "Food", datetime(2025, 1, 3))

    rows = queries.list_expenses(QueryFilterSet())

    assert [row["user_id"] for row in rows] == [owner.id]


def test_equal_amount_bounds_are_inclusive(session, owner, queries) -> None:
    for amount in ("9.99", "10.00", "10.00", "10.01"):
        add_expense(session, owner.id, amount, "Food", datetime(2025, 1, 2))

    rows = queries.list_expenses(
        QueryFilterSet(min_amount=Decimal("10"), max_amount=Decimal("10"))
    )

    assert [row["amount"] for row in rows] == [Decimal("10.00"), Decimal("10.00")]


def test_date_range_includes_whole_end_day(session, owner, queries) -> None:
    add_expense(session, owner.id, "1.00", "Food", datetime(2025, 1, 14, 23, 0))
    add_expense(session, owner.id, "2.00", "Food", datetime(2025, 1, 15, 0, 0))
    add_expense(session, owner.id, "3.00", "Food", datetime(2025, 1, 31, 23, 59, 59))
    add_expense(session, owner.id, "4.00", "Food", datetime(2025, 2, 1, 0, 0))

    rows = queries.list_expenses(
        QueryFilterSet(start=date(2025, 1, 15), end=date(2025, 1, 31), order="asc")
    )

    assert [row["amount"] for row in rows] == [Decimal("2.00"), Decimal("3.00")]


def test_category_match_is_exact(session, owner, queries) -> None:
    add_expense(session, owner.id, "1.00", "Food", datetime(2025, 1, 1))
    add_expense(session, owner.id, "2.00", "food", datetime(2025, 1, 2))
    add_expense(session, owner.id, "3.00", "Food court", datetime(2025, 1, 3))

    rows = queries.list_expenses(QueryFilterSet(category="Food"))

    assert [row["category"] for row in rows] == ["Food"]


def test_sort_by_amount_ascending(session, owner, queries) -> None:
    add_expense(session, owner.id, "30.00", "A", datetime(2025, 1, 1))
    add_expense(session, owner.id, "10.00", "B", datetime(2025, 1, 2))
    add_expense(session, owner.id, "20.00", "C", datetime(2025, 1, 3))

    rows = queries.list_expenses(QueryFilterSet(sort="amount", order="asc"))

    assert [row["category"] for row in rows] == ["B", "C", "A"]


def test_unknown_sort_field_sorts_by_date(session, owner, queries) -> None:
    add_expense(session, owner.id, "30.00", "A", datetime(2025, 1, 1))
    add_expense(session, owner.id, "10.00", "B", datetime(2025, 1, 2))

    rows = queries.list_expenses(QueryFilterSet(sort="category"))

    assert [row["category"] for row in rows] == ["B", "A"]


def test_strict_sort_rejects_before_storage(session, owner) -> None:
    strict = ExpenseQueryService(
        session, owner.id, strict_sort=True, executor=ExplodingExecutor(session)
    )

    with pytest.raises(ValidationError):
        strict.list_expenses(QueryFilterSet(sort="category"))


def test_filters_are_bound_not_inlined(session, owner) -> None:
    executor = RecordingExecutor(session)
    service = ExpenseQueryService(session, owner.id, executor=executor)
    hostile = "Food' OR '1'='1"
    add_expense(session, owner.id, "5.00", "Food", datetime(2025, 1, 1))

    assert service.list_expenses(QueryFilterSet(category=hostile)) == []

    sql, params = executor.calls[0]
    assert hostile not in sql
    assert params == (owner.id, hostile)


def test_summary_totals_by_category(session, owner, queries) -> None:
    add_expense(session, owner.id, "12.50", "Food", datetime(2025, 1, 1))
    add_expense(session, owner.id, "7.50", "Food", datetime(2025, 1, 2))
    add_expense(session, owner.id, "100.00", "Rent", datetime(2025, 1, 3))
    add_expense(session, owner.id, "1.00", "Fun", datetime(2024, 12, 31))

    summary = queries.summary(
        QueryFilterSet(start=date(2025, 1, 1), end=date(2025, 1, 31))
    )

    assert summary == {"Rent": Decimal("100.00"), "Food": Decimal("20.00")}
    assert list(summary) == ["Rent", "Food"]
    assert all(isinstance(total, Decimal) for total in summary.values())


def test_summary_has_no_float_drift(session, owner, queries) -> None:
    for _ in range(10):
        add_expense(session, owner.id, "0.10", "Coffee", datetime(2025, 1, 1))
    add_expense(session, owner.id, "0.20", "Coffee", datetime(2025, 1, 1))

    first = queries.summary(QueryFilterSet())
    second = queries.summary(QueryFilterSet())

    assert first == second == {"Coffee": Decimal("1.20")}
    assert str(first["Coffee"]) == "1.20"


def test_monthly_report_for_year(session, owner, queries) -> None:
    add_expense(session, owner.id, "100.00", "Food", datetime(2025, 1, 15))
    add_expense(session, owner.id, "50.00", "Food", datetime(2025, 2, 1))
    add_expense(session, owner.id, "70.00", "Food", datetime(2024, 12, 31, 23, 0))
    add_expense(session, owner.id, "80.00", "Food", datetime(2026, 1, 1))

    report = queries.monthly("2025", None)

    assert report == [
        {"month": "2025-01", "total": Decimal("100.00")},
        {"month": "2025-02", "total": Decimal("50.00")},
    ]


def test_monthly_report_for_single_month(session, owner, queries) -> None:
    add_expense(session, owner.id, "100.00", "Food", datetime(2025, 1, 15))
    add_expense(session, owner.id, "25.00", "Rent", datetime(2025, 1, 31, 23, 59, 59))
    add_expense(session, owner.id, "50.00", "Food", datetime(2025, 2, 1))

    report = queries.monthly("2024", "2025-01")

    assert report == [{"month": "2025-01", "total": Decimal("125.00")}]


def test_monthly_without_period_fails_before_storage(session, owner) -> None:
    service = ExpenseQueryService(
        session, owner.id, executor=ExplodingExecutor(session)
    )

    with pytest.raises(MissingPeriod):
        service.monthly(None, None)
    with pytest.raises(MissingPeriod):
        service.monthly("", "  ")


def test_top_categories_respects_limit(session, owner, queries) -> None:
    add_expense(session, owner.id, "100.00", "Fun", datetime(2025, 1, 1))
    add_expense(session, owner.id, "300.00", "Rent", datetime(2025, 1, 2))
    add_expense(session, owner.id, "150.00", "Food", datetime(2025, 1, 3))
    add_expense(session, owner.id, "50.00", "Food", datetime(2025, 1, 4))

    top = queries.top_categories(QueryFilterSet(limit=2))

    assert top == [
        {"category": "Rent", "total": Decimal("300.00")},
        {"category": "Food", "total": Decimal("200.00")},
    ]


def test_top_categories_defaults_to_five(session, owner, queries) -> None:
    for idx in range(7):
        add_expense(session, owner.id, f"{idx + 1}.00", f"C{idx}", datetime(2025, 1, 1))

    top = queries.top_categories(QueryFilterSet())

    assert [row["category"] for row in top] == ["C6", "C5", "C4", "C3", "C2"]


def test_export_projects_reduced_columns(session, owner, queries) -> None:
    add_expense(session, owner.id, "4.20", "Food", datetime(2025, 1, 1), "Bagel")
    add_expense(session, owner.id, "9.00", "Food", datetime(2025, 1, 3))

    rows = queries.export_rows(QueryFilterSet(start=date(2025, 1, 1)))

    assert rows == [
        {
            "date": datetime(2025, 1, 3),
            "amount": Decimal("9.00"),
            "category": "Food",
            "description": None,
        },
        {
            "date": datetime(2025, 1, 1),
            "amount": Decimal("4.20"),
            "category": "Food",
            "description": "Bagel",
        },
    ]


def test_export_of_empty_period_is_not_found(session, owner, queries) -> None:
    add_expense(session, owner.id, "4.20", "Food", datetime(2025, 1, 1))

    with pytest.raises(NotFoundError):
        queries.export_rows(QueryFilterSet(start=date(2026, 1, 1)))
