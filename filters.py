"""Turns optional, untrusted query parameters into parameterized SQL predicates.

Every predicate is recorded as a ``(fragment, value)`` pair when it is
added and numbered only once, in :meth:`PredicateBuilder.render`, so the
n-th ``$n`` placeholder always lines up with the n-th parameter. Column
names and sort clauses come from fixed allow-lists; request values only
ever travel as bound parameters.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from errors import ValidationError

SORT_FIELDS = ("date", "amount")
DEFAULT_SORT_FIELD = "date"
DEFAULT_TOP_LIMIT = 5
# largest value a signed 64-bit integer column or bind parameter can hold
MAX_SQL_INTEGER = 2**63 - 1


@dataclass(frozen=True)
class QueryFilterSet:
    start: Optional[date] = None
    end: Optional[date] = None
    category: Optional[str] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    sort: Optional[str] = None
    order: Optional[str] = None
    limit: Optional[int] = None

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> QueryFilterSet:
        """Parse a query-string mapping; blank values count as absent."""
        return cls(
            start=_parse_date("start", _present(params, "start")),
            end=_parse_date("end", _present(params, "end")),
            category=_present(params, "category"),
            min_amount=_parse_amount("minAmount", _present(params, "minAmount")),
            max_amount=_parse_amount("maxAmount", _present(params, "maxAmount")),
            sort=_present(params, "sort"),
            order=_present(params, "order"),
            limit=_parse_limit(_present(params, "limit")),
        )


def _present(params: Mapping[str, str], key: str) -> Optional[str]:
    value = params.get(key)
    if value is None or value.strip() == "":
        return None
    return value


def _parse_date(name: str, raw: Optional[str]) -> Optional[date]:
    if raw is None:
        return None
    try:
        return date.fromisoformat(raw.strip())
    except ValueError as exc:
        raise ValidationError(f"'{name}' must be a date in YYYY-MM-DD format") from exc


def _parse_amount(name: str, raw: Optional[str]) -> Optional[Decimal]:
    if raw is None:
        return None
    try:
        amount = Decimal(raw.strip())
    except InvalidOperation as exc:
        raise ValidationError(f"'{name}' must be a number") from exc
    if not amount.is_finite():
        raise ValidationError(f"'{name}' must be a number")
    return amount


def _parse_limit(raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    try:
        limit = int(raw.strip())
    except ValueError as exc:
        raise ValidationError("'limit' must be a positive integer") from exc
    if not 1 <= limit <= MAX_SQL_INTEGER:
        raise ValidationError("'limit' must be a positive integer")
    return limit


def end_of_day(day: date) -> datetime:
    return datetime.combine(day, time(23, 59, 59))


@dataclass(frozen=True)
class Predicates:
    fragments: tuple[str, ...]
    params: tuple[Any, ...]

    @property
    def where(self) -> str:
        return " AND ".join(self.fragments)

    def bind(self, value: Any) -> tuple[str, tuple[Any, ...]]:
        """Placeholder and parameter vector for one value bound after the predicates."""
        return f"${len(self.params) + 1}", self.params + (value,)


class PredicateBuilder:
    def __init__(self) -> None:
        self._pairs: list[tuple[str, Any]] = []

    def add(self, fragment: str, value: Any) -> PredicateBuilder:
        # fragment holds a single "{}" slot for the placeholder
        self._pairs.append((fragment, value))
        return self

    def render(self) -> Predicates:
        fragments = []
        params = []
        for position, (fragment, value) in enumerate(self._pairs, start=1):
            fragments.append(fragment.format(f"${position}"))
            params.append(value)
        return Predicates(tuple(fragments), tuple(params))


def build_predicates(user_id: int, filters: QueryFilterSet) -> Predicates:
    builder = PredicateBuilder().add("user_id = {}", user_id)
    if filters.start is not None:
        builder.add("date >= {}", filters.start)
    if filters.end is not None:
        builder.add("date <= {}", end_of_day(filters.end))
    if filters.category is not None:
        builder.add("category = {}", filters.category)
    if filters.min_amount is not None:
        builder.add("amount >= {}", filters.min_amount)
    if filters.max_amount is not None:
        builder.add("amount <= {}", filters.max_amount)
    return builder.render()


@dataclass(frozen=True)
class SortSpec:
    field: str
    direction: str

    @property
    def clause(self) -> str:
        return f"{self.field} {self.direction}, id {self.direction}"


def resolve_sort(
    sort: Optional[str], order: Optional[str], *, strict: bool = False
) -> SortSpec:
    field = DEFAULT_SORT_FIELD
    if sort in SORT_FIELDS:
        field = sort
    elif sort is not None and strict:
        raise ValidationError(f"'sort' must be one of: {', '.join(SORT_FIELDS)}")
    direction = "ASC" if (order or "").strip().lower() == "asc" else "DESC"
    return SortSpec(field, direction)
