from __future__ import annotations

import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from credentials import PasswordHasher
from database import SQLExecutor
from errors import (
    CredentialError,
    InvalidCredentials,
    NotFoundError,
    Unauthenticated,
    UserExists,
    ValidationError,
)
from filters import (
    DEFAULT_TOP_LIMIT,
    QueryFilterSet,
    build_predicates,
    resolve_sort,
)
from models import Expense, User
from periods import resolve_report_period
from schemas import ExpenseIn, UserCreate, UserLogin, UserOut
from tokens import TokenService

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
EXPENSE_COLUMNS = "id, user_id, amount, category, description, date, created_at, updated_at"
EXPORT_SELECT = "date, amount, category, description"
_DATETIME_COLUMNS = ("date", "created_at", "updated_at")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def to_amount(value: Any) -> Decimal:
    """Coerce a driver value to a Decimal at the stored two-decimal precision."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _normalize_row(row: dict[str, Any]) -> dict[str, Any]:
    # SQLite hands back text for timestamps and floats for numerics
    if "amount" in row:
        row["amount"] = to_amount(row["amount"])
    for column in _DATETIME_COLUMNS:
        if isinstance(row.get(column), str):
            row[column] = datetime.fromisoformat(row[column])
    return row


class AuthService:
    def __init__(
        self, session: Session, hasher: PasswordHasher, tokens: TokenService
    ) -> None:
        self.session = session
        self.hasher = hasher
        self.tokens = tokens

    def register(self, data: UserCreate) -> tuple[str, UserOut]:
        email = normalize_email(data.email)
        existing = self.session.scalar(select(User.id).where(User.email == email))
        if existing is not None:
            logger.info(f"register_rejected: email={email} reason=exists")
            raise UserExists()

        try:
            digest = self.hasher.hash(data.password)
        except CredentialError as exc:
            raise ValidationError("Password could not be accepted") from exc

        user = User(email=email, password=digest, name=data.name)
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            # lost a race with a concurrent registration for the same email
            self.session.rollback()
            logger.info(f"register_rejected: email={email} reason=constraint")
            raise UserExists() from exc
        self.session.refresh(user)

        logger.info(f"register_succeeded: user_id={user.id}")
        return self.tokens.issue(user.id), UserOut.model_validate(user)

    def login(self, data: UserLogin) -> tuple[str, UserOut]:
        email = normalize_email(data.email)
        user = self.session.scalar(select(User).where(User.email == email))
        if user is None:
            self.hasher.verify_placeholder(data.password)
            logger.info("login_failed: reason=unknown_email")
            raise InvalidCredentials()

        try:
            valid = self.hasher.verify(data.password, user.password)
        except CredentialError:
            logger.warning(f"login_failed: user_id={user.id} reason=unreadable_digest")
            valid = False
        if not valid:
            logger.info(f"login_failed: user_id={user.id} reason=password")
            raise InvalidCredentials()

        logger.info(f"login_succeeded: user_id={user.id}")
        return self.tokens.issue(user.id), UserOut.model_validate(user)

    def delete_account(self, user_id: int) -> None:
        result = self.session.execute(delete(User).where(User.id == user_id))
        if result.rowcount == 0:
            self.session.rollback()
            raise NotFoundError("User not found")
        self.session.commit()
        logger.info(f"account_deleted: user_id={user_id}")

    def resolve_user(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if user is None:
            logger.info(f"token_rejected: reason=unknown_user user_id={user_id}")
            raise Unauthenticated()
        return user


class ExpenseService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, expense_id: int) -> Expense:
        stmt = select(Expense).where(
            Expense.id == expense_id, Expense.user_id == self.user_id
        )
        expense = self.session.scalar(stmt)
        if not expense:
            raise NotFoundError("Expense not found")
        return expense

    def create(self, data: ExpenseIn) -> Expense:
        expense = Expense(
            user_id=self.user_id,
            amount=data.amount,
            category=data.category,
            description=data.description,
            date=data.date or datetime.utcnow(),
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def update(self, expense_id: int, data: ExpenseIn) -> Expense:
        expense = self.get(expense_id)
        expense.amount = data.amount
        expense.category = data.category
        expense.description = data.description
        if data.date is not None:
            expense.date = data.date
        expense.updated_at = datetime.utcnow()
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def delete(self, expense_id: int) -> None:
        result = self.session.execute(
            delete(Expense).where(
                Expense.id == expense_id, Expense.user_id == self.user_id
            )
        )
        if result.rowcount == 0:
            self.session.rollback()
            raise NotFoundError("Expense not found")
        self.session.commit()


class ExpenseQueryService:
    """Read queries over one user's expenses.

    Every statement starts from ``build_predicates`` so the owner predicate
    is always the first bound parameter.
    """

    def __init__(
        self,
        session: Session,
        user_id: int,
        *,
        strict_sort: bool = False,
        executor: Optional[SQLExecutor] = None,
    ) -> None:
        self.user_id = user_id
        self.strict_sort = strict_sort
        self.executor = executor or SQLExecutor(session)

    def list_expenses(self, filters: QueryFilterSet) -> list[dict[str, Any]]:
        sort = resolve_sort(filters.sort, filters.order, strict=self.strict_sort)
        predicates = build_predicates(self.user_id, filters)
        sql = (
            f"SELECT {EXPENSE_COLUMNS} FROM expenses"
            f" WHERE {predicates.where} ORDER BY {sort.clause}"
        )
        rows = self.executor.execute(sql, predicates.params)
        return [_normalize_row(row) for row in rows]

    def summary(self, filters: QueryFilterSet) -> dict[str, Decimal]:
        predicates = build_predicates(self.user_id, filters)
        sql = (
            "SELECT category, SUM(amount) AS total FROM expenses"
            f" WHERE {predicates.where}"
            " GROUP BY category ORDER BY total DESC, category ASC"
        )
        rows = self.executor.execute(sql, predicates.params)
        return {row["category"]: to_amount(row["total"]) for row in rows}

    def monthly(
        self, year: Optional[str], year_month: Optional[str]
    ) -> list[dict[str, Any]]:
        period = resolve_report_period(year, year_month)
        predicates = build_predicates(
            self.user_id, QueryFilterSet(start=period.start, end=period.end)
        )
        month = self.executor.month_expression("date")
        sql = (
            f"SELECT {month} AS month, SUM(amount) AS total FROM expenses"
            f" WHERE {predicates.where}"
            f" GROUP BY {month} ORDER BY month ASC"
        )
        rows = self.executor.execute(sql, predicates.params)
        return [{"month": row["month"], "total": to_amount(row["total"])} for row in rows]

    def top_categories(self, filters: QueryFilterSet) -> list[dict[str, Any]]:
        limit = filters.limit or DEFAULT_TOP_LIMIT
        predicates = build_predicates(self.user_id, filters)
        limit_placeholder, params = predicates.bind(limit)
        sql = (
            "SELECT category, SUM(amount) AS total FROM expenses"
            f" WHERE {predicates.where}"
            " GROUP BY category ORDER BY total DESC, category ASC"
            f" LIMIT {limit_placeholder}"
        )
        rows = self.executor.execute(sql, params)
        return [
            {"category": row["category"], "total": to_amount(row["total"])}
            for row in rows
        ]

    def export_rows(self, filters: QueryFilterSet) -> list[dict[str, Any]]:
        predicates = build_predicates(self.user_id, filters)
        sql = (
            f"SELECT {EXPORT_SELECT} FROM expenses"
            f" WHERE {predicates.where} ORDER BY date DESC, id DESC"
        )
        rows = self.executor.execute(sql, predicates.params)
        if not rows:
            raise NotFoundError("No expenses found for the given period")
        return [_normalize_row(row) for row in rows]
