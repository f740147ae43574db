import os

os.environ.setdefault("EXPENSES_DATABASE_URL", "sqlite://")

from datetime import datetime
from decimal import Decimal
from typing import Optional

import pytest
from sqlalchemy.orm import sessionmaker

from credentials import PasswordHasher
from database import Base, create_db_engine
from models import Expense, User
from schemas import ExpenseIn
from services import ExpenseService
from tokens import TokenService


class FakeClock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def session():
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    with SessionLocal() as session:
        yield session
    engine.dispose()


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(1_735_689_600)


@pytest.fixture
def tokens(clock) -> TokenService:
    return TokenService("test-secret", 3600, clock=clock)


def make_user(session, email: str = "ata@example.com", name: str = "Ata") -> User:
    user = User(email=email, password="not-a-real-digest", name=name)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def add_expense(
    session,
    user_id: int,
    amount: str,
    category: str,
    when: datetime,
    description: Optional[str] = None,
) -> Expense:
    return ExpenseService(session, user_id).create(
        ExpenseIn(
            amount=Decimal(amount),
            category=category,
            description=description,
            date=when,
        )
    )
