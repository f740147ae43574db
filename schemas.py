from datetime import datetime
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, StringConstraints

# JSON responses carry amounts as numbers, not strings.
Amount = Annotated[
    Decimal, PlainSerializer(float, return_type=float, when_used="json")
]


class UserCreate(BaseModel):
    email: str = Field(..., max_length=255, pattern=r"^\s*[^@\s]+@[^@\s]+\s*$")
    password: str = Field(..., min_length=8, max_length=72)
    name: Annotated[
        str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)
    ]


class UserLogin(BaseModel):
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=72)


class UserOut(BaseModel):
    """Public user view: everything but the password digest."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: str
    created_at: datetime
    updated_at: datetime


class AuthOut(BaseModel):
    message: str
    token: str
    user: UserOut


class ExpenseIn(BaseModel):
    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    category: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    date: Optional[datetime] = None


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    amount: Amount
    category: str
    description: Optional[str]
    date: datetime
    created_at: datetime
    updated_at: datetime
