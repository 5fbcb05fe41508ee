import datetime as dt
from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from models import InvestmentType, TransactionType

HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"


def _upper_currency(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip().upper()
    if len(value) != 3 or not value.isalpha():
        raise ValueError("Currency must be a 3-letter code")
    return value


class RegisterIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=72)
    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    currency: str = "USD"

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _strip_names(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("currency")
    @classmethod
    def _currency(cls, value: str) -> str:
        return _upper_currency(value)


class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class RefreshIn(BaseModel):
    refresh_token: Optional[str] = None


class ProfileUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    first_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    currency: Optional[str] = None

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _strip_names(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("currency")
    @classmethod
    def _currency(cls, value: Optional[str]) -> Optional[str]:
        return _upper_currency(value)


class PasswordChangeIn(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=72)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    color: str = Field(default="#6B7280", pattern=HEX_COLOR)
    icon: str = Field(default="folder", min_length=1, max_length=50)


class CategoryUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR)
    icon: Optional[str] = Field(default=None, min_length=1, max_length=50)


class TransactionIn(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=15, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=255)
    type: TransactionType
    category_id: str
    date: Optional[dt.date] = None
    notes: Optional[str] = None


class TransactionUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=15, decimal_places=2
    )
    description: Optional[str] = Field(default=None, min_length=1, max_length=255)
    type: Optional[TransactionType] = None
    category_id: Optional[str] = None
    date: Optional[dt.date] = None
    notes: Optional[str] = None


class InvestmentIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: InvestmentType
    amount: Decimal = Field(..., ge=0, max_digits=15, decimal_places=2)
    current_value: Optional[Decimal] = Field(
        default=None, ge=0, max_digits=15, decimal_places=2
    )
    purchase_date: date
    notes: Optional[str] = None


class InvestmentUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[InvestmentType] = None
    amount: Optional[Decimal] = Field(
        default=None, ge=0, max_digits=15, decimal_places=2
    )
    current_value: Optional[Decimal] = Field(
        default=None, ge=0, max_digits=15, decimal_places=2
    )
    purchase_date: Optional[date] = None
    notes: Optional[str] = None

