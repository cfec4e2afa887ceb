from datetime import datetime
from typing import Optional, Union
from pydantic import BaseModel, Field, ConfigDict, EmailStr, field_validator

from .categorize import CATEGORIES


def _check_category(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    for name in CATEGORIES:
        if name.lower() == value.strip().lower():
            return name
    raise ValueError(f"category must be one of {', '.join(CATEGORIES)}")


# ---------- transactions ----------

class TransactionCreate(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)
    merchant: str = Field(..., min_length=1)
    amount: float
    category: str
    description: Optional[str] = ""
    date: Optional[datetime] = None

    @field_validator("category")
    @classmethod
    def known_category(cls, v):
        return _check_category(v)

    @field_validator("amount")
    @classmethod
    def magnitude(cls, v: float) -> float:
        return abs(v)


class TransactionUpdate(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)
    merchant: Optional[str] = Field(None, min_length=1)
    amount: Optional[float] = None
    category: Optional[str] = None
    description: Optional[str] = None
    date: Optional[datetime] = None

    @field_validator("category")
    @classmethod
    def known_category(cls, v):
        return _check_category(v)

    @field_validator("amount")
    @classmethod
    def magnitude(cls, v: Optional[float]) -> Optional[float]:
        return abs(v) if v is not None else v


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    user_id: str
    merchant: str
    amount: float
    category: str
    description: str = ""
    date: datetime
    ai_categorized: bool = False
    receipt_image_url: Optional[str] = None
    created_at: Optional[datetime] = None


# ---------- auth / profile ----------

class SignupIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: Optional[str] = None


class LoginIn(BaseModel):
    email: EmailStr
    password: str


class UserOut(BaseModel):
    id: str
    email: str


class ProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    email: str
    name: Optional[str] = None
    monthly_income: float = 0.0
    fixed_bills: float = 0.0
    savings_goal: float = 0.0
    telegram_connected: bool = False
    telegram_username: Optional[str] = None
    telegram_user_id: Optional[str] = None


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)
    name: Optional[str] = None
    monthly_income: Optional[float] = Field(None, ge=0)
    fixed_bills: Optional[float] = Field(None, ge=0)
    savings_goal: Optional[float] = Field(None, ge=0)


# ---------- ai ----------

class ReceiptIn(BaseModel):
    imageUrl: Optional[str] = None
    imageBase64: Optional[str] = None


class CategorizeIn(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)
    merchant: str = Field(..., min_length=1)
    amount: float
    description: Optional[str] = ""


class TipsIn(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)
    monthlyIncome: Optional[float] = Field(None, ge=0)


class ChatIn(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)
    message: str = Field(..., min_length=1)
    monthlyIncome: Optional[float] = Field(None, ge=0)


# ---------- telegram ----------

class TelegramConnectIn(BaseModel):
    telegramUsername: Optional[str] = None
    telegramUserId: Optional[Union[int, str]] = None


class TelegramWebhookIn(BaseModel):
    message: Optional[dict] = None
    user: Optional[dict] = None
