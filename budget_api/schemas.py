from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class Envelope(BaseModel):
    error: bool = False
    message: str


# User Schemas
class UserCreate(BaseModel):
    name: str = Field(..., min_length=3, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=100)

    @field_validator("email")
    @classmethod
    def limit_email(cls, v: str) -> str:
        if len(v) > 100:
            raise ValueError("email must be at most 100 characters")
        return v

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 3:
            raise ValueError("name must be at least 3 characters")
        return v


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class User(BaseModel):
    id: int
    name: str
    email: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Token Schemas
class TokenData(BaseModel):
    """Identity carried by a verified session token."""

    user_id: int
    email: str
    name: str


class AuthResponse(Envelope):
    user: User
    token: str


class ProfileResponse(Envelope):
    user: User


class TokenResponse(Envelope):
    token: str


class HealthResponse(BaseModel):
    status: str
    message: str


# Category Schemas
class CategoryRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1, le=9999)
    amount: int = Field(..., ge=0)

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("name must not be blank")
        return v


class Category(BaseModel):
    id: int
    user_id: int
    name: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Budget(BaseModel):
    id: int = 0
    user_id: int = 0
    category_id: int = 0
    month: int = 0
    year: int = 0
    amount: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CategoryListResponse(Envelope):
    data: List[Category]


class CategoryFetchResponse(Envelope):
    data_category: Category
    data_budget: Budget


# Transaction Schemas
class TransactionCreate(BaseModel):
    category_id: int = Field(..., gt=0)
    amount: int = Field(..., gt=0)
    type: str = Field(..., min_length=1, max_length=100)
    remarks: str = Field(..., min_length=1, max_length=255)
    transaction_date: Optional[str] = None


class TransactionUpdate(BaseModel):
    """Partial update; omitted or null fields are left unchanged."""

    category_id: Optional[int] = Field(None, ge=0)
    amount: Optional[int] = Field(None, ge=0)
    remarks: Optional[str] = Field(None, max_length=255)
    transaction_date: Optional[str] = None


class Transaction(BaseModel):
    id: int
    user_id: int
    category_id: int
    amount: int
    type: str
    remarks: str
    transaction_date: datetime
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionListItem(Transaction):
    category_name: Optional[str] = None
    transaction_date_label: str


class TransactionListResponse(Envelope):
    data: List[TransactionListItem]


class TransactionFetchResponse(Envelope):
    data: Transaction
