"""Pydantic models for Expense data"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime, timezone
from typing import Literal, Optional

ExpenseStatus = Literal['pending', 'approved', 'rejected']


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # Mongo hands back naive datetimes that are already UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ExpenseCreate(BaseModel):
    """
    Request body for submitting a new expense.
    Unknown fields are rejected.
    """
    model_config = ConfigDict(populate_by_name=True, extra='forbid')

    user_id: str = Field(..., alias='userId', min_length=1)
    amount: float
    category: str = Field(..., min_length=1)
    date: datetime = Field(default_factory=utc_now)
    status: ExpenseStatus = 'pending'

    @field_validator('date')
    @classmethod
    def normalize_date(cls, value: datetime) -> datetime:
        return _as_utc(value)


class ExpenseStatusUpdate(BaseModel):
    """Request body for approving, rejecting or resetting an expense."""
    model_config = ConfigDict(extra='forbid')

    status: ExpenseStatus


class Expense(BaseModel):
    """
    Represents a single stored expense claim.
    """
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: Optional[str] = None
    user_id: str = Field(..., alias='userId')
    amount: float
    category: str
    date: datetime
    status: ExpenseStatus = 'pending'
    created_at: Optional[datetime] = Field(default=None, alias='createdAt')
    updated_at: Optional[datetime] = Field(default=None, alias='updatedAt')

    @field_validator('date', 'created_at', 'updated_at')
    @classmethod
    def normalize_datetimes(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return value
        return _as_utc(value)

    @classmethod
    def from_document(cls, doc: dict) -> "Expense":
        """Builds an Expense from a raw Mongo document, mapping `_id` to `id`."""
        doc = dict(doc)
        if '_id' in doc:
            doc['id'] = str(doc.pop('_id'))
        return cls(**doc)


class CategoryTotal(BaseModel):
    """Sum of expense amounts for one category."""
    category: str
    total: float
