from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Annotated, Any, Literal, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from models import RecurringInterval, TransactionType

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
SortField = Literal["date", "amount", "category", "type", "description", "createdAt"]
Name = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)
]
Email = Annotated[
    str, StringConstraints(strip_whitespace=True, max_length=254, pattern=EMAIL_PATTERN)
]
Category = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)
]
Description = Annotated[str, StringConstraints(strip_whitespace=True, max_length=200)]
MAX_AMOUNT = Decimal("999999999999.99")


def _coerce_datetime(value: Any) -> Any:
    """Accept ``YYYY-MM-DD`` as midnight."""
    if isinstance(value, str) and len(value.strip()) == 10:
        value = date.fromisoformat(value.strip())
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime.combine(value, time.min)
    return value


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# stored naive, in UTC
UtcDateTime = Annotated[datetime, AfterValidator(_to_naive_utc)]


def _clean_tags(tags: Optional[list[str]]) -> Optional[list[str]]:
    if tags is None:
        return None
    cleaned = [tag.strip() for tag in tags if tag and tag.strip()]
    for tag in cleaned:
        if len(tag) > 20:
            raise ValueError(f"Tag '{tag}' is longer than 20 characters")
    return cleaned


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class RegisterIn(CamelModel):
    name: Name
    email: Email
    password: str = Field(..., min_length=6, max_length=72)


class LoginIn(CamelModel):
    email: str = Field(..., min_length=1, max_length=254)
    password: str = Field(..., min_length=1, max_length=72)


class RefreshTokenIn(CamelModel):
    refresh_token: Optional[str] = None


class ProfileUpdateIn(CamelModel):
    name: Optional[Name] = None
    email: Optional[Email] = None


class ChangePasswordIn(CamelModel):
    current_password: str = Field(..., min_length=1, max_length=72)
    new_password: str = Field(..., min_length=6, max_length=72)


class ForgotPasswordIn(CamelModel):
    email: str = Field(..., min_length=1, max_length=254)


class ResetPasswordIn(CamelModel):
    token: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., min_length=6, max_length=72)


class AttachmentIn(CamelModel):
    filename: Optional[str] = Field(default=None, max_length=255)
    original_name: Optional[str] = Field(default=None, max_length=255)
    mime_type: Optional[str] = Field(default=None, max_length=100)
    size: Optional[int] = Field(default=None, ge=0)
    url: Optional[str] = Field(default=None, max_length=2048)


class TransactionIn(CamelModel):
    type: TransactionType
    amount: Decimal = Field(..., ge=Decimal("0.01"), le=MAX_AMOUNT)
    category: Category
    description: Optional[Description] = None
    date: Optional[UtcDateTime] = None
    tags: list[str] = Field(default_factory=list)
    is_recurring: bool = False
    recurring_interval: RecurringInterval = RecurringInterval.monthly
    attachments: list[AttachmentIn] = Field(default_factory=list)

    @field_validator("date", mode="before")
    @classmethod
    def _coerce_date(cls, value: Any) -> Any:
        return _coerce_datetime(value)

    @field_validator("tags")
    @classmethod
    def _check_tags(cls, tags: Optional[list[str]]) -> Optional[list[str]]:
        return _clean_tags(tags)


class TransactionUpdate(TransactionIn):
    """Partial update: only the fields present in the request are applied."""

    type: Optional[TransactionType] = None
    amount: Optional[Decimal] = Field(
        default=None, ge=Decimal("0.01"), le=MAX_AMOUNT
    )
    category: Optional[Category] = None
    tags: Optional[list[str]] = None
    is_recurring: Optional[bool] = None
    recurring_interval: Optional[RecurringInterval] = None
    attachments: Optional[list[AttachmentIn]] = None

    @model_validator(mode="after")
    def _required_fields_not_null(self) -> "TransactionUpdate":
        nullable = {"description"}
        for name in self.model_fields_set - nullable:
            if getattr(self, name) is None:
                raise ValueError(f"{to_camel(name)} cannot be null")
        return self


class TransactionQuery(CamelModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1)
    type: Optional[TransactionType] = None
    category: Optional[str] = Field(default=None, max_length=50)
    start_date: Optional[UtcDateTime] = None
    end_date: Optional[UtcDateTime] = None
    min_amount: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT)
    max_amount: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT)
    search: Optional[str] = Field(default=None, max_length=100)
    sort_by: SortField = "date"
    sort_order: Literal["asc", "desc"] = "desc"

    @model_validator(mode="before")
    @classmethod
    def _blank_params_are_missing(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v not in ("", None)}
        return data

    @field_validator("end_date", mode="before")
    @classmethod
    def _end_of_day(cls, value: Any) -> Any:
        # a bare date as the upper bound covers that whole day
        if isinstance(value, str) and len(value.strip()) == 10:
            day = date.fromisoformat(value.strip())
            return datetime.combine(day, time.max)
        return _coerce_datetime(value)

    @field_validator("start_date", mode="before")
    @classmethod
    def _coerce_start(cls, value: Any) -> Any:
        return _coerce_datetime(value)


class BulkDeleteIn(CamelModel):
    transaction_ids: Optional[list[int]] = None


class UserOut(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    id: int
    name: str
    email: str
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class TransactionOut(CamelModel):
    id: int
    type: TransactionType
    amount: float
    category: str
    description: Optional[str] = None
    date: datetime
    tags: list[str]
    is_recurring: bool
    recurring_interval: RecurringInterval
    attachments: list[AttachmentIn]
    created_at: datetime
    updated_at: datetime
    formatted_amount: str
    formatted_date: str
