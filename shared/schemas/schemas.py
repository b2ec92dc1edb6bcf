"""
shared/schemas/schemas.py
Pydantic v2 schemas: whitelisted request params and JSON:API attribute sets.
Unknown request keys are ignored, which is what keeps params whitelisted.
"""

from datetime import date, datetime, time
from typing import Annotated, Any, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StringConstraints, field_validator

from shared.models.models import ActiveStatus, SupportTicketStatus


NonBlankStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
Username = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100, pattern=r"^[A-Za-z0-9_.]*$")
]
WeekDay = Annotated[int, Field(ge=0, le=6)]


def _reject_none(value: Any) -> Any:
    if value is None:
        raise ValueError("can't be blank")
    return value


def _upcase(value: Any) -> Any:
    return value.upper() if isinstance(value, str) else value


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


# ── Auth ──────────────────────────────────────────────────────

class AdminLoginRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=1)


class TokenResponse(BaseSchema):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds


class MessageResponse(BaseSchema):
    message: str


# ── Firm params ───────────────────────────────────────────────

class ScheduleParams(BaseSchema):
    id: Optional[int] = None
    week_days: List[WeekDay] = Field(default_factory=list)
    starts: time = time(0, 0)
    ends: time = time(0, 0)


class FirmParams(BaseSchema):
    """
    Attributes an admin may set on a firm. Every field is optional (PATCH);
    required attributes may be omitted but not explicitly nulled.
    """
    name: Optional[NonBlankStr] = None
    phone_number: Optional[NonBlankStr] = None
    owner_id: Optional[int] = None
    status: Optional[ActiveStatus] = None
    about: Optional[str] = Field(None, min_length=1, max_length=160)
    business_type: Optional[str] = Field(None, max_length=40)
    keywords: Optional[str] = None
    hashtags: Optional[str] = None
    photo: Optional[str] = None
    street: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    zip: Optional[str] = Field(None, max_length=20)
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    checked: Optional[bool] = None

    # Nested collections
    schedules: Optional[List[ScheduleParams]] = None
    feature_ids: Optional[List[int]] = None

    @field_validator("name", "phone_number", "owner_id", "status", mode="before")
    @classmethod
    def present(cls, v):
        return _reject_none(v)

    @field_validator("status", mode="before")
    @classmethod
    def status_upcase(cls, v):
        return _upcase(v)

    @field_validator("zip", mode="before")
    @classmethod
    def zip_as_string(cls, v):
        return str(v) if isinstance(v, int) else v

    def attributes(self) -> dict:
        """Plain column values that were actually sent."""
        return self.model_dump(exclude_unset=True, exclude={"schedules", "feature_ids"})


class FirmCreate(FirmParams):
    name: NonBlankStr
    phone_number: NonBlankStr
    owner_id: int
    status: ActiveStatus = ActiveStatus.ACTIVE


class PinBalanceParams(BaseSchema):
    amount_in_cents: int
    comment: Optional[str] = Field(None, max_length=255)


# ── Support ticket params ─────────────────────────────────────

class SupportTicketAdminUpdate(BaseSchema):
    status: Optional[SupportTicketStatus] = None
    checked: Optional[bool] = None

    @field_validator("status", mode="before")
    @classmethod
    def present(cls, v):
        return _upcase(_reject_none(v))


class SupportTicketCreate(BaseSchema):
    query: NonBlankStr
    firm_id: Optional[int] = None


class SupportTicketUpdate(BaseSchema):
    query: Optional[NonBlankStr] = None

    @field_validator("query", mode="before")
    @classmethod
    def present(cls, v):
        return _reject_none(v)


# ── User params ───────────────────────────────────────────────

class UserAdminUpdate(BaseSchema):
    username: Optional[Username] = None
    email: Optional[EmailStr] = None
    birthday: Optional[date] = None
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=30)
    status: Optional[ActiveStatus] = None
    blocked: Optional[bool] = None

    @field_validator("username", "email", "birthday", "status", mode="before")
    @classmethod
    def present(cls, v):
        return _reject_none(v)

    @field_validator("status", mode="before")
    @classmethod
    def status_upcase(cls, v):
        return _upcase(v)


# ── JSON:API attribute sets ───────────────────────────────────

class FirmAttributes(BaseSchema):
    name: str
    phone_number: str
    about: Optional[str]
    business_type: Optional[str]
    keywords: Optional[str]
    hashtags: Optional[str]
    photo: Optional[str]
    street: Optional[str]
    city: Optional[str]
    state: Optional[str]
    zip: Optional[str]
    address: str
    lat: Optional[float]
    lng: Optional[float]
    geolocated: bool
    status: ActiveStatus
    checked: bool
    dynamic_link: Optional[str]
    owner_id: int
    created_at: datetime
    updated_at: datetime


class BusinessAttributes(BaseSchema):
    email: str
    username: str
    first_name: Optional[str]
    last_name: Optional[str]
    name: str
    phone: Optional[str]
    last_sign_in_at: Optional[datetime]


class AdminAttributes(BaseSchema):
    email: str
    username: str
    name: Optional[str]


class UserAttributes(BaseSchema):
    email: str
    username: str
    first_name: Optional[str]
    last_name: Optional[str]
    name: str
    phone: Optional[str]
    birthday: date
    can_change_birthday: bool
    photo: Optional[str]
    lat: Optional[float]
    lng: Optional[float]
    status: ActiveStatus
    blocked: bool
    last_sign_in_at: Optional[datetime]
    created_at: datetime


class PostAttributes(BaseSchema):
    title: str
    body: Optional[str]
    photo: Optional[str]
    created_at: datetime


class ReportAttributes(BaseSchema):
    reason: Optional[str]
    user_id: int
    post_id: int
    created_at: datetime


class PinAttributes(BaseSchema):
    is_home: bool
    lat: Optional[float]
    lng: Optional[float]
    status: ActiveStatus


class ScheduleAttributes(BaseSchema):
    week_days: List[int]
    starts: time
    ends: time


class SupportTicketAttributes(BaseSchema):
    query: str
    status: SupportTicketStatus
    checked: bool
    ticketable_type: str
    ticketable_id: int
    firm_id: Optional[int]
    created_at: datetime
    updated_at: datetime
