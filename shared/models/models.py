"""
shared/models/models.py
All SQLAlchemy ORM models for the Pin Platform.
Integer primary keys throughout; soft-deletable records carry `discarded_at`.
"""

from datetime import date, datetime, time, timezone
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    and_,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, foreign, mapped_column, relationship

from config.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enumerations ──────────────────────────────────────────────

class ActiveStatus(str, PyEnum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class SupportTicketStatus(str, PyEnum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class TicketableType(str, PyEnum):
    """Owner kinds of a support ticket. Values are stored in `ticketable_type`."""
    USER = "User"
    BUSINESS = "Business"
    ADMIN = "Admin"


class AccountRole(str, PyEnum):
    """Role claim carried by access tokens."""
    USER = "USER"
    BUSINESS = "BUSINESS"
    ADMIN = "ADMIN"


ALL_WEEK_DAYS = [0, 1, 2, 3, 4, 5, 6]

# JSON on SQLite, JSONB on PostgreSQL (JSONB supports equality, so DISTINCT works)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


class DiscardMixin:
    """Soft delete. Discarded rows stay in the table but are hidden from every ORM SELECT."""
    discarded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )

    @property
    def discarded(self) -> bool:
        return self.discarded_at is not None

    @property
    def kept(self) -> bool:
        return self.discarded_at is None


# ── Accounts ──────────────────────────────────────────────────

class Admin(TimestampMixin, Base):
    """Console operator. Authenticates with email + password."""
    __tablename__ = "admins"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_sign_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    support_tickets: Mapped[List["SupportTicket"]] = relationship(
        primaryjoin="and_(foreign(SupportTicket.ticketable_id) == Admin.id, "
                    "SupportTicket.ticketable_type == 'Admin')",
        viewonly=True,
    )

    def __repr__(self) -> str:
        return f"<Admin {self.email}>"


class Business(TimestampMixin, DiscardMixin, Base):
    """Business account that owns a firm."""
    __tablename__ = "businesses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))
    phone: Mapped[Optional[str]] = mapped_column(String(30))
    last_sign_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    owned_firm: Mapped[Optional["Firm"]] = relationship(back_populates="owner", uselist=False)
    support_tickets: Mapped[List["SupportTicket"]] = relationship(
        primaryjoin="and_(foreign(SupportTicket.ticketable_id) == Business.id, "
                    "SupportTicket.ticketable_type == 'Business')",
        viewonly=True,
    )

    @property
    def name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)


class User(TimestampMixin, DiscardMixin, Base):
    """App user who discovers firms, likes posts and visits pins."""
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))
    phone: Mapped[Optional[str]] = mapped_column(String(30))
    birthday: Mapped[date] = mapped_column(Date, nullable=False)
    user_changed_birthday: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    photo: Mapped[Optional[str]] = mapped_column(Text)
    lat: Mapped[Optional[float]] = mapped_column(Float)
    lng: Mapped[Optional[float]] = mapped_column(Float)
    status: Mapped[ActiveStatus] = mapped_column(
        Enum(ActiveStatus), default=ActiveStatus.ACTIVE, nullable=False
    )
    blocked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_sign_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Relationships
    support_tickets: Mapped[List["SupportTicket"]] = relationship(
        primaryjoin="and_(foreign(SupportTicket.ticketable_id) == User.id, "
                    "SupportTicket.ticketable_type == 'User')",
        viewonly=True,
    )
    alerts: Mapped[List["Alert"]] = relationship(back_populates="user")
    notifications: Mapped[List["Notification"]] = relationship(
        secondary="alerts", viewonly=True
    )
    views: Mapped[List["View"]] = relationship(back_populates="user")
    swipes: Mapped[List["Swipe"]] = relationship(back_populates="user")
    visited_locations: Mapped[List["VisitedLocation"]] = relationship(back_populates="user")
    like_dislikes: Mapped[List["LikeDislike"]] = relationship(back_populates="user")
    reports: Mapped[List["Report"]] = relationship(back_populates="user")
    trustees: Mapped[List["Trustee"]] = relationship(back_populates="user")

    @property
    def name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    @property
    def can_change_birthday(self) -> bool:
        return not self.user_changed_birthday

    @property
    def active_for_authentication(self) -> bool:
        return self.kept and not self.blocked and self.status == ActiveStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<User {self.username}>"


# ── Firms ─────────────────────────────────────────────────────

class Feature(TimestampMixin, Base):
    """Catalogue of amenities a firm can flag (parking, wifi, ...)."""
    __tablename__ = "features"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    icon: Mapped[Optional[str]] = mapped_column(String(100))


class Firm(TimestampMixin, DiscardMixin, Base):
    """
    A geocoded business location owned by a Business account.
    Always carries exactly MAX_SCHEDULES schedule slots once saved.
    """
    __tablename__ = "firms"

    MAX_SCHEDULES = 2
    ADDRESS_FIELDS = ("zip", "street", "city", "state")

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("businesses.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(30), nullable=False)
    about: Mapped[Optional[str]] = mapped_column(String(160))
    business_type: Mapped[Optional[str]] = mapped_column(String(40))
    keywords: Mapped[Optional[str]] = mapped_column(Text)
    hashtags: Mapped[Optional[str]] = mapped_column(Text)
    photo: Mapped[Optional[str]] = mapped_column(Text)

    street: Mapped[Optional[str]] = mapped_column(String(255))
    city: Mapped[Optional[str]] = mapped_column(String(100))
    state: Mapped[Optional[str]] = mapped_column(String(100))
    zip: Mapped[Optional[str]] = mapped_column(String(20))
    lat: Mapped[Optional[float]] = mapped_column(Float)
    lng: Mapped[Optional[float]] = mapped_column(Float)

    status: Mapped[ActiveStatus] = mapped_column(
        Enum(ActiveStatus), default=ActiveStatus.ACTIVE, nullable=False
    )
    checked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    dynamic_link: Mapped[Optional[str]] = mapped_column(Text)

    # Relationships
    owner: Mapped["Business"] = relationship(back_populates="owned_firm")
    trustees: Mapped[List["Trustee"]] = relationship(back_populates="firm")
    users: Mapped[List["User"]] = relationship(
        secondary=lambda: Trustee.__table__,
        primaryjoin=lambda: and_(Firm.id == Trustee.firm_id, Trustee.discarded_at.is_(None)),
        secondaryjoin=lambda: Trustee.user_id == User.id,
        viewonly=True,
    )
    flags: Mapped[List["Flag"]] = relationship(back_populates="firm")
    posts: Mapped[List["Post"]] = relationship(back_populates="firm", order_by="Post.id")
    schedules: Mapped[List["Schedule"]] = relationship(
        back_populates="firm", order_by="Schedule.id"
    )
    pins: Mapped[List["Pin"]] = relationship(back_populates="firm", order_by="Pin.id")
    pin_balances: Mapped[List["PinBalance"]] = relationship(back_populates="firm")

    __table_args__ = (
        Index("ix_firms_owner_id", "owner_id"),
        Index("ix_firms_status", "status"),
        Index("ix_firms_checked", "checked"),
    )

    @property
    def address(self) -> str:
        parts = (self.zip, self.street, self.city, self.state)
        return ", ".join(p for p in parts if p)

    @property
    def geolocated(self) -> bool:
        return bool(self.lat) and bool(self.lng)

    @property
    def home_pin(self) -> Optional["Pin"]:
        """First kept pin flagged as home. Requires `pins` to be loaded."""
        return next((pin for pin in self.pins if pin.is_home), None)

    def set_default_schedules(self) -> None:
        """
        Top up the schedule slots to MAX_SCHEDULES.
        An empty firm gets an all-days slot first; remaining slots are empty.
        Existing slots keep their position. Requires `schedules` to be loaded.
        """
        count = len(self.schedules)
        if count >= self.MAX_SCHEDULES:
            return

        midnight = time(0, 0)
        if count == 0:
            self.schedules.append(
                Schedule(starts=midnight, ends=midnight, week_days=list(ALL_WEEK_DAYS))
            )
            count = 1

        for _ in range(self.MAX_SCHEDULES - count):
            self.schedules.append(Schedule(starts=midnight, ends=midnight, week_days=[]))

    def __repr__(self) -> str:
        return f"<Firm {self.id} {self.name}>"


class Trustee(TimestampMixin, DiscardMixin, Base):
    """Link between a firm and a user allowed to act for it."""
    __tablename__ = "trustees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    firm_id: Mapped[int] = mapped_column(ForeignKey("firms.id"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    firm: Mapped["Firm"] = relationship(back_populates="trustees")
    user: Mapped["User"] = relationship(back_populates="trustees")


class Flag(TimestampMixin, DiscardMixin, Base):
    """A feature switched on for a firm."""
    __tablename__ = "flags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    firm_id: Mapped[int] = mapped_column(ForeignKey("firms.id"), nullable=False, index=True)
    feature_id: Mapped[int] = mapped_column(ForeignKey("features.id"), nullable=False)

    firm: Mapped["Firm"] = relationship(back_populates="flags")
    feature: Mapped["Feature"] = relationship()


class Schedule(TimestampMixin, DiscardMixin, Base):
    """Opening-hours slot. week_days holds 0 (Sunday) .. 6 (Saturday)."""
    __tablename__ = "schedules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    firm_id: Mapped[int] = mapped_column(ForeignKey("firms.id"), nullable=False, index=True)
    week_days: Mapped[List[int]] = mapped_column(JSONType, default=list, nullable=False)
    starts: Mapped[time] = mapped_column(Time, nullable=False)
    ends: Mapped[time] = mapped_column(Time, nullable=False)

    firm: Mapped["Firm"] = relationship(back_populates="schedules")


class Post(TimestampMixin, DiscardMixin, Base):
    """Firm announcement shown in the feed."""
    __tablename__ = "posts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    firm_id: Mapped[int] = mapped_column(ForeignKey("firms.id"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[Optional[str]] = mapped_column(Text)
    photo: Mapped[Optional[str]] = mapped_column(Text)

    firm: Mapped["Firm"] = relationship(back_populates="posts")
    reports: Mapped[List["Report"]] = relationship(back_populates="post", order_by="Report.id")
    like_dislikes: Mapped[List["LikeDislike"]] = relationship(back_populates="post")
    views: Mapped[List["View"]] = relationship(back_populates="post")
    swipes: Mapped[List["Swipe"]] = relationship(back_populates="post")


class Pin(TimestampMixin, DiscardMixin, Base):
    """Map marker for a firm. At most one per firm is meant to be the home pin."""
    __tablename__ = "pins"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    firm_id: Mapped[int] = mapped_column(ForeignKey("firms.id"), nullable=False, index=True)
    is_home: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    lat: Mapped[Optional[float]] = mapped_column(Float)
    lng: Mapped[Optional[float]] = mapped_column(Float)
    status: Mapped[ActiveStatus] = mapped_column(
        Enum(ActiveStatus), default=ActiveStatus.ACTIVE, nullable=False
    )

    firm: Mapped["Firm"] = relationship(back_populates="pins")
    visited_locations: Mapped[List["VisitedLocation"]] = relationship(back_populates="pin")


class PinBalance(TimestampMixin, DiscardMixin, Base):
    """Ledger entry; a firm's available balance is the sum of its kept entries."""
    __tablename__ = "pin_balances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    firm_id: Mapped[int] = mapped_column(ForeignKey("firms.id"), nullable=False, index=True)
    amount_in_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(String(255))

    firm: Mapped["Firm"] = relationship(back_populates="pin_balances")


# ── User activity ─────────────────────────────────────────────

class LikeDislike(TimestampMixin, DiscardMixin, Base):
    __tablename__ = "like_dislikes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    post_id: Mapped[int] = mapped_column(ForeignKey("posts.id"), nullable=False, index=True)
    is_like: Mapped[bool] = mapped_column(Boolean, nullable=False)

    user: Mapped["User"] = relationship(back_populates="like_dislikes")
    post: Mapped["Post"] = relationship(back_populates="like_dislikes")


class Notification(TimestampMixin, Base):
    """Broadcast message delivered to users through alerts."""
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)


class Alert(TimestampMixin, DiscardMixin, Base):
    """Per-user delivery of a notification."""
    __tablename__ = "alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    notification_id: Mapped[int] = mapped_column(ForeignKey("notifications.id"), nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    user: Mapped["User"] = relationship(back_populates="alerts")
    notification: Mapped["Notification"] = relationship()


class VisitedLocation(TimestampMixin, DiscardMixin, Base):
    __tablename__ = "visited_locations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    pin_id: Mapped[int] = mapped_column(ForeignKey("pins.id"), nullable=False, index=True)

    user: Mapped["User"] = relationship(back_populates="visited_locations")
    pin: Mapped["Pin"] = relationship(back_populates="visited_locations")


class View(TimestampMixin, DiscardMixin, Base):
    __tablename__ = "views"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    post_id: Mapped[int] = mapped_column(ForeignKey("posts.id"), nullable=False, index=True)

    user: Mapped["User"] = relationship(back_populates="views")
    post: Mapped["Post"] = relationship(back_populates="views")


class Swipe(TimestampMixin, DiscardMixin, Base):
    __tablename__ = "swipes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    post_id: Mapped[int] = mapped_column(ForeignKey("posts.id"), nullable=False, index=True)
    is_right: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    user: Mapped["User"] = relationship(back_populates="swipes")
    post: Mapped["Post"] = relationship(back_populates="swipes")


class Report(TimestampMixin, DiscardMixin, Base):
    """User complaint about a post."""
    __tablename__ = "reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    post_id: Mapped[int] = mapped_column(ForeignKey("posts.id"), nullable=False, index=True)
    reason: Mapped[Optional[str]] = mapped_column(Text)

    user: Mapped["User"] = relationship(back_populates="reports")
    post: Mapped["Post"] = relationship(back_populates="reports")


# ── Support ───────────────────────────────────────────────────

TICKETABLE_RELATIONSHIPS = {
    TicketableType.USER: "ticketable_user",
    TicketableType.BUSINESS: "ticketable_business",
    TicketableType.ADMIN: "ticketable_admin",
}


class SupportTicket(TimestampMixin, DiscardMixin, Base):
    """
    Help request raised by a User, Business or Admin (the "ticketable").
    The owner is a tagged union: `ticketable_type` picks which of the three
    view-only relationships holds it.
    """
    __tablename__ = "support_tickets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticketable_type: Mapped[str] = mapped_column(String(20), nullable=False)
    ticketable_id: Mapped[int] = mapped_column(Integer, nullable=False)
    firm_id: Mapped[Optional[int]] = mapped_column(ForeignKey("firms.id"), nullable=True)
    query: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[SupportTicketStatus] = mapped_column(
        Enum(SupportTicketStatus), default=SupportTicketStatus.OPEN, nullable=False
    )
    checked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    firm: Mapped[Optional["Firm"]] = relationship()
    ticketable_user: Mapped[Optional["User"]] = relationship(
        primaryjoin=lambda: and_(
            foreign(SupportTicket.ticketable_id) == User.id,
            SupportTicket.ticketable_type == TicketableType.USER.value,
        ),
        viewonly=True,
    )
    ticketable_business: Mapped[Optional["Business"]] = relationship(
        primaryjoin=lambda: and_(
            foreign(SupportTicket.ticketable_id) == Business.id,
            SupportTicket.ticketable_type == TicketableType.BUSINESS.value,
        ),
        viewonly=True,
    )
    ticketable_admin: Mapped[Optional["Admin"]] = relationship(
        primaryjoin=lambda: and_(
            foreign(SupportTicket.ticketable_id) == Admin.id,
            SupportTicket.ticketable_type == TicketableType.ADMIN.value,
        ),
        viewonly=True,
    )

    __table_args__ = (
        Index("ix_support_tickets_ticketable", "ticketable_type", "ticketable_id"),
        Index("ix_support_tickets_status", "status"),
    )

    @property
    def ticketable(self):
        """The owning account. Only the relationship matching the type is touched."""
        return getattr(self, TICKETABLE_RELATIONSHIPS[TicketableType(self.ticketable_type)])
