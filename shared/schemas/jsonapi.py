"""
shared/schemas/jsonapi.py
JSON:API document rendering.

Each model has one registered resource type (type name, attribute schema,
relationships). Endpoints pick one of the include shapes declared below; the
same shape drives both eager loading (`loader_options`) and rendering
(`document`), so clients cannot request arbitrary include paths.
"""

from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Type, Union

from sqlalchemy.orm import selectinload

from shared.exceptions import FieldError
from shared.models.models import (
    Admin,
    Business,
    Firm,
    Pin,
    Post,
    Report,
    Schedule,
    SupportTicket,
    User,
)
from shared.schemas.schemas import (
    AdminAttributes,
    BaseSchema,
    BusinessAttributes,
    FirmAttributes,
    PinAttributes,
    PostAttributes,
    ReportAttributes,
    ScheduleAttributes,
    SupportTicketAttributes,
    UserAttributes,
)

Include = Mapping[str, "Include"]


# ── Include shapes ────────────────────────────────────────────

NO_INCLUDE: Include = {}
FIRM_LISTING: Include = {"owner": {}, "users": {}, "posts": {"reports": {}}}
FIRM_DETAIL: Include = {
    "owner": {},
    "users": {},
    "pins": {},
    "schedules": {},
    "posts": {"reports": {}},
}
SUPPORT_TICKET_DETAIL: Include = {"ticketable": {}}
USER_DETAIL: Include = {"support_tickets": {}}


# ── Registry ──────────────────────────────────────────────────

@dataclass(frozen=True)
class Relationship:
    getter: str
    many: bool
    # ORM relationship attributes to eager-load; several for the polymorphic owner
    loaders: Tuple[str, ...] = ()

    def loader_names(self) -> Tuple[str, ...]:
        return self.loaders or (self.getter,)


@dataclass(frozen=True)
class ResourceType:
    type: str
    attributes: Type[BaseSchema]
    relationships: Dict[str, Relationship] = field(default_factory=dict)


RESOURCES: Dict[type, ResourceType] = {
    Firm: ResourceType(
        "firms",
        FirmAttributes,
        {
            "owner": Relationship("owner", many=False),
            "users": Relationship("users", many=True),
            "pins": Relationship("pins", many=True),
            "schedules": Relationship("schedules", many=True),
            "posts": Relationship("posts", many=True),
        },
    ),
    Business: ResourceType("businesses", BusinessAttributes),
    Admin: ResourceType("admins", AdminAttributes),
    User: ResourceType(
        "users",
        UserAttributes,
        {"support_tickets": Relationship("support_tickets", many=True)},
    ),
    Post: ResourceType(
        "posts", PostAttributes, {"reports": Relationship("reports", many=True)}
    ),
    Report: ResourceType("reports", ReportAttributes),
    Pin: ResourceType("pins", PinAttributes),
    Schedule: ResourceType("schedules", ScheduleAttributes),
    SupportTicket: ResourceType(
        "support_tickets",
        SupportTicketAttributes,
        {
            "ticketable": Relationship(
                "ticketable",
                many=False,
                loaders=("ticketable_user", "ticketable_business", "ticketable_admin"),
            ),
        },
    ),
}


def loader_options(model: type, include: Include) -> list:
    """selectinload() chain matching an include shape."""
    resource = RESOURCES[model]
    options = []
    for name, children in include.items():
        for attr_name in resource.relationships[name].loader_names():
            attr = getattr(model, attr_name)
            loader = selectinload(attr)
            if children:
                loader = loader.options(*loader_options(attr.property.mapper.class_, children))
            options.append(loader)
    return options


# ── Rendering ─────────────────────────────────────────────────

def resource_identifier(obj: Any) -> Dict[str, str]:
    return {"type": RESOURCES[type(obj)].type, "id": str(obj.id)}


def _resource_object(
    obj: Any,
    include: Include,
    included: Dict[Tuple[str, str], dict],
    meta: Optional[dict] = None,
) -> dict:
    resource = RESOURCES[type(obj)]
    data: Dict[str, Any] = {
        "type": resource.type,
        "id": str(obj.id),
        "attributes": resource.attributes.model_validate(obj).model_dump(mode="json"),
    }

    relationships = {}
    for name, children in include.items():
        rel = resource.relationships[name]
        value = getattr(obj, rel.getter)
        if rel.many:
            relationships[name] = {"data": [resource_identifier(v) for v in value]}
            for related in value:
                _include(related, children, included)
        else:
            relationships[name] = {"data": resource_identifier(value) if value is not None else None}
            if value is not None:
                _include(value, children, included)
    if relationships:
        data["relationships"] = relationships
    if meta:
        data["meta"] = meta
    return data


def _include(obj: Any, include: Include, included: Dict[Tuple[str, str], dict]) -> None:
    key = (RESOURCES[type(obj)].type, str(obj.id))
    if key in included:
        return
    included[key] = {}  # reserve the slot to keep first-seen order
    included[key] = _resource_object(obj, include, included)


def document(
    primary: Union[Any, Iterable[Any], None],
    include: Include = NO_INCLUDE,
    meta: Optional[dict] = None,
    resource_meta: Optional[Mapping[int, dict]] = None,
) -> dict:
    """
    Render a JSON:API document for one resource or a list of resources.
    `resource_meta` maps a primary resource id to its per-resource meta object.
    """
    included: Dict[Tuple[str, str], dict] = {}
    resource_meta = resource_meta or {}

    if primary is None:
        data: Any = None
    elif isinstance(primary, (list, tuple)):
        data = [
            _resource_object(obj, include, included, resource_meta.get(obj.id))
            for obj in primary
        ]
    else:
        data = _resource_object(primary, include, included, resource_meta.get(primary.id))

    doc: Dict[str, Any] = {"data": data}
    if included:
        doc["included"] = list(included.values())
    if meta:
        doc["meta"] = meta
    return doc


# ── Errors ────────────────────────────────────────────────────

def errors_document(errors: List[FieldError], status: int = 422) -> dict:
    """Attribute errors, one object per (field, message) pair."""
    return {
        "errors": [
            {
                "status": str(status),
                "title": f"Invalid {field}",
                "detail": f"{field.replace('_', ' ').capitalize()} {message}",
                "source": {"pointer": f"/data/attributes/{field}"},
            }
            for field, message in errors
        ]
    }


def http_error_document(status_code: int, detail: Any = None) -> dict:
    try:
        title = HTTPStatus(status_code).phrase
    except ValueError:
        title = "Error"
    error: Dict[str, Any] = {"status": str(status_code), "title": title}
    if detail:
        error["detail"] = detail if isinstance(detail, str) else str(detail)
    return {"errors": [error]}
