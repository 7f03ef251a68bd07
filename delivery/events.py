"""Typed views of the email provider's webhook payloads.

``parse_event`` validates the shape once at the boundary; handlers then work
with one of the dataclasses below instead of poking at optional dict keys.
"""
from dataclasses import dataclass, field


class MalformedEvent(Exception): pass


@dataclass(frozen=True)
class EmailEvent:
    type: str
    email_id: str
    to: tuple = field(default_factory=tuple)
    created_at: str = ""


@dataclass(frozen=True)
class BouncedEvent(EmailEvent):
    message: str = "Email bounced"


@dataclass(frozen=True)
class ComplainedEvent(EmailEvent):
    message: str = "Email marked as spam"


@dataclass(frozen=True)
class DeliveredEvent(EmailEvent):
    pass


@dataclass(frozen=True)
class DelayedEvent(EmailEvent):
    pass


@dataclass(frozen=True)
class InformationalEvent:
    """sent / opened / clicked: acknowledged, nothing to reconcile."""
    type: str


@dataclass(frozen=True)
class UnknownEvent:
    type: str


TRACKED_EVENTS = {
    "email.bounced": BouncedEvent,
    "email.complained": ComplainedEvent,
    "email.delivered": DeliveredEvent,
    "email.delivery_delayed": DelayedEvent,
}
INFORMATIONAL_EVENTS = {"email.sent", "email.opened", "email.clicked"}


def _recipients(value) -> tuple:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return tuple(value)
    raise MalformedEvent("data.to must be a string or a list of strings")


def _detail_message(data: dict, key: str):
    detail = data.get(key)
    if detail is None:
        return None
    if not isinstance(detail, dict):
        raise MalformedEvent(f"data.{key} must be an object")
    message = detail.get("message")
    if message is not None and not isinstance(message, str):
        raise MalformedEvent(f"data.{key}.message must be a string")
    return message or None


def parse_event(payload):
    if not isinstance(payload, dict):
        raise MalformedEvent("Event must be a JSON object")
    event_type = payload.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise MalformedEvent("Event type is required")

    if event_type in INFORMATIONAL_EVENTS:
        return InformationalEvent(event_type)
    cls = TRACKED_EVENTS.get(event_type)
    if cls is None:
        return UnknownEvent(event_type)

    data = payload.get("data")
    if not isinstance(data, dict):
        raise MalformedEvent("Event data is required")
    email_id = data.get("email_id")
    if not isinstance(email_id, str) or not email_id:
        raise MalformedEvent("data.email_id is required")

    created_at = payload.get("created_at") or ""
    common = {
        "type": event_type,
        "email_id": email_id,
        "to": _recipients(data.get("to")),
        "created_at": created_at if isinstance(created_at, str) else str(created_at),
    }
    if cls is BouncedEvent:
        message = _detail_message(data, "bounce")
        return BouncedEvent(**common, message=message) if message else BouncedEvent(**common)
    if cls is ComplainedEvent:
        message = _detail_message(data, "complaint")
        return ComplainedEvent(**common, message=message) if message else ComplainedEvent(**common)
    return cls(**common)
