"""
Data structures passed between the subscription loop and the dispatcher.

An ntfy JSON stream carries one event object per line. Lines are decoded into
``InboundEvent`` and, for message events, turned into an ``OutboundPost``
holding the text that is sent to Slack.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .errors import DecodeError


class EventKind(str, Enum):
    """Classification of an ntfy stream event."""

    OPEN = "open"
    KEEPALIVE = "keepalive"
    MESSAGE = "message"
    UNKNOWN = "unknown"

    @classmethod
    def classify(cls, raw: str) -> "EventKind":
        try:
            kind = cls(raw)
        except ValueError:
            return cls.UNKNOWN
        return kind


class InboundEvent(BaseModel):
    """One decoded line of the ntfy ``/json`` stream."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = ""
    time: int = 0
    event: str = ""
    topic: str = ""
    title: Optional[str] = None
    message: str = ""

    @field_validator("id", "event", "topic", "message", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        # ntfy omits or nulls fields it has nothing for
        return "" if value is None else value

    @property
    def kind(self) -> EventKind:
        return EventKind.classify(self.event)


def decode_event(line: Union[str, bytes]) -> InboundEvent:
    """
    Decode a single stream line.

    Args:
        line: Raw line as read from the response body, with or without the
            trailing newline

    Returns:
        The decoded event

    Raises:
        DecodeError: The line is not a JSON object or a field has the wrong type
    """
    text = line.decode("utf-8", errors="replace") if isinstance(line, bytes) else line
    text = text.strip()
    try:
        return InboundEvent.model_validate_json(text)
    except ValidationError as e:
        errors = e.errors()
        reason = errors[0]["msg"] if errors else str(e)
        raise DecodeError(text, reason) from e


@dataclass(frozen=True)
class OutboundPost:
    """Payload for a Slack incoming webhook."""
    text: str

    @classmethod
    def from_event(cls, event: InboundEvent) -> "OutboundPost":
        if event.title:
            return cls(text=f"**{event.title}**: {event.message}")
        return cls(text=event.message)

    def to_payload(self) -> Dict[str, str]:
        return {"text": self.text}
