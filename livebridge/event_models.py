from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class EventKind(str, Enum):
    TRACK = "track"
    PAGE = "page"
    IDENTIFY = "identify"
    SCREEN = "screen"
    OTHER = "other"


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 string (``Z`` suffix allowed) into an aware datetime."""
    if not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class CanonicalEvent(BaseModel):
    """Uniform representation of one inbound live event."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    message_id: str = Field(..., alias="messageId")
    timestamp: str
    type: str = "unknown"
    user_id: str = Field(default="", alias="userId")
    name: str = ""
    properties: Dict[str, Any] = Field(default_factory=dict)
    # Fields that were absent upstream and had to be synthesized
    gaps: Tuple[str, ...] = ()

    @property
    def kind(self) -> EventKind:
        try:
            return EventKind((self.type or "").lower())
        except ValueError:
            return EventKind.OTHER

    @property
    def occurred_at(self) -> Optional[datetime]:
        return parse_timestamp(self.timestamp)

    @property
    def title(self) -> str:
        """Human label chosen per event kind."""
        props = self.properties or {}
        kind = self.kind
        if kind == EventKind.TRACK:
            return props.get("event") or props.get("eventName") or props.get("name") or self.type
        if kind == EventKind.PAGE:
            for key in ("path", "url", "page", "pagePath", "name"):
                if props.get(key):
                    return props[key]
            return self.type
        if kind == EventKind.IDENTIFY:
            return self.user_id or props.get("userId") or props.get("user_id") or props.get("id") or self.type
        return self.type or "Unknown Event"

    def relative_age(self, now: Optional[datetime] = None) -> str:
        """Age as shown in the event list, e.g. ``42s ago`` or ``3h ago``."""
        occurred = self.occurred_at
        if occurred is None:
            return ""
        seconds = int(((now or datetime.now(timezone.utc)) - occurred).total_seconds())
        if seconds < 60:
            return f"{seconds}s ago"
        if seconds < 3600:
            return f"{seconds // 60}m ago"
        if seconds < 86400:
            return f"{seconds // 3600}h ago"
        return f"{seconds // 86400}d ago"

    def to_wire(self) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True)
        data["kind"] = self.kind.value
        data["title"] = str(self.title)
        return data
