"""
Normalization of raw ``live_events`` records into canonical events.

Upstream producers are not uniform. Records are first classified into one of
a few known shapes, and each shape has its own pure mapping function with the
field fallback chain for that producer.
"""

import copy
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

import structlog

from ..errors import NormalizationGap
from ..event_models import CanonicalEvent, parse_timestamp

log = structlog.get_logger()


class RawEventKind(str, Enum):
    # Wrapper carrying ``type``
    TYPED = "typed"
    # Older wrapper carrying ``eventType`` / ``eventName``
    LEGACY = "legacy"
    # Anything else, including non-dict values
    UNKNOWN = "unknown"


def classify_raw(raw: Any) -> RawEventKind:
    if not isinstance(raw, dict):
        return RawEventKind.UNKNOWN
    if isinstance(raw.get("type"), str) and raw["type"]:
        return RawEventKind.TYPED
    if raw.get("eventType") or raw.get("eventName"):
        return RawEventKind.LEGACY
    return RawEventKind.UNKNOWN


def _data(raw: Any) -> dict:
    if isinstance(raw, dict) and isinstance(raw.get("data"), dict):
        return raw["data"]
    return {}


def _text(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value)


def _common(raw: dict, data: dict) -> dict:
    return {
        "message_id": _text(data.get("messageId")),
        "timestamp": raw.get("ts"),
        "user_id": _text(raw.get("userId")),
        "properties": copy.deepcopy(data),
    }


def map_typed(raw: dict) -> dict:
    data = _data(raw)
    fields = _common(raw, data)
    fields["type"] = raw["type"]
    fields["name"] = _text(data.get("name")) or _text(raw.get("eventName"))
    return fields


def map_legacy(raw: dict) -> dict:
    data = _data(raw)
    fields = _common(raw, data)
    fields["type"] = _text(raw.get("eventType")) or "unknown"
    fields["name"] = _text(data.get("name")) or _text(raw.get("eventName"))
    return fields


def map_unknown(raw: Any) -> dict:
    if not isinstance(raw, dict):
        return {"message_id": "", "timestamp": None, "user_id": "", "properties": {}, "type": "unknown", "name": ""}
    data = _data(raw)
    fields = _common(raw, data)
    fields["type"] = "unknown"
    fields["name"] = _text(data.get("name"))
    return fields


_MAPPERS: dict[RawEventKind, Callable[[Any], dict]] = {
    RawEventKind.TYPED: map_typed,
    RawEventKind.LEGACY: map_legacy,
    RawEventKind.UNKNOWN: map_unknown,
}


def coerce_timestamp(value: Any) -> Optional[str]:
    """
    Return an ISO-8601 string that parses to a real instant, or None.

    Numeric values are taken as epoch seconds, or milliseconds when large.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat().replace("+00:00", "Z")
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and parse_timestamp(value) is not None:
        return value
    return None


class EventNormalizer:
    """
    Maps raw records to ``CanonicalEvent``s.

    Records missing a message id or a usable timestamp are not rejected: the
    field is synthesized, listed in ``CanonicalEvent.gaps`` and reported as a
    ``NormalizationGap``.
    """

    def __init__(
        self,
        on_gap: Optional[Callable[[NormalizationGap], None]] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._on_gap = on_gap
        self._clock = clock
        self.gap_count = 0

    def normalize(self, raw: Any) -> CanonicalEvent:
        kind = classify_raw(raw)
        fields = _MAPPERS[kind](raw)
        gaps = []

        if not fields["message_id"]:
            fields["message_id"] = f"synthetic-{uuid.uuid4().hex}"
            gaps.append("messageId")

        timestamp = coerce_timestamp(fields["timestamp"])
        if timestamp is None:
            timestamp = self._clock().isoformat().replace("+00:00", "Z")
            gaps.append("ts")
        fields["timestamp"] = timestamp

        event = CanonicalEvent(gaps=tuple(gaps), **fields)
        if gaps:
            self._report_gap(NormalizationGap(tuple(gaps), event.message_id), kind)
        return event

    def normalize_batch(self, payload: Any) -> list[CanonicalEvent]:
        """
        Normalize a ``live_events`` payload: one record or a list of records.

        Always yields one event per record; a malformed record never drops
        the rest of the batch.
        """
        records = payload if isinstance(payload, list) else [payload]
        events = []
        for raw in records:
            try:
                events.append(self.normalize(raw))
            except Exception as e:
                log.error("normalize.record_failed", error=str(e), exc_info=True)
                events.append(self.normalize(None))
        return events

    def _report_gap(self, gap: NormalizationGap, kind: RawEventKind) -> None:
        self.gap_count += 1
        log.warning("normalize.gap", fields=list(gap.fields), message_id=gap.message_id, raw_kind=kind.value)
        if self._on_gap is not None:
            self._on_gap(gap)
