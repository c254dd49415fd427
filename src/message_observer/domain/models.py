from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class SourceType(StrEnum):
    BROADCAST = "broadcast"
    ROUTED_EVENT = "routedEvent"

    @classmethod
    def parse(cls, value: SourceType | str) -> SourceType:
        """
        Resolve a source type from its value or from the names the e2e suites use.

        "sns" and "eventbridge" are accepted as aliases for the two delivery paths.
        """
        if isinstance(value, SourceType):
            return value
        normalized = str(value).strip()
        alias = _ALIASES.get(normalized.lower())
        if alias is not None:
            return alias
        try:
            return cls(normalized)
        except ValueError as exc:
            allowed = sorted({member.value for member in cls} | set(_ALIASES))
            raise ValueError(f"Unknown source type {value!r} (allowed: {allowed})") from exc


_ALIASES: dict[str, SourceType] = {
    "broadcast": SourceType.BROADCAST,
    "sns": SourceType.BROADCAST,
    "routedevent": SourceType.ROUTED_EVENT,
    "routed_event": SourceType.ROUTED_EVENT,
    "eventbridge": SourceType.ROUTED_EVENT,
}


@dataclass(frozen=True, slots=True)
class RawMessage:
    message_id: str
    body: str
    receipt_handle: str | None = None


@dataclass(frozen=True, slots=True)
class ObservedMessage:
    source_type: SourceType
    source_id: str
    payload: str
    # Broker id of the delivery; informational, never part of matching.
    message_id: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "source_type": self.source_type.value,
            "source_id": self.source_id,
            "payload": self.payload,
            "message_id": self.message_id,
        }
