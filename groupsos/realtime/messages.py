"""
Live-channel message envelope.

Every frame is a JSON object whose ``type`` field discriminates it:

    client → server   {"type": "auth", "sessionId": "..."}
    server → client   {"type": "auth_success", "userId": 7}
    server → client   {"type": "alert", "alert": {...}}
    server → client   {"type": "alert-answered", "alert": {..., "answeredByName": "Bob"}}

Unknown types are ignored by the receiver, never treated as fatal.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict

from groupsos.alerts.models import AlertDetails


class MessageType(str, Enum):
    AUTH = "auth"
    AUTH_SUCCESS = "auth_success"
    ALERT = "alert"
    ALERT_ANSWERED = "alert-answered"


class MessageFormatError(ValueError):
    """Frame is not a JSON object carrying a string ``type``."""


def parse_message(raw: str) -> Dict[str, Any]:
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise MessageFormatError("frame is not valid JSON") from exc
    if not isinstance(data, dict) or not isinstance(data.get("type"), str):
        raise MessageFormatError("frame has no message type")
    return data


def auth_success(user_id: int) -> Dict[str, Any]:
    return {"type": MessageType.AUTH_SUCCESS.value, "userId": user_id}


@dataclass(frozen=True)
class AlertEvent:
    """An alert-related event to be fanned out to the alert's group."""
    type: MessageType
    details: AlertDetails

    @classmethod
    def created(cls, details: AlertDetails) -> "AlertEvent":
        return cls(MessageType.ALERT, details)

    @classmethod
    def answered(cls, details: AlertDetails) -> "AlertEvent":
        return cls(MessageType.ALERT_ANSWERED, details)

    @property
    def alert_id(self) -> int:
        return self.details.alert.id

    @property
    def group_id(self) -> int:
        return self.details.alert.group_id

    @property
    def sender_id(self) -> int:
        return self.details.alert.sender_id

    @property
    def is_emergency(self) -> bool:
        """Only a newly raised emergency warrants a push notification."""
        return self.type == MessageType.ALERT and self.details.alert.is_emergency

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type.value, "alert": self.details.to_dict()}
