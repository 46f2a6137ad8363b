"""Domain models for the health chat core."""

import random
import string
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

_ID_ALPHABET = string.digits + string.ascii_lowercase


class Sender(str, Enum):
    """Author of a message. Values match the on-device log format."""

    USER = "User"
    ASSISTANT = "AI"

    @classmethod
    def _missing_(cls, value: object) -> Optional["Sender"]:
        # Older logs stored "User " with a trailing space
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized == "user":
                return cls.USER
            if normalized in ("ai", "assistant"):
                return cls.ASSISTANT
        return None

    @property
    def role(self) -> str:
        """Chat-completion role name for this sender."""
        return "user" if self is Sender.USER else "assistant"


def new_message_id(sender: Sender = Sender.USER) -> str:
    """Build a unique id from the epoch milliseconds and a random suffix."""
    millis = int(time.time() * 1000)
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    if sender is Sender.ASSISTANT:
        return f"{millis}_AI_{suffix}"
    return f"{millis}_{suffix}"


def utc_timestamp() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Message(BaseModel):
    """Message model. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str
    sender: Sender
    text: str
    timestamp: str = Field(default_factory=utc_timestamp)

    @classmethod
    def create(cls, sender: Sender, text: str) -> "Message":
        return cls(id=new_message_id(sender), sender=sender, text=text)


class ConversationLog(BaseModel):
    """Ordered, append-only message log owned by one user."""

    user_id: str
    messages: List[Message] = Field(default_factory=list)

    def append(self, message: Message) -> "ConversationLog":
        """Return a new log with ``message`` appended."""
        return ConversationLog(user_id=self.user_id, messages=[*self.messages, message])

    def __len__(self) -> int:
        return len(self.messages)


class UserContext(BaseModel):
    """Per-user documents used to personalise replies. Read-only here."""

    profile: Optional[Dict[str, Any]] = None
    lifestyle: Optional[Dict[str, Any]] = None
    medical_history: Optional[Dict[str, Any]] = None

    def is_empty(self) -> bool:
        return not (self.profile or self.lifestyle or self.medical_history)


class HealthMetrics(BaseModel):
    """Inputs of a health-risk prediction. Values are passed through as given."""

    model_config = ConfigDict(populate_by_name=True)

    age: Union[int, float, str]
    weight: Union[int, float, str]
    blood_pressure: Union[int, float, str] = Field(alias="bp")
    heart_rate: Union[int, float, str] = Field(alias="heartRate")


class RiskPrediction(BaseModel):
    """Structured reply of a health-risk prediction."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    diabetes_risk: str
    hypertension_risk: str
    advice: str
