"""Intent decision schemas."""

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict


class IntentType(str, Enum):
    """Closed set of intents the router can produce."""

    CHAT = "chat"
    SONG = "song"
    IMAGE = "image"
    IMAGE_EDIT = "image_edit"
    VIDEO = "video"
    QUESTION = "question"


INFORMATIONAL_INTENTS = frozenset({IntentType.CHAT, IntentType.QUESTION})


@dataclass(frozen=True)
class IntentDecision:
    """Router output for one message. Never persisted."""

    type: IntentType
    prompt: str | None = None
    reply: str | None = None

    @property
    def is_informational(self) -> bool:
        return self.type in INFORMATIONAL_INTENTS


class LLMIntentReply(BaseModel):
    """JSON object the classifier model must answer with."""

    model_config = ConfigDict(extra="forbid")

    type: IntentType
    prompt: str | None = None
    response: str | None = None
