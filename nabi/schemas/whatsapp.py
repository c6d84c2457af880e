"""WhatsApp Cloud API webhook schemas."""

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from nabi.errors import InvalidPayloadError


class TextBody(BaseModel):
    body: str = ""


class MediaBody(BaseModel):
    id: str
    mime_type: str | None = None
    caption: str | None = None


class WhatsAppMessage(BaseModel):
    """A single inbound user message."""

    model_config = ConfigDict(populate_by_name=True)

    sender: str = Field(alias="from")
    id: str
    type: str
    text: TextBody | None = None
    image: MediaBody | None = None


class ChangeValue(BaseModel):
    messages: list[WhatsAppMessage] = []
    statuses: list[dict] = []


class Change(BaseModel):
    field: str | None = None
    value: ChangeValue


class Entry(BaseModel):
    id: str | None = None
    changes: list[Change] = []


class WebhookEnvelope(BaseModel):
    """Top-level body of a POST /webhook delivery."""

    object: str | None = None
    entry: list[Entry] = []


@dataclass
class InboundMessage:
    """Normalised message handed to the pipeline."""

    sender: str
    message_id: str
    kind: str  # text | image | anything else WhatsApp sends
    text: str = ""
    media_id: str | None = None

    @property
    def has_image(self) -> bool:
        return self.kind == "image" and self.media_id is not None


def parse_inbound(payload: dict) -> InboundMessage | None:
    """Extract the first user message from a webhook payload.

    Returns None for deliveries that carry no message, such as status
    callbacks. Raises InvalidPayloadError when the body is not an envelope.
    """
    try:
        envelope = WebhookEnvelope.model_validate(payload)
    except ValidationError as e:
        raise InvalidPayloadError(str(e)) from e

    if not envelope.entry or not envelope.entry[0].changes:
        return None

    messages = envelope.entry[0].changes[0].value.messages
    if not messages:
        return None

    message = messages[0]
    if message.type == "image" and message.image:
        return InboundMessage(
            sender=message.sender,
            message_id=message.id,
            kind="image",
            text=(message.image.caption or "").strip(),
            media_id=message.image.id,
        )

    return InboundMessage(
        sender=message.sender,
        message_id=message.id,
        kind=message.type,
        text=(message.text.body if message.text else "").strip(),
    )
