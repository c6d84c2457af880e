"""Exception types shared across the webhook pipeline."""

from enum import Enum


class NabiError(Exception):
    """Base class for application errors."""


class InvalidPayloadError(NabiError):
    """Webhook body is not a WhatsApp Cloud API envelope."""


class WebhookAuthError(NabiError):
    """Webhook handshake failed (wrong mode or verify token)."""


class MediaResolutionError(NabiError):
    """A WhatsApp media id could not be resolved or downloaded."""


class ClassificationError(NabiError):
    """The language model did not produce a usable intent."""


class GenerationError(NabiError):
    """A generation provider rejected the request or failed it."""


class UnrecognizedResponseShape(GenerationError):
    """Provider reported completion but the output has an unknown shape."""

    def __init__(self, provider: str, output: object) -> None:
        self.provider = provider
        self.output = output
        super().__init__(f"{provider}: unrecognized output shape {type(output).__name__}")


class GenerationTimeout(NabiError):
    """Polling gave up before the provider task finished."""

    def __init__(self, provider: str, attempts: int) -> None:
        self.provider = provider
        self.attempts = attempts
        super().__init__(f"{provider}: task still running after {attempts} polls")


class QuotaKind(str, Enum):
    """Which limit rejected the request."""

    TRIAL = "trial"
    DAILY = "daily"


class QuotaExceeded(NabiError):
    """User has no free trial uses left or hit the subscriber daily cap."""

    def __init__(self, kind: QuotaKind) -> None:
        self.kind = kind
        super().__init__(f"Quota exceeded: {kind.value}")


class DatastoreError(NabiError):
    """The relational store is unreachable."""
