"""Shared contract for generation providers."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from nabi.errors import GenerationError, GenerationTimeout

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationResult:
    """A finished generation, ready to be relayed."""

    url: str
    media_kind: str  # image | audio | video


class GenerationAdapter(ABC):
    """One external generative-media provider."""

    name: str = "provider"
    media_kind: str = "image"

    @abstractmethod
    async def generate(self, prompt: str, source_image: str | None = None) -> GenerationResult:
        """Run the generation and return its result URL.

        Raises GenerationError when the provider fails and GenerationTimeout
        when an asynchronous task does not finish in time.
        """


class PollingAdapter(GenerationAdapter):
    """Submit-then-poll providers with a bounded number of status checks."""

    def __init__(self, poll_interval: float, max_attempts: int) -> None:
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts

    async def poll(
        self,
        fetch_status: Callable[[int], Awaitable[Any]],
    ) -> Any:
        """Call ``fetch_status(attempt)`` until it returns a non-None value.

        ``fetch_status`` returns None while the task is pending and raises
        GenerationError on terminal failure. No sleep happens before the
        first check.
        """
        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                await asyncio.sleep(self.poll_interval)

            result = await fetch_status(attempt)
            if result is not None:
                logger.info(f"{self.name}: task finished after {attempt} polls")
                return result

        raise GenerationTimeout(self.name, self.max_attempts)


def read_json(response: httpx.Response, provider: str) -> Any:
    """Raise for status and decode the body, mapping failures to GenerationError."""
    try:
        response.raise_for_status()
        return response.json()
    except httpx.HTTPStatusError as e:
        raise GenerationError(
            f"{provider} returned {e.response.status_code}"
        ) from e
    except ValueError as e:
        raise GenerationError(f"{provider} returned a non-JSON body") from e
