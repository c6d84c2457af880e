"""Text-to-song generation through an asynchronous task API."""

import logging
from typing import Any

import httpx

from nabi.config import get_settings
from nabi.errors import GenerationError, UnrecognizedResponseShape
from nabi.services.generation.base import GenerationResult, PollingAdapter, read_json

settings = get_settings()
logger = logging.getLogger(__name__)

COMPLETED_STATES = {"completed", "succeeded", "success"}
FAILED_STATES = {"failed", "error"}


def _unwrap(body: Any) -> dict:
    """Some responses nest the task under ``data``."""
    if isinstance(body, dict) and isinstance(body.get("data"), dict):
        return body["data"]
    if isinstance(body, dict):
        return body
    return {}


def extract_audio_url(output: Any) -> str:
    """Pick the audio URL out of the two output shapes the provider uses.

    - ``{"audio_url": "..."}``
    - ``[{"audio_url": "..."}, ...]`` or ``["https://...", ...]``
    """
    match output:
        case {"audio_url": str(url)} if url:
            return url
        case [{"audio_url": str(url)}, *_] if url:
            return url
        case [str(url), *_] if url:
            return url
        case _:
            raise UnrecognizedResponseShape("song", output)


class SongAdapter(PollingAdapter):
    """Submit a song task, then poll its status."""

    name = "song"
    media_kind = "audio"

    def __init__(
        self,
        poll_interval: float | None = None,
        max_attempts: int | None = None,
    ) -> None:
        super().__init__(
            poll_interval=settings.song_poll_interval if poll_interval is None else poll_interval,
            max_attempts=settings.song_max_attempts if max_attempts is None else max_attempts,
        )
        self.base_url = settings.song_api_base_url.rstrip("/")
        self.api_key = settings.song_api_key
        self.timeout = 30.0

    def _headers(self) -> dict[str, str]:
        return {"x-api-key": self.api_key}

    async def generate(self, prompt: str, source_image: str | None = None) -> GenerationResult:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                task_id = await self._submit(client, prompt)
                logger.info(f"Song task submitted: {task_id}")

                async def fetch_status(attempt: int) -> str | None:
                    response = await client.get(
                        f"{self.base_url}/tasks/{task_id}",
                        headers=self._headers(),
                    )
                    task = _unwrap(read_json(response, self.name))
                    status = str(task.get("status", "")).lower()
                    logger.debug(f"Song task {task_id} poll {attempt}: {status}")

                    if status in COMPLETED_STATES:
                        return extract_audio_url(task.get("output"))
                    if status in FAILED_STATES:
                        raise GenerationError(
                            f"Song task {task_id} failed: {task.get('error') or 'unknown error'}"
                        )
                    return None

                url = await self.poll(fetch_status)
        except httpx.HTTPError as e:
            raise GenerationError(f"Song provider unreachable: {e}") from e

        return GenerationResult(url=url, media_kind=self.media_kind)

    async def _submit(self, client: httpx.AsyncClient, prompt: str) -> str:
        response = await client.post(
            f"{self.base_url}/tasks",
            json={"prompt": prompt},
            headers=self._headers(),
        )
        task = _unwrap(read_json(response, self.name))
        task_id = task.get("task_id") or task.get("id")
        if not task_id:
            raise GenerationError("Song provider returned no task id")
        return str(task_id)
