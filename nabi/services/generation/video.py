"""Image-to-video generation through a prediction API."""

import logging

import httpx

from nabi.config import get_settings
from nabi.errors import GenerationError
from nabi.services.generation.base import GenerationResult, PollingAdapter, read_json

settings = get_settings()
logger = logging.getLogger(__name__)


class VideoAdapter(PollingAdapter):
    """Submit a prediction for an image plus motion prompt, then poll it."""

    name = "video"
    media_kind = "video"

    def __init__(
        self,
        poll_interval: float | None = None,
        max_attempts: int | None = None,
    ) -> None:
        super().__init__(
            poll_interval=settings.video_poll_interval if poll_interval is None else poll_interval,
            max_attempts=settings.video_max_attempts if max_attempts is None else max_attempts,
        )
        self.base_url = settings.video_api_base_url.rstrip("/")
        self.api_token = settings.video_api_token
        self.model = settings.video_model
        self.timeout = 30.0

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_token}"}

    async def generate(self, prompt: str, source_image: str | None = None) -> GenerationResult:
        if not source_image:
            raise GenerationError("Video generation needs a source image")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/models/{self.model}/predictions",
                    json={"input": {"image": source_image, "prompt": prompt}},
                    headers=self._headers(),
                )
                prediction = read_json(response, self.name)
                prediction_id = prediction.get("id") if isinstance(prediction, dict) else None
                if not prediction_id:
                    raise GenerationError("Video provider returned no prediction id")
                logger.info(f"Video prediction submitted: {prediction_id}")

                async def fetch_status(attempt: int) -> str | None:
                    response = await client.get(
                        f"{self.base_url}/predictions/{prediction_id}",
                        headers=self._headers(),
                    )
                    body = read_json(response, self.name)
                    if not isinstance(body, dict):
                        raise GenerationError("Video provider returned a malformed prediction")
                    status = body.get("status")
                    logger.debug(f"Video prediction {prediction_id} poll {attempt}: {status}")

                    match status:
                        case "succeeded":
                            return self._first_output(body.get("output"))
                        case "failed" | "canceled":
                            raise GenerationError(
                                f"Video prediction {prediction_id} {status}: {body.get('error')}"
                            )
                        case _:
                            return None

                url = await self.poll(fetch_status)
        except httpx.HTTPError as e:
            raise GenerationError(f"Video provider unreachable: {e}") from e

        return GenerationResult(url=url, media_kind=self.media_kind)

    @staticmethod
    def _first_output(output: object) -> str:
        if isinstance(output, str) and output:
            return output
        if isinstance(output, list) and output and isinstance(output[0], str):
            return output[0]
        raise GenerationError("Video prediction succeeded without an output URL")
