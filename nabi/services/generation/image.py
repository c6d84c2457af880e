"""Text-to-image generation via the OpenAI images API."""

import logging

from openai import AsyncOpenAI, OpenAIError

from nabi.config import get_settings
from nabi.errors import GenerationError
from nabi.services.generation.base import GenerationAdapter, GenerationResult

settings = get_settings()
logger = logging.getLogger(__name__)


class ImageAdapter(GenerationAdapter):
    """Single synchronous request; the result is the first returned URL.

    Image edits reach this adapter as a folded text prompt (see
    IntentRouter.fold_edit_prompt), so ``source_image`` is not sent.
    """

    name = "image"
    media_kind = "image"

    def __init__(self, client: AsyncOpenAI | None = None) -> None:
        self.client = client or AsyncOpenAI(api_key=settings.openai_api_key)
        self.model = settings.image_model
        self.size = settings.image_size

    async def generate(self, prompt: str, source_image: str | None = None) -> GenerationResult:
        try:
            response = await self.client.images.generate(
                model=self.model,
                prompt=prompt,
                size=self.size,
                n=1,
            )
        except OpenAIError as e:
            raise GenerationError(f"Image generation failed: {e}") from e

        data = getattr(response, "data", None) or []
        url = getattr(data[0], "url", None) if data else None
        if not url:
            raise GenerationError("Image generation returned no URL")

        logger.info(f"Generated image [model={self.model}]")
        return GenerationResult(url=url, media_kind=self.media_kind)
