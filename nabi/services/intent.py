"""Intent routing: keyword rules or LLM classification."""

import json
import logging
import re

from openai import AsyncOpenAI, OpenAIError
from pydantic import ValidationError

from nabi.config import get_settings
from nabi.errors import ClassificationError, GenerationError
from nabi.schemas.intent import IntentDecision, IntentType, LLMIntentReply

settings = get_settings()
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Vocabularies (Hebrew and English), matched as whole words on lowercased text
# ---------------------------------------------------------------------------
MOTION_WORDS = (
    "תזיז", "תזיזי", "תזיזו", "להזיז", "תזוז", "אנימציה", "תנפיש", "תנפישי", "להנפיש",
    "תחיה", "וידאו", "סרטון", "animate", "animation", "make it move", "video",
)
DECORATION_WORDS = (
    "ברכה", "כיתוב", "תכתוב", "לכתוב", "מסגרת", "קישוט", "לקשט", "יום הולדת", "מזל טוב",
    "greeting", "caption", "frame", "decorate", "birthday",
)
SONG_WORDS = ("שיר", "שירים", "מנגינה", "לחן", "song", "songs", "sing", "music")
IMAGE_WORDS = (
    "תמונה", "תמונת", "ציור", "תצייר", "לצייר",
    "image", "picture", "photo", "draw",
)
VIDEO_WORDS = ("סרטון", "וידאו", "קליפ", "video", "clip")
MUSIC_STYLES = (
    "היפ הופ", "פופ", "רוק", "ראפ", "מזרחית", "מזרחי", "ג'אז", "בלוז", "רגאיי", "קאנטרי",
    "אלקטרוני", "hip hop", "pop", "rock", "rap", "jazz", "blues", "reggae", "country",
    "electronic",
)

# One attached Hebrew prefix letter (the, and, to, in, that, from, as)
HEBREW_PREFIX = "[הובלשמכ]?"


def _vocabulary(words: tuple[str, ...]) -> re.Pattern:
    """Whole-word matcher; the longest alternative wins."""
    alternatives = "|".join(re.escape(word) for word in sorted(words, key=len, reverse=True))
    return re.compile(rf"(?<!\w){HEBREW_PREFIX}({alternatives})(?!\w)")


MOTION_RE = _vocabulary(MOTION_WORDS)
DECORATION_RE = _vocabulary(DECORATION_WORDS)
SONG_RE = _vocabulary(SONG_WORDS)
IMAGE_RE = _vocabulary(IMAGE_WORDS)
VIDEO_RE = _vocabulary(VIDEO_WORDS)
STYLE_RE = _vocabulary(MUSIC_STYLES)

# ---------------------------------------------------------------------------
# Prompt templates and fixed replies
# ---------------------------------------------------------------------------
ANIMATE_TEMPLATE = (
    "Animate the people from the photo in a natural, realistic way. "
    "Keep their faces and the scene faithful to the original. Requested motion: {text}"
)
DECORATE_TEMPLATE = (
    "Recreate the photo faithfully and add the requested text or decoration on it: {text}. "
    "Render any Hebrew text correctly, right to left."
)
STYLIZE_TEMPLATE = (
    "Recreate the photo according to this request: {text}. "
    "Keep the main subjects recognizable."
)
SONG_TEMPLATE = "An original song with Hebrew lyrics about: {text}"
IMAGE_TEMPLATE = "A high quality, detailed image: {text}"
EDIT_FOLD_TEMPLATE = (
    "{description}\n\n"
    "Recreate the image described above as closely as possible, with this change: {request}"
)

IMAGE_WITHOUT_TEXT_QUESTION = (
    "קיבלתי את התמונה! 📸 מה תרצו שאעשה איתה? "
    "אפשר להנפיש אותה לסרטון, להוסיף ברכה או כיתוב, או לעצב אותה מחדש."
)
MENU_QUESTION = (
    "היי! אני נאבי 🧞‍♂️ אני יכול ליצור בשבילכם:\n"
    "🎵 שיר\n🖼️ תמונה\n🎬 סרטון מתמונה\n"
    "מה תרצו?"
)
CLASSIFIER_FALLBACK_REPLY = "סליחה, משהו השתבש אצלי 🙏 נסו לשלוח שוב בעוד רגע."

CLASSIFIER_SYSTEM_PROMPT = """You are Nabi, a friendly WhatsApp assistant that creates songs, images and videos.
Classify the user's latest message and answer with ONE JSON object and nothing else:
{"type": "<chat|song|image|image_edit|video|question>", "prompt": "<string or null>", "response": "<string or null>"}

Rules:
- "song": the user wants a song. "prompt" is an English description for a music model; ask for Hebrew lyrics and keep any musical style the user named.
- "image": the user wants a new picture and did not attach one. "prompt" is a detailed English image prompt.
- "image_edit": the user attached (or previously sent) a photo and wants it changed, decorated or restyled. "prompt" is the requested change in English.
- "video": the user wants a photo animated. "prompt" is an English motion description.
- "question": the request is unclear; "response" is a short clarifying question in Hebrew.
- "chat": small talk or anything else; "response" is a short, warm reply in Hebrew.
Never include other keys. Use null for the field that does not apply."""

DESCRIBE_IMAGE_PROMPT = (
    "Describe this photo in detail so an image model can recreate it: people "
    "(age, clothing, pose, expression), setting, lighting, colors and composition. "
    "Answer in English, one paragraph."
)


def _mentions(text: str, vocabulary: re.Pattern) -> bool:
    return vocabulary.search(text) is not None


def _find_style(text: str) -> str | None:
    match = STYLE_RE.search(text)
    return match.group(1) if match else None


def classify_by_keywords(text: str, has_image: bool) -> IntentDecision:
    """Deterministic routing; rules are evaluated top to bottom."""
    raw = (text or "").strip()
    lowered = raw.lower()

    if has_image:
        if not raw:
            return IntentDecision(IntentType.QUESTION, reply=IMAGE_WITHOUT_TEXT_QUESTION)
        if _mentions(lowered, MOTION_RE):
            return IntentDecision(IntentType.VIDEO, prompt=ANIMATE_TEMPLATE.format(text=raw))
        if _mentions(lowered, DECORATION_RE):
            return IntentDecision(IntentType.IMAGE_EDIT, prompt=DECORATE_TEMPLATE.format(text=raw))
        return IntentDecision(IntentType.IMAGE_EDIT, prompt=STYLIZE_TEMPLATE.format(text=raw))

    if _mentions(lowered, SONG_RE):
        prompt = SONG_TEMPLATE.format(text=raw)
        style = _find_style(lowered)
        if style:
            prompt += f". Musical style: {style}"
        return IntentDecision(IntentType.SONG, prompt=prompt)

    if _mentions(lowered, IMAGE_RE):
        return IntentDecision(IntentType.IMAGE, prompt=IMAGE_TEMPLATE.format(text=raw))

    if _mentions(lowered, VIDEO_RE):
        # Text-only video has no provider; the pipeline answers with a limitation message
        return IntentDecision(IntentType.VIDEO, prompt=raw)

    return IntentDecision(IntentType.QUESTION, reply=MENU_QUESTION)


class IntentRouter:
    """Maps an inbound message to an IntentDecision. Never raises."""

    def __init__(self, client: AsyncOpenAI | None = None, mode: str | None = None) -> None:
        self.client = client or AsyncOpenAI(api_key=settings.openai_api_key)
        self.mode = (mode or settings.router_mode).lower()
        self.model = settings.llm_model
        self.vision_model = settings.vision_model
        self.max_turns = settings.history_max_turns

    async def route(
        self,
        text: str,
        has_image: bool,
        history: list[dict[str, str]] | None = None,
    ) -> IntentDecision:
        """Classify one message, degrading to an apologetic chat reply on failure."""
        if has_image and not (text or "").strip():
            return IntentDecision(IntentType.QUESTION, reply=IMAGE_WITHOUT_TEXT_QUESTION)

        try:
            if self.mode == "keyword":
                return classify_by_keywords(text, has_image)
            return await self._classify_with_llm(text, has_image, history or [])
        except ClassificationError as e:
            logger.warning(f"Intent classification failed: {e}")
        except Exception:
            logger.exception("Unexpected error while routing intent")

        return IntentDecision(IntentType.CHAT, reply=CLASSIFIER_FALLBACK_REPLY)

    async def _classify_with_llm(
        self,
        text: str,
        has_image: bool,
        history: list[dict[str, str]],
    ) -> IntentDecision:
        messages: list[dict] = [{"role": "system", "content": CLASSIFIER_SYSTEM_PROMPT}]
        messages.extend(history[-self.max_turns:])
        messages.append({
            "role": "user",
            "content": f"[has_image: {'true' if has_image else 'false'}]\n{text}",
        })

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                response_format={"type": "json_object"},
                temperature=0.2,
            )
        except OpenAIError as e:
            raise ClassificationError(f"LLM request failed: {e}") from e

        content = response.choices[0].message.content or ""
        try:
            reply = LLMIntentReply.model_validate(json.loads(content))
        except json.JSONDecodeError as e:
            raise ClassificationError("LLM reply is not JSON") from e
        except ValidationError as e:
            raise ClassificationError(f"LLM reply violates schema: {e}") from e

        return self._to_decision(reply)

    @staticmethod
    def _to_decision(reply: LLMIntentReply) -> IntentDecision:
        if reply.type in (IntentType.CHAT, IntentType.QUESTION):
            if not (reply.response or "").strip():
                raise ClassificationError(f"'{reply.type.value}' reply without response")
            return IntentDecision(reply.type, reply=reply.response.strip())

        if not (reply.prompt or "").strip():
            raise ClassificationError(f"'{reply.type.value}' reply without prompt")
        return IntentDecision(reply.type, prompt=reply.prompt.strip())

    async def describe_image(self, image_data_uri: str) -> str:
        """Vision pass used by recreate-then-modify image edits."""
        try:
            response = await self.client.chat.completions.create(
                model=self.vision_model,
                messages=[{
                    "role": "user",
                    "content": [
                        {"type": "text", "text": DESCRIBE_IMAGE_PROMPT},
                        {"type": "image_url", "image_url": {"url": image_data_uri}},
                    ],
                }],
                max_tokens=400,
            )
        except OpenAIError as e:
            raise GenerationError(f"Image description failed: {e}") from e

        description = (response.choices[0].message.content or "").strip()
        if not description:
            raise GenerationError("Image description came back empty")
        return description

    @staticmethod
    def fold_edit_prompt(description: str, request: str) -> str:
        return EDIT_FOLD_TEMPLATE.format(description=description, request=request)


# Singleton instance
intent_router = IntentRouter()
