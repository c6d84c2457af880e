"""Webhook pipeline: message intake, quota, routing, generation and relay."""

import base64
import logging
import re
from datetime import datetime, timezone
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from nabi.config import get_settings
from nabi.database import async_session_maker
from nabi.errors import (
    GenerationError,
    GenerationTimeout,
    InvalidPayloadError,
    MediaResolutionError,
    QuotaExceeded,
    QuotaKind,
)
from nabi.models.user import User
from nabi.schemas.intent import IntentDecision, IntentType
from nabi.schemas.whatsapp import InboundMessage, parse_inbound
from nabi.services.conversation import ConversationCache, ConversationContext, conversation_cache
from nabi.services.generation import GenerationAdapter, ImageAdapter, SongAdapter, VideoAdapter
from nabi.services.intent import IntentRouter, intent_router
from nabi.services.ledger import UsageLedger, usage_ledger
from nabi.services.relay import WhatsAppRelay, whatsapp_relay

settings = get_settings()
logger = logging.getLogger(__name__)

REGISTER_RE = re.compile(r"^register(?:\s+(\S+))?\s*$", re.IGNORECASE)

# ---------------------------------------------------------------------------
# User-facing replies
# ---------------------------------------------------------------------------
TRIAL_EXHAUSTED_REPLY = (
    "נגמרו {limit} היצירות החינמיות שלכם 🎁\n"
    "כדי להמשיך ליצור: שלחו register ואת כתובת המייל שלכם, ואחר כך pay לקבלת קישור לתשלום."
)
DAILY_LIMIT_REPLY = "הגעתם למכסה היומית של {limit} יצירות 🌙 נתראה מחר!"
REGISTERED_REPLY = "נרשמתם בהצלחה עם {email} ✅\nשלחו pay כדי לקבל קישור לתשלום."
REGISTER_USAGE_REPLY = "כדי להירשם שלחו register ואת כתובת המייל, למשל: register name@example.com"
PAY_NEEDS_EMAIL_REPLY = "קודם צריך להירשם: שלחו register ואת כתובת המייל שלכם."
PAY_LINK_REPLY = "הנה הקישור לתשלום 💳\n{url}"
PAY_UNAVAILABLE_REPLY = "התשלום עדיין לא זמין, נסו שוב מאוחר יותר."
VIDEO_NEEDS_IMAGE_REPLY = "כרגע אני יודע ליצור סרטון רק מתמונה 🎬 שלחו תמונה ותכתבו איך להזיז אותה."
EDIT_NEEDS_IMAGE_REPLY = "שלחו לי את התמונה שתרצו שאעבוד עליה 📸"
STILL_WORKING_REPLY = (
    "היצירה לוקחת יותר זמן מהרגיל ⏳ "
    "נסו לשלוח את הבקשה שוב בעוד כמה דקות."
)

WORKING_REPLIES = {
    IntentType.SONG: "🎵 מלחין לכם שיר... זה לוקח בערך דקה-שתיים",
    IntentType.IMAGE: "🎨 מצייר בשבילכם...",
    IntentType.IMAGE_EDIT: "🎨 עובד על התמונה...",
    IntentType.VIDEO: "🎬 מכין סרטון... זה יכול לקחת כמה דקות",
}
APOLOGY_REPLIES = {
    IntentType.SONG: "סליחה, לא הצלחתי ליצור את השיר הפעם 😔 נסו שוב.",
    IntentType.IMAGE: "סליחה, לא הצלחתי ליצור את התמונה 😔 נסו לנסח אחרת.",
    IntentType.IMAGE_EDIT: "סליחה, לא הצלחתי לעבוד על התמונה 😔 נסו לשלוח אותה שוב.",
    IntentType.VIDEO: "סליחה, לא הצלחתי ליצור את הסרטון 😔 נסו שוב.",
}


class WebhookPipeline:
    """Processes one webhook delivery end to end.

    Usage is recorded, and the creation logged, only after the generated
    media was handed to WhatsApp successfully. Chat replies, questions and
    command replies are free.
    """

    def __init__(
        self,
        relay: WhatsAppRelay | None = None,
        router: IntentRouter | None = None,
        ledger: UsageLedger | None = None,
        conversations: ConversationCache | None = None,
        adapters: dict[IntentType, GenerationAdapter] | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self.relay = whatsapp_relay if relay is None else relay
        self.router = intent_router if router is None else router
        self.ledger = usage_ledger if ledger is None else ledger
        self.conversations = conversation_cache if conversations is None else conversations
        self.session_factory = async_session_maker if session_factory is None else session_factory

        if adapters is None:
            image = ImageAdapter()
            adapters = {
                IntentType.SONG: SongAdapter(),
                IntentType.IMAGE: image,
                IntentType.IMAGE_EDIT: image,
                IntentType.VIDEO: VideoAdapter(),
            }
        self.adapters = adapters

    @staticmethod
    def now() -> datetime:
        return datetime.now(timezone.utc)

    async def handle(self, payload: dict) -> None:
        """Process a webhook body that has already been acknowledged."""
        try:
            inbound = parse_inbound(payload)
        except InvalidPayloadError as e:
            logger.warning(f"Ignoring malformed webhook payload: {e}")
            return

        if inbound is None:
            logger.info("No user message in webhook (probably a status update)")
            return

        logger.info(f"Incoming {inbound.kind} message {inbound.message_id} from {inbound.sender}")

        image_url: str | None = None
        if inbound.has_image:
            try:
                image_url = await self.relay.fetch_media_url(inbound.media_id)
            except MediaResolutionError as e:
                logger.error(f"Dropping message {inbound.message_id}: {e}")
                return

        now = self.now()

        # The session is closed before routing so no connection is held
        # while providers are polled.
        async with self.session_factory() as db:
            user = await self.ledger.get_or_create_user(db, inbound.sender)

            if await self._handle_command(db, user, inbound):
                return

            try:
                await self.ledger.check_quota(db, user, now)
            except QuotaExceeded as e:
                quota_kind = e.kind
            else:
                quota_kind = None

        if quota_kind is not None:
            logger.info(f"Quota exceeded for user {user.id}: {quota_kind.value}")
            await self.relay.send_text(inbound.sender, self._quota_reply(quota_kind))
            return

        context = self.conversations.get(inbound.sender)
        if image_url:
            context.last_media_url = image_url

        decision = await self.router.route(
            inbound.text,
            has_image=inbound.has_image,
            history=context.turns(),
        )
        logger.info(f"Intent for {inbound.message_id}: {decision.type.value}")
        context.add_turn("user", inbound.text)

        if decision.is_informational:
            await self.relay.send_text(inbound.sender, decision.reply or "")
            context.add_turn("assistant", decision.reply or "")
            return

        await self._fulfil(user, inbound, decision, context, image_url, now)

    async def _handle_command(self, db: AsyncSession, user: User, inbound: InboundMessage) -> bool:
        """Handle ``register <email>`` and ``pay``. Returns True if handled."""
        text = inbound.text.strip()

        match = REGISTER_RE.match(text)
        if match:
            email = match.group(1)
            if not email:
                await self.relay.send_text(inbound.sender, REGISTER_USAGE_REPLY)
                return True
            await self.ledger.register(db, user, email)
            await self.relay.send_text(inbound.sender, REGISTERED_REPLY.format(email=email))
            return True

        if text.lower() == "pay":
            await self.relay.send_text(inbound.sender, self._payment_reply(user))
            return True

        return False

    def _payment_reply(self, user: User) -> str:
        if not user.email:
            return PAY_NEEDS_EMAIL_REPLY
        if not settings.payment_url:
            return PAY_UNAVAILABLE_REPLY
        query = urlencode({"phone": user.phone, "email": user.email})
        separator = "&" if "?" in settings.payment_url else "?"
        return PAY_LINK_REPLY.format(url=f"{settings.payment_url}{separator}{query}")

    @staticmethod
    def _quota_reply(kind: QuotaKind) -> str:
        if kind == QuotaKind.DAILY:
            return DAILY_LIMIT_REPLY.format(limit=settings.subscriber_daily_limit)
        return TRIAL_EXHAUSTED_REPLY.format(limit=settings.free_trial_uses)

    async def _fulfil(
        self,
        user: User,
        inbound: InboundMessage,
        decision: IntentDecision,
        context: ConversationContext,
        image_url: str | None,
        now: datetime,
    ) -> None:
        source_url = image_url
        if source_url is None and self.router.mode != "keyword":
            # Keyword rules cannot tell a follow-up about an earlier photo
            # from a text-to-video request, so only the LLM router reuses it.
            source_url = context.last_media_url
        needs_image = decision.type in (IntentType.IMAGE_EDIT, IntentType.VIDEO)

        if needs_image and not source_url:
            reply = (
                VIDEO_NEEDS_IMAGE_REPLY
                if decision.type == IntentType.VIDEO
                else EDIT_NEEDS_IMAGE_REPLY
            )
            await self.relay.send_text(inbound.sender, reply)
            context.add_turn("assistant", reply)
            return

        await self.relay.send_text(inbound.sender, WORKING_REPLIES[decision.type])

        try:
            result = await self._generate(decision, source_url if needs_image else None)
        except GenerationTimeout as e:
            logger.warning(f"Generation timed out for user {user.id}: {e}")
            await self.relay.send_text(inbound.sender, STILL_WORKING_REPLY)
            return
        except (GenerationError, MediaResolutionError) as e:
            logger.error(f"Generation failed for user {user.id}: {e}")
            await self.relay.send_text(inbound.sender, APOLOGY_REPLIES[decision.type])
            return

        delivered = await self.relay.send_media(inbound.sender, result.media_kind, result.url)
        if not delivered:
            logger.error(f"Could not deliver {result.media_kind} to user {user.id}; usage not recorded")
            return

        context.add_turn("assistant", f"[sent {result.media_kind}]")

        async with self.session_factory() as db:
            account = await db.get(User, user.id)
            if account is None:
                logger.error(f"User {user.id} disappeared before usage was recorded")
                return
            await self.ledger.record_usage(db, account, now)
            await self.ledger.log_creation(db, account, decision.type.value)
            summary = self.ledger.usage_summary(account, now)

        logger.info(f"Delivered {decision.type.value} to user {user.id}: {summary}")

    async def _generate(self, decision: IntentDecision, source_url: str | None):
        adapter = self.adapters[decision.type]
        prompt = decision.prompt or ""

        if decision.type == IntentType.IMAGE_EDIT:
            image = await self._load_image(source_url)
            description = await self.router.describe_image(image)
            return await adapter.generate(self.router.fold_edit_prompt(description, prompt))

        if decision.type == IntentType.VIDEO:
            image = await self._load_image(source_url)
            return await adapter.generate(prompt, source_image=image)

        return await adapter.generate(prompt)

    async def _load_image(self, url: str) -> str:
        """Download a WhatsApp image and inline it as a data URI for providers."""
        content = await self.relay.download_media(url)
        encoded = base64.b64encode(content).decode("ascii")
        return f"data:image/jpeg;base64,{encoded}"


# Global instance
webhook_pipeline = WebhookPipeline()
