"""Usage ledger: per-phone trial and subscription quotas."""

import logging
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from nabi.config import get_settings
from nabi.errors import QuotaExceeded, QuotaKind
from nabi.models.creation import Creation
from nabi.models.user import User

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    """Stored timestamps may come back naive (e.g. SQLite); treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class UsageLedger:
    """Service for checking and recording generation quotas."""

    def __init__(self) -> None:
        self.settings = get_settings()
        self.tz = ZoneInfo(self.settings.ledger_timezone)

    def today(self, now: datetime) -> date:
        """Calendar day of ``now`` in the ledger timezone."""
        return _as_utc(now).astimezone(self.tz).date()

    async def get_user(self, db: AsyncSession, phone: str) -> User | None:
        result = await db.execute(select(User).where(User.phone == phone))
        return result.scalar_one_or_none()

    async def get_or_create_user(self, db: AsyncSession, phone: str) -> User:
        """Look up a user by phone, inserting a fresh trial user if unseen."""
        user = await self.get_user(db, phone)
        if user:
            return user

        user = User(
            phone=phone,
            free_uses=self.settings.free_trial_uses,
            daily_uses=0,
        )
        db.add(user)
        try:
            await db.commit()
        except IntegrityError:
            # Another delivery for the same phone inserted first
            await db.rollback()
            user = await self.get_user(db, phone)
            if user is None:
                raise
            return user

        await db.refresh(user)
        logger.info(f"Created user {user.id} for {phone}")
        return user

    def is_subscribed(self, user: User, now: datetime) -> bool:
        return user.subscription_end is not None and _as_utc(now) < _as_utc(user.subscription_end)

    def _roll_daily(self, user: User, today: date) -> bool:
        """Reset the daily counter on the first use of a new day."""
        if user.last_use != today and user.daily_uses != 0:
            user.daily_uses = 0
            return True
        return False

    async def check_quota(self, db: AsyncSession, user: User, now: datetime) -> None:
        """Raise QuotaExceeded if the user may not start a paid generation."""
        if self.is_subscribed(user, now):
            if self._roll_daily(user, self.today(now)):
                await db.commit()
            if user.daily_uses >= self.settings.subscriber_daily_limit:
                raise QuotaExceeded(QuotaKind.DAILY)
            return

        if user.free_uses <= 0:
            raise QuotaExceeded(QuotaKind.TRIAL)

    async def record_usage(self, db: AsyncSession, user: User, now: datetime) -> None:
        """Count one fulfilled generation against the user's quota."""
        today = self.today(now)

        if self.is_subscribed(user, now):
            self._roll_daily(user, today)
            user.daily_uses += 1
        else:
            user.free_uses = max(0, user.free_uses - 1)

        user.last_use = today
        await db.commit()

    async def log_creation(self, db: AsyncSession, user: User, intent_type: str) -> Creation:
        """Append an audit row for a delivered generation."""
        creation = Creation(user_id=user.id, type=intent_type)
        db.add(creation)
        await db.commit()
        return creation

    async def register(self, db: AsyncSession, user: User, email: str) -> User:
        """Attach an email address. The value is stored as given."""
        user.email = email
        await db.commit()
        logger.info(f"User {user.id} registered an email")
        return user

    def usage_summary(self, user: User, now: datetime) -> dict:
        """Current quota position, for logs and replies."""
        subscribed = self.is_subscribed(user, now)
        daily_used = user.daily_uses if user.last_use == self.today(now) else 0

        return {
            "plan": "subscribed" if subscribed else "trial",
            "free_uses_remaining": user.free_uses,
            "daily_uses": daily_used if subscribed else None,
            "daily_remaining": (
                max(0, self.settings.subscriber_daily_limit - daily_used)
                if subscribed
                else None
            ),
        }


# Singleton instance
usage_ledger = UsageLedger()
