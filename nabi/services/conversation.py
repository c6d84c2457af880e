"""Process-local conversation memory with LRU and TTL eviction."""

import time
from collections import OrderedDict, deque
from dataclasses import dataclass, field

from nabi.config import get_settings

settings = get_settings()


@dataclass
class ConversationContext:
    """Recent turns and the last image one user sent."""

    history: deque = field(default_factory=deque)
    last_media_url: str | None = None
    touched_at: float = field(default_factory=time.monotonic)

    def add_turn(self, role: str, content: str) -> None:
        if content:
            self.history.append({"role": role, "content": content})

    def turns(self) -> list[dict[str, str]]:
        return list(self.history)


class ConversationCache:
    """Bounded map of phone -> ConversationContext.

    Entries idle for longer than ``ttl_seconds`` are dropped on access, and
    the least recently used entry is evicted once ``max_entries`` is reached.
    Contents do not survive a restart.
    """

    def __init__(
        self,
        max_entries: int | None = None,
        ttl_seconds: float | None = None,
        max_turns: int | None = None,
        clock=time.monotonic,
    ) -> None:
        self.max_entries = max_entries or settings.conversation_cache_size
        self.ttl_seconds = ttl_seconds or settings.conversation_ttl_seconds
        self.max_turns = max_turns or settings.history_max_turns
        self._clock = clock
        self._entries: OrderedDict[str, ConversationContext] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, phone: str) -> ConversationContext:
        """Return the live context for ``phone``, creating it if needed."""
        now = self._clock()
        context = self._entries.get(phone)

        if context is not None and now - context.touched_at > self.ttl_seconds:
            del self._entries[phone]
            context = None

        if context is None:
            context = ConversationContext(
                history=deque(maxlen=self.max_turns),
                touched_at=now,
            )
            self._entries[phone] = context
            self._evict_lru()
        else:
            context.touched_at = now
            self._entries.move_to_end(phone)

        return context

    def _evict_lru(self) -> None:
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)


# Global instance
conversation_cache = ConversationCache()
