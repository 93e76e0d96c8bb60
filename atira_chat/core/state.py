# atira_chat/core/state.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from atira_chat.services.chat_relay import ChatRelay
    from atira_chat.services.message_store import MessageStore
    from atira_chat.services.redis_pub_sub import AsyncRedisPubSubService

# Process-wide handles, set once at application startup
relay: Optional["ChatRelay"] = None
store: Optional["MessageStore"] = None
redis_service: Optional["AsyncRedisPubSubService"] = None

app_start_time: datetime = datetime.now(timezone.utc)


def get_relay() -> "ChatRelay":
    if relay is None:
        raise RuntimeError("Chat relay not initialised; application startup has not run")
    return relay


def get_store() -> "MessageStore":
    if store is None:
        raise RuntimeError("Message store not initialised; application startup has not run")
    return store
