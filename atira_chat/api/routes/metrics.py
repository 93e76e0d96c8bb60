# atira_chat/api/routes/metrics.py
from datetime import datetime, timezone

from fastapi import APIRouter

from atira_chat.core import state
from atira_chat.models.models import ADMIN_ROOM_ID, ANON_ROOM_PREFIX, USER_ROOM_PREFIX

router = APIRouter()

@router.get("/metrics")
async def get_metrics():
    """
    Relay traffic and capacity metrics.

    Returns:
        dict: Message statistics (relayed, dropped, rate), live connections,
        live rooms broken down by room kind, and admin listener count.

    Example Response:
        {
            "total_messages": 120,
            "dropped_messages": 1,
            "messages_per_second": 0.02,
            "concurrent_connections": 14,
            "active_rooms_with_members": 9,
            "rooms_by_kind": {"admin": 1, "user": 5, "anonymous": 3},
            "admin_listeners": 2
        }
    """
    relay = state.get_relay()
    uptime_seconds = (datetime.now(timezone.utc) - state.app_start_time).total_seconds()

    if uptime_seconds > 0:
        messages_per_second = relay.message_counter / uptime_seconds
    else:
        messages_per_second = 0

    room_ids = relay.directory.room_ids()

    return {
        # Statistics
        "total_messages": relay.message_counter,
        "dropped_messages": relay.dropped_counter,
        "uptime_hours": round(uptime_seconds / 3600, 2) if uptime_seconds > 0 else 0,
        "messages_per_second": round(messages_per_second, 2),

        # Capacity
        "concurrent_connections": len(relay.sessions),
        "active_rooms_with_members": len(room_ids),
        "rooms_by_kind": {
            "admin": sum(1 for r in room_ids if r == ADMIN_ROOM_ID),
            "user": sum(1 for r in room_ids if r.startswith(USER_ROOM_PREFIX)),
            "anonymous": sum(1 for r in room_ids if r.startswith(ANON_ROOM_PREFIX)),
        },
        "admin_listeners": relay.directory.member_count(ADMIN_ROOM_ID),
    }
