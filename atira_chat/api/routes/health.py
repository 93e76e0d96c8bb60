# atira_chat/api/routes/health.py

from fastapi import APIRouter

from atira_chat.core import state

router = APIRouter()

@router.get("/health")
async def health():
    """
    Health check endpoint.

    Returns current system status, connection counts, and room counts.
    Used by container health probes and monitoring.

    Returns:
        dict: Status, connection count, live room count
    """
    relay = state.get_relay()
    return {
        "status": "healthy",
        "connections": len(relay.sessions),
        "active_rooms_with_members": len(relay.directory.rooms),
    }
