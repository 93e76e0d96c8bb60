# atira_chat/api/routes/root.py

from fastapi import APIRouter

from atira_chat import __version__

router = APIRouter()


@router.get("/")
async def root():
    """
    Root endpoint - API information.

    Returns basic info about the API and its features.
    """
    return {
        "message": "Atira Chat Relay",
        "version": __version__,
        "features": ["registered_chat", "anonymous_chat", "admin_global_view", "history_replay"],
        "endpoints": {
            "websocket": "/ws",
            "chat_history": "/api/chat-history",
            "active_users": "/api/chat-active-users",
            "health": "/health",
            "metrics": "/metrics",
        },
    }
