# atira_chat/api/websocket.py

from __future__ import annotations

import json
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from atira_chat.core import state
from atira_chat.services.auth_service import identity_from_token
from atira_chat.services.chat_relay import UnknownEventError

logger = logging.getLogger(__name__)

router = APIRouter()

# ============================================================================
# WEBSOCKET ENDPOINT
# ============================================================================

@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = None):
    """
    WebSocket endpoint for the real-time chat relay.

    Protocol:
    =========

    Client -> Server Frames:
    ------------------------
        {"action": "<event>", "data": {...}}

        joinChat              {"user": {...}}
        joinAnonymousChat     {"user": {"name": "Anon123"}}
        joinChatRoom          {"roomId": "user_7", "user": {...}}
        joinAdminChat         {"user": {...}}
        sendMessage           {"content": "...", "sender": {...}, "roomId": "..."?}
        sendAnonymousMessage  {"content": "...", "sender": {...}}
        adminSendToUser       {"content": "...", "targetRoomId": "...", "sender": {...}, "targetUserId": 7?}

    Server -> Client Frames:
    ------------------------
        {"type": "<event>", "data": ...}

        message              live message {id, room_id, content, sender, timestamp}
        loadMessages         history replay, chronological
        newUserChat          {user, roomId}   (admin_global only)
        newAnonymousUser     {user, roomId}   (admin_global only)
        connectedUsers       [sender, ...]
        anonymousChatJoined  {user, roomId}   (joiner only, after joinAnonymousChat)
        error                {code, message}

    Lifecycle:
    ==========
    1. Client connects, optionally with ?token=<bearer>
    2. Token verified; a bad token leaves the connection unauthenticated
    3. Client sends a join event, the relay binds its Participant
    4. Client sends messages; they are echoed back through the room fan-out
    5. On disconnect, automatically removed from all rooms

    Error Handling:
        - Invalid JSON / unknown action / bad payload: error frame, loop continues
        - Handler failures: logged, loop continues
        - Connection errors: cleanup and log
    """
    relay = state.get_relay()
    identity = identity_from_token(token)

    await websocket.accept()
    relay.connect(websocket, identity)

    try:
        while True:
            data = await websocket.receive_text()

            try:
                frame = json.loads(data)
            except json.JSONDecodeError:
                await _send_error(websocket, "invalid_json", "Invalid JSON")
                continue

            if not isinstance(frame, dict):
                await _send_error(websocket, "invalid_json", "Frame must be an object")
                continue

            action = frame.get("action")
            logger.debug(f"Websocket input: Action: {action}")

            if not isinstance(action, str):
                await _send_error(websocket, "unknown_action", f"Unknown action: {action}")
                continue

            try:
                await relay.handle_event(websocket, action, frame.get("data"))
            except UnknownEventError:
                await _send_error(websocket, "unknown_action", f"Unknown action: {action}")
            except ValidationError as e:
                await _send_error(websocket, "invalid_payload", f"Invalid payload for {action}: {e.error_count()} error(s)")
            except WebSocketDisconnect:
                raise
            except Exception as e:
                logger.exception("Handler error for %s: %s", action, e)

    except WebSocketDisconnect:
        relay.disconnect(websocket)
    except Exception as e:
        logger.error("WebSocket error: %s", e)
        relay.disconnect(websocket)


async def _send_error(websocket: WebSocket, code: str, message: str) -> None:
    await websocket.send_json({"type": "error", "data": {"code": code, "message": message}})
