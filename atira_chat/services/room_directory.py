# atira_chat/services/room_directory.py
from __future__ import annotations

from typing import Any, Dict, FrozenSet, Hashable, List

from atira_chat.core.logging import get_logger

logger = get_logger(__name__)

Connection = Hashable


# ============================================================================
# ROOM DIRECTORY
# ============================================================================
class RoomDirectory:
    """
    In-memory map of live rooms to the connections subscribed to them.

    A room exists in the directory only while it has at least one member:
    removing the last member deletes the entry. Anonymous room ids are never
    reused, so without this their entries would pile up forever.

    Attributes:
        rooms: Dictionary mapping room_id -> set of connection handles

    Scaling:
        Membership is process-local. Multi-process deployments keep this
        class unchanged and route delivery through the Redis bridge, each
        process answering ``members_of`` for its own sockets only.
    """

    def __init__(self) -> None:
        self.rooms: Dict[str, set] = {}

    def ensure_room(self, room_id: str) -> None:
        """Create the room's member set if absent. No-op if present."""
        if room_id not in self.rooms:
            self.rooms[room_id] = set()
            logger.debug("Room %s created", room_id)

    def has_room(self, room_id: str) -> bool:
        return room_id in self.rooms

    def add_member(self, room_id: str, connection: Connection) -> int:
        """
        Subscribe a connection to a room, creating the room if needed.

        Returns:
            The room's member count after the add
        """
        self.ensure_room(room_id)
        self.rooms[room_id].add(connection)
        return len(self.rooms[room_id])

    def remove_member(self, room_id: str, connection: Connection) -> int:
        """
        Unsubscribe a connection from a room.

        Returns:
            The room's member count after the removal (0 means the room
            entry was garbage-collected)
        """
        members = self.rooms.get(room_id)
        if members is None:
            return 0
        members.discard(connection)
        if not members:
            del self.rooms[room_id]
            logger.debug("Room %s emptied and removed", room_id)
            return 0
        return len(members)

    def members_of(self, room_id: str) -> FrozenSet[Connection]:
        """Snapshot of a room's members; empty for unknown rooms."""
        return frozenset(self.rooms.get(room_id, ()))

    def member_count(self, room_id: str) -> int:
        return len(self.rooms.get(room_id, ()))

    def room_ids(self) -> List[str]:
        return list(self.rooms.keys())

    def get_rooms_info(self) -> Dict[str, Dict[str, Any]]:
        """
        Get information about all live rooms.

        Returns:
            Dict mapping room_id to {"member_count": n}

        Used by the /health and /metrics endpoints.
        """
        return {room_id: {"member_count": len(members)} for room_id, members in self.rooms.items()}
