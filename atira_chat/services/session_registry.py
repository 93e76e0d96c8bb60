# atira_chat/services/session_registry.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Hashable, Iterator, List, Optional, Set

from atira_chat.models.models import Participant, ParticipantId, VerifiedIdentity

Connection = Hashable


@dataclass
class Session:
    """Bookkeeping for one live connection."""

    connection: Connection
    identity: Optional[VerifiedIdentity] = None
    participant: Optional[Participant] = None
    rooms: Set[str] = field(default_factory=set)


def _key(participant_id: ParticipantId) -> str:
    # Clients send ids as numbers or strings; compare them in one namespace
    return str(participant_id)


class SessionRegistry:
    """
    Per-connection participant and room bookkeeping for the relay.

    Data Structures:
        sessions: connection -> Session (participant + subscribed rooms)

        home_rooms: participant id -> the room that participant's own
                    messages go to when they do not name one
                    Example: {"7": "user_7", "anon-1718000000000-x1y2": "anon_..."}

    No routing decisions are made here.
    """

    def __init__(self) -> None:
        self.sessions: Dict[Connection, Session] = {}
        self.home_rooms: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self.sessions)

    def __contains__(self, connection: Connection) -> bool:
        return connection in self.sessions

    def register(self, connection: Connection, identity: Optional[VerifiedIdentity] = None) -> Session:
        session = Session(connection=connection, identity=identity)
        self.sessions[connection] = session
        return session

    def get(self, connection: Connection) -> Optional[Session]:
        return self.sessions.get(connection)

    def bind_participant(self, connection: Connection, participant: Participant) -> None:
        self.sessions[connection].participant = participant

    def participant_of(self, connection: Connection) -> Optional[Participant]:
        session = self.sessions.get(connection)
        return session.participant if session else None

    def track_room(self, connection: Connection, room_id: str) -> None:
        session = self.sessions.get(connection)
        if session is not None:
            session.rooms.add(room_id)

    def untrack_room(self, connection: Connection, room_id: str) -> None:
        session = self.sessions.get(connection)
        if session is not None:
            session.rooms.discard(room_id)

    def rooms_of(self, connection: Connection) -> Set[str]:
        session = self.sessions.get(connection)
        return set(session.rooms) if session else set()

    def forget(self, connection: Connection) -> Optional[Session]:
        """Drop a connection's session and return it for cleanup."""
        return self.sessions.pop(connection, None)

    def connections(self) -> Iterator[Connection]:
        return iter(list(self.sessions.keys()))

    def connections_of_participant(self, participant_id: ParticipantId) -> List[Connection]:
        wanted = _key(participant_id)
        return [
            s.connection
            for s in self.sessions.values()
            if s.participant is not None and _key(s.participant.id) == wanted
        ]

    def sessions_of_user(self, user_id: ParticipantId) -> List[Session]:
        """Sessions of a backing-store user, joined or only authenticated."""
        wanted = _key(user_id)
        found = []
        for s in self.sessions.values():
            if s.participant is not None:
                if _key(s.participant.id) == wanted:
                    found.append(s)
            elif s.identity is not None and _key(s.identity.id) == wanted:
                found.append(s)
        return found

    def set_home_room(self, participant_id: ParticipantId, room_id: str) -> None:
        self.home_rooms[_key(participant_id)] = room_id

    def home_room(self, participant_id: ParticipantId) -> Optional[str]:
        return self.home_rooms.get(_key(participant_id))

    def drop_home_room(self, participant_id: ParticipantId) -> None:
        self.home_rooms.pop(_key(participant_id), None)
