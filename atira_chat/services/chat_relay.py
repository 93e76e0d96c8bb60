# atira_chat/services/chat_relay.py

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Dict, Hashable, Iterable, List, Optional, Tuple, Type

from pydantic import BaseModel

from atira_chat.core.logging import get_logger
from atira_chat.models.models import (
    ADMIN_ROOM_ID,
    USER_ROOM_PREFIX,
    AdminSendToUserPayload,
    ChatMessage,
    DeclaredUser,
    JoinChatRoomPayload,
    JoinPayload,
    Participant,
    ParticipantKind,
    Sender,
    SendAnonymousMessagePayload,
    SendMessagePayload,
    wire,
)
from atira_chat.services.identity import ConnectionContext, IdentityResolver, mint_anonymous_room_id
from atira_chat.services.message_store import MessageStore
from atira_chat.services.room_directory import RoomDirectory
from atira_chat.services.session_registry import Session, SessionRegistry

if TYPE_CHECKING:
    from atira_chat.models.models import VerifiedIdentity
    from atira_chat.services.redis_pub_sub import AsyncRedisPubSubService

logger = get_logger(__name__)

Connection = Hashable


class UnknownEventError(KeyError):
    """Raised for an inbound event name the relay does not handle."""


# ============================================================================
# CHAT RELAY
# ============================================================================

class ChatRelay:
    """
    Routing engine of the chat: joins, replays, persists and fans out.

    One instance per process owns all live state (room directory and
    session registry). Connection handles are opaque to the relay; the
    only thing it needs from them is ``await connection.send_json(dict)``.
    Every outbound frame is ``{"type": <event>, "data": <payload>}``.

    Per-connection states:
        Connected   - registered, maybe with a verified identity
        Identified  - a Participant is bound (first join event)
        InRoom      - subscribed to one or more rooms
        Disconnected

    Fan-out rule:
        A message goes to every member of its room. When the sender is
        not an admin and the room is not ``admin_global`` it ALSO goes to
        every member of ``admin_global``. The two member sets are unioned,
        so an admin subscribed to both receives the message once.

    Delivery contract:
        At-most-once. Persistence failures are logged and the message is
        dropped; the sender only learns of success through its own echo.
    """

    EVENTS: Dict[str, Tuple[Type[BaseModel], str]] = {
        "joinChat": (JoinPayload, "join_chat"),
        "joinAnonymousChat": (JoinPayload, "join_anonymous_chat"),
        "joinChatRoom": (JoinChatRoomPayload, "join_chat_room"),
        "joinAdminChat": (JoinPayload, "join_admin_chat"),
        "sendMessage": (SendMessagePayload, "send_message"),
        "sendAnonymousMessage": (SendAnonymousMessagePayload, "send_anonymous_message"),
        "adminSendToUser": (AdminSendToUserPayload, "admin_send_to_user"),
    }

    def __init__(
        self,
        store: MessageStore,
        *,
        directory: Optional[RoomDirectory] = None,
        sessions: Optional[SessionRegistry] = None,
        resolver: Optional[IdentityResolver] = None,
        pubsub: Optional["AsyncRedisPubSubService"] = None,
        max_content_length: int = 500,
        history_limit: int = 0,
        emit_rejections: bool = False,
        room_id_factory: Callable[[], str] = mint_anonymous_room_id,
    ) -> None:
        self.store = store
        self.directory = directory or RoomDirectory()
        self.sessions = sessions or SessionRegistry()
        self.resolver = resolver or IdentityResolver()
        self.pubsub = pubsub
        self.max_content_length = max_content_length
        self.history_limit = history_limit
        self.emit_rejections = emit_rejections
        self.room_id_factory = room_id_factory

        # Metrics
        self.message_counter = 0
        self.dropped_counter = 0

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def connect(self, connection: Connection, identity: Optional["VerifiedIdentity"] = None) -> None:
        """
        Register a new connection.

        Args:
            connection: Transport handle (must be hashable, must have send_json)
            identity: Verified token claims, or None for unauthenticated clients

        Note:
            The connection is not joined to any room. The Participant is
            resolved by the first join event.
        """
        self.sessions.register(connection, identity)
        who = f"user {identity.id}" if identity else "guest"
        logger.info("✓ %s connected. Total: %d", who, len(self.sessions))

    def disconnect(self, connection: Connection) -> None:
        """
        Tear down a connection from any state.

        Cleanup:
            1. Remove from every room it was a member of (empty rooms are GC'd)
            2. Drop the session
            3. Drop the participant's own-room mapping when no other
               connection of theirs remains (always, for anonymous)

        Remaining room members are not notified.
        """
        session = self.sessions.forget(connection)
        if session is None:
            return

        for room_id in session.rooms:
            self.directory.remove_member(room_id, connection)

        participant = session.participant
        if participant is not None:
            if participant.is_anonymous or not self.sessions.connections_of_participant(participant.id):
                self.sessions.drop_home_room(participant.id)

        name = participant.display_name if participant else "Unknown"
        logger.info("✗ %s disconnected. Total: %d", name, len(self.sessions))

    async def handle_event(self, connection: Connection, action: str, data: Any) -> None:
        """
        Dispatch one inbound event.

        Raises:
            UnknownEventError: ``action`` is not a relay event
            pydantic.ValidationError: ``data`` does not match the event payload
        """
        if action not in self.EVENTS:
            raise UnknownEventError(action)
        model, handler_name = self.EVENTS[action]
        payload = model.model_validate(data or {})

        if connection not in self.sessions:
            return  # Connection already closed

        await getattr(self, handler_name)(connection, payload)

    # ------------------------------------------------------------------
    # Join events
    # ------------------------------------------------------------------

    async def join_chat(self, connection: Connection, payload: JoinPayload) -> None:
        """Registered user joins ``user_<id>``; admin joins ``admin_global``."""
        session = self.sessions.get(connection)
        participant = self._verified_participant(session, payload.user)
        if participant is None:
            await self._reject(connection, "joinChat", "verified identity required")
            return

        if participant.is_admin:
            room_id = ADMIN_ROOM_ID
        else:
            room_id = f"{USER_ROOM_PREFIX}{participant.id}"
            self.sessions.set_home_room(participant.id, room_id)
        self._subscribe(connection, room_id)
        logger.info("→ %s joined '%s' (%d members)", participant.display_name, room_id, self.directory.member_count(room_id))

        if not participant.is_admin:
            await self._fanout(
                [ADMIN_ROOM_ID],
                "newUserChat",
                {"user": wire(participant.as_sender()), "roomId": room_id},
            )

        await self._send(connection, "connectedUsers", self._room_participants(room_id))
        await self._replay(connection, room_id)

    async def join_anonymous_chat(self, connection: Connection, payload: JoinPayload) -> None:
        """
        Anonymous guest gets a freshly minted ``anon_*`` room. No replay.

        The joiner is told its server-assigned sender and room through an
        ``anonymousChatJoined`` frame, so it can recognise its own echoes.
        Connections holding a verified token must use ``joinChat`` instead.
        """
        session = self.sessions.get(connection)
        if session.identity is not None:
            await self._reject(connection, "joinAnonymousChat", "verified connection must use joinChat")
            return

        participant = session.participant
        if participant is None:
            participant = self.resolver.resolve(ConnectionContext(identity=session.identity, declared=payload.user))
            if participant is None:
                await self._reject(connection, "joinAnonymousChat", "display name required")
                return
            self.sessions.bind_participant(connection, participant)

        room_id = self.sessions.home_room(participant.id)
        if room_id is not None:
            # Same connection joining again keeps its room
            self._subscribe(connection, room_id)
            await self._send_anonymous_session(connection, participant, room_id)
            return

        room_id = self.room_id_factory()
        while self.directory.has_room(room_id):
            room_id = self.room_id_factory()
        self.sessions.set_home_room(participant.id, room_id)
        self._subscribe(connection, room_id)
        logger.info("→ Anonymous %s joined '%s'", participant.display_name, room_id)

        await self._send_anonymous_session(connection, participant, room_id)
        await self._fanout(
            [ADMIN_ROOM_ID],
            "newAnonymousUser",
            {"user": wire(participant.as_sender()), "roomId": room_id},
        )

    async def join_chat_room(self, connection: Connection, payload: JoinChatRoomPayload) -> None:
        """Admin opens an existing room, in addition to the rooms it already holds."""
        session = self.sessions.get(connection)
        participant = self._verified_participant(session, payload.user)
        if participant is None or not participant.is_admin:
            await self._reject(connection, "joinChatRoom", "admin only")
            return

        self._subscribe(connection, payload.room_id)
        logger.info("→ Admin %s opened '%s'", participant.display_name, payload.room_id)
        await self._replay(connection, payload.room_id)

    async def join_admin_chat(self, connection: Connection, payload: JoinPayload) -> None:
        session = self.sessions.get(connection)
        participant = self._verified_participant(session, payload.user)
        if participant is None or not participant.is_admin:
            await self._reject(connection, "joinAdminChat", "admin only")
            return

        self._subscribe(connection, ADMIN_ROOM_ID)
        logger.info("→ Admin %s joined '%s'", participant.display_name, ADMIN_ROOM_ID)

    # ------------------------------------------------------------------
    # Send events
    # ------------------------------------------------------------------

    async def send_message(self, connection: Connection, payload: SendMessagePayload) -> None:
        session = self.sessions.get(connection)
        participant = self._verified_participant(session, payload.sender) or session.participant
        if participant is None:
            await self._reject(connection, "sendMessage", "not identified")
            return
        if not await self._check_content(connection, payload.content):
            return

        room_id = payload.room_id
        if not room_id:
            if participant.is_admin:
                logger.warning("Dropped sendMessage from admin %s: no roomId", participant.display_name)
                self.dropped_counter += 1
                return
            room_id = self.sessions.home_room(participant.id)
            if not room_id:
                logger.warning("Dropped sendMessage from %s: no room joined", participant.display_name)
                self.dropped_counter += 1
                return
        elif not participant.is_admin and room_id not in session.rooms:
            await self._reject(connection, "sendMessage", f"not a member of {room_id}")
            return

        message = await self._persist(participant, room_id, payload.content, participant.as_sender())
        if message is not None:
            await self._broadcast_message(message)

    async def send_anonymous_message(self, connection: Connection, payload: SendAnonymousMessagePayload) -> None:
        session = self.sessions.get(connection)
        participant = session.participant
        if participant is None or not participant.is_anonymous:
            await self._reject(connection, "sendAnonymousMessage", "not an anonymous participant")
            return
        if not await self._check_content(connection, payload.content):
            return

        room_id = self.sessions.home_room(participant.id)
        if not room_id:
            logger.warning("Dropped anonymous message from %s: no room found", participant.id)
            self.dropped_counter += 1
            return

        sender = Sender(id=participant.id, name=participant.display_name, role=ParticipantKind.ANONYMOUS.role)
        message = await self._persist(participant, room_id, payload.content, sender)
        if message is not None:
            await self._broadcast_message(message)

    async def admin_send_to_user(self, connection: Connection, payload: AdminSendToUserPayload) -> None:
        """
        Admin writes into a user's room.

        When ``target_user_id`` names a live non-admin connection that is not
        yet in the room (first admin-initiated contact), that connection is
        joined to the room before delivery so it receives this message.
        """
        session = self.sessions.get(connection)
        participant = self._verified_participant(session, payload.sender)
        if participant is None or not participant.is_admin:
            await self._reject(connection, "adminSendToUser", "admin only")
            return
        if not await self._check_content(connection, payload.content):
            return

        room_id = payload.target_room_id
        message = await self._persist(participant, room_id, payload.content, participant.as_sender())
        if message is None:
            return

        if payload.target_user_id is not None:
            self._pull_into_room(payload.target_user_id, room_id)

        await self._broadcast_message(message)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def deliver_local(self, room_ids: Iterable[str], event: str, data: Any) -> int:
        """
        Push one event to the union of the local members of ``room_ids``.

        Returns:
            Number of connections the event was sent to

        Error Handling:
            A connection whose send fails is disconnected after the loop.
        """
        room_ids = list(room_ids)
        targets = set()
        for room_id in room_ids:
            targets |= self.directory.members_of(room_id)

        if not targets:
            logger.debug("[routing] Skipped '%s': rooms=%s have 0 subscribers", event, room_ids)
            return 0

        disconnected = set()
        for connection in targets:
            try:
                await self._send(connection, event, data)
            except Exception as e:
                logger.error(f"Send error: {e}")
                disconnected.add(connection)

        for connection in disconnected:
            self.disconnect(connection)
        return len(targets) - len(disconnected)

    async def _fanout(self, room_ids: List[str], event: str, data: Any) -> None:
        if self.pubsub is None:
            await self.deliver_local(room_ids, event, data)
            return
        try:
            await self.pubsub.publish(room_ids, event, data)
        except Exception as e:
            logger.error(f"Fan-out publish failed for {room_ids}: {e}")

    async def _broadcast_message(self, message: ChatMessage) -> None:
        rooms = [message.room_id]
        if message.sender.role != ParticipantKind.ADMIN.role and message.room_id != ADMIN_ROOM_ID:
            rooms.append(ADMIN_ROOM_ID)

        logger.info("📨 Message %s to %s", message.id, rooms)
        await self._fanout(rooms, "message", wire(message))
        self.message_counter += 1

    async def _send(self, connection: Connection, event: str, data: Any) -> None:
        await connection.send_json({"type": event, "data": data})

    async def _replay(self, connection: Connection, room_id: str) -> None:
        """Unicast the room's history, chronological, to one connection."""
        try:
            if self.history_limit > 0:
                stored = list(reversed(await self.store.list_recent_messages(room_id, self.history_limit)))
            else:
                stored = await self.store.list_messages(room_id)
        except Exception as e:
            logger.error(f"Load messages error for {room_id}: {e}")
            return

        if connection not in self.sessions:
            return
        messages = [wire(ChatMessage.from_stored(m)) for m in stored]
        try:
            await self._send(connection, "loadMessages", messages)
        except Exception as e:
            logger.error(f"Replay send error: {e}")
            self.disconnect(connection)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _verified_participant(self, session: Session, declared: Optional[DeclaredUser]) -> Optional[Participant]:
        """
        The connection's participant if it is registered or admin.

        Binds it on first use from the verified identity; anonymous or
        unauthenticated connections get None.
        """
        if session.participant is not None:
            return None if session.participant.is_anonymous else session.participant
        if session.identity is None:
            return None
        participant = self.resolver.resolve(ConnectionContext(identity=session.identity, declared=declared))
        self.sessions.bind_participant(session.connection, participant)
        return participant

    def _subscribe(self, connection: Connection, room_id: str) -> None:
        self.directory.add_member(room_id, connection)
        self.sessions.track_room(connection, room_id)

    def _pull_into_room(self, user_id: Any, room_id: str) -> None:
        for target_session in self.sessions.sessions_of_user(user_id):
            target_participant = self._verified_participant(target_session, None)
            if target_participant is None or target_participant.is_admin or room_id in target_session.rooms:
                continue
            self._subscribe(target_session.connection, room_id)
            self.sessions.set_home_room(target_participant.id, room_id)
            logger.info("→ %s pulled into '%s' by admin", target_participant.display_name, room_id)

    async def _send_anonymous_session(self, connection: Connection, participant: Participant, room_id: str) -> None:
        await self._send(connection, "anonymousChatJoined", {"user": wire(participant.as_sender()), "roomId": room_id})

    def _room_participants(self, room_id: str) -> List[Dict[str, Any]]:
        users = []
        for member in self.directory.members_of(room_id):
            p = self.sessions.participant_of(member)
            if p is not None:
                users.append(wire(p.as_sender()))
        return users

    async def _persist(self, participant: Participant, room_id: str, content: str, sender: Sender) -> Optional[ChatMessage]:
        sender_id = None if participant.is_anonymous else participant.id
        try:
            stored = await self.store.insert_message(room_id, sender_id, participant.display_name, sender.role, content)
        except Exception as e:
            logger.error(f"Send message error in {room_id}: {e}")
            self.dropped_counter += 1
            return None
        return ChatMessage(
            id=stored.id,
            room_id=room_id,
            content=content,
            sender=sender,
            timestamp=stored.created_at,
        )

    async def _check_content(self, connection: Connection, content: str) -> bool:
        if not content.strip():
            await self._error(connection, "empty_content", "Message is empty")
            return False
        if len(content) > self.max_content_length:
            await self._error(
                connection,
                "content_too_long",
                f"Message exceeds {self.max_content_length} characters",
            )
            return False
        return True

    async def _reject(self, connection: Connection, action: str, reason: str) -> None:
        logger.info("Ignored %s: %s", action, reason)
        if self.emit_rejections:
            await self._error(connection, "unauthorized", f"{action}: {reason}")

    async def _error(self, connection: Connection, code: str, message: str) -> None:
        try:
            await self._send(connection, "error", {"code": code, "message": message})
        except Exception as e:
            logger.error(f"Error send failed: {e}")
