# atira_chat/services/identity.py
from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass
from typing import Callable, Optional

from atira_chat.models.models import (
    ANON_ROOM_PREFIX,
    DeclaredUser,
    Participant,
    ParticipantKind,
    VerifiedIdentity,
)

_ALPHABET = string.ascii_lowercase + string.digits


def _suffix(length: int = 9) -> str:
    return "".join(random.choices(_ALPHABET, k=length))


def mint_anonymous_id() -> str:
    return f"anon-{int(time.time() * 1000)}-{_suffix()}"


def mint_anonymous_room_id() -> str:
    """Fresh ``anon_<millis>_<random>`` room id, one per anonymous join."""
    return f"{ANON_ROOM_PREFIX}{int(time.time() * 1000)}_{_suffix()}"


@dataclass(frozen=True)
class ConnectionContext:
    """What is known about a client when its participant is resolved."""

    identity: Optional[VerifiedIdentity] = None
    declared: Optional[DeclaredUser] = None


class IdentityResolver:
    """
    Shapes the identity a connection is handed into a ``Participant``.

    Verification happens upstream (``auth_service``); a context without a
    verified identity is anonymous no matter what the client declares.
    """

    def __init__(self, id_factory: Callable[[], str] = mint_anonymous_id) -> None:
        self.id_factory = id_factory

    def resolve(self, context: ConnectionContext) -> Optional[Participant]:
        identity = context.identity
        declared_name = (context.declared.name or "").strip() if context.declared else ""

        if identity is not None:
            kind = ParticipantKind.ADMIN if identity.role == "admin" else ParticipantKind.REGISTERED
            name = identity.name or declared_name or identity.email or f"User {identity.id}"
            return Participant(id=identity.id, display_name=name, kind=kind)

        if declared_name:
            return Participant(
                id=self.id_factory(),
                display_name=declared_name,
                kind=ParticipantKind.ANONYMOUS,
            )

        return None
