import pytest

from atira_chat.models.models import DeclaredUser, ParticipantKind, VerifiedIdentity
from atira_chat.services.auth_service import InvalidTokenError, decode_token
from atira_chat.services.identity import (
    ConnectionContext,
    IdentityResolver,
    mint_anonymous_id,
    mint_anonymous_room_id,
)

from conftest import JWT_SECRET, make_token


def test_admin_role_resolves_to_admin() -> None:
    resolver = IdentityResolver()
    p = resolver.resolve(ConnectionContext(identity=VerifiedIdentity(id=1, role="admin", name="Siti")))
    assert p.kind is ParticipantKind.ADMIN
    assert p.id == 1
    assert p.as_sender().role == "admin"


def test_user_role_resolves_to_registered_with_declared_name() -> None:
    resolver = IdentityResolver()
    p = resolver.resolve(
        ConnectionContext(
            identity=VerifiedIdentity(id=7, role="user", email="budi@example.com"),
            declared=DeclaredUser(id=999, name="Budi", role="admin"),
        )
    )
    assert p.kind is ParticipantKind.REGISTERED
    # Identity comes from the token, only the display name from the client
    assert p.id == 7
    assert p.display_name == "Budi"


def test_registered_name_falls_back_to_email() -> None:
    resolver = IdentityResolver()
    p = resolver.resolve(ConnectionContext(identity=VerifiedIdentity(id=7, email="budi@example.com")))
    assert p.display_name == "budi@example.com"


def test_declared_name_without_identity_is_anonymous() -> None:
    resolver = IdentityResolver(id_factory=lambda: "anon-fixed")
    p = resolver.resolve(ConnectionContext(declared=DeclaredUser(id=7, name="Anon123", role="admin")))
    assert p.kind is ParticipantKind.ANONYMOUS
    assert p.id == "anon-fixed"
    assert p.as_sender().role == "anonymous"


def test_nothing_declared_resolves_to_none() -> None:
    resolver = IdentityResolver()
    assert resolver.resolve(ConnectionContext()) is None
    assert resolver.resolve(ConnectionContext(declared=DeclaredUser(name="   "))) is None


def test_minted_ids_are_unique() -> None:
    assert mint_anonymous_id() != mint_anonymous_id()
    room_ids = {mint_anonymous_room_id() for _ in range(50)}
    assert len(room_ids) == 50
    assert all(r.startswith("anon_") for r in room_ids)


def test_decode_token_roundtrip_claims() -> None:
    token = make_token(7, "user", email="budi@example.com", name="Budi")
    identity = decode_token(token, secret=JWT_SECRET, algorithm="HS256")
    assert identity == VerifiedIdentity(id=7, role="user", email="budi@example.com", name="Budi")


def test_decode_token_rejects_bad_signature() -> None:
    token = make_token(7, secret="other-secret")
    with pytest.raises(InvalidTokenError):
        decode_token(token, secret=JWT_SECRET, algorithm="HS256")
