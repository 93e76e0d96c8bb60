from atira_chat.models.models import Participant, ParticipantKind
from atira_chat.services.session_registry import SessionRegistry


def _participant(pid, kind=ParticipantKind.REGISTERED) -> Participant:
    return Participant(id=pid, display_name=f"p{pid}", kind=kind)


def test_track_and_untrack_rooms() -> None:
    registry = SessionRegistry()
    registry.register("c1")
    registry.track_room("c1", "user_7")
    registry.track_room("c1", "admin_global")
    registry.untrack_room("c1", "admin_global")
    assert registry.rooms_of("c1") == {"user_7"}


def test_untracked_connection_is_ignored() -> None:
    registry = SessionRegistry()
    registry.track_room("ghost", "user_7")
    assert registry.rooms_of("ghost") == set()
    assert "ghost" not in registry


def test_forget_returns_session() -> None:
    registry = SessionRegistry()
    registry.register("c1")
    registry.bind_participant("c1", _participant(7))
    registry.track_room("c1", "user_7")

    session = registry.forget("c1")
    assert session.participant.id == 7
    assert session.rooms == {"user_7"}
    assert len(registry) == 0
    assert registry.forget("c1") is None


def test_connections_of_participant_matches_string_and_int_ids() -> None:
    registry = SessionRegistry()
    registry.register("c1")
    registry.register("c2")
    registry.register("c3")
    registry.bind_participant("c1", _participant(7))
    registry.bind_participant("c2", _participant(8))

    assert registry.connections_of_participant(7) == ["c1"]
    assert registry.connections_of_participant("7") == ["c1"]
    assert registry.connections_of_participant(99) == []


def test_home_rooms() -> None:
    registry = SessionRegistry()
    registry.set_home_room(7, "user_7")
    assert registry.home_room("7") == "user_7"
    registry.drop_home_room(7)
    assert registry.home_room(7) is None
