import pytest

from mingled.errors import AlreadyJoined, DuplicateNickname, ValidationFailure
from mingled.registry import IdentityRegistry


def test_join_registers_online_identity() -> None:
    reg = IdentityRegistry()
    ident = reg.join("c1", "Alice")
    assert ident.nickname == "Alice"
    assert ident.status == "online"
    assert ident.joined_at.endswith("Z")
    assert reg.get("c1") is ident
    assert reg.lookup_by_nickname("Alice") is ident


def test_size_tracks_live_identities() -> None:
    reg = IdentityRegistry()
    for i in range(5):
        reg.join(f"c{i}", f"user{i}")
    reg.leave("c1")
    reg.leave("c3")
    assert len(reg) == 3
    assert [i.nickname for i in reg.list()] == ["user0", "user2", "user4"]


def test_duplicate_live_nickname_rejected() -> None:
    reg = IdentityRegistry()
    first = reg.join("c1", "Alice")
    with pytest.raises(DuplicateNickname):
        reg.join("c2", "Alice")
    assert reg.lookup_by_nickname("Alice") is first
    assert reg.get("c2") is None
    assert len(reg) == 1


def test_nickname_is_case_sensitive() -> None:
    reg = IdentityRegistry()
    reg.join("c1", "Alice")
    reg.join("c2", "alice")
    assert len(reg) == 2


def test_departed_nickname_can_be_reused() -> None:
    reg = IdentityRegistry()
    reg.join("c1", "Alice")
    left = reg.leave("c1")
    assert left is not None and left.nickname == "Alice"
    again = reg.join("c2", "Alice")
    assert reg.lookup_by_nickname("Alice") is again


def test_leave_unknown_connection_is_soft() -> None:
    reg = IdentityRegistry()
    assert reg.leave("nobody") is None


def test_nickname_length_bounds() -> None:
    reg = IdentityRegistry()
    with pytest.raises(ValidationFailure):
        reg.join("c1", "A")
    with pytest.raises(ValidationFailure):
        reg.join("c1", "x" * 21)
    with pytest.raises(ValidationFailure):
        reg.join("c1", "   ")
    with pytest.raises(ValidationFailure):
        reg.join("c1", None)
    assert reg.join("c1", "  Al  ").nickname == "Al"
    assert reg.join("c2", "x" * 20).nickname == "x" * 20


def test_connection_cannot_join_twice() -> None:
    reg = IdentityRegistry()
    reg.join("c1", "Alice")
    with pytest.raises(AlreadyJoined):
        reg.join("c1", "Bob")
    assert reg.lookup_by_nickname("Bob") is None
