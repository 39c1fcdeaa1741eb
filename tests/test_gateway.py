from typing import Any

import pytest

from mingled.codec import decode, encode
from mingled.config import HubRuntimeConfig
from mingled.constants import (
    K_BODY,
    K_T,
    T_ERROR,
    T_GET_MESSAGES,
    T_GET_USERS,
    T_JOIN,
    T_JOIN_SUCCESS,
    T_LIKE_RECEIVED,
    T_LIKE_USER,
    T_LIKE_WARNING,
    T_MESSAGE_REMOVED,
    T_MUTUAL_LIKE,
    T_NEW_MESSAGE,
    T_NEW_PRIVATE_MESSAGE,
    T_NICKNAME_ERROR,
    T_RECENT_MESSAGES,
    T_REMOVE_MESSAGE,
    T_REMOVE_RESULT,
    T_SEND_MESSAGE,
    T_SEND_PRIVATE_MESSAGE,
    T_TYPING,
    T_USER_JOINED,
    T_USER_LEFT,
    T_USER_LIST,
    T_USER_LIST_UPDATE,
    T_USER_TYPING,
)
from mingled.envelope import make_envelope
from mingled.errors import Unauthorized
from mingled.service import HubService
from mingled.store import StateStore


class Conn:
    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"Conn({self.name})"


def _hub(tmp_path, **kwargs) -> HubService:
    kwargs.setdefault("admin_secret", "s3cret")
    cfg = HubRuntimeConfig(state_path=str(tmp_path / "state.toml"), **kwargs)
    return HubService(cfg)


def _connect(hub: HubService, name: str) -> Conn:
    conn = Conn(name)
    with hub._state_lock:
        hub.gateway.on_connect(conn)
    return conn


def _send(hub: HubService, conn: Conn, event_type: int, body: Any = None) -> list[tuple[Any, dict]]:
    outgoing: list[tuple[Any, bytes]] = []
    data = encode(make_envelope(event_type, src=b"client", body=body))
    with hub._state_lock:
        hub.gateway.route_packet(conn, data, outgoing)
    return [(c, decode(p)) for c, p in outgoing]


def _close(hub: HubService, conn: Conn) -> list[tuple[Any, dict]]:
    outgoing: list[tuple[Any, bytes]] = []
    with hub._state_lock:
        hub.gateway.on_disconnect(conn, outgoing)
    return [(c, decode(p)) for c, p in outgoing]


def _events(out: list[tuple[Any, dict]], conn: Conn) -> list[tuple[int, Any]]:
    return [(env[K_T], env.get(K_BODY)) for c, env in out if c is conn]


def _first(out: list[tuple[Any, dict]], conn: Conn, event_type: int) -> Any:
    for t, body in _events(out, conn):
        if t == event_type:
            return body
    raise AssertionError(f"{conn} got no event {event_type}")


def _join(hub: HubService, name: str) -> Conn:
    conn = _connect(hub, name)
    out = _send(hub, conn, T_JOIN, {"nickname": name})
    _first(out, conn, T_JOIN_SUCCESS)
    return conn


def test_alice_and_bob_scenario(tmp_path) -> None:
    hub = _hub(tmp_path)
    alice = _join(hub, "Alice")

    bob = _connect(hub, "Bob")
    out = _send(hub, bob, T_JOIN, {"nickname": "Bob"})
    assert _first(out, bob, T_JOIN_SUCCESS) == {"nickname": "Bob"}
    assert [u["nickname"] for u in _first(out, bob, T_USER_LIST)] == ["Alice", "Bob"]
    assert _first(out, alice, T_USER_JOINED) == {"nickname": "Bob"}
    assert [u["nickname"] for u in _first(out, alice, T_USER_LIST_UPDATE)] == ["Alice", "Bob"]
    assert T_USER_JOINED not in [t for t, _ in _events(out, bob)]

    out = _send(hub, alice, T_SEND_MESSAGE, {"content": "hi"})
    msg = _first(out, bob, T_NEW_MESSAGE)
    assert msg["content"] == "hi"
    assert msg["nickname"] == "Alice"
    # Sender sees its own echo.
    assert _first(out, alice, T_NEW_MESSAGE)["id"] == msg["id"]

    out = _send(hub, alice, T_LIKE_USER, {"targetNickname": "Bob"})
    assert _first(out, bob, T_LIKE_RECEIVED) == {"from": "Alice"}
    assert _events(out, alice) == []

    out = _send(hub, bob, T_LIKE_USER, {"targetNickname": "Alice"})
    to_bob = _first(out, bob, T_MUTUAL_LIKE)
    to_alice = _first(out, alice, T_MUTUAL_LIKE)
    assert to_bob == {"nickname": "Alice", "chatRoomId": "Alice_Bob"}
    assert to_alice == {"nickname": "Bob", "chatRoomId": "Alice_Bob"}


def test_duplicate_nickname_from_second_connection(tmp_path) -> None:
    hub = _hub(tmp_path)
    alice = _join(hub, "Alice")
    imposter = _connect(hub, "imposter")

    out = _send(hub, imposter, T_JOIN, {"nickname": "Alice"})
    assert _events(out, imposter) == [(T_NICKNAME_ERROR, {"message": "Nickname already taken"})]
    assert _events(out, alice) == []
    assert hub.state.registry.lookup_by_nickname("Alice").connection is alice
    assert hub.state.registry.get(imposter) is None


def test_short_nickname_rejected(tmp_path) -> None:
    hub = _hub(tmp_path)
    conn = _connect(hub, "x")
    out = _send(hub, conn, T_JOIN, {"nickname": "x"})
    assert _events(out, conn)[0][0] == T_NICKNAME_ERROR
    assert len(hub.state.registry) == 0


def test_join_sync_sends_at_most_fifty(tmp_path) -> None:
    hub = _hub(tmp_path)
    alice = _join(hub, "Alice")
    for i in range(60):
        _send(hub, alice, T_SEND_MESSAGE, {"content": f"m{i}"})

    late = _connect(hub, "Late")
    out = _send(hub, late, T_JOIN, {"nickname": "Late"})
    recent = _first(out, late, T_RECENT_MESSAGES)
    assert len(recent) == 50
    assert recent[-1]["content"] == "m59"

    assert len(_first(_send(hub, late, T_GET_MESSAGES), late, T_RECENT_MESSAGES)) == 50


def test_unjoined_connection_events_are_ignored(tmp_path) -> None:
    hub = _hub(tmp_path)
    alice = _join(hub, "Alice")
    lurker = _connect(hub, "lurker")

    assert _send(hub, lurker, T_SEND_MESSAGE, {"content": "hi"}) == []
    assert _send(hub, lurker, T_LIKE_USER, {"targetNickname": "Alice"}) == []
    assert _send(hub, lurker, T_TYPING, {"isTyping": True}) == []
    assert hub.state.router.messages() == []
    assert hub.state.likes.edges() == []

    # Unjoined connections still hear public traffic.
    out = _send(hub, alice, T_SEND_MESSAGE, {"content": "hello"})
    assert _first(out, lurker, T_NEW_MESSAGE)["content"] == "hello"


def test_empty_message_is_rejected_to_sender_only(tmp_path) -> None:
    hub = _hub(tmp_path)
    alice = _join(hub, "Alice")
    bob = _join(hub, "Bob")
    out = _send(hub, alice, T_SEND_MESSAGE, {"content": "   "})
    assert [t for t, _ in _events(out, alice)] == [T_ERROR]
    assert _events(out, bob) == []
    assert hub.state.router.messages() == []


def test_private_message_goes_to_two_parties(tmp_path) -> None:
    hub = _hub(tmp_path)
    alice = _join(hub, "Alice")
    bob = _join(hub, "Bob")
    carol = _join(hub, "Carol")

    out = _send(hub, alice, T_SEND_PRIVATE_MESSAGE, {"targetNickname": "Bob", "content": "psst"})
    to_bob = _first(out, bob, T_NEW_PRIVATE_MESSAGE)
    assert to_bob["from"] == "Alice" and to_bob["to"] == "Bob"
    assert _first(out, alice, T_NEW_PRIVATE_MESSAGE) == to_bob
    assert _events(out, carol) == []
    assert hub.state.router.messages() == []


def test_private_message_to_absent_user_is_silent(tmp_path) -> None:
    hub = _hub(tmp_path)
    alice = _join(hub, "Alice")
    bob = _join(hub, "Bob")
    _close(hub, bob)

    out = _send(hub, alice, T_SEND_PRIVATE_MESSAGE, {"targetNickname": "Bob", "content": "still there?"})
    assert out == []
    assert hub.stats_manager.get("msgs_dropped") == 1


def test_like_offline_target_records_edge(tmp_path) -> None:
    hub = _hub(tmp_path)
    alice = _join(hub, "Alice")
    out = _send(hub, alice, T_LIKE_USER, {"targetNickname": "Bob"})
    assert out == []
    assert hub.state.likes.has_like("Alice", "Bob")

    bob = _join(hub, "Bob")
    out = _send(hub, bob, T_LIKE_USER, {"targetNickname": "Alice"})
    assert _first(out, alice, T_MUTUAL_LIKE)["chatRoomId"] == "Alice_Bob"


def test_repeat_like_warns_and_keeps_single_room(tmp_path) -> None:
    hub = _hub(tmp_path)
    alice = _join(hub, "Alice")
    bob = _join(hub, "Bob")
    _send(hub, alice, T_LIKE_USER, {"targetNickname": "Bob"})
    _send(hub, bob, T_LIKE_USER, {"targetNickname": "Alice"})

    out = _send(hub, alice, T_LIKE_USER, {"targetNickname": "Bob"})
    assert [t for t, _ in _events(out, alice)] == [T_LIKE_WARNING]
    assert _events(out, bob) == []
    assert [r.room_id for r in hub.state.likes.rooms()] == ["Alice_Bob"]


def test_like_target_whitespace_still_matches(tmp_path) -> None:
    hub = _hub(tmp_path)
    alice = _join(hub, "Alice")
    bob = _join(hub, "Bob")

    out = _send(hub, alice, T_LIKE_USER, {"targetNickname": " Bob"})
    assert _first(out, bob, T_LIKE_RECEIVED) == {"from": "Alice"}

    out = _send(hub, alice, T_LIKE_USER, {"targetNickname": "Bob "})
    assert _first(out, alice, T_LIKE_WARNING)["targetNickname"] == "Bob"

    out = _send(hub, bob, T_LIKE_USER, {"targetNickname": "Alice"})
    assert _first(out, alice, T_MUTUAL_LIKE) == {"nickname": "Bob", "chatRoomId": "Alice_Bob"}
    assert [r.room_id for r in hub.state.likes.rooms()] == ["Alice_Bob"]


def test_like_invalid_target_is_rejected(tmp_path) -> None:
    hub = _hub(tmp_path)
    alice = _join(hub, "Alice")
    for target in ("x" * 5000, 42):
        out = _send(hub, alice, T_LIKE_USER, {"targetNickname": target})
        assert [t for t, _ in _events(out, alice)] == [T_ERROR]
    assert hub.state.likes.edges() == []
    assert hub.stats_manager.get("likes") == 0


def test_private_message_target_is_normalized(tmp_path) -> None:
    hub = _hub(tmp_path)
    alice = _join(hub, "Alice")
    bob = _join(hub, "Bob")
    out = _send(hub, alice, T_SEND_PRIVATE_MESSAGE, {"targetNickname": "Bob ", "content": "psst"})
    assert _first(out, bob, T_NEW_PRIVATE_MESSAGE)["to"] == "Bob"

    out = _send(hub, alice, T_SEND_PRIVATE_MESSAGE, {"targetNickname": "x" * 5000, "content": "psst"})
    assert [t for t, _ in _events(out, alice)] == [T_ERROR]


def test_typing_relayed_to_everyone_else(tmp_path) -> None:
    hub = _hub(tmp_path)
    alice = _join(hub, "Alice")
    bob = _join(hub, "Bob")
    out = _send(hub, alice, T_TYPING, {"isTyping": True})
    assert _events(out, bob) == [(T_USER_TYPING, {"nickname": "Alice", "isTyping": True})]
    assert _events(out, alice) == []


def test_disconnect_announces_and_frees_nickname(tmp_path) -> None:
    hub = _hub(tmp_path)
    alice = _join(hub, "Alice")
    bob = _join(hub, "Bob")

    out = _close(hub, alice)
    assert _first(out, bob, T_USER_LEFT) == {"nickname": "Alice"}
    assert [u["nickname"] for u in _first(out, bob, T_USER_LIST_UPDATE)] == ["Bob"]
    assert _events(out, alice) == []

    again = _join(hub, "Alice")
    assert hub.state.registry.lookup_by_nickname("Alice").connection is again


def test_disconnect_before_join_is_quiet(tmp_path) -> None:
    hub = _hub(tmp_path)
    _join(hub, "Alice")
    lurker = _connect(hub, "lurker")
    assert _close(hub, lurker) == []


def test_get_users_includes_join_time(tmp_path) -> None:
    hub = _hub(tmp_path)
    alice = _join(hub, "Alice")
    users = _first(_send(hub, alice, T_GET_USERS), alice, T_USER_LIST)
    assert users[0]["nickname"] == "Alice"
    assert users[0]["status"] == "online"
    assert users[0]["joinTime"]


def test_bad_packet_returns_error(tmp_path) -> None:
    hub = _hub(tmp_path)
    conn = _connect(hub, "c")
    outgoing: list[tuple[Any, bytes]] = []
    with hub._state_lock:
        hub.gateway.route_packet(conn, b"\xff\x00garbage", outgoing)
    assert [decode(p)[K_T] for _, p in outgoing] == [T_ERROR]
    assert hub.stats_manager.get("pkts_bad") == 1


def test_admin_removal_requires_secret(tmp_path) -> None:
    hub = _hub(tmp_path)
    alice = _join(hub, "Alice")
    bob = _join(hub, "Bob")
    msg = _first(_send(hub, alice, T_SEND_MESSAGE, {"content": "oops"}), alice, T_NEW_MESSAGE)

    out = _send(hub, bob, T_REMOVE_MESSAGE, {"messageId": msg["id"], "adminSecret": "guess"})
    assert _events(out, bob) == [
        (T_REMOVE_RESULT, {"success": False, "messageId": msg["id"], "error": "Unauthorized"})
    ]
    assert _events(out, alice) == []
    assert len(hub.state.router.messages()) == 1

    out = _send(hub, bob, T_REMOVE_MESSAGE, {"messageId": msg["id"], "adminSecret": "s3cret"})
    assert _first(out, alice, T_MESSAGE_REMOVED) == {"messageId": msg["id"]}
    assert _first(out, bob, T_REMOVE_RESULT)["success"] is True
    assert hub.state.router.messages() == []


def test_admin_removal_disabled_without_secret(tmp_path) -> None:
    hub = _hub(tmp_path, admin_secret="")
    alice = _join(hub, "Alice")
    msg = _first(_send(hub, alice, T_SEND_MESSAGE, {"content": "x"}), alice, T_NEW_MESSAGE)
    with pytest.raises(Unauthorized):
        with hub._state_lock:
            hub.gateway.remove_message(msg["id"], "", [])
    assert len(hub.state.router.messages()) == 1


def test_state_snapshot_survives_restart(tmp_path) -> None:
    hub = _hub(tmp_path)
    alice = _join(hub, "Alice")
    bob = _join(hub, "Bob")
    for i in range(120):
        _send(hub, alice, T_SEND_MESSAGE, {"content": f"m{i}"})
    _send(hub, alice, T_LIKE_USER, {"targetNickname": "Bob"})
    _send(hub, bob, T_LIKE_USER, {"targetNickname": "Alice"})
    assert hub.store.flush() is True

    saved = StateStore(str(tmp_path / "state.toml")).load()
    assert len(saved.messages) == 100
    assert saved.likes == [("Alice", "Bob"), ("Bob", "Alice")]

    restarted = _hub(tmp_path)
    restarted.load_state()
    assert len(restarted.state.router.messages()) == 100
    assert len(restarted.state.registry) == 0

    alice2 = _join(restarted, "Alice")
    out = _send(restarted, alice2, T_LIKE_USER, {"targetNickname": "Bob"})
    assert [t for t, _ in _events(out, alice2)] == [T_LIKE_WARNING]
    assert [r.room_id for r in restarted.state.likes.rooms()] == ["Alice_Bob"]


def test_format_stats_mentions_counts(tmp_path) -> None:
    hub = _hub(tmp_path)
    alice = _join(hub, "Alice")
    _send(hub, alice, T_SEND_MESSAGE, {"content": "hi"})
    text = hub.format_stats()
    assert "users=1" in text
    assert "public=1" in text
