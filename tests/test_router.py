import pytest

from mingled.errors import NotJoined, UnknownRecipient, ValidationFailure
from mingled.registry import IdentityRegistry
from mingled.router import MessageRouter, new_message_id


def _router(**kwargs) -> MessageRouter:
    reg = IdentityRegistry()
    reg.join("a", "Alice")
    reg.join("b", "Bob")
    return MessageRouter(reg, **kwargs)


def test_post_public_stamps_and_stores() -> None:
    changes = []
    router = _router(on_change=lambda: changes.append(1))
    msg = router.post_public("a", "hi")
    assert msg.nickname == "Alice"
    assert msg.content == "hi"
    assert msg.type == "public"
    assert router.messages() == [msg]
    assert changes == [1]


def test_post_public_rejects_unregistered_sender() -> None:
    router = _router()
    with pytest.raises(NotJoined):
        router.post_public("stranger", "hi")
    assert router.messages() == []


def test_post_public_rejects_blank_content() -> None:
    router = _router()
    for content in ("", "   ", "\n\t", None):
        with pytest.raises(ValidationFailure):
            router.post_public("a", content)
    assert router.messages() == []


def test_post_public_rejects_overlong_content() -> None:
    router = _router(max_message_chars=5)
    with pytest.raises(ValidationFailure):
        router.post_public("a", "too long")


def test_post_private_targets_both_parties() -> None:
    router = _router()
    delivery = router.post_private("a", "Bob", "psst")
    assert delivery.recipients == ("a", "b")
    assert delivery.message.sender == "Alice"
    assert delivery.message.recipient == "Bob"
    assert delivery.message.to_dict()["type"] == "private"
    # Private messages never enter the public log.
    assert router.messages() == []


def test_post_private_unknown_recipient() -> None:
    router = _router()
    with pytest.raises(UnknownRecipient):
        router.post_private("a", "Carol", "hello?")


def test_recent_is_bounded() -> None:
    router = _router()
    for i in range(70):
        router.post_public("a", f"m{i}")
    recent = router.recent(50)
    assert len(recent) == 50
    assert recent[-1].content == "m69"
    assert recent[0].content == "m20"


def test_remove_message() -> None:
    router = _router()
    keep = router.post_public("a", "keep")
    drop = router.post_public("b", "drop")
    assert router.remove_message(drop.id) is True
    assert router.remove_message(drop.id) is False
    assert router.messages() == [keep]


def test_message_ids_are_unique() -> None:
    ids = {new_message_id() for _ in range(2000)}
    assert len(ids) == 2000


def test_post_private_normalizes_target() -> None:
    router = _router()
    delivery = router.post_private("a", "  Bob", "psst")
    assert delivery.recipients == ("a", "b")
    assert delivery.message.recipient == "Bob"


def test_post_private_rejects_invalid_target() -> None:
    router = _router()
    for target in ("x" * 5000, "", None):
        with pytest.raises(ValidationFailure):
            router.post_private("a", target, "hello")
