import threading

import pytest

from tutorgate.features.chat.history import ConversationWindowManager
from tutorgate.models.chat import ChatExchange, ChatRole


def test_keeps_most_recent_turns_in_order():
    history = ConversationWindowManager(max_length=20)
    for i in range(25):
        history.append("user-1", ChatRole.USER, f"message {i}")

    turns = history.get_history("user-1")
    assert len(turns) == 20
    assert [t.content for t in turns] == [f"message {i}" for i in range(5, 25)]


def test_unknown_user_has_empty_history():
    assert ConversationWindowManager().get_history("nobody") == ()


def test_snapshot_is_read_only():
    history = ConversationWindowManager()
    history.append("u", ChatRole.USER, "hello")
    snapshot = history.get_history("u")

    history.append("u", ChatRole.ASSISTANT, "hi")
    assert len(snapshot) == 1
    with pytest.raises(AttributeError):
        snapshot.append("x")


def test_clear_resets_only_that_user():
    history = ConversationWindowManager()
    history.append("a", ChatRole.USER, "one")
    history.append("b", ChatRole.USER, "two")

    history.clear("a")
    assert history.get_history("a") == ()
    assert len(history.get_history("b")) == 1


def test_exchanges_pair_user_and_assistant_turns():
    history = ConversationWindowManager(max_length=5)
    history.append_exchange("u", "q1", "a1")
    history.append_exchange("u", "q2", "a2")
    history.append_exchange("u", "q3", "a3")

    # Window of 5 drops q1, leaving an orphaned a1 at the front
    assert [t.content for t in history.get_history("u")] == ["a1", "q2", "a2", "q3", "a3"]
    assert history.exchanges("u") == [
        ChatExchange(user_message="q2", ai_response="a2"),
        ChatExchange(user_message="q3", ai_response="a3"),
    ]


def test_turns_render_as_provider_messages():
    history = ConversationWindowManager()
    history.append_exchange("u", "hello", "hi there")
    assert [t.as_message() for t in history.get_history("u")] == [
        {"role": "user", "content": "hello"},
        {"role": "assistant", "content": "hi there"},
    ]


def test_invalid_max_length_rejected():
    with pytest.raises(ValueError):
        ConversationWindowManager(max_length=0)


def test_concurrent_exchanges_stay_paired():
    history = ConversationWindowManager(max_length=200)

    def worker(n):
        for i in range(10):
            history.append_exchange("u", f"q{n}-{i}", f"a{n}-{i}")

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    turns = history.get_history("u")
    assert len(turns) == 160
    for user_turn, reply in zip(turns[::2], turns[1::2]):
        assert user_turn.role == ChatRole.USER
        assert reply.role == ChatRole.ASSISTANT
        assert reply.content == "a" + user_turn.content[1:]


def test_clear_forgets_user():
    history = ConversationWindowManager()
    for n in range(200):
        history.append(f"user-{n}", ChatRole.USER, "hello")
    history.clear("user-0")

    assert "user-0" not in history._histories
    assert len(history._histories) == 199
    assert len(history._locks) == 64
