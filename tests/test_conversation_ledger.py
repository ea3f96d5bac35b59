# tests/test_conversation_ledger.py

import pytest

from open_os.conversation_ledger import ConversationLedger, ConversationMessage, Role


def test_append_and_snapshot_order():
    ledger = ConversationLedger()
    ledger.append_user("list files")
    ledger.append_assistant('{"text": "Use ls"}')

    assert [m.role for m in ledger.snapshot()] == [Role.USER, Role.ASSISTANT]
    assert ledger.snapshot()[0].to_dict() == {"role": "user", "content": "list files"}


def test_append_assistant_ignores_empty_text():
    ledger = ConversationLedger()
    assert ledger.append_assistant("") is None
    assert len(ledger) == 0


def test_trim_drops_oldest_first():
    ledger = ConversationLedger(max_messages=3)
    for i in range(5):
        ledger.append_user(f"q{i}")
        ledger.trim()

    assert len(ledger) == 3
    assert [m.content for m in ledger.snapshot()] == ["q2", "q3", "q4"]


def test_ledger_bound_holds_over_many_turns():
    ledger = ConversationLedger(max_messages=4)
    for i in range(25):
        ledger.append_user(f"q{i}")
        ledger.trim()
        ledger.append_assistant(f"a{i}")
        ledger.trim()
        assert len(ledger) <= 4


def test_rollback_last_user_is_idempotent():
    ledger = ConversationLedger()
    ledger.append_user("first")
    ledger.append_assistant("answer")
    ledger.append_user("second")

    ledger.rollback_last_user()
    ledger.rollback_last_user()

    assert [m.content for m in ledger.snapshot()] == ["first", "answer"]


def test_rollback_last_user_on_empty_ledger_is_noop():
    ledger = ConversationLedger()
    ledger.rollback_last_user()
    assert len(ledger) == 0


def test_discard_removes_by_identity():
    ledger = ConversationLedger()
    older = ledger.append_user("same text")
    newer = ledger.append_user("same text")

    assert ledger.discard(older) is True
    assert ledger.snapshot() == (newer,)
    assert ledger.discard(older) is False


def test_snapshot_is_detached_from_ledger():
    ledger = ConversationLedger()
    ledger.append_user("x")
    snapshot = ledger.snapshot()
    ledger.clear()

    assert len(snapshot) == 1
    assert ledger.last() is None


def test_messages_are_immutable():
    message = ConversationMessage(Role.USER, "x")
    with pytest.raises(AttributeError):
        message.content = "y"


def test_invalid_bound_is_rejected():
    with pytest.raises(ValueError):
        ConversationLedger(max_messages=0)
