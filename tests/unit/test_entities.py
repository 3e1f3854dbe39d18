from __future__ import annotations

from datetime import timedelta

from chat_sync.domain.entities.typing_state import TypingState
from chat_sync.domain.value_objects.enums import MessageStatus
from tests.conftest import ALICE, ME, T0, make_chat, make_message


def test_merge_keeps_highest_status_and_all_readers():
    held = make_message(message_id="m1", status=MessageStatus.READ, read_by=frozenset({ALICE}), at=5)
    incoming = make_message(message_id="m1", status=MessageStatus.DELIVERED, read_by=frozenset({ME}), at=9)

    merged = held.merged_with(incoming)

    assert merged.status is MessageStatus.READ
    assert merged.read_by == frozenset({ALICE, ME})
    assert merged.created_at == held.created_at


def test_merge_takes_newer_status_when_it_advances():
    held = make_message(message_id="m1", status=MessageStatus.SENT)
    incoming = make_message(message_id="m1", status=MessageStatus.DELIVERED, content="edited")

    merged = held.merged_with(incoming)

    assert merged.status is MessageStatus.DELIVERED
    assert merged.content == "edited"


def test_status_rank_order():
    assert MessageStatus.SENT.rank < MessageStatus.DELIVERED.rank < MessageStatus.READ.rank


def test_participants_are_deduplicated_in_order():
    chat = make_chat(participants=(ALICE, ME, ALICE))

    assert chat.participants == (ALICE, ME)


def test_typing_state_window():
    state = TypingState(chat_id="c1", user_id=ALICE, started_at=T0)

    assert state.is_active(T0 + timedelta(seconds=2.9), 3.0)
    assert not state.is_active(T0 + timedelta(seconds=3), 3.0)
