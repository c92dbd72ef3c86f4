from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest

from leadflow.core.config import get_settings
from leadflow.pipeline.schemas import MessageRead
from leadflow.pipeline.threads import build_threads, iter_depth_first, new_thread_id, resolve_thread_id


START = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
LEAD_ID = uuid.uuid4()


@pytest.fixture(autouse=True)
def clear_settings() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def _message(minute: int, content: str, in_reply_to: uuid.UUID | None = None, thread_id: str = "thread_a") -> MessageRead:
    return MessageRead(
        id=uuid.uuid4(),
        lead_id=LEAD_ID,
        content=content,
        channel="email",
        sender="agent@example.com",
        timestamp=START + timedelta(minutes=minute),
        in_reply_to=in_reply_to,
        thread_id=thread_id,
        ai_generated=False,
        reply_status="sent",
    )


def test_replies_nest_under_parents_with_levels() -> None:
    m1 = _message(0, "hello")
    m2 = _message(1, "re: hello", in_reply_to=m1.id)
    m3 = _message(2, "re: re: hello", in_reply_to=m2.id)
    m4 = _message(3, "second re: hello", in_reply_to=m1.id)

    forest = build_threads([m1, m2, m3, m4])

    assert len(forest) == 1
    root = forest[0]
    assert root.message.id == m1.id
    assert root.level == 0
    assert [reply.message.id for reply in root.replies] == [m2.id, m4.id]
    assert [reply.level for reply in root.replies] == [1, 1]
    assert root.replies[0].replies[0].message.id == m3.id
    assert root.replies[0].replies[0].level == 2


def test_reply_to_unknown_message_becomes_root() -> None:
    m1 = _message(0, "hello")
    m2 = _message(1, "orphan", in_reply_to=uuid.uuid4())

    forest = build_threads([m1, m2])

    assert [node.message.id for node in forest] == [m1.id, m2.id]
    assert all(node.level == 0 for node in forest)


def test_parent_appearing_later_is_not_backfilled() -> None:
    parent = _message(5, "late parent")
    child = _message(1, "early child", in_reply_to=parent.id)

    forest = build_threads([child, parent])

    assert [node.message.id for node in forest] == [child.id, parent.id]
    assert forest[1].replies == []


def test_self_reference_becomes_root() -> None:
    message = _message(0, "loop")
    looped = message.model_copy(update={"in_reply_to": message.id})

    forest = build_threads([looped])

    assert len(forest) == 1
    assert forest[0].replies == []


def test_every_message_appears_exactly_once_and_roots_keep_order() -> None:
    m1 = _message(0, "a")
    m2 = _message(1, "b")
    m3 = _message(2, "c", in_reply_to=m1.id)
    m4 = _message(3, "d", in_reply_to=uuid.uuid4())
    m5 = _message(4, "e", in_reply_to=m3.id)
    messages = [m1, m2, m3, m4, m5]

    forest = build_threads(messages)
    seen = [node.message.id for node in iter_depth_first(forest)]

    assert sorted(seen) == sorted(message.id for message in messages)
    assert len(seen) == len(set(seen))
    assert [node.message.id for node in forest] == [m1.id, m2.id, m4.id]
    assert seen == [m1.id, m3.id, m5.id, m2.id, m4.id]


def test_threaded_read_carries_nested_replies() -> None:
    m1 = _message(0, "hello")
    m2 = _message(1, "re: hello", in_reply_to=m1.id)

    payload = build_threads([m1, m2])[0].to_read()

    assert payload.level == 0
    assert payload.replies[0].id == m2.id
    assert payload.replies[0].level == 1


def test_thread_id_follows_parent_or_falls_back_to_parent_id() -> None:
    with_thread = _message(0, "hello", thread_id="thread_abc")
    assert resolve_thread_id(with_thread) == "thread_abc"

    without_thread = _message(0, "hello", thread_id="")
    assert resolve_thread_id(without_thread) == str(without_thread.id)


def test_new_thread_id_uses_configured_prefix(monkeypatch: pytest.MonkeyPatch) -> None:
    assert new_thread_id().startswith("thread_")

    monkeypatch.setenv("NEW_THREAD_PREFIX", "conv_")
    get_settings.cache_clear()
    minted = new_thread_id()

    assert minted.startswith("conv_")
    assert len(minted) == len("conv_") + 32
