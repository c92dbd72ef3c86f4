"""Reply-tree reconstruction for lead conversations.

Trees are built from ``in_reply_to`` alone; ``thread_id`` is a grouping label
kept consistent by the sender and is not consulted here.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field

from leadflow.core.config import get_settings
from leadflow.pipeline.schemas import MessageRead, ThreadedMessageRead


logger = logging.getLogger("leadflow.pipeline.threads")


@dataclass(slots=True)
class ThreadedMessage:
    message: MessageRead
    level: int = 0
    replies: list[ThreadedMessage] = field(default_factory=list)

    def to_read(self) -> ThreadedMessageRead:
        return ThreadedMessageRead(
            **self.message.model_dump(),
            level=self.level,
            replies=[reply.to_read() for reply in self.replies],
        )


def build_threads(messages: Sequence[MessageRead]) -> list[ThreadedMessage]:
    """Build a reply forest from messages sorted by ascending timestamp.

    A message whose parent is unknown, or appears later in the input, becomes
    a root. No back-filling is attempted, so a single pass cannot produce a
    cycle and never raises on malformed references.
    """
    nodes: dict[uuid.UUID, ThreadedMessage] = {}
    for message in messages:
        nodes[message.id] = ThreadedMessage(message=message)

    roots: list[ThreadedMessage] = []
    linked: set[uuid.UUID] = set()
    for message in messages:
        node = nodes[message.id]
        parent_id = message.in_reply_to
        # Only parents already placed in this walk are attachable.
        if parent_id is not None and parent_id in linked and parent_id != message.id:
            parent = nodes[parent_id]
            node.level = parent.level + 1
            parent.replies.append(node)
        else:
            if parent_id is not None:
                logger.debug(
                    "thread.orphan_reply",
                    extra={"message_id": str(message.id), "in_reply_to": str(parent_id)},
                )
            roots.append(node)
        linked.add(message.id)
    return roots


def iter_depth_first(forest: Sequence[ThreadedMessage]) -> Iterator[ThreadedMessage]:
    stack = list(reversed(forest))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.replies))


def resolve_thread_id(parent: MessageRead) -> str:
    return parent.thread_id or str(parent.id)


def new_thread_id() -> str:
    return f"{get_settings().new_thread_prefix}{uuid.uuid4().hex}"
