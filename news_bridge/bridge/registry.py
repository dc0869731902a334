from __future__ import annotations

from enum import Enum
from typing import Iterable

DEFAULT_MAX_TOPICS = 50


class AddResult(str, Enum):
    OK = "ok"
    DUPLICATE = "duplicate"
    LIMIT_EXCEEDED = "limit_exceeded"
    INVALID = "invalid"


class RemoveResult(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"


def normalize_topic(topic: str) -> str:
    return str(topic or "").strip().upper()


class SubscriptionRegistry:
    """
    Ordered, capped set of subscribed topics.

    Insertion order is preserved so replay after reconnect is deterministic.
    """

    def __init__(self, *, max_topics: int = DEFAULT_MAX_TOPICS, initial: Iterable[str] = ()) -> None:
        if max_topics <= 0:
            raise ValueError("max_topics must be > 0")
        self.max_topics = int(max_topics)
        # dict keeps insertion order and gives O(1) membership.
        self._topics: dict[str, None] = {}
        for t in initial:
            if self.add(t) is AddResult.LIMIT_EXCEEDED:
                break

    def add(self, topic: str) -> AddResult:
        t = normalize_topic(topic)
        if not t:
            return AddResult.INVALID
        if t in self._topics:
            return AddResult.DUPLICATE
        if len(self._topics) >= self.max_topics:
            return AddResult.LIMIT_EXCEEDED
        self._topics[t] = None
        return AddResult.OK

    def remove(self, topic: str) -> RemoveResult:
        t = normalize_topic(topic)
        if t not in self._topics:
            return RemoveResult.NOT_FOUND
        del self._topics[t]
        return RemoveResult.OK

    def list(self) -> list[str]:  # noqa: A003
        return list(self._topics)

    def __contains__(self, topic: object) -> bool:
        return isinstance(topic, str) and normalize_topic(topic) in self._topics

    def __len__(self) -> int:
        return len(self._topics)
