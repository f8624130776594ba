"""Agent events and an in-process topic bus with ``*``/``#`` patterns."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from loguru import logger

log = logger

TOPIC_ROOT = 'agent'


@dataclass
class AgentEvent:
    type: str
    context: str
    data: Any = None
    status: str = ''
    timestamp: float = field(default_factory=time.time)


class EventBus(Protocol):
    def publish(self, topic: str, event: AgentEvent) -> None: ...


def agent_topic(*parts: str) -> str:
    return '.'.join([TOPIC_ROOT, *parts])


def topic_matches(pattern: str, topic: str) -> bool:
    """
    Match a dotted topic against an AMQP-style pattern.

    ``*`` matches exactly one word and ``#`` matches zero or more words.
    """
    return _match(pattern.split('.'), topic.split('.'))


def _match(pat: list[str], words: list[str]) -> bool:
    if not pat:
        return not words
    head, rest = pat[0], pat[1:]
    if head == '#':
        return any(_match(rest, words[i:]) for i in range(len(words) + 1))
    if not words:
        return False
    if head == '*' or head == words[0]:
        return _match(rest, words[1:])
    return False


class Subscription:
    def __init__(self, bus: 'LocalBus', pattern: str, callback):
        self.bus = bus
        self.pattern = pattern
        self.callback = callback

    def unsubscribe(self) -> None:
        self.bus._remove(self)


class LocalBus:
    """Synchronous in-process bus; callbacks run on the publishing thread."""

    def __init__(self):
        self._subs: list[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(
        self, pattern: str, callback: Callable[[AgentEvent], None]
    ) -> Subscription:
        sub = Subscription(self, pattern, callback)
        with self._lock:
            self._subs.append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subs:
                self._subs.remove(sub)

    def publish(self, topic: str, event: AgentEvent) -> None:
        with self._lock:
            targets = [s for s in self._subs if topic_matches(s.pattern, topic)]
        for sub in targets:
            try:
                sub.callback(event)
            except Exception as ex:
                log.warning(
                    'Subscriber for {} failed on {}: {}', sub.pattern, topic, ex
                )


class NullBus:
    def publish(self, topic: str, event: AgentEvent) -> None:
        log.trace('event {} {}', topic, event)
