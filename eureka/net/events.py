"""Typed events published by the transport and the broadcast layer.

Consumers call :meth:`EventChannel.subscribe` and read from the returned
queue.  Every subscriber gets its own copy of each event, so several
independent consumers can watch one transport.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Union

from loguru import logger

from eureka.errors import AuthenticationFailure, EurekaError

# (host, port) as reported by recvfrom; IPv6 adds flowinfo and scope id.
SenderAddress = tuple[Any, ...]


@dataclass(frozen=True)
class ReadyEvent:
    """Socket bound and group joins attempted."""


@dataclass(frozen=True)
class MessageEvent:
    """An authenticated datagram; ``payload`` is the plaintext."""

    payload: bytes
    sender: SenderAddress = field(default=())


@dataclass(frozen=True)
class UnauthenticatedEvent:
    """A datagram failed tag verification (forged, relayed, or wrong key)."""

    error: AuthenticationFailure
    sender: SenderAddress = field(default=())


@dataclass(frozen=True)
class ErrorEvent:
    """Any other runtime failure: malformed input, socket or send errors."""

    error: Exception


@dataclass(frozen=True)
class BeaconMessage:
    """A decoded JSON message relayed by the broadcast layer."""

    data: Any
    sender: SenderAddress = field(default=())


Event = Union[ReadyEvent, MessageEvent, UnauthenticatedEvent, ErrorEvent, BeaconMessage]


class EventChannel:
    """Multi-consumer broadcast of events.

    Publishing never blocks: subscriber queues are unbounded.  Once the
    channel is closed, further publishes are dropped.
    """

    def __init__(self, name: str = "events") -> None:
        self.name = name
        self._subscribers: list[tuple[asyncio.Queue[Event], tuple[type, ...]]] = []
        self._closed = False

    def subscribe(self, *kinds: type) -> asyncio.Queue[Event]:
        """Return a new queue receiving events of *kinds* (all when empty)."""
        queue: asyncio.Queue[Event] = asyncio.Queue()
        self._subscribers.append((queue, kinds))
        return queue

    def unsubscribe(self, queue: asyncio.Queue[Event]) -> None:
        self._subscribers = [(q, k) for q, k in self._subscribers if q is not queue]

    def publish(self, event: Event) -> None:
        if self._closed:
            logger.trace("[Eureka/{}] dropped {} after close", self.name, type(event).__name__)
            return
        for queue, kinds in self._subscribers:
            if not kinds or isinstance(event, kinds):
                queue.put_nowait(event)

    def publish_error(self, error: Exception) -> None:
        self.publish(ErrorEvent(error))

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True


def describe(error: Exception) -> str:
    """Short log-friendly description of an error carried by an event."""
    if isinstance(error, EurekaError):
        return f"{type(error).__name__}: {error}"
    return repr(error)
