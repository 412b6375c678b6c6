"""Periodic, authenticated presence broadcast on top of the secure transport.

How it works
------------
1. Each node holds a JSON-serialisable announcement (``message_data``).
2. As soon as the transport is ready the announcement is broadcast, then again
   every ``broadcast_interval_ms`` (default one minute).
3. Incoming datagrams that pass authentication are parsed as UTF-8 JSON and
   relayed as ``BeaconMessage`` events; authentication failures are relayed as
   ``UnauthenticatedEvent`` so forged or relayed traffic can be told apart
   from real faults.

Key distribution and rotation are left to the caller: every node must be
started with the same password and salt.

Example::

    config = load_config("eureka.json")
    beacon = Eureka(config)
    inbox = beacon.events.subscribe(BeaconMessage)
    await beacon.start()
    msg = await inbox.get()
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from loguru import logger

from eureka.config.schema import EurekaConfig
from eureka.errors import InvalidConfiguration
from eureka.net.crypto import Codec
from eureka.net.events import (
    BeaconMessage,
    ErrorEvent,
    Event,
    EventChannel,
    MessageEvent,
    ReadyEvent,
    UnauthenticatedEvent,
    describe,
)
from eureka.net.interfaces import InterfaceResolver
from eureka.net.multicast import MulticastGroupManager
from eureka.net.scheduling import PeriodicTask, supervised_task
from eureka.net.transport import SecureMulticastTransport


def encode_message(data: Any) -> bytes:
    """Serialise *data* as compact UTF-8 JSON."""
    return json.dumps(data, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


class Eureka:
    """Discovery beacon: broadcasts this node's data and relays what others send.

    Parameters
    ----------
    config:
        Root configuration; ``config.beacon.message_data`` must be set.
    codec:
        Optional codec replacing the scrypt / ChaCha20-Poly1305 default.
    resolver, group_manager:
        Passed through to :class:`SecureMulticastTransport`.
    """

    def __init__(
        self,
        config: EurekaConfig | None = None,
        *,
        codec: Codec | None = None,
        resolver: InterfaceResolver | None = None,
        group_manager: MulticastGroupManager | None = None,
    ) -> None:
        self.config = config or EurekaConfig()
        if self.config.beacon.message_data is None:
            raise InvalidConfiguration(
                "message_data must be provided; it is the payload broadcast to other nodes"
            )
        try:
            self._payload = encode_message(self.config.beacon.message_data)
        except (TypeError, ValueError) as exc:
            raise InvalidConfiguration(f"message_data is not JSON-serialisable: {exc}") from exc

        self.transport = SecureMulticastTransport(
            self.config.transport,
            password=self.config.crypto.password,
            salt=self.config.crypto.salt,
            codec=codec,
            resolver=resolver,
            group_manager=group_manager,
        )
        self.events = EventChannel("Beacon")
        self._ready = False
        self._timer = PeriodicTask(
            "beacon-broadcast",
            self.broadcast,
            self.config.beacon.broadcast_interval_ms / 1000,
        )
        self._relay: asyncio.Task | None = None

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Start the transport and begin relaying its events."""
        queue = self.transport.events.subscribe()
        self._relay = supervised_task(self._relay_loop(queue), name="eureka-relay")
        try:
            await self.transport.start()
        except Exception:
            self._relay.cancel()
            self._relay = None
            raise

    def is_ready(self) -> bool:
        return self._ready

    async def close(self) -> None:
        """Stop broadcasting and release the transport.

        The instance cannot be restarted afterwards.
        """
        self._timer.stop()
        if self._relay is not None:
            self._relay.cancel()
            self._relay = None
        self._ready = False
        await self.transport.close()
        self.events.close()
        logger.info("[Eureka/Beacon] closed")

    async def __aenter__(self) -> "Eureka":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # -- broadcasting --------------------------------------------------------

    async def broadcast(self) -> int:
        """Send the current announcement; failures become ``ErrorEvent``."""
        logger.info("[Eureka/Beacon] sending broadcast")
        try:
            return await self.transport.send_message(self._payload)
        except Exception as exc:
            self._on_error(exc)
            return 0

    def set_broadcast_data(self, data: Any) -> None:
        """Replace the announcement; it goes out on the next tick.

        Unserialisable data is reported as an ``ErrorEvent`` and the previous
        announcement is kept.
        """
        try:
            self._payload = encode_message(data)
        except (TypeError, ValueError) as exc:
            self._on_error(exc)

    async def send_message(self, data: Any) -> int:
        """Send a one-off JSON message to every group.

        Errors are published as ``ErrorEvent`` and also raised to the caller.
        """
        try:
            return await self.transport.send_message(encode_message(data))
        except Exception as exc:
            self._on_error(exc)
            raise

    # -- relaying ------------------------------------------------------------

    async def _relay_loop(self, queue: asyncio.Queue[Event]) -> None:
        while True:
            event = await queue.get()
            self._dispatch(event)

    def _dispatch(self, event: Event) -> None:
        if isinstance(event, ReadyEvent):
            self._on_ready()
        elif isinstance(event, MessageEvent):
            self._on_message(event)
        elif isinstance(event, UnauthenticatedEvent):
            logger.warning("[Eureka/Beacon] message failed authentication: {}", event.error)
            self.events.publish(event)
        elif isinstance(event, ErrorEvent):
            self._on_error(event.error)

    def _on_ready(self) -> None:
        self._ready = True
        logger.info("[Eureka/Beacon] transport ready, announcing")
        supervised_task(self.broadcast(), name="eureka-initial-broadcast")
        self._timer.start()
        self.events.publish(ReadyEvent())

    def _on_message(self, event: MessageEvent) -> None:
        try:
            data = json.loads(event.payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            self._on_error(exc)
            return
        logger.trace("[Eureka/Beacon] message from {}: {}", event.sender, data)
        self.events.publish(BeaconMessage(data, event.sender))

    def _on_error(self, exc: Exception) -> None:
        logger.error("[Eureka/Beacon] {}", describe(exc))
        self.events.publish(ErrorEvent(exc))
