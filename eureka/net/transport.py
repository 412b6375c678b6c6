"""Authenticated, encrypted messaging over UDP multicast.

Every datagram is sealed with the shared key and bound to the sender's
address: the sender uses ``"<local interface ip>:<bound port>"`` as AAD, and
the receiver rebuilds the same string from the address ``recvfrom`` reports.
A datagram replayed or relayed from another host therefore fails
authentication even though the key is shared by every node.

Sending fans out over every (interface, group) pair.  Each pair is attempted
independently; a failure on one is published as an ``ErrorEvent`` and the
rest still go out.
"""

from __future__ import annotations

import asyncio
from enum import Enum

from loguru import logger

from eureka.config.schema import TransportConfig
from eureka.errors import AuthenticationFailure, InvalidConfiguration, SocketError
from eureka.net.crypto import AeadCodec, Codec
from eureka.net.events import (
    ErrorEvent,
    EventChannel,
    MessageEvent,
    ReadyEvent,
    SenderAddress,
    UnauthenticatedEvent,
    describe,
)
from eureka.net.interfaces import AddressFamily, InterfaceResolver, strip_scope
from eureka.net.multicast import MulticastGroupManager
from eureka.net.scheduling import PeriodicTask, supervised_task


class TransportState(str, Enum):
    STARTING = "starting"
    READY = "ready"
    CLOSED = "closed"


def build_context(ip: str, port: int) -> bytes:
    """AAD for a datagram sent from / received from ``ip:port``."""
    return f"{strip_scope(ip)}:{port}".encode("utf-8")


class SecureMulticastTransport:
    """Multicast transport that encrypts and authenticates every datagram.

    Parameters
    ----------
    config:
        Socket and interface options.  Defaults to ``TransportConfig()``.
    password, salt:
        Shared secret used to derive the key.  Required unless *codec* is
        given.
    codec:
        Externally supplied codec; the transport does not close it.
    resolver:
        Interface cache; a fresh ``InterfaceResolver`` when omitted.
    group_manager:
        Socket layer; built from *config* when omitted.
    """

    def __init__(
        self,
        config: TransportConfig | None = None,
        *,
        password: str | bytes = "",
        salt: str | bytes = "",
        codec: Codec | None = None,
        resolver: InterfaceResolver | None = None,
        group_manager: MulticastGroupManager | None = None,
    ) -> None:
        self.config = config or TransportConfig()
        self.family = self.config.address_family
        self.events = EventChannel("Transport")
        self.state = TransportState.STARTING

        if codec is None:
            if not password or not salt:
                raise InvalidConfiguration(
                    "password and salt must be provided when no codec is supplied"
                )
            codec = AeadCodec(password, salt)
            self._owns_codec = True
        else:
            self._owns_codec = False
        self.codec: Codec = codec

        self.resolver = resolver or InterfaceResolver()
        if self.config.interfaces:
            # explicit configuration errors are fatal
            self.resolver.validate(self.config.interfaces, self.family)
            self.interfaces = list(dict.fromkeys(self.config.interfaces))
            join_on: list[str] | None = self.interfaces
        else:
            self.interfaces = self.resolver.default_interfaces(self.family)
            join_on = self.interfaces or None
        self.groups = list(dict.fromkeys(self.config.groups()))

        self.group_manager = group_manager or MulticastGroupManager(
            family=self.family,
            port=self.config.port,
            groups=self.groups,
            interfaces=join_on,
            resolver=self.resolver,
            ttl=self.config.multicast_ttl,
            loopback=self.config.multicast_loopback,
            on_error=self._on_socket_error,
        )
        self._refresh = PeriodicTask(
            "interface-refresh",
            self.resolver.refresh,
            self.config.interface_refresh_interval_ms / 1000,
        )
        self._listener = None
        self._send_lock = asyncio.Lock()

    # -- lifecycle -----------------------------------------------------------

    @property
    def ready(self) -> bool:
        return self.state is TransportState.READY

    @property
    def port(self) -> int:
        return self.group_manager.bound_port

    async def start(self) -> None:
        """Bind, join groups, start listening and publish ``ReadyEvent``.

        Raises ``SocketError`` if the socket cannot be bound.
        """
        if self.state is not TransportState.STARTING:
            return
        self.group_manager.open()
        self._refresh.start()
        self._listener = supervised_task(self._listen_loop(), name="eureka-listener")
        self.state = TransportState.READY
        logger.info(
            "[Eureka/Transport] ready on port {} groups={} interfaces={}",
            self.port, self.groups, self.interfaces or "default",
        )
        self.events.publish(ReadyEvent())

    async def close(self) -> None:
        """Stop the refresh timer and listener, leave groups, close the socket.

        Sends already handed to the OS are not cancelled; anything they
        report afterwards is dropped.
        """
        if self.state is TransportState.CLOSED:
            return
        self.state = TransportState.CLOSED
        self.events.close()
        self._refresh.stop()
        if self._listener is not None:
            self._listener.cancel()
            self._listener = None
        self.group_manager.close()
        if self._owns_codec and isinstance(self.codec, AeadCodec):
            self.codec.close()
        logger.info("[Eureka/Transport] closed")

    async def __aenter__(self) -> "SecureMulticastTransport":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # -- receiving -----------------------------------------------------------

    async def _listen_loop(self) -> None:
        while self.state is TransportState.READY:
            try:
                data, addr = await self.group_manager.receive()
            except SocketError as exc:
                if self.state is not TransportState.READY:
                    break
                self._on_socket_error(exc)
                await asyncio.sleep(0.1)
                continue
            self.handle_datagram(data, addr)

    def handle_datagram(self, data: bytes, addr: SenderAddress) -> None:
        """Authenticate and decrypt one inbound datagram."""
        context = build_context(addr[0], addr[1])
        try:
            plaintext = self.codec.decrypt(data, context)
        except AuthenticationFailure as exc:
            logger.warning(
                "[Eureka/Transport] unauthenticated datagram from {}:{}", addr[0], addr[1]
            )
            self.events.publish(UnauthenticatedEvent(exc, tuple(addr)))
            return
        except Exception as exc:
            logger.error(
                "[Eureka/Transport] bad datagram from {}:{}: {}", addr[0], addr[1], describe(exc)
            )
            self.events.publish(ErrorEvent(exc))
            return
        logger.trace("[Eureka/Transport] {} byte(s) from {}:{}", len(plaintext), addr[0], addr[1])
        self.events.publish(MessageEvent(plaintext, tuple(addr)))

    # -- sending -------------------------------------------------------------

    async def send_message(self, plaintext: bytes) -> int:
        """Encrypt and send *plaintext* on every (interface, group) pair.

        Returns the number of pairs that were sent successfully.  Without
        explicit or discovered interfaces, the system default interface is
        used once per group.
        """
        if self.state is not TransportState.READY:
            raise SocketError("send", OSError(107, f"transport is {self.state.value}"))
        sent = 0
        for name in self.interfaces or [None]:
            for group in self.groups:
                if await self._send_pair(plaintext, name, group):
                    sent += 1
        logger.debug(
            "[Eureka/Transport] sent {}/{} datagram(s)",
            sent, max(len(self.interfaces), 1) * len(self.groups),
        )
        return sent

    async def _send_pair(self, plaintext: bytes, interface: str | None, group: str) -> bool:
        try:
            # the outbound interface is socket-wide state; hold it until sent
            async with self._send_lock:
                if interface is None:
                    address = self._default_address()
                else:
                    address = self.group_manager.select_interface(interface)
                envelope = self.codec.encrypt(plaintext, build_context(address, self.port))
                await self.group_manager.send(envelope, group)
        except Exception as exc:
            logger.warning(
                "[Eureka/Transport] send to {} via {} failed: {}",
                group, interface or "default interface", describe(exc),
            )
            self.events.publish(ErrorEvent(exc))
            return False
        return True

    def _default_address(self) -> str:
        # Only reached when the host has no non-internal interface of our
        # family, so loopback is what the kernel will use.
        return "127.0.0.1" if self.family is AddressFamily.IPV4 else "::1"

    def _on_socket_error(self, exc: Exception) -> None:
        self.events.publish(ErrorEvent(exc))
