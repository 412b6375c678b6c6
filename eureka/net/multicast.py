"""UDP multicast socket: group membership and per-interface sending.

How it works
------------
1. One UDP socket is bound to the shared port (default 41234) with address
   reuse, so several nodes on one host can listen side by side.
2. Each configured group is joined on each selected interface.  With no
   interfaces configured, the group is joined on the system default one.
3. Before every send the caller selects the outbound interface, because the
   default outbound interface of a single socket is ambiguous on multi-homed
   hosts.

Membership is best effort: a failed join is reported through ``on_error`` and
the remaining (group, interface) pairs are still attempted.
"""

from __future__ import annotations

import asyncio
import socket
import struct
from typing import Callable

from loguru import logger

from eureka.errors import InterfaceError, SocketError
from eureka.net.interfaces import AddressFamily, InterfaceResolver

DEFAULT_PORT = 41234
MAX_DATAGRAM = 65535

ErrorCallback = Callable[[Exception], None]
SocketFactory = Callable[[int, int], socket.socket]


class MulticastGroupManager:
    """Owns the multicast socket of one transport.

    Parameters
    ----------
    family:
        Address family of the socket; every interface used must match it.
    port:
        UDP port to bind and to send to.
    groups:
        Multicast group addresses.  Duplicates are dropped, order is kept.
    interfaces:
        Interface names to join on, or ``None`` for the system default.
    resolver:
        Interface cache used to turn names into addresses / indexes.
    ttl:
        Multicast TTL (IPv4) or hop limit (IPv6).
    loopback:
        Deliver our own datagrams to local listeners (other nodes on the
        same host).
    on_error:
        Called with a ``SocketError`` for every failed join / leave.
    """

    def __init__(
        self,
        family: AddressFamily,
        port: int,
        groups: list[str],
        interfaces: list[str] | None,
        resolver: InterfaceResolver,
        *,
        ttl: int = 1,
        loopback: bool = True,
        on_error: ErrorCallback | None = None,
        socket_factory: SocketFactory = socket.socket,
    ) -> None:
        self.family = family
        self.port = port
        self.groups = list(dict.fromkeys(groups))
        self.interfaces = list(dict.fromkeys(interfaces)) if interfaces else None
        self.resolver = resolver
        self.ttl = ttl
        self.loopback = loopback
        self._on_error = on_error
        self._socket_factory = socket_factory
        self._sock: socket.socket | None = None
        # (group, interface) pairs we actually joined
        self._memberships: list[tuple[str, str | None]] = []

    # -- lifecycle -----------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._sock is not None

    @property
    def bound_port(self) -> int:
        if self._sock is None:
            return self.port
        return self._sock.getsockname()[1]

    def open(self) -> None:
        """Create and bind the socket, then join every (group, interface) pair.

        Raises ``SocketError`` if the socket cannot be created or bound; join
        failures are only reported through ``on_error``.
        """
        sock = self._socket_factory(self.family.socket_family, socket.SOCK_DGRAM)
        try:
            self._configure(sock)
        except OSError as exc:
            sock.close()
            raise SocketError(f"bind port {self.port}", exc) from exc
        self._sock = sock
        logger.info(
            "[Eureka/Multicast] bound {} port {}",
            self.family.value, self.bound_port,
        )

        for group in self.groups:
            if self.interfaces is None:
                self._join(group, None)
            else:
                for name in self.interfaces:
                    self._join(group, name)

    def _configure(self, sock: socket.socket) -> None:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if hasattr(socket, "SO_REUSEPORT"):
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            except OSError as exc:
                logger.debug("[Eureka/Multicast] SO_REUSEPORT unavailable: {}", exc)
        if self.family is AddressFamily.IPV4:
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, self.ttl)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, int(self.loopback))
            sock.bind(("", self.port))
        else:
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_HOPS, self.ttl)
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_LOOP, int(self.loopback))
            sock.bind(("::", self.port))
        sock.setblocking(False)

    def close(self) -> None:
        """Leave all groups and close the socket."""
        if self._sock is None:
            return
        self.leave_all()
        self._sock.close()
        self._sock = None
        logger.info("[Eureka/Multicast] socket closed")

    # -- membership ----------------------------------------------------------

    def _membership_request(self, group: str, interface: str | None) -> bytes:
        if self.family is AddressFamily.IPV4:
            local = self.resolver.address_of(interface, self.family) if interface else "0.0.0.0"
            return socket.inet_aton(group) + socket.inet_aton(local)
        index = self.resolver.index_of(interface) if interface else 0
        return socket.inet_pton(socket.AF_INET6, group) + struct.pack("@I", index)

    def _set_membership(self, group: str, interface: str | None, join: bool) -> None:
        request = self._membership_request(group, interface)
        if self.family is AddressFamily.IPV4:
            option = socket.IP_ADD_MEMBERSHIP if join else socket.IP_DROP_MEMBERSHIP
            self._socket().setsockopt(socket.IPPROTO_IP, option, request)
        else:
            option = socket.IPV6_JOIN_GROUP if join else socket.IPV6_LEAVE_GROUP
            self._socket().setsockopt(socket.IPPROTO_IPV6, option, request)

    def _join(self, group: str, interface: str | None) -> None:
        where = interface or "default interface"
        try:
            self._set_membership(group, interface, join=True)
        except OSError as exc:
            logger.error("[Eureka/Multicast] join {} on {} failed: {}", group, where, exc)
            self._report(SocketError(f"join {group} on {where}", exc))
            return
        except InterfaceError as exc:
            # interface vanished between configuration and join
            logger.error("[Eureka/Multicast] join {} on {} failed: {}", group, where, exc)
            self._report(exc)
            return
        self._memberships.append((group, interface))
        logger.debug("[Eureka/Multicast] joined {} on {}", group, where)

    def leave_all(self) -> None:
        for group, interface in self._memberships:
            try:
                self._set_membership(group, interface, join=False)
            except (OSError, InterfaceError) as exc:
                logger.debug("[Eureka/Multicast] leave {} on {} failed: {}", group, interface, exc)
        self._memberships.clear()

    @property
    def memberships(self) -> list[tuple[str, str | None]]:
        return list(self._memberships)

    # -- sending / receiving -------------------------------------------------

    def select_interface(self, name: str) -> str:
        """Make *name* the outbound multicast interface; return its address."""
        address = self.resolver.address_of(name, self.family)
        try:
            if self.family is AddressFamily.IPV4:
                self._socket().setsockopt(
                    socket.IPPROTO_IP, socket.IP_MULTICAST_IF, socket.inet_aton(address)
                )
            else:
                self._socket().setsockopt(
                    socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_IF,
                    struct.pack("@I", self.resolver.index_of(name)),
                )
        except OSError as exc:
            raise SocketError(f"select interface {name}", exc) from exc
        return address

    async def send(self, data: bytes, group: str) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.sock_sendto(self._socket(), data, (group, self.port))
        except OSError as exc:
            raise SocketError(f"send to {group}:{self.port}", exc) from exc

    async def receive(self) -> tuple[bytes, tuple]:
        loop = asyncio.get_running_loop()
        try:
            return await loop.sock_recvfrom(self._socket(), MAX_DATAGRAM)
        except OSError as exc:
            raise SocketError("receive", exc) from exc

    def _socket(self) -> socket.socket:
        if self._sock is None:
            raise SocketError("use of closed socket", OSError(9, "socket is not open"))
        return self._sock

    def _report(self, exc: Exception) -> None:
        if self._on_error is not None:
            self._on_error(exc)
