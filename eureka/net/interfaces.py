"""Network interface enumeration for multicast membership and sending.

The resolver keeps a snapshot of the host's interfaces (taken with
``psutil.net_if_addrs``) and answers "which address does interface X have for
family Y" from that snapshot.  The transport refreshes it on a timer, so an
address change is picked up within one refresh period.
"""

from __future__ import annotations

import ipaddress
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable

import psutil
from loguru import logger

from eureka.errors import NoAddressForFamily, UnknownInterface


class AddressFamily(str, Enum):
    """Address families the transport can run on."""

    IPV4 = "ipv4"
    IPV6 = "ipv6"

    @property
    def socket_family(self) -> socket.AddressFamily:
        return socket.AF_INET if self is AddressFamily.IPV4 else socket.AF_INET6

    @property
    def default_group(self) -> str:
        """All-hosts group on the local segment."""
        return "224.0.0.1" if self is AddressFamily.IPV4 else "ff02::1"

    @classmethod
    def from_socket_family(cls, family: int) -> "AddressFamily | None":
        if family == socket.AF_INET:
            return cls.IPV4
        if family == socket.AF_INET6:
            return cls.IPV6
        return None


def strip_scope(address: str) -> str:
    """Drop an IPv6 zone suffix (``fe80::1%eth0`` -> ``fe80::1``)."""
    return address.split("%", 1)[0]


@dataclass(frozen=True)
class InterfaceDescriptor:
    """One address of one host interface."""

    name: str
    family: AddressFamily
    address: str
    internal: bool

    @property
    def link_local(self) -> bool:
        return ipaddress.ip_address(strip_scope(self.address)).is_link_local


Snapshot = frozenset[InterfaceDescriptor]


def system_snapshot() -> Snapshot:
    """Capture the current interface state of the host."""
    found: set[InterfaceDescriptor] = set()
    for name, addrs in psutil.net_if_addrs().items():
        for addr in addrs:
            family = AddressFamily.from_socket_family(addr.family)
            if family is None:
                continue  # AF_LINK / AF_PACKET
            internal = ipaddress.ip_address(strip_scope(addr.address)).is_loopback
            found.add(InterfaceDescriptor(name, family, addr.address, internal))
    return frozenset(found)


class InterfaceResolver:
    """Cached view of host interfaces.

    Parameters
    ----------
    snapshot_fn:
        Callable returning the current interface set.  Defaults to
        :func:`system_snapshot`; tests pass a fixed set.
    """

    def __init__(self, snapshot_fn: Callable[[], Iterable[InterfaceDescriptor]] | None = None) -> None:
        self._snapshot_fn = snapshot_fn or system_snapshot
        self._cache: Snapshot = self.snapshot()

    def snapshot(self) -> Snapshot:
        """Take a fresh snapshot without touching the cache."""
        return frozenset(self._snapshot_fn())

    def refresh(self) -> None:
        """Replace the cached snapshot with the current OS state."""
        fresh = self.snapshot()
        if fresh != self._cache:
            logger.debug(
                "[Eureka/Interfaces] snapshot changed: {} -> {} address(es)",
                len(self._cache), len(fresh),
            )
        self._cache = fresh

    @property
    def cached(self) -> Snapshot:
        return self._cache

    # -- queries -------------------------------------------------------------

    def default_interfaces(self, family: AddressFamily) -> list[str]:
        """Names of non-internal interfaces with an address of *family*."""
        return sorted({
            d.name for d in self._cache
            if d.family is family and not d.internal
        })

    def validate(self, names: Iterable[str], family: AddressFamily) -> None:
        """Raise unless every name exists and has an address of *family*."""
        for name in names:
            self._entries(name, family)

    def address_of(self, name: str, family: AddressFamily) -> str:
        """Return the cached address of interface *name* for *family*.

        IPv6 link-local addresses win over global ones, matching the source
        address the kernel picks for link-scope groups.
        """
        entries = self._entries(name, family)
        if family is AddressFamily.IPV6:
            entries.sort(key=lambda d: (not d.link_local, d.address))
        else:
            entries.sort(key=lambda d: d.address)
        return entries[0].address

    def index_of(self, name: str) -> int:
        """OS interface index, used for IPv6 membership and outbound selection."""
        if not any(d.name == name for d in self._cache):
            raise UnknownInterface(name)
        return socket.if_nametoindex(name)

    def _entries(self, name: str, family: AddressFamily) -> list[InterfaceDescriptor]:
        named = [d for d in self._cache if d.name == name]
        if not named:
            raise UnknownInterface(name)
        matching = [d for d in named if d.family is family]
        if not matching:
            raise NoAddressForFamily(name, family.value)
        return matching
