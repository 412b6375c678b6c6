"""Tests for interface enumeration and lookup."""

import socket
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from eureka.errors import NoAddressForFamily, UnknownInterface
from eureka.net.interfaces import (
    AddressFamily,
    InterfaceDescriptor,
    InterfaceResolver,
    strip_scope,
    system_snapshot,
)

V4 = AddressFamily.IPV4
V6 = AddressFamily.IPV6

HOST = [
    InterfaceDescriptor("lo", V4, "127.0.0.1", True),
    InterfaceDescriptor("lo", V6, "::1", True),
    InterfaceDescriptor("eth0", V4, "192.168.1.20", False),
    InterfaceDescriptor("eth0", V6, "2001:db8::20", False),
    InterfaceDescriptor("eth0", V6, "fe80::20%eth0", False),
    InterfaceDescriptor("wlan0", V4, "10.0.0.7", False),
    InterfaceDescriptor("tun0", V6, "fd00::1", False),
]


def make_resolver(entries=HOST):
    return InterfaceResolver(snapshot_fn=lambda: list(entries))


class TestAddressFamily:

    def test_socket_family(self):
        assert V4.socket_family == socket.AF_INET
        assert V6.socket_family == socket.AF_INET6

    def test_default_groups(self):
        assert V4.default_group == "224.0.0.1"
        assert V6.default_group == "ff02::1"

    def test_from_string(self):
        assert AddressFamily("ipv6") is V6

    def test_from_socket_family(self):
        assert AddressFamily.from_socket_family(socket.AF_INET) is V4
        assert AddressFamily.from_socket_family(socket.AF_INET6) is V6
        assert AddressFamily.from_socket_family(-1) is None


class TestStripScope:

    def test_strips_zone(self):
        assert strip_scope("fe80::1%eth0") == "fe80::1"

    def test_plain_addresses_untouched(self):
        assert strip_scope("10.0.0.1") == "10.0.0.1"
        assert strip_scope("2001:db8::1") == "2001:db8::1"


class TestSystemSnapshot:
    """psutil output -> descriptors."""

    def test_maps_psutil_entries(self):
        fake = {
            "lo": [SimpleNamespace(family=socket.AF_INET, address="127.0.0.1")],
            "eth0": [
                SimpleNamespace(family=socket.AF_INET, address="192.168.1.20"),
                SimpleNamespace(family=socket.AF_INET6, address="fe80::20%eth0"),
                SimpleNamespace(family=-1, address="aa:bb:cc:dd:ee:ff"),  # link layer
            ],
        }
        with patch("eureka.net.interfaces.psutil.net_if_addrs", return_value=fake):
            snap = system_snapshot()
        assert InterfaceDescriptor("lo", V4, "127.0.0.1", True) in snap
        assert InterfaceDescriptor("eth0", V4, "192.168.1.20", False) in snap
        assert InterfaceDescriptor("eth0", V6, "fe80::20%eth0", False) in snap
        assert len(snap) == 3

    def test_real_host_has_consistent_families(self):
        for d in system_snapshot():
            assert d.family in (V4, V6)


class TestDefaultInterfaces:

    def test_ipv4_excludes_internal(self):
        assert make_resolver().default_interfaces(V4) == ["eth0", "wlan0"]

    def test_ipv6(self):
        assert make_resolver().default_interfaces(V6) == ["eth0", "tun0"]

    def test_empty_host(self):
        assert make_resolver([]).default_interfaces(V4) == []


class TestValidate:

    def test_known_interfaces_pass(self):
        make_resolver().validate(["eth0", "wlan0"], V4)

    def test_unknown_interface(self):
        with pytest.raises(UnknownInterface) as info:
            make_resolver().validate(["eth0", "eth9"], V4)
        assert info.value.name == "eth9"

    def test_missing_family(self):
        with pytest.raises(NoAddressForFamily) as info:
            make_resolver().validate(["wlan0"], V6)
        assert info.value.name == "wlan0"
        assert info.value.family == "ipv6"


class TestAddressOf:

    def test_ipv4(self):
        assert make_resolver().address_of("eth0", V4) == "192.168.1.20"

    def test_ipv6_prefers_link_local(self):
        assert make_resolver().address_of("eth0", V6) == "fe80::20%eth0"

    def test_ipv6_global_only(self):
        assert make_resolver().address_of("tun0", V6) == "fd00::1"

    def test_family_matches_request(self):
        resolver = make_resolver()
        assert ":" not in resolver.address_of("wlan0", V4)
        assert ":" in resolver.address_of("eth0", V6)

    def test_unknown(self):
        with pytest.raises(UnknownInterface):
            make_resolver().address_of("eth9", V4)

    def test_no_address_for_family(self):
        with pytest.raises(NoAddressForFamily):
            make_resolver().address_of("tun0", V4)


class TestRefresh:
    """The cache only changes on refresh()."""

    def test_stale_until_refresh(self):
        current = [InterfaceDescriptor("eth0", V4, "192.168.1.20", False)]
        resolver = InterfaceResolver(snapshot_fn=lambda: list(current))
        current[0] = InterfaceDescriptor("eth0", V4, "192.168.1.99", False)
        assert resolver.address_of("eth0", V4) == "192.168.1.20"
        resolver.refresh()
        assert resolver.address_of("eth0", V4) == "192.168.1.99"

    def test_snapshot_does_not_touch_cache(self):
        current = [InterfaceDescriptor("eth0", V4, "192.168.1.20", False)]
        resolver = InterfaceResolver(snapshot_fn=lambda: list(current))
        current.clear()
        assert resolver.snapshot() == frozenset()
        assert resolver.default_interfaces(V4) == ["eth0"]

    def test_cached_changes_only_on_refresh(self):
        current = [InterfaceDescriptor("eth0", V4, "192.168.1.20", False)]
        resolver = InterfaceResolver(snapshot_fn=lambda: list(current))
        before = resolver.cached
        current.append(InterfaceDescriptor("wlan0", V4, "10.0.0.7", False))
        assert resolver.cached == before
        resolver.refresh()
        assert resolver.cached == frozenset(current)

    def test_instances_do_not_share_cache(self):
        a = make_resolver()
        b = make_resolver([])
        assert a.default_interfaces(V4) and not b.default_interfaces(V4)


class TestIndexOf:

    def test_unknown_raises(self):
        with pytest.raises(UnknownInterface):
            make_resolver().index_of("eth9")

    def test_known_uses_os_index(self):
        with patch("eureka.net.interfaces.socket.if_nametoindex", return_value=3) as m:
            assert make_resolver().index_of("eth0") == 3
        m.assert_called_once_with("eth0")
