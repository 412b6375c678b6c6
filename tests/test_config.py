"""Tests for the configuration schema and loader."""

import json

import pytest
from pydantic import ValidationError

from eureka.config import load_config, save_config
from eureka.config.schema import BeaconConfig, EurekaConfig, TransportConfig
from eureka.errors import InvalidConfiguration
from eureka.net.interfaces import AddressFamily


class TestTransportConfig:

    def test_defaults(self):
        cfg = TransportConfig()
        assert cfg.address_family is AddressFamily.IPV4
        assert cfg.port == 41234
        assert cfg.interface_refresh_interval_ms == 60000
        assert cfg.interfaces == []
        assert cfg.groups() == ["224.0.0.1"]

    def test_ipv6_default_group(self):
        assert TransportConfig(address_family="ipv6").groups() == ["ff02::1"]

    def test_camel_case_keys(self):
        cfg = TransportConfig.model_validate({
            "addressFamily": "ipv4",
            "multicastGroups": ["239.1.2.3"],
            "interfaceRefreshIntervalMs": 5000,
        })
        assert cfg.groups() == ["239.1.2.3"]
        assert cfg.interface_refresh_interval_ms == 5000

    def test_snake_case_keys(self):
        cfg = TransportConfig(multicast_groups=["239.1.2.3"], interfaces=["eth0"])
        assert cfg.interfaces == ["eth0"]

    @pytest.mark.parametrize("groups,family", [
        (["10.0.0.1"], "ipv4"),          # unicast
        (["ff02::1"], "ipv4"),           # wrong family
        (["224.0.0.1"], "ipv6"),
        (["not-an-address"], "ipv4"),
    ])
    def test_rejects_bad_groups(self, groups, family):
        with pytest.raises(ValidationError):
            TransportConfig(multicast_groups=groups, address_family=family)

    def test_rejects_unknown_family(self):
        with pytest.raises(ValidationError):
            TransportConfig(address_family="ipx")

    @pytest.mark.parametrize("field,value", [
        ("port", 70000),
        ("port", -1),
        ("port", 0),
        ("interface_refresh_interval_ms", 0),
        ("multicast_ttl", 0),
        ("multicast_ttl", 256),
    ])
    def test_rejects_out_of_range(self, field, value):
        with pytest.raises(ValidationError):
            TransportConfig(**{field: value})


class TestBeaconConfig:

    def test_defaults(self):
        cfg = BeaconConfig()
        assert cfg.broadcast_interval_ms == 60000
        assert cfg.message_data is None

    def test_interval_positive(self):
        with pytest.raises(ValidationError):
            BeaconConfig(broadcast_interval_ms=0)


class TestEurekaConfig:

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("EUREKA_CRYPTO__PASSWORD", "from-env")
        monkeypatch.setenv("EUREKA_TRANSPORT__PORT", "50000")
        cfg = EurekaConfig()
        assert cfg.crypto.password == "from-env"
        assert cfg.transport.port == 50000


class TestLoader:

    def test_missing_file_gives_defaults(self, tmp_path):
        cfg = load_config(tmp_path / "nope.json")
        assert cfg.transport.port == 41234

    def test_loads_camel_case_file(self, tmp_path):
        path = tmp_path / "eureka.json"
        path.write_text(json.dumps({
            "transport": {"port": 45000, "multicastGroups": ["239.0.0.9"]},
            "crypto": {"password": "password", "salt": "salt"},
            "beacon": {"broadcastIntervalMs": 1000, "messageData": {"name": "hub"}},
        }), encoding="utf-8")
        cfg = load_config(path)
        assert cfg.transport.port == 45000
        assert cfg.transport.groups() == ["239.0.0.9"]
        assert cfg.crypto.salt == "salt"
        assert cfg.beacon.message_data == {"name": "hub"}

    def test_overrides_win(self, tmp_path):
        cfg = load_config(None, crypto={"password": "p", "salt": "s"})
        assert cfg.crypto.password == "p"

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "eureka.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(InvalidConfiguration):
            load_config(path)

    def test_invalid_values(self, tmp_path):
        path = tmp_path / "eureka.json"
        path.write_text(json.dumps({"transport": {"port": 99999}}), encoding="utf-8")
        with pytest.raises(InvalidConfiguration):
            load_config(path)

    def test_save_then_load(self, tmp_path):
        path = tmp_path / "sub" / "eureka.json"
        config = EurekaConfig(
            transport=TransportConfig(address_family="ipv6", interfaces=["eth0"]),
            beacon=BeaconConfig(message_data={"roles": ["sensor"]}),
        )
        save_config(config, path)
        raw = json.loads(path.read_text(encoding="utf-8"))
        assert raw["transport"]["addressFamily"] == "ipv6"
        assert raw["beacon"]["messageData"] == {"roles": ["sensor"]}
        loaded = load_config(path)
        assert loaded.transport.address_family is AddressFamily.IPV6
        assert loaded.transport.interfaces == ["eth0"]
