"""Configuration schema using Pydantic."""

import ipaddress
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from eureka.net.interfaces import AddressFamily


class Base(BaseModel):
    """Base model that accepts both camelCase and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CryptoConfig(Base):
    """Shared secret material for key derivation."""

    password: str = ""  # Shared by every node on the segment
    salt: str = ""  # Same salt on every node; not secret but must match


class TransportConfig(Base):
    """Multicast socket and interface options."""

    address_family: AddressFamily = AddressFamily.IPV4
    multicast_groups: list[str] = Field(default_factory=list)  # Empty = all-hosts group of the family
    interfaces: list[str] = Field(default_factory=list)  # Empty = auto-discover non-internal interfaces
    port: int = 41234
    interface_refresh_interval_ms: int = 60000
    multicast_ttl: int = 1  # Keep datagrams on the local segment
    multicast_loopback: bool = True  # Let other nodes on this host hear us

    @field_validator("port")
    @classmethod
    def _check_port(cls, v: int) -> int:
        if not 1 <= v <= 65535:
            raise ValueError(f"port must be within 1..65535, got {v}")
        return v

    @field_validator("interface_refresh_interval_ms")
    @classmethod
    def _check_refresh(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("interfaceRefreshIntervalMs must be positive")
        return v

    @field_validator("multicast_ttl")
    @classmethod
    def _check_ttl(cls, v: int) -> int:
        if not 1 <= v <= 255:
            raise ValueError(f"multicastTtl must be within 1..255, got {v}")
        return v

    @model_validator(mode="after")
    def _check_groups(self) -> "TransportConfig":
        version = 4 if self.address_family is AddressFamily.IPV4 else 6
        for group in self.multicast_groups:
            try:
                addr = ipaddress.ip_address(group)
            except ValueError as exc:
                raise ValueError(f"invalid multicast group {group!r}") from exc
            if addr.version != version or not addr.is_multicast:
                raise ValueError(
                    f"{group!r} is not an {self.address_family.value} multicast address"
                )
        return self

    def groups(self) -> list[str]:
        """Configured groups, or the all-hosts group of the family."""
        return list(self.multicast_groups) or [self.address_family.default_group]


class BeaconConfig(Base):
    """Periodic broadcast of this node's announcement."""

    broadcast_interval_ms: int = 60000
    message_data: Any = None  # Any JSON-serialisable value; required to start a beacon

    @field_validator("broadcast_interval_ms")
    @classmethod
    def _check_interval(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("broadcastIntervalMs must be positive")
        return v


class EurekaConfig(BaseSettings):
    """Root configuration for eureka."""

    model_config = SettingsConfigDict(
        env_prefix="EUREKA_",
        env_nested_delimiter="__",
    )

    transport: TransportConfig = Field(default_factory=TransportConfig)
    crypto: CryptoConfig = Field(default_factory=CryptoConfig)
    beacon: BeaconConfig = Field(default_factory=BeaconConfig)
