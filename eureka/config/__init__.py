"""Configuration module for eureka."""

from eureka.config.loader import load_config, save_config
from eureka.config.schema import BeaconConfig, CryptoConfig, EurekaConfig, TransportConfig

__all__ = [
    "BeaconConfig",
    "CryptoConfig",
    "EurekaConfig",
    "TransportConfig",
    "load_config",
    "save_config",
]
