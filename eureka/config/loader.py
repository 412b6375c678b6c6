"""Configuration loading utilities."""

import json
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError

from eureka.config.schema import EurekaConfig
from eureka.errors import InvalidConfiguration


def load_config(config_path: Path | str | None = None, **overrides: Any) -> EurekaConfig:
    """Load configuration from a JSON file, falling back to defaults.

    Keys may be camelCase or snake_case.  ``EUREKA_*`` environment variables
    fill in anything the file leaves out; *overrides* win over both.
    """
    data: dict[str, Any] = {}
    if config_path is not None:
        path = Path(config_path).expanduser()
        if path.exists():
            try:
                with open(path, encoding="utf-8") as f:
                    data = json.load(f)
            except (json.JSONDecodeError, OSError) as exc:
                raise InvalidConfiguration(f"cannot read config {path}: {exc}") from exc
            logger.debug("[Eureka/Config] loaded {}", path)
        else:
            logger.info("[Eureka/Config] {} not found, using defaults", path)
    data.update(overrides)
    try:
        return EurekaConfig(**data)
    except ValidationError as exc:
        raise InvalidConfiguration(str(exc)) from exc


def save_config(config: EurekaConfig, config_path: Path | str) -> None:
    """Write *config* as camelCase JSON."""
    path = Path(config_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="json", by_alias=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
