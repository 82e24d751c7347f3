from __future__ import annotations

import argparse
import sys
import tomllib
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ScanSettings(BaseModel):
    queue_capacity: int = 250
    reachability_timeout: float = 5.0
    port_timeout: float = 1.0


class ResourceSettings(BaseModel):
    interval: float = 5.0


class WindowsSettings(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None
    domain: Optional[str] = None
    command_timeout: float = 30.0

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)


class InventorySettings(BaseModel):
    oui_file: Optional[str] = None


class Settings(BaseModel):
    db_path: str = "assetsweep.db"
    scan: ScanSettings = Field(default_factory=ScanSettings)
    resources: ResourceSettings = Field(default_factory=ResourceSettings)
    windows: WindowsSettings = Field(default_factory=WindowsSettings)
    inventory: InventorySettings = Field(default_factory=InventorySettings)


def load_config() -> Dict[str, Any]:
    """
    Load configuration from:
    1. ~/.assetsweep.toml
    2. ./assetsweep.toml

    The local file overrides the global one.
    """
    paths = [
        Path.home() / ".assetsweep.toml",
        Path("assetsweep.toml"),
    ]

    config: Dict[str, Any] = {}
    for path in paths:
        if path.exists():
            try:
                with path.open("rb") as f:
                    _deep_update(config, tomllib.load(f))
            except (OSError, tomllib.TOMLDecodeError) as e:
                print(f"warning: failed to load config {path}: {e}", file=sys.stderr)

    return config


def _deep_update(target: Dict[str, Any], source: Dict[str, Any]) -> None:
    for key, value in source.items():
        if isinstance(value, dict) and key in target and isinstance(target[key], dict):
            _deep_update(target[key], value)
        else:
            target[key] = value


def load_settings(config: Dict[str, Any]) -> Settings:
    """Build typed settings from a loaded config dict.

    ``db_path`` may live in ``[global]``; the other sections map one to one
    onto the nested settings models.
    """
    data: Dict[str, Any] = {}
    global_section = config.get("global", {})
    if "db_path" in global_section:
        data["db_path"] = global_section["db_path"]
    for section in ("scan", "resources", "windows", "inventory"):
        if isinstance(config.get(section), dict):
            data[section] = config[section]
    return Settings.model_validate(data)


def apply_config(parser: argparse.ArgumentParser, config: Dict[str, Any]) -> None:
    """
    Apply configuration values to the argument parser defaults.

    Example config:
    [global]
    db_path = "inventory.db"

    [scan]
    owner = "netops"

    Sections other than ``global`` are flattened, so a key only takes effect
    when it matches an argument destination.  The credential and
    resource-monitor sections are never applied to the parser.
    """
    defaults: Dict[str, Any] = {}

    if "global" in config:
        defaults.update(config["global"])

    for section, values in config.items():
        if section in ("global", "resources", "windows"):
            continue
        if isinstance(values, dict):
            defaults.update(values)

    parser.set_defaults(**defaults)
