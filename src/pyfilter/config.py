# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Configuration category handling.

A category is a dict of item name -> item dict. Each item carries a
"default" and, once the host has applied user settings, a "value".
"""

import copy
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from pyfilter.errors import ConfigError

FILTER_NAME = "pyfilter"

# Relative to the data directory
SCRIPTS_SUBDIR = "scripts"

DEFAULT_CONFIG: Dict[str, Dict[str, str]] = {
    "plugin": {
        "description": "Python script filter plugin",
        "type": "string",
        "readonly": "true",
        "default": FILTER_NAME,
    },
    "enable": {
        "description": "A switch that can be used to enable or disable execution of the Python script filter.",
        "type": "boolean",
        "displayName": "Enabled",
        "default": "false",
    },
    "config": {
        "description": "Python script filter configuration.",
        "type": "JSON",
        "displayName": "Configuration",
        "order": "2",
        "default": "{}",
    },
    "script": {
        "description": "Python module to load.",
        "type": "script",
        "displayName": "Python Script",
        "order": "1",
        "default": "",
    },
}


def _to_bool(value) -> bool:
    """Convert value to boolean, handling string 'true'/'false' from the host."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in ("true", "1", "yes")
    return bool(value)


def default_config() -> Dict[str, Dict[str, str]]:
    """Return a fresh copy of the default category."""
    return copy.deepcopy(DEFAULT_CONFIG)


def get_data_dir() -> Path:
    """Get the host data directory.

    Order:
    1. $FLEDGE_DATA (if set)
    2. $FLEDGE_ROOT/data (if set)
    3. ~/.pyfilter/data
    """
    env_data = os.environ.get("FLEDGE_DATA")
    if env_data:
        return Path(env_data)

    env_root = os.environ.get("FLEDGE_ROOT")
    if env_root:
        return Path(env_root) / "data"

    return Path("~/.pyfilter/data").expanduser()


def get_scripts_dir(data_dir: Optional[Path] = None) -> Path:
    """Directory script modules are loaded from."""
    return (data_dir or get_data_dir()) / SCRIPTS_SUBDIR


def _item_value(item: Any) -> Any:
    if isinstance(item, dict):
        if "value" in item:
            return item["value"]
        return item.get("default")
    # Already flattened
    return item


@dataclass
class FilterConfig:
    """The filter settings extracted from a configuration category."""
    name: str
    enabled: bool = False
    script: str = ""
    script_config: str = "{}"

    @classmethod
    def from_category(
        cls, category: Union[str, Dict[str, Any]], name: Optional[str] = None
    ) -> "FilterConfig":
        """Parse a category dict or its JSON text.

        Raises:
            ConfigError: If the category is not a JSON object.
        """
        if isinstance(category, str):
            try:
                category = json.loads(category)
            except json.JSONDecodeError as e:
                raise ConfigError(f"configuration is not valid JSON: {e}")
        if not isinstance(category, dict):
            raise ConfigError(
                f"configuration must be an object, got {type(category).__name__}"
            )

        script_config = _item_value(category.get("config", "{}"))
        if script_config is None:
            script_config = "{}"
        if not isinstance(script_config, str):
            # Host may hand over an already-parsed JSON item
            script_config = json.dumps(script_config)

        script = _item_value(category.get("script", "")) or ""
        if not isinstance(script, str):
            raise ConfigError(f"'script' must be a string, got {type(script).__name__}")

        return cls(
            name=name or FILTER_NAME,
            enabled=_to_bool(_item_value(category.get("enable", "false"))),
            script=script.strip(),
            script_config=script_config,
        )


def load_category_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Load a configuration category from a YAML or JSON file.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ConfigError: If the file doesn't contain a mapping.
    """
    path = Path(path).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with open(path) as f:
            # YAML is a superset of JSON, so one loader serves both
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping")

    return data
