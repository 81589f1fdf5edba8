# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Host plugin interface.

The host loads this module and drives the filter through:

    plugin_info() -> dict
    plugin_init(config, output, category_name=None) -> handle | None
    plugin_ingest(handle, readings)
    plugin_reconfigure(handle, new_config)
    plugin_shutdown(handle)

plugin_init returning None aborts the pipeline set up. plugin_ingest
always passes some readings (original or filtered) to the output.
"""

import logging
from typing import Any, Dict, Optional, Union

from pyfilter import __version__
from pyfilter.config import FILTER_NAME, default_config
from pyfilter.errors import ConfigError, FilterInitError
from pyfilter.filter import FilterStage, OutputStream
from pyfilter.records import ReadingSet

logger = logging.getLogger(__name__)

PLUGIN_TYPE = "filter"
INTERFACE_VERSION = "1.0.0"


def plugin_info() -> Dict[str, Any]:
    """Return the plugin information and default configuration."""
    return {
        "name": FILTER_NAME,
        "version": __version__,
        "mode": "none",
        "type": PLUGIN_TYPE,
        "interface": INTERFACE_VERSION,
        "config": default_config(),
    }


def plugin_init(
    config: Union[str, Dict[str, Any]],
    output: OutputStream,
    category_name: Optional[str] = None,
    **stage_kwargs: Any,
) -> Optional[FilterStage]:
    """Create and initialise a filter stage.

    Extra keyword arguments (runtime_handle, asset_tracker, scripts_dir) are
    passed to FilterStage.

    Returns:
        The stage handle, or None if the pipeline must not be built.
    """
    try:
        stage = FilterStage(
            config,
            output,
            category_name=category_name or FILTER_NAME,
            **stage_kwargs,
        )
    except ConfigError as e:
        logger.error(f"Filter '{FILTER_NAME}' ({category_name}): invalid configuration: {e}")
        return None

    try:
        stage.init()
    except FilterInitError as e:
        logger.error(f"Filter '{FILTER_NAME}' ({category_name}): init failed: {e}")
        return None
    return stage


def plugin_ingest(handle: FilterStage, readings: ReadingSet) -> None:
    handle.ingest(readings)


def plugin_reconfigure(handle: FilterStage, new_config: Union[str, Dict[str, Any]]) -> bool:
    return handle.reconfigure(new_config)


def plugin_shutdown(handle: FilterStage) -> None:
    handle.shutdown()
