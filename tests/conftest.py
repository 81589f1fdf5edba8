# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""Shared fixtures: filter scripts on disk, a private runtime, a tracker."""

import textwrap
from typing import Any, Dict, List, Tuple

import pytest

from pyfilter.assets import AssetTracker
from pyfilter.filter import FilterStage
from pyfilter.records import Reading, ReadingSet
from pyfilter.runtime import RuntimeHandle


SCRIPTS = {
    "uppercase_asset": """
        import json

        config = {}

        def set_filter_config(configuration):
            global config
            config = json.loads(configuration)
            return True

        def uppercase_asset(readings):
            for elem in readings:
                elem["asset_code"] = elem["asset_code"].upper()
            return readings
    """,
    "recording_filter": """
        import json

        configs = []
        seen = []

        def set_filter_config(configuration):
            configs.append(json.loads(configuration))
            return True

        def recording_filter(readings):
            seen.append(readings)
            return readings
    """,
    "first_only": """
        def set_filter_config(configuration):
            return True

        def first_only(readings):
            first = readings[0]
            return [{"asset_code": first["asset_code"], "reading": {"count": len(readings)}}]
    """,
    "raising_filter": """
        def set_filter_config(configuration):
            return True

        def raising_filter(readings):
            raise ValueError("boom")
    """,
    "malformed_result": """
        def set_filter_config(configuration):
            return True

        def malformed_result(readings):
            return {"asset_code": "not-a-list"}
    """,
    "bad_config": """
        import json

        def set_filter_config(configuration):
            data = json.loads(configuration)
            if data.get("fail"):
                raise RuntimeError("rejected configuration")
            return True

        def bad_config(readings):
            return readings
    """,
    "always_bad_config": """
        def set_filter_config(configuration):
            raise RuntimeError("never configurable")

        def always_bad_config(readings):
            return readings
    """,
    "no_filter_entry": """
        def set_filter_config(configuration):
            return True

        def something_else(readings):
            return readings
    """,
    "broken_syntax": """
        def set_filter_config(configuration)
            return True
    """,
    "south1_script_scale": """
        def set_filter_config(configuration):
            return True

        def scale(readings):
            for elem in readings:
                elem["reading"] = {k: v * 10 for k, v in elem["reading"].items()}
            return readings
    """,
    "exiting_filter": """
        import sys

        def set_filter_config(configuration):
            return True

        def exiting_filter(readings):
            sys.exit(3)
    """,
    "self_referencing": """
        def set_filter_config(configuration):
            return True

        def self_referencing(readings):
            for elem in readings:
                elem["reading"]["self"] = elem["reading"]
            return readings
    """,
    "retaining_filter": """
        last = []

        def set_filter_config(configuration):
            return True

        def retaining_filter(readings):
            if last:
                last[0][0]["reading"]["nested"]["x"] = 999
            last[:] = [readings]
            return readings
    """,
}


@pytest.fixture
def scripts_dir(tmp_path):
    """Directory holding every test script."""
    directory = tmp_path / "scripts"
    directory.mkdir()
    for name, source in SCRIPTS.items():
        (directory / f"{name}.py").write_text(textwrap.dedent(source))
    return directory


@pytest.fixture
def runtime_handle():
    """A private runtime handle, finalised after the test."""
    handle = RuntimeHandle()
    yield handle
    while handle.count:
        handle.release()


class RecordingTracker(AssetTracker):
    """AssetTracker that also records every call, duplicates included."""

    def __init__(self):
        super().__init__()
        self.calls: List[Tuple[str, str, str]] = []

    def add_asset_tracking_tuple(self, category_name: str, asset: str, event: str) -> None:
        self.calls.append((category_name, asset, event))
        super().add_asset_tracking_tuple(category_name, asset, event)


@pytest.fixture
def tracker():
    return RecordingTracker()



def make_category(script: str = "", enable: bool = True, config: str = "{}") -> Dict[str, Any]:
    """Build a configuration category with user values applied."""
    return {
        "plugin": {"type": "string", "default": "pyfilter", "value": "pyfilter"},
        "enable": {"type": "boolean", "default": "false", "value": "true" if enable else "false"},
        "config": {"type": "JSON", "default": "{}", "value": config},
        "script": {"type": "script", "default": "", "value": script},
    }


def make_readings(*items) -> ReadingSet:
    """make_readings(("temp1", {"c": 21.5}), ...)"""
    return ReadingSet(Reading(asset_code=asset, datapoints=dp) for asset, dp in items)


@pytest.fixture
def make_stage(scripts_dir, runtime_handle, tracker):
    """Factory returning (stage, outputs) for a script; stage is initialised."""
    stages: List[FilterStage] = []

    def _make(script: str = "", enable: bool = True, config: str = "{}", init: bool = True):
        outputs: List[ReadingSet] = []
        stage = FilterStage(
            make_category(script, enable=enable, config=config),
            outputs.append,
            category_name="test-filter",
            runtime_handle=runtime_handle,
            asset_tracker=tracker,
            scripts_dir=scripts_dir,
        )
        if init:
            stage.init()
        stages.append(stage)
        return stage, outputs

    yield _make

    for stage in stages:
        stage.shutdown()
