# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Data marshalling between ReadingSet and runtime-native values.

Native shape: a list with one dict per reading:

    {"asset_code": str, "reading": {datapoint: value, ...},
     "id": int, "uuid": str, "ts": str, "user_ts": str}

The provenance keys are optional in both directions.
"""

from numbers import Number
from typing import Any, Dict, List

from pyfilter.errors import MarshalError
from pyfilter.records import Reading, ReadingSet
from pyfilter.runtime import LockGuard, NativeRef

PROVENANCE_KEYS = ("id", "uuid", "ts", "user_ts")


def _check_value(asset: str, name: str, value: Any) -> None:
    """Raise MarshalError unless value is a supported datapoint value."""
    if isinstance(value, (bool, int, float, str)):
        return
    if isinstance(value, list):
        # Arrays are numeric only
        for item in value:
            if isinstance(item, bool) or not isinstance(item, Number):
                raise MarshalError(
                    f"asset '{asset}' datapoint '{name}': array items must be numbers, "
                    f"got {type(item).__name__}"
                )
        return
    if isinstance(value, dict):
        for key, nested in value.items():
            if not isinstance(key, str):
                raise MarshalError(
                    f"asset '{asset}' datapoint '{name}': nested keys must be strings"
                )
            _check_value(asset, f"{name}.{key}", nested)
        return
    raise MarshalError(
        f"asset '{asset}' datapoint '{name}': unsupported value type {type(value).__name__}"
    )


def _reading_to_dict(reading: Reading) -> Dict[str, Any]:
    datapoints: Dict[str, Any] = {}
    for name, value in reading.datapoints.items():
        _check_value(reading.asset_code, name, value)
        datapoints[name] = value

    item: Dict[str, Any] = {"asset_code": reading.asset_code, "reading": datapoints}
    for key in PROVENANCE_KEYS:
        value = getattr(reading, key)
        if value is not None:
            item[key] = value
    return item


def to_native(reading_set: ReadingSet, guard: LockGuard) -> NativeRef:
    """Convert a reading set into a native list owned by guard.

    Raises:
        MarshalError: If any reading holds an unsupported value. No native
            value is created in that case.
    """
    try:
        items = [_reading_to_dict(r) for r in reading_set.readings]
    except RecursionError as e:
        raise MarshalError("readings are nested too deeply or refer to themselves") from e
    return guard.own(items)


def _dict_to_reading(index: int, item: Any) -> Reading:
    if not isinstance(item, dict):
        raise MarshalError(f"element {index}: expected dict, got {type(item).__name__}")

    asset = item.get("asset_code")
    if not isinstance(asset, str) or not asset:
        raise MarshalError(f"element {index}: 'asset_code' must be a non-empty string")

    datapoints = item.get("reading")
    if not isinstance(datapoints, dict):
        raise MarshalError(f"element {index} ({asset}): 'reading' must be a dict")

    for name, value in datapoints.items():
        if not isinstance(name, str):
            raise MarshalError(f"element {index} ({asset}): datapoint names must be strings")
        _check_value(asset, name, value)

    id_value = item.get("id")
    if id_value is not None and (isinstance(id_value, bool) or not isinstance(id_value, int)):
        raise MarshalError(f"element {index} ({asset}): 'id' must be an integer")
    for key in ("uuid", "ts", "user_ts"):
        if item.get(key) is not None and not isinstance(item[key], str):
            raise MarshalError(f"element {index} ({asset}): '{key}' must be a string")

    return Reading(
        asset_code=asset,
        datapoints=datapoints,
        id=id_value,
        uuid=item.get("uuid"),
        ts=item.get("ts"),
        user_ts=item.get("user_ts"),
    )


def from_native(value: Any) -> ReadingSet:
    """Build a new reading set from a script's native return value.

    Raises:
        MarshalError: If value is not a list of per-asset dicts. Partial
            results are never returned.
    """
    if isinstance(value, NativeRef):
        value = value.value
    if not isinstance(value, list):
        raise MarshalError(f"filter result must be a list, got {type(value).__name__}")

    try:
        readings: List[Reading] = [_dict_to_reading(i, item) for i, item in enumerate(value)]
    except RecursionError as e:
        raise MarshalError("filter result is nested too deeply or refers to itself") from e
    return ReadingSet(readings)
