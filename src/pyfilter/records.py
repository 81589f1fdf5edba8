# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""Reading and ReadingSet schemas.

A Reading is one telemetry sample: an asset code plus an ordered,
read-only mapping of datapoint name to value. A ReadingSet is the ordered
batch that moves through the pipeline as a unit.
"""

import copy
import uuid
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from pyfilter.errors import ReadingSetReleasedError


@dataclass(frozen=True)
class Reading:
    """A single telemetry sample.

    Provenance fields (id, uuid, ts, user_ts) are optional and carried
    through the filter untouched when the script returns them.
    """
    asset_code: str
    datapoints: Mapping[str, Any]
    id: Optional[int] = None
    uuid: Optional[str] = None
    ts: Optional[str] = None
    user_ts: Optional[str] = None

    def __post_init__(self):
        # Freeze a private deep copy so callers cannot mutate the reading,
        # including datapoint dicts nested inside it
        object.__setattr__(self, "datapoints", MappingProxyType(copy.deepcopy(dict(self.datapoints))))

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-friendly dict for this reading."""
        result: Dict[str, Any] = {
            "asset_code": self.asset_code,
            "reading": copy.deepcopy(dict(self.datapoints)),
        }
        for key in ("id", "uuid", "ts", "user_ts"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Reading":
        """Build a reading from {asset_code, reading, [id, uuid, ts, user_ts]}."""
        return cls(
            asset_code=data["asset_code"],
            datapoints=data["reading"],
            id=data.get("id"),
            uuid=data.get("uuid"),
            ts=data.get("ts"),
            user_ts=data.get("user_ts"),
        )


class ReadingSet:
    """An ordered batch of readings with single ownership.

    Once a replacement set exists the owner calls release(); the released
    set refuses further reads so stale data cannot leak downstream.
    """

    def __init__(self, readings: Iterable[Reading] = (), batch_id: Optional[str] = None):
        self._readings = tuple(readings)
        self.batch_id = batch_id or str(uuid.uuid4())
        self.released = False

    @property
    def readings(self) -> Tuple[Reading, ...]:
        if self.released:
            raise ReadingSetReleasedError(f"reading set {self.batch_id} has been released")
        return self._readings

    def release(self) -> None:
        """Drop the readings held by this set."""
        self._readings = ()
        self.released = True

    def asset_codes(self) -> List[str]:
        return [r.asset_code for r in self.readings]

    def to_list(self) -> List[Dict[str, Any]]:
        return [r.to_dict() for r in self.readings]

    @classmethod
    def from_list(cls, items: List[Dict[str, Any]]) -> "ReadingSet":
        return cls(Reading.from_dict(item) for item in items)

    def __iter__(self) -> Iterator[Reading]:
        return iter(self.readings)

    def __len__(self) -> int:
        return len(self.readings)

    def __repr__(self) -> str:
        state = "released" if self.released else f"{len(self._readings)} readings"
        return f"ReadingSet({self.batch_id}, {state})"
