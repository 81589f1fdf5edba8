# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""Minimal asset tracker for recording which assets pass through a filter."""

import logging
import threading
from typing import List, NamedTuple, Optional, Set

logger = logging.getLogger(__name__)


class AssetTrackingTuple(NamedTuple):
    category_name: str
    asset: str
    event: str


class AssetTracker:
    """In-process asset tracker.

    Keeps each distinct (category, asset, event) tuple once, in first-seen
    order; a host integration replaces this with one that forwards to its
    own tracking service.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._seen: Set[AssetTrackingTuple] = set()
        self.tuples: List[AssetTrackingTuple] = []

    def add_asset_tracking_tuple(self, category_name: str, asset: str, event: str) -> None:
        """Record that asset was seen by category_name."""
        entry = AssetTrackingTuple(category_name, asset, event)
        with self._lock:
            if entry in self._seen:
                return
            self._seen.add(entry)
            self.tuples.append(entry)
        logger.debug(f"Asset tracking: {category_name} {asset} {event}")

    def clear(self) -> None:
        with self._lock:
            self._seen.clear()
            self.tuples.clear()


_tracker: Optional[AssetTracker] = None
_tracker_lock = threading.Lock()


def get_asset_tracker() -> AssetTracker:
    """Return the process-wide asset tracker."""
    global _tracker
    with _tracker_lock:
        if _tracker is None:
            _tracker = AssetTracker()
        return _tracker
