# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
FilterStage - a pipeline filter whose logic lives in a user Python script.

Lifecycle:
    UNINITIALIZED -> AWAITING_SCRIPT -> DISABLED | ACTIVE
                  -> SHUTTING_DOWN -> TERMINATED

Any failure in the scripted logic degrades a single ingest call to
passthrough of the original readings. A stage whose script could not be
loaded at init stays DISABLED for its lifetime.
"""

import logging
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from pyfilter.assets import AssetTracker, get_asset_tracker
from pyfilter.binding import ScriptBinding
from pyfilter.config import FILTER_NAME, FilterConfig, get_scripts_dir
from pyfilter.errors import (
    ConfigError,
    FilterInitError,
    MarshalError,
    RuntimeUnavailableError,
    ScriptInvocationError,
    ScriptLoadError,
)
from pyfilter.marshal import from_native, to_native
from pyfilter.records import ReadingSet
from pyfilter.runtime import EmbeddedRuntime, RuntimeHandle, get_runtime_handle

logger = logging.getLogger(__name__)

# Event name reported to the asset tracker
ASSET_EVENT = "Filter"

OutputStream = Callable[[ReadingSet], None]


class StageState(Enum):
    UNINITIALIZED = "uninitialized"
    AWAITING_SCRIPT = "awaiting_script"
    DISABLED = "disabled"
    ACTIVE = "active"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


class FilterStage:
    """Pipeline filter delegating to a user script."""

    def __init__(
        self,
        config: Union[str, Dict[str, Any]],
        output: OutputStream,
        category_name: str = FILTER_NAME,
        runtime_handle: Optional[RuntimeHandle] = None,
        asset_tracker: Optional[AssetTracker] = None,
        scripts_dir: Optional[Path] = None,
        name: str = FILTER_NAME,
    ):
        """
        Args:
            config: Configuration category (dict or JSON text)
            output: Called with the readings to pass onwards
            category_name: Configuration category name, used in logs and
                asset tracking
            runtime_handle: Shared runtime; defaults to the process handle
            asset_tracker: Defaults to the process tracker
            scripts_dir: Script search path; defaults to <data dir>/scripts
            name: Filter plugin name, used in logs
        """
        self.name = name
        self.category_name = category_name
        self.config = FilterConfig.from_category(config, name=category_name)
        self.output = output
        self.scripts_dir = Path(scripts_dir) if scripts_dir else get_scripts_dir()

        self._handle = runtime_handle or get_runtime_handle()
        self._tracker = asset_tracker or get_asset_tracker()
        self._runtime: Optional[EmbeddedRuntime] = None
        self._binding: Optional[ScriptBinding] = None

        # Guards enabled, script name and state; never held across a script call
        self._state_lock = threading.Lock()
        self._enabled = self.config.enabled
        self._script_name = self.config.script
        self._state = StageState.UNINITIALIZED

    # -------------------------------------------------------------------------
    # Observation
    # -------------------------------------------------------------------------

    @property
    def state(self) -> StageState:
        with self._state_lock:
            return self._state

    @property
    def enabled(self) -> bool:
        with self._state_lock:
            return self._enabled

    @property
    def script_name(self) -> str:
        with self._state_lock:
            return self._script_name

    def _set_state(self, state: StageState) -> None:
        with self._state_lock:
            self._state = state

    def _log_prefix(self, script: Optional[str] = None) -> str:
        script = self._script_name if script is None else script
        return f"Filter '{self.name}' ({self.category_name}), script '{script}'"

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def init(self) -> StageState:
        """Acquire the runtime and load the configured script.

        Returns:
            DISABLED or ACTIVE.

        Raises:
            FilterInitError: If the runtime is unavailable or the script's
                configuration entry point fails.
        """
        try:
            runtime = self._handle.acquire()
        except RuntimeUnavailableError as e:
            logger.error(f"{self._log_prefix()}: script runtime unavailable: {e}")
            self._set_state(StageState.TERMINATED)
            raise FilterInitError(str(e)) from e

        self._runtime = runtime
        self._set_state(StageState.AWAITING_SCRIPT)
        configure_failed = False

        with runtime.lock.hold() as guard:
            runtime.add_search_path(self.scripts_dir)

            script = self.script_name
            if not script:
                logger.info(f"{self._log_prefix()}: no script configured, filter disabled")
                self._disable()
                return StageState.DISABLED

            try:
                binding = ScriptBinding.from_config_value(runtime, script)
            except ScriptLoadError as e:
                logger.error(f"{self._log_prefix()}: {e}, filter disabled")
                self._disable()
                return StageState.DISABLED

            if not binding.load():
                logger.error(f"{self._log_prefix()}: script not loaded, filter disabled")
                binding.release()
                self._disable()
                return StageState.DISABLED

            if binding.call_configure(guard, self.config.script_config):
                self._binding = binding
                self._set_state(StageState.ACTIVE)
                logger.info(f"{self._log_prefix()}: filter active (enabled={self.enabled})")
            else:
                binding.release()
                configure_failed = True

        if configure_failed:
            # Runtime released outside the execution lock
            self._release_runtime()
            self._set_state(StageState.TERMINATED)
            raise FilterInitError(
                f"{self._log_prefix()}: configuration entry point failed, aborting"
            )
        return StageState.ACTIVE

    def _disable(self) -> None:
        with self._state_lock:
            self._enabled = False
            self._state = StageState.DISABLED

    def _release_runtime(self) -> None:
        if self._runtime is not None:
            self._runtime = None
            self._handle.release()

    def shutdown(self) -> None:
        """Release the script binding and the runtime. Idempotent."""
        with self._state_lock:
            if self._state in (StageState.SHUTTING_DOWN, StageState.TERMINATED):
                return
            self._state = StageState.SHUTTING_DOWN

        runtime = self._runtime
        if runtime is not None:
            # Waits for any in-flight ingest holding the lock
            with runtime.lock.hold():
                if self._binding is not None:
                    self._binding.release()
                    self._binding = None
            self._release_runtime()

        self._set_state(StageState.TERMINATED)
        logger.info(f"{self._log_prefix()}: shut down")

    # -------------------------------------------------------------------------
    # Data path
    # -------------------------------------------------------------------------

    def ingest(self, reading_set: ReadingSet) -> None:
        """Filter reading_set and pass the result onwards.

        The original readings are passed on untouched whenever the stage is
        not active or the script fails.
        """
        with self._state_lock:
            enabled = self._enabled
            active = self._state is StageState.ACTIVE
            script = self._script_name

        runtime = self._runtime
        if not (enabled and active) or runtime is None:
            self._forward(reading_set)
            return

        final = reading_set
        with runtime.lock.hold() as guard:
            binding = self._binding
            if binding is not None:
                try:
                    final = self._apply(binding, guard, reading_set, script)
                except Exception as e:
                    logger.error(
                        f"{self._log_prefix(script)}, unexpected filter error: {type(e).__name__}: {e}, "
                        f"action: pass unfiltered data onwards",
                        exc_info=e,
                    )
                    final = reading_set

        if final is not reading_set:
            reading_set.release()
        self._forward(final)

    def _apply(self, binding: ScriptBinding, guard, reading_set: ReadingSet, script: str) -> ReadingSet:
        """Run the script over reading_set. Lock must be held."""
        prefix = self._log_prefix(script)
        try:
            native = to_native(reading_set, guard)
        except MarshalError as e:
            logger.error(f"{prefix}, create filter data error: {e}, action: pass unfiltered data onwards")
            return reading_set

        try:
            result = binding.call_filter(guard, native)
        except ScriptInvocationError as e:
            logger.error(
                f"{prefix}, filter error: {e}, action: pass unfiltered data onwards",
                exc_info=e.__cause__,
            )
            return reading_set
        finally:
            native.release()

        try:
            return from_native(result)
        except MarshalError as e:
            logger.error(f"{prefix}, filter result error: {e}, action: pass unfiltered data onwards")
            return reading_set
        finally:
            result.release()

    def _forward(self, reading_set: ReadingSet) -> None:
        for reading in reading_set:
            self._tracker.add_asset_tracking_tuple(self.category_name, reading.asset_code, ASSET_EVENT)
        self.output(reading_set)

    # -------------------------------------------------------------------------
    # Reconfiguration
    # -------------------------------------------------------------------------

    def reconfigure(self, new_config: Union[str, Dict[str, Any]]) -> bool:
        """Apply a new configuration category.

        Returns:
            True if applied; False if the category is malformed or the
            script rejected its configuration (the prior configuration stays
            in effect on the script side and in self.config).
        """
        try:
            config = FilterConfig.from_category(new_config, name=self.category_name)
        except ConfigError as e:
            logger.error(f"{self._log_prefix()}: reconfigure ignored: {e}")
            return False

        with self._state_lock:
            old_script = self._script_name
            self._script_name = config.script
            # A stage that never bound a script stays disabled
            if self._state is StageState.ACTIVE:
                self._enabled = config.enabled

        if config.script != old_script:
            logger.warning(
                f"{self._log_prefix()}: script changed from '{old_script}', "
                f"restart the filter to load it"
            )

        runtime = self._runtime
        if runtime is None or self._binding is None:
            logger.debug(f"{self._log_prefix()}: no script bound, nothing to reconfigure")
            self.config = config
            return True

        with runtime.lock.hold() as guard:
            binding = self._binding
            if binding is None:
                self.config = config
                return True
            ok = binding.call_configure(guard, config.script_config)

        if not ok:
            logger.error(f"{self._log_prefix()}: reconfigure failed, previous script configuration kept")
            return False
        self.config = config
        return True
