# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Script binding: resolve a user script module and hold its entry points.

A script module must expose two callables:

- set_filter_config(configuration)  # input is the JSON config as a string
- <name>(readings)                  # list of dicts in, list of dicts out

<name> is the module name. Modules uploaded by the host are stored as
<category>_script_<name>.py; for those the filter entry point is <name>.
"""

import logging
import re
import traceback
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Optional, Union

from pyfilter.errors import ScriptInvocationError, ScriptLoadError
from pyfilter.runtime import EmbeddedRuntime, LockGuard, NativeRef

logger = logging.getLogger(__name__)

CONFIG_ENTRY_POINT = "set_filter_config"
SCRIPT_NAME_PREFIX = "_script_"
SCRIPT_EXTENSION = ".py"

# A Python module identifier
NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def module_name_from_value(value: str) -> str:
    """Derive the module name from the configured script value.

    Accepts a bare module name, a file name or a path:
    "readings_filter", "readings_filter.py", "/x/readings_filter.py".

    Raises:
        ScriptLoadError: If the result is not a valid module name.
    """
    name = Path(value.strip()).name
    if name.endswith(SCRIPT_EXTENSION):
        name = name[: -len(SCRIPT_EXTENSION)]
    if not name:
        raise ScriptLoadError("script name cannot be empty")
    if not NAME_PATTERN.match(name):
        raise ScriptLoadError(
            f"script name must be a valid Python module name, got: {name}"
        )
    return name


def entry_point_name(module_name: str) -> str:
    """Name of the filter callable for a module."""
    idx = module_name.rfind(SCRIPT_NAME_PREFIX)
    if idx != -1:
        method = module_name[idx + len(SCRIPT_NAME_PREFIX):]
        if method:
            return method
    return module_name


class ScriptBinding:
    """Resolved capabilities of one user script module.

    The module and both callables are held from bind time until
    release(). Every method must be called with the InterpreterLock held.
    """

    def __init__(self, runtime: EmbeddedRuntime, module_name: str):
        self.runtime = runtime
        self.module_name = module_name
        self.entry_point = entry_point_name(module_name)
        self.module: Optional[ModuleType] = None
        self._configure_fn: Optional[Callable[[str], Any]] = None
        self._filter_fn: Optional[Callable[[Any], Any]] = None
        self._config_ref: Optional[NativeRef] = None
        self.released = False

    @classmethod
    def from_config_value(cls, runtime: EmbeddedRuntime, value: str) -> "ScriptBinding":
        return cls(runtime, module_name_from_value(value))

    @property
    def bound(self) -> bool:
        return self._configure_fn is not None and self._filter_fn is not None

    def _check_lock(self) -> None:
        if not self.runtime.lock.held:
            raise RuntimeError("InterpreterLock must be held to use a script binding")

    def resolve(self, search_path: Optional[Union[str, Path]] = None) -> Optional[ModuleType]:
        """Load the script module.

        Returns:
            The module, or None if it is absent or fails to import.
        """
        self._check_lock()
        if search_path is not None:
            self.runtime.add_search_path(search_path)
        try:
            module = self.runtime.import_module(self.module_name)
        except ScriptLoadError as e:
            logger.error(f"Script '{self.module_name}' could not be loaded: {e}")
            if e.__cause__ is not None and not isinstance(e.__cause__, ModuleNotFoundError):
                logger.error(_format_exception(e.__cause__))
            return None
        self.module = module
        return module

    def bind_entry_points(self, module: ModuleType) -> bool:
        """Look up both entry points on module. Returns False if either is missing."""
        self._check_lock()
        configure_fn = getattr(module, CONFIG_ENTRY_POINT, None)
        filter_fn = getattr(module, self.entry_point, None)

        if not callable(configure_fn):
            logger.error(
                f"Script '{self.module_name}' has no callable '{CONFIG_ENTRY_POINT}' entry point"
            )
            return False
        if not callable(filter_fn):
            logger.error(
                f"Script '{self.module_name}' has no callable '{self.entry_point}' entry point"
            )
            return False

        self.module = module
        self._configure_fn = configure_fn
        self._filter_fn = filter_fn
        return True

    def load(self, search_path: Optional[Union[str, Path]] = None) -> bool:
        """resolve() then bind_entry_points(). Returns True if usable."""
        module = self.resolve(search_path)
        if module is None:
            return False
        if not self.bind_entry_points(module):
            self.runtime.unload_module(self.module_name)
            self.module = None
            return False
        return True

    def call_configure(self, guard: LockGuard, config_json: str) -> bool:
        """Pass the configuration to the script. Returns True on success."""
        self._check_lock()
        if not self.bound:
            return False

        # Rebuilt on every call so a failed reconfigure never leaves a stale copy
        if self._config_ref is not None:
            self._config_ref.release()
        self._config_ref = guard.own(config_json)
        try:
            self._configure_fn(self._config_ref.value)
        except (Exception, SystemExit) as e:
            logger.error(
                f"Script '{self.module_name}' {CONFIG_ENTRY_POINT} failed: {e}\n"
                f"{_format_exception(e)}"
            )
            return False
        finally:
            # The script keeps its own copy of what it needs
            self._config_ref.release()
            self._config_ref = None
        return True

    def call_filter(self, guard: LockGuard, native: NativeRef) -> NativeRef:
        """Invoke the filter entry point with one native list.

        Returns:
            The script's return value, owned by guard.

        Raises:
            ScriptInvocationError: If the script raises, calls sys.exit(), or returns None.
        """
        self._check_lock()
        if not self.bound:
            raise ScriptInvocationError(f"script '{self.module_name}' is not bound")
        try:
            result = self._filter_fn(native.value)
        except (Exception, SystemExit) as e:
            raise ScriptInvocationError(
                f"script '{self.module_name}' {self.entry_point} raised {type(e).__name__}: {e}"
            ) from e
        if result is None:
            raise ScriptInvocationError(
                f"script '{self.module_name}' {self.entry_point} returned None"
            )
        return guard.own(result, clone=False)

    def release(self) -> None:
        """Drop the module and callables. Safe to call more than once."""
        if self.released:
            return
        self.released = True
        if self._config_ref is not None:
            self._config_ref.release()
            self._config_ref = None
        self._configure_fn = None
        self._filter_fn = None
        if self.module is not None:
            self.runtime.unload_module(self.module_name)
            self.module = None


def _format_exception(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).rstrip()
