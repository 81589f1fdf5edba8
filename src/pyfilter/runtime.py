# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Embedded script runtime lifecycle.

EmbeddedRuntime - the process-wide script engine: search path, module
    import, native value accounting.
InterpreterLock - the global execution lock; hold() yields a LockGuard.
LockGuard / NativeRef - scope-bound ownership of transient native values.
RuntimeHandle - reference-counted initialise/finalise of the runtime.
"""

import copy
import importlib
import logging
import sys
import threading
from contextlib import contextmanager
from pathlib import Path
from types import ModuleType
from typing import Any, Dict, Iterator, List, Optional, Union

from pyfilter.errors import RuntimeUnavailableError, ScriptLoadError

logger = logging.getLogger(__name__)


# =============================================================================
# Native values
# =============================================================================

class NativeRef:
    """Owning handle for a transient runtime-native value."""

    def __init__(self, runtime: "EmbeddedRuntime", value: Any):
        self._runtime = runtime
        self._value = value
        self.released = False

    @property
    def value(self) -> Any:
        if self.released:
            raise RuntimeError("native reference used after release")
        return self._value

    def release(self) -> None:
        """Release the value; a second call is a no-op."""
        if self.released:
            return
        self.released = True
        self._value = None
        self._runtime._decref()


class LockGuard:
    """Proof of holding the InterpreterLock.

    Native values created through own() are released when the guard
    scope ends, before the lock itself is given up.
    """

    def __init__(self, runtime: "EmbeddedRuntime"):
        self.runtime = runtime
        self._owned: List[NativeRef] = []

    def own(self, value: Any, clone: bool = True) -> NativeRef:
        """Wrap value as a native reference scoped to this guard."""
        ref = self.runtime.new_ref(value, clone=clone)
        self._owned.append(ref)
        return ref

    def release_all(self) -> int:
        """Release every reference still owned. Returns how many were live."""
        count = 0
        while self._owned:
            ref = self._owned.pop()
            if not ref.released:
                ref.release()
                count += 1
        return count


# =============================================================================
# Runtime
# =============================================================================

class EmbeddedRuntime:
    """In-process script engine shared by every filter stage.

    Scripts are imported as ordinary modules from the installed search
    paths. finalize() unloads those modules and removes the paths again.
    """

    def __init__(self, program_name: str = "pyfilter"):
        self.program_name = program_name
        self.lock = InterpreterLock(self)
        self._initialized = False
        self._search_paths: List[str] = []
        self._modules: Dict[str, ModuleType] = {}
        self._live_refs = 0
        self._refs_lock = threading.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def live_refs(self) -> int:
        """Number of native values created and not yet released."""
        return self._live_refs

    @property
    def search_paths(self) -> List[str]:
        return list(self._search_paths)

    def initialize(self) -> None:
        if self._initialized:
            return
        logger.info(f"Initialising embedded script runtime '{self.program_name}'")
        importlib.invalidate_caches()
        self._initialized = True

    def finalize(self) -> None:
        if not self._initialized:
            return
        logger.info(f"Finalising embedded script runtime '{self.program_name}'")
        for name in list(self._modules):
            sys.modules.pop(name, None)
        self._modules.clear()
        for path in self._search_paths:
            try:
                sys.path.remove(path)
            except ValueError:
                pass
        self._search_paths.clear()
        if self._live_refs:
            logger.warning(f"Finalising runtime with {self._live_refs} native values still live")
        self._initialized = False

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeUnavailableError("embedded script runtime is not initialised")

    def add_search_path(self, path: Union[str, Path]) -> bool:
        """Put path at the front of the module search path.

        Idempotent: returns False if this runtime already installed it.
        """
        self._require_initialized()
        path_str = str(Path(path).expanduser())
        if path_str in self._search_paths:
            return False
        sys.path.insert(0, path_str)
        self._search_paths.append(path_str)
        importlib.invalidate_caches()
        logger.debug(f"Added script search path: {path_str}")
        return True

    def import_module(self, name: str) -> ModuleType:
        """Import a script module by name.

        Raises:
            ScriptLoadError: If the module is missing or fails to import.
        """
        self._require_initialized()
        if name in self._modules:
            return self._modules[name]
        try:
            module = importlib.import_module(name)
        except ModuleNotFoundError as e:
            raise ScriptLoadError(f"script module '{name}' not found: {e}") from e
        except Exception as e:
            raise ScriptLoadError(f"script module '{name}' failed to import: {e}") from e
        self._modules[name] = module
        return module

    def unload_module(self, name: str) -> None:
        if self._modules.pop(name, None) is not None:
            sys.modules.pop(name, None)

    def new_ref(self, value: Any, clone: bool = True) -> NativeRef:
        """Create a native value owned by the caller.

        With clone the value is deep-copied so the script never shares
        state with the host data model. Values returned by a script are
        adopted as-is.
        """
        self._require_initialized()
        with self._refs_lock:
            self._live_refs += 1
        return NativeRef(self, copy.deepcopy(value) if clone else value)

    def _decref(self) -> None:
        with self._refs_lock:
            self._live_refs -= 1


class InterpreterLock:
    """Global execution lock for the embedded runtime.

    Reentrant for the owning thread. Every load, call and native value
    creation/destruction happens inside hold().
    """

    def __init__(self, runtime: EmbeddedRuntime):
        self._runtime = runtime
        self._lock = threading.RLock()
        self._owner: Optional[int] = None
        self._depth = 0

    @property
    def held(self) -> bool:
        """True if the calling thread holds the lock."""
        return self._owner == threading.get_ident()

    @contextmanager
    def hold(self) -> Iterator[LockGuard]:
        self._lock.acquire()
        self._owner = threading.get_ident()
        self._depth += 1
        guard = LockGuard(self._runtime)
        try:
            yield guard
        finally:
            leaked = guard.release_all()
            if leaked:
                logger.debug(f"Released {leaked} native values at lock exit")
            self._depth -= 1
            if self._depth == 0:
                self._owner = None
            self._lock.release()


# =============================================================================
# Reference-counted handle
# =============================================================================

class RuntimeHandle:
    """Reference-counted access to the process-wide runtime.

    The first acquire() initialises the runtime, the release() that brings
    the count back to zero finalises it.
    """

    def __init__(self, runtime: Optional[EmbeddedRuntime] = None):
        self.runtime = runtime or EmbeddedRuntime()
        self._count = 0
        self._lock = threading.Lock()

    @property
    def count(self) -> int:
        return self._count

    def acquire(self) -> EmbeddedRuntime:
        """Take a reference to the runtime, initialising it if needed.

        Raises:
            RuntimeUnavailableError: If initialisation fails.
        """
        with self._lock:
            if self._count == 0:
                try:
                    self.runtime.initialize()
                except RuntimeUnavailableError:
                    raise
                except Exception as e:
                    raise RuntimeUnavailableError(f"failed to initialise script runtime: {e}") from e
            self._count += 1
            logger.debug(f"Runtime acquired (refs={self._count})")
            return self.runtime

    def release(self) -> None:
        with self._lock:
            if self._count == 0:
                logger.warning("Runtime release without matching acquire ignored")
                return
            self._count -= 1
            logger.debug(f"Runtime released (refs={self._count})")
            if self._count == 0:
                # Finalising touches runtime state, so take the execution lock
                with self.runtime.lock.hold():
                    self.runtime.finalize()


_process_handle: Optional[RuntimeHandle] = None
_process_handle_lock = threading.Lock()


def get_runtime_handle() -> RuntimeHandle:
    """Return the process-scoped runtime handle, creating it on first use."""
    global _process_handle
    with _process_handle_lock:
        if _process_handle is None:
            _process_handle = RuntimeHandle()
        return _process_handle
