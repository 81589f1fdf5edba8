# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""Exception hierarchy for the scripted filter stage."""


class FilterError(Exception):
    """Base class for filter stage errors."""

    pass


class ConfigError(FilterError):
    """Raised when a configuration category is malformed."""

    pass


class RuntimeUnavailableError(FilterError):
    """Raised when the embedded script runtime cannot be initialised."""

    pass


class ScriptLoadError(FilterError):
    """Raised when a script module cannot be imported or bound."""

    pass


class FilterInitError(FilterError):
    """Raised when stage construction must be aborted."""

    pass


class MarshalError(FilterError):
    """Raised when readings cannot be converted to or from native values."""

    pass


class ScriptInvocationError(FilterError):
    """Raised when a script entry point raises or cannot be called."""

    pass


class ReadingSetReleasedError(FilterError):
    """Raised when a released reading set is accessed."""

    pass
