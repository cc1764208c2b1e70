#  Copyright (c) 2025 Tom Villani, Ph.D.
"""Custom exceptions for the panelmark library.

This module defines the failure taxonomy used by the renderers and engines.
None of these errors is allowed to escape a render pass or the scan
scheduler: each one is caught at the boundary of the operation that raised it
and converted into a local fallback (literal math text, the original diagram
source block, a retry on the next scan).

Exception Hierarchy
-------------------
- PanelmarkError (base exception)

  - LoadFailure (engine asset fetch or initialization failed)

  - ParseFailure (diagram source is syntactically invalid)

  - RenderFailure (engine raised while rendering)

  - StaleContentRace (source text changed between extraction and use)

  - ConfigError (unusable configuration given on the command line)

"""

from __future__ import annotations


class PanelmarkError(Exception):
    """Base exception class for all panelmark-specific errors.

    Parameters
    ----------
    message : str
        Human-readable description of the error
    original_error : Exception, optional
        The original exception that caused this error, if applicable

    Attributes
    ----------
    message : str
        The error message
    original_error : Exception or None
        The wrapped original exception, if any

    """

    def __init__(self, message: str, original_error: Exception | None = None):
        """Initialize the error with a message and optional original exception."""
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class LoadFailure(PanelmarkError):
    """Exception raised when a rendering engine cannot be loaded.

    Parameters
    ----------
    engine_name : str
        Name of the engine whose load failed (e.g., "latex2mathml", "kroki")
    message : str, optional
        Custom error message
    original_error : Exception, optional
        The original exception that caused this error

    """

    def __init__(self, engine_name: str, message: str | None = None, original_error: Exception | None = None):
        """Initialize the load failure with the engine name."""
        if message is None:
            message = f"Engine '{engine_name}' failed to load"
            if original_error is not None:
                message += f": {original_error}"
        super().__init__(message, original_error=original_error)
        self.engine_name = engine_name


class ParseFailure(PanelmarkError):
    """Exception raised when diagram source is rejected by its renderer.

    Parameters
    ----------
    message : str
        Description of the syntax problem
    source : str, optional
        The diagram source that failed to parse
    original_error : Exception, optional
        The original exception that caused this error

    """

    def __init__(self, message: str, source: str | None = None, original_error: Exception | None = None):
        """Initialize the parse failure."""
        super().__init__(message, original_error=original_error)
        self.source = source


class RenderFailure(PanelmarkError):
    """Exception raised when an engine throws while rendering."""


class StaleContentRace(PanelmarkError):
    """Exception raised when source text changed while it was being rendered.

    Parameters
    ----------
    expected : str
        Source text the render was started with
    actual : str
        Source text found when the render completed

    """

    def __init__(self, expected: str, actual: str):
        """Initialize the race error with both versions of the source."""
        super().__init__("Source text changed while rendering")
        self.expected = expected
        self.actual = actual


class ConfigError(PanelmarkError):
    """Exception raised for configuration problems reported to the CLI user."""


__all__ = [
    "PanelmarkError",
    "LoadFailure",
    "ParseFailure",
    "RenderFailure",
    "StaleContentRace",
    "ConfigError",
]
