#  Copyright (c) 2025 Tom Villani, Ph.D.
"""Runtime configuration for panelmark.

The configuration object is supplied by the host (or read from a config file
by the CLI) and is read-only for the rest of the package. It carries the
feature flags (math, diagram, copy button, table colour, font size ...) plus
the selectors and timings the scan scheduler uses.

Configuration never fails hard: unknown keys are ignored, values of the wrong
type fall back to their defaults and a file that cannot be read or parsed
yields the default configuration. Each such fallback is logged.
"""

from __future__ import annotations

import json
import logging
import math
import re
import sys
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib  # type: ignore[import-not-found,unused-ignore]

if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

import yaml

from panelmark.constants import (
    CODE_BLOCK_SELECTOR,
    CODE_LINE_SELECTOR,
    CONTENT_SELECTOR,
    DEFAULT_FEEDBACK_INTERVAL,
    DEFAULT_FONT_SIZE,
    DEFAULT_FRAME_INTERVAL,
    DEFAULT_KROKI_URL,
    DEFAULT_MAX_WIDTH_RATIO,
    DEFAULT_ROOT_CHECK_INTERVAL,
    DEFAULT_SUCCESS_FEEDBACK_SECONDS,
    PANEL_SELECTOR,
    SECTION_SELECTOR,
    CopyButtonBottomMode,
    CopyButtonStyle,
)

logger = logging.getLogger(__name__)

# Keys used by the original JSON config files
_KEY_ALIASES = {
    "mermaid": "diagram",
}

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


@dataclass(frozen=True)
class CloneFrozenMixin:
    """Mixin providing frozen dataclass cloning capabilities."""

    def create_updated(self, **kwargs: Any) -> Self:
        """Create a new instance with updated field values.

        Parameters
        ----------
        **kwargs : Any
            Field names and their new values

        Returns
        -------
        Self
            New instance with specified fields updated

        """
        return replace(self, **kwargs)


@dataclass(frozen=True)
class PanelSelectors(CloneFrozenMixin):
    """CSS selectors describing the host panel markup.

    Parameters
    ----------
    panel : str
        Selector of the panel root the scheduler binds to.
    content : str
        Selector of a content container (one assistant message body).
    section : str
        Selector of a section boundary used when no content container encloses a change.
    code_block : str
        Selector of the element holding a fenced code block's lines.
    code_line : str
        Selector of one rendered line inside a code block.

    """

    panel: str = field(default=PANEL_SELECTOR, metadata={"help": "Panel root selector"})
    content: str = field(default=CONTENT_SELECTOR, metadata={"help": "Content container selector"})
    section: str = field(default=SECTION_SELECTOR, metadata={"help": "Section boundary selector"})
    code_block: str = field(default=CODE_BLOCK_SELECTOR, metadata={"help": "Code block selector"})
    code_line: str = field(default=CODE_LINE_SELECTOR, metadata={"help": "Code line selector"})


@dataclass(frozen=True)
class PanelConfig(CloneFrozenMixin):
    """Feature flags and settings consumed by the panel core.

    Parameters
    ----------
    math : bool, default True
        Render math notation found in content text.
    diagram : bool, default True
        Render fenced diagram blocks (``mermaid`` in config files).
    copy_button : bool, default True
        Attach copy controls to content containers.
    table_color : bool, default True
        Load the table colour fix stylesheet.
    font_size_enabled : bool, default True
        Apply ``font_size`` to the panel.
    font_size : float, default 16
        Panel font size in pixels.
    max_width_enabled : bool, default False
        Constrain the conversation width.
    max_width_ratio : float, default 75
        Conversation width in percent, clamped to 30..100.
    copy_button_smart_hover : bool, default True
        Only reveal copy controls while hovering their content.
    copy_button_show_bottom : {"float", "always", "none"}, default "float"
        Placement of the secondary bottom copy control.
    copy_button_style : {"icon", "text"}, default "icon"
        Visual style of the copy control.
    copy_button_custom_text : str, default ""
        Label used by text-style copy controls; empty means "Copy".
    frame_interval : float
        Seconds between a change and the coalesced rescan (one UI frame).
    feedback_interval : float
        Seconds between periodic full copy-button passes.
    root_check_interval : float
        Seconds between checks for a remounted panel root.
    success_feedback_seconds : float
        How long a copy control shows its success state.
    kroki_url : str
        Base URL of the Kroki service used to render diagrams.
    selectors : PanelSelectors
        Host markup selectors.

    """

    math: bool = field(default=True, metadata={"help": "Render math notation"})
    diagram: bool = field(default=True, metadata={"help": "Render mermaid diagram blocks"})
    copy_button: bool = field(default=True, metadata={"help": "Attach copy buttons to content"})
    table_color: bool = field(default=True, metadata={"help": "Load the table colour fix stylesheet"})
    font_size_enabled: bool = field(default=True, metadata={"help": "Apply the configured font size"})
    font_size: float = field(default=DEFAULT_FONT_SIZE, metadata={"help": "Panel font size in px", "type": float})
    max_width_enabled: bool = field(default=False, metadata={"help": "Constrain the conversation width"})
    max_width_ratio: float = field(
        default=DEFAULT_MAX_WIDTH_RATIO, metadata={"help": "Conversation width in percent", "type": float}
    )
    copy_button_smart_hover: bool = field(default=True, metadata={"help": "Reveal copy buttons on hover only"})
    copy_button_show_bottom: CopyButtonBottomMode = field(
        default="float", metadata={"help": "Bottom copy button placement", "choices": ["float", "always", "none"]}
    )
    copy_button_style: CopyButtonStyle = field(
        default="icon", metadata={"help": "Copy button style", "choices": ["icon", "text"]}
    )
    copy_button_custom_text: str = field(default="", metadata={"help": "Copy button label for the text style"})
    frame_interval: float = field(
        default=DEFAULT_FRAME_INTERVAL, metadata={"help": "Seconds per coalesced rescan tick", "type": float}
    )
    feedback_interval: float = field(
        default=DEFAULT_FEEDBACK_INTERVAL, metadata={"help": "Seconds between full button passes", "type": float}
    )
    root_check_interval: float = field(
        default=DEFAULT_ROOT_CHECK_INTERVAL, metadata={"help": "Seconds between panel root checks", "type": float}
    )
    success_feedback_seconds: float = field(
        default=DEFAULT_SUCCESS_FEEDBACK_SECONDS, metadata={"help": "Copy success display time", "type": float}
    )
    kroki_url: str = field(default=DEFAULT_KROKI_URL, metadata={"help": "Kroki diagram service URL"})
    selectors: PanelSelectors = field(default_factory=PanelSelectors, metadata={"help": "Host markup selectors"})

    @classmethod
    def from_mapping(cls, data: Any) -> "PanelConfig":
        """Build a configuration from a loosely typed mapping.

        Keys may be camelCase (``copyButton``) or snake_case (``copy_button``).
        Unknown keys are ignored and values of the wrong type keep their
        default. Anything that is not a mapping yields the defaults.

        Parameters
        ----------
        data : Any
            Parsed configuration data (usually a dict from JSON/TOML/YAML)

        Returns
        -------
        PanelConfig
            The resulting configuration

        """
        if not isinstance(data, Mapping):
            if data is not None:
                logger.warning("Ignoring configuration of type %s; using defaults", type(data).__name__)
            return cls()

        defaults = cls()
        known = {f.name: f for f in fields(cls)}
        values: dict[str, Any] = {}

        for raw_key, value in data.items():
            key = _normalize_key(str(raw_key))
            if key not in known:
                logger.debug("Ignoring unknown configuration key: %s", raw_key)
                continue
            if key == "selectors":
                values[key] = _selectors_from_mapping(value)
                continue
            coerced = _coerce(value, getattr(defaults, key), known[key].metadata.get("choices"))
            if coerced is _INVALID:
                logger.warning("Invalid value for %s: %r; using default", raw_key, value)
                continue
            values[key] = coerced

        return replace(defaults, **values)

    def to_dict(self) -> dict[str, Any]:
        """Return the configuration as plain data (snake_case keys)."""
        result: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, PanelSelectors):
                value = {sf.name: getattr(value, sf.name) for sf in fields(value)}
            result[f.name] = value
        return result


_INVALID = object()


def _normalize_key(key: str) -> str:
    snake = _CAMEL_RE.sub("_", key).lower().replace("-", "_")
    return _KEY_ALIASES.get(snake, snake)


def _coerce(value: Any, default: Any, choices: list[str] | None) -> Any:
    if isinstance(default, bool):
        return value if isinstance(value, bool) else _INVALID
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return _INVALID
        number = float(value)
        return number if math.isfinite(number) else _INVALID
    if isinstance(default, str):
        if not isinstance(value, str):
            return _INVALID
        if choices and value not in choices:
            return _INVALID
        return value
    return _INVALID


def _selectors_from_mapping(data: Any) -> PanelSelectors:
    if not isinstance(data, Mapping):
        logger.warning("Ignoring selectors of type %s; using defaults", type(data).__name__)
        return PanelSelectors()
    known = {f.name for f in fields(PanelSelectors)}
    values = {}
    for raw_key, value in data.items():
        key = _normalize_key(str(raw_key))
        if key in known and isinstance(value, str) and value.strip():
            values[key] = value
        else:
            logger.warning("Ignoring selector %s=%r", raw_key, value)
    return PanelSelectors(**values)


def load_config_file(config_path: Path | str) -> dict[str, Any]:
    """Read a JSON, TOML or YAML configuration file.

    Parameters
    ----------
    config_path : Path or str
        Path to the configuration file

    Returns
    -------
    dict
        Parsed configuration data

    Raises
    ------
    OSError
        If the file cannot be read
    ValueError
        If the file cannot be parsed or has an unsupported extension

    """
    config_path = Path(config_path)
    ext = config_path.suffix.lower()

    if ext == ".toml":
        with open(config_path, "rb") as f:
            try:
                data = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ValueError(f"Invalid TOML in config file {config_path}: {e}") from e
    elif ext in (".yaml", ".yml"):
        with open(config_path, "r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in config file {config_path}: {e}") from e
    elif ext == ".json":
        with open(config_path, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON in config file {config_path}: {e}") from e
    else:
        raise ValueError(f"Unsupported config file format: {ext}. Use .json, .toml, or .yaml")

    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping at root level, got {type(data).__name__}")
    return data


def load_config(config_path: Path | str | None) -> PanelConfig:
    """Load a configuration file, falling back to defaults on any problem.

    Parameters
    ----------
    config_path : Path, str or None
        Path to the configuration file. ``None`` returns the defaults.

    Returns
    -------
    PanelConfig
        Parsed configuration, or the defaults when the file is missing or malformed

    """
    if config_path is None:
        return PanelConfig()
    try:
        data = load_config_file(config_path)
    except FileNotFoundError:
        logger.warning("Config file not found: %s; using defaults", config_path)
        return PanelConfig()
    except (OSError, ValueError) as e:
        logger.warning("Could not load config %s: %s; using defaults", config_path, e)
        return PanelConfig()
    return PanelConfig.from_mapping(data)


__all__ = ["PanelConfig", "PanelSelectors", "load_config", "load_config_file"]
