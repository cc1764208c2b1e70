#  Copyright (c) 2025 Tom Villani, Ph.D.
"""Constants and default values for panelmark.

This module centralizes the selectors, marker attributes, class names and
default settings shared by the classifier, serializer, renderers and the
scan scheduler. The values describe the structural conventions of the host
panel markup and the markup panelmark injects into it.

Constants are organized by category:
1. Type Definitions
2. Host Markup Conventions
3. Injected Markup
4. Math Notation
5. Engines
6. Scheduling and Configuration Defaults
"""

from __future__ import annotations

import re
from typing import Literal

# =============================================================================
# Type Definitions
# =============================================================================

CopyButtonStyle = Literal["icon", "text"]
CopyButtonBottomMode = Literal["float", "always", "none"]
MutationKind = Literal["childList", "characterData"]

# =============================================================================
# Host Markup Conventions
# =============================================================================

PANEL_SELECTOR = ".antigravity-agent-side-panel"
CONTENT_SELECTOR = ".leading-relaxed.select-text"
SECTION_SELECTOR = "[data-section-index]"
CODE_BLOCK_SELECTOR = ".code-block"
CODE_LINE_SELECTOR = ".line-content"

# Tags whose subtree never contributes Markdown text
SKIPPED_TAGS = frozenset({"style", "script", "noscript", "template", "svg"})

HEADING_TAGS = frozenset({"h1", "h2", "h3", "h4", "h5", "h6"})
STRONG_TAGS = frozenset({"strong", "b"})
EMPHASIS_TAGS = frozenset({"em", "i"})
STRIKE_TAGS = frozenset({"del", "s", "strike"})
LIST_TAGS = frozenset({"ul", "ol"})

LANGUAGE_CLASS_RE = re.compile(r"language-(\w+)")
LANGUAGE_ATTRIBUTES = ("data-language", "data-lang", "data-mode", "data-code-language")
HIGHLIGHTED_CODE_LABEL = "highlighted-code"

# Rendered math markup produced by KaTeX / MathJax style typesetters
KATEX_CLASS = "katex"
KATEX_DISPLAY_CLASS = "katex-display"
MATHJAX_TAG = "mjx-container"
MATHJAX_CLASS = "MathJax"
MATHJAX_DISPLAY_CLASS = "MathJax_Display"
TEX_ANNOTATION_ENCODING = "application/x-tex"

# Language labels the host prints above a code fence
COMMON_LANGS = frozenset(
    {
        "bash",
        "c",
        "cpp",
        "csharp",
        "css",
        "go",
        "html",
        "java",
        "javascript",
        "js",
        "json",
        "kotlin",
        "markdown",
        "mermaid",
        "php",
        "plaintext",
        "powershell",
        "python",
        "ruby",
        "rust",
        "shell",
        "sql",
        "swift",
        "text",
        "ts",
        "tsx",
        "typescript",
        "xml",
        "yaml",
    }
)
CODE_HEADER_CLASS = "opacity-60"

EDITABLE_SELECTOR = '[contenteditable="true"], textarea, input'

# =============================================================================
# Injected Markup
# =============================================================================

BOUND_ATTR = "data-sidebar-copy-bound"
CONTROL_ATTR = "data-sidebar-copy-control"
MATH_ATTR = "data-sidebar-math-rendered"
DIAGRAM_ATTR = "data-sidebar-mermaid-rendered"
COPY_STATE_ATTR = "data-copy-state"

BUTTON_CLASS = "sidebar-copy-button"
BOTTOM_BUTTON_CLASS = "sidebar-copy-bottom"
COPY_BTN_CLASS = "sidebar-copy-btn"
COPIED_CLASS = "copied"
DIAGRAM_CONTAINER_CLASS = "sidebar-mermaid-container"
DIAGRAM_COPY_BTN_CLASS = "sidebar-mermaid-copy"
MATH_INLINE_WRAPPER_CLASS = "katex-inline-wrapper"
MATH_DISPLAY_WRAPPER_CLASS = "katex-display-wrapper"

# Class fragments of interactive controls, ours and the host's own
CONTROL_CLASS_MARKERS = (
    BUTTON_CLASS,
    BOTTOM_BUTTON_CLASS,
    COPY_BTN_CLASS,
    "custom-copy-btn",
    "cascade-copy-btn",
)

FONT_SIZE_VARIABLE = "--sidebar-panel-font-size"
MAX_WIDTH_VARIABLE = "--sidebar-panel-max-width-ratio"
MAX_WIDTH_ATTR = "data-sidebar-panel-max-width"
TABLE_FIX_STYLESHEET = "table-fix.css"

# =============================================================================
# Math Notation
# =============================================================================

# (left, right, display) in priority order for ties at the same position
MATH_DELIMITERS: tuple[tuple[str, str, bool], ...] = (
    ("$$", "$$", True),
    ("\\[", "\\]", True),
    ("\\(", "\\)", False),
    ("$", "$", False),
)
DOLLAR_DELIMITERS = ("$$", "$")

MATH_HINT_RE = re.compile(r"\$\$|\\\(|\\\[|\\begin\{|\$(?!\s)([^$\n]+?)\$")

# =============================================================================
# Engines
# =============================================================================

DIAGRAM_LANGUAGE = "mermaid"
DEFAULT_KROKI_URL = "https://kroki.io"
DEFAULT_ENGINE_TIMEOUT = 10.0
DEFAULT_USER_AGENT = "panelmark/1.0"
DIAGRAM_RENDER_ID_PREFIX = "sidebar-mermaid"

# =============================================================================
# Scheduling and Configuration Defaults
# =============================================================================

DEFAULT_FRAME_INTERVAL = 1 / 60
DEFAULT_FEEDBACK_INTERVAL = 2.0
DEFAULT_ROOT_CHECK_INTERVAL = 1.5
DEFAULT_SUCCESS_FEEDBACK_SECONDS = 1.5

DEFAULT_FONT_SIZE = 16.0
DEFAULT_MAX_WIDTH_RATIO = 75.0
MIN_MAX_WIDTH_RATIO = 30.0
MAX_MAX_WIDTH_RATIO = 100.0
DEFAULT_COPY_BUTTON_LABEL = "Copy"
