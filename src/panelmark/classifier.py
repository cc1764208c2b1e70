#  Copyright (c) 2025 Tom Villani, Ph.D.
"""Semantic classification of content tree nodes.

:func:`classify` maps one node to a :class:`NodeKind` by looking only at the
node's own tag, classes and attributes (plus, for diagram containers, the
side table entry recorded for it). Several heuristics can match the same
node, so they are tried in a fixed precedence order and the first match
wins:

1. skip-list tags (style, script, noscript, template, svg)
2. interactive controls (copy button classes, control marker attribute)
3. rendered math (KaTeX / MathJax markup)
4. rendered diagram containers
5. tables
6. fenced code (``language-<id>`` class, highlighted-code label, ``pre``)
7. structural kinds (heading, emphasis, strong, strike, inline code, link,
   list, list item, paragraph, line break, quote, divider)
8. anything else is a generic container whose children are visited

Nodes whose markup does not follow the host conventions simply fall through
to :attr:`NodeKind.CONTAINER`; classification never raises.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from bs4 import BeautifulSoup

from panelmark.annotations import NodeAnnotations, RenderState
from panelmark.constants import (
    CONTROL_ATTR,
    CONTROL_CLASS_MARKERS,
    DIAGRAM_CONTAINER_CLASS,
    EMPHASIS_TAGS,
    HEADING_TAGS,
    HIGHLIGHTED_CODE_LABEL,
    KATEX_CLASS,
    KATEX_DISPLAY_CLASS,
    LANGUAGE_CLASS_RE,
    LIST_TAGS,
    MATHJAX_CLASS,
    MATHJAX_TAG,
    SKIPPED_TAGS,
    STRIKE_TAGS,
    STRONG_TAGS,
)
from panelmark.dom import class_list, class_string, is_element, is_hidden, is_text


class NodeKind(Enum):
    """Closed set of node kinds the serializer knows how to emit."""

    TEXT = "text"
    IGNORED = "ignored"
    MATH_RENDERED = "math_rendered"
    DIAGRAM_RENDERED = "diagram_rendered"
    TABLE = "table"
    CODE_BLOCK = "code_block"
    HEADING = "heading"
    STRONG = "strong"
    EMPHASIS = "emphasis"
    STRIKE = "strike"
    INLINE_CODE = "inline_code"
    LINK = "link"
    LIST = "list"
    LIST_ITEM = "list_item"
    PARAGRAPH = "paragraph"
    LINE_BREAK = "line_break"
    QUOTE = "quote"
    DIVIDER = "divider"
    CONTAINER = "container"


_SIMPLE_TAG_KINDS = {
    "table": NodeKind.TABLE,
    "a": NodeKind.LINK,
    "li": NodeKind.LIST_ITEM,
    "p": NodeKind.PARAGRAPH,
    "br": NodeKind.LINE_BREAK,
    "blockquote": NodeKind.QUOTE,
    "hr": NodeKind.DIVIDER,
}


def is_control(node: Any) -> bool:
    """Return True for interactive controls (ours or the host's copy buttons)."""
    if not is_element(node):
        return False
    if node.has_attr(CONTROL_ATTR):
        return True
    classes = class_string(node)
    return any(marker in classes for marker in CONTROL_CLASS_MARKERS)


def is_math_rendered(node: Any) -> bool:
    """Return True for typeset math markup carrying (or wrapping) its source."""
    if not is_element(node):
        return False
    if node.name == MATHJAX_TAG:
        return True
    classes = class_list(node)
    return KATEX_CLASS in classes or KATEX_DISPLAY_CLASS in classes or MATHJAX_CLASS in classes


def is_diagram_rendered(node: Any, annotations: Optional[NodeAnnotations] = None) -> bool:
    if not is_element(node):
        return False
    if DIAGRAM_CONTAINER_CLASS in class_list(node):
        return True
    return annotations is not None and annotations.diagram_source(node) is not None


def code_language_from_classes(node: Any) -> Optional[str]:
    """Return the ``language-<id>`` identifier from a node's own classes."""
    match = LANGUAGE_CLASS_RE.search(class_string(node))
    return match.group(1) if match else None


def is_code_block(node: Any) -> bool:
    if not is_element(node):
        return False
    if code_language_from_classes(node):
        return True
    label = node.get("aria-label") or ""
    if isinstance(label, str) and label.startswith(HIGHLIGHTED_CODE_LABEL):
        return True
    return node.name == "pre" and "inline" not in class_list(node)


def _is_superseded_diagram_source(node: Any, annotations: Optional[NodeAnnotations]) -> bool:
    # A diagram source block hidden after a successful render is emitted
    # through its adjacent diagram container instead.
    if annotations is None:
        return False
    return annotations.render_state(node) is RenderState.RENDERED and is_hidden(node)


def classify(node: Any, annotations: Optional[NodeAnnotations] = None) -> NodeKind:
    """Classify a content tree node.

    Parameters
    ----------
    node : Tag or NavigableString
        Node to classify
    annotations : NodeAnnotations, optional
        Side table used to recognise rendered diagram containers and the
        diagram source blocks they supersede

    Returns
    -------
    NodeKind
        The first matching kind in precedence order

    """
    if is_text(node):
        return NodeKind.TEXT
    if isinstance(node, BeautifulSoup):
        return NodeKind.CONTAINER
    if not is_element(node):
        return NodeKind.IGNORED

    name = node.name
    if name in SKIPPED_TAGS:
        return NodeKind.IGNORED
    if is_control(node):
        return NodeKind.IGNORED
    if is_math_rendered(node):
        return NodeKind.MATH_RENDERED
    if is_diagram_rendered(node, annotations):
        return NodeKind.DIAGRAM_RENDERED
    if _is_superseded_diagram_source(node, annotations):
        return NodeKind.IGNORED
    if name == "table":
        return NodeKind.TABLE
    if is_code_block(node):
        return NodeKind.CODE_BLOCK

    if name in HEADING_TAGS:
        return NodeKind.HEADING
    if name in STRONG_TAGS:
        return NodeKind.STRONG
    if name in EMPHASIS_TAGS:
        return NodeKind.EMPHASIS
    if name in STRIKE_TAGS:
        return NodeKind.STRIKE
    if name == "code" or (name == "pre" and "inline" in class_list(node)):
        return NodeKind.INLINE_CODE
    if name in LIST_TAGS:
        return NodeKind.LIST

    return _SIMPLE_TAG_KINDS.get(name, NodeKind.CONTAINER)


__all__ = ["NodeKind", "classify", "is_control", "is_math_rendered", "is_code_block"]
