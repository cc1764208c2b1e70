"""Rendered panel content to Markdown serialization.

This module converts a live, host-rendered content tree back into portable
Markdown text for clipboard export. It is the inverse of what the host and
panelmark's own renderers did to the content: typeset math is turned back
into its TeX source, rendered diagrams back into fenced diagram source, code
blocks back into fences with their language, and tables, lists, headings and
inline formatting back into their Markdown spelling.

Serialization is deterministic and read-only: the tree is never mutated, and
the same tree always produces the same text. It also never raises; any node
that cannot be classified, or that fails to convert, is handled by recursing
into its children so unknown structures are flattened rather than dropped.

Supported Content
-----------------
- Code blocks: ``language-<id>`` wrappers with per-line nodes, ``pre`` blocks
- Math: KaTeX (``annotation`` payload) and MathJax (annotation or aria-label)
- Diagrams: rendered diagram containers with a cached source
- Tables: header separator after a first row of header cells
- Lists: nested ordered/unordered lists with two-space indentation
- Inline: strong, emphasis, strikethrough, inline code, links
- Blocks: headings, paragraphs, quotes, dividers, line breaks

Examples
--------
    >>> from bs4 import BeautifulSoup
    >>> from panelmark.serializer import serialize
    >>> soup = BeautifulSoup("<div><h2>Title</h2><p>Some <strong>bold</strong> text</p></div>", "html.parser")
    >>> serialize(soup.div)
    '## Title\\n\\nSome **bold** text'
"""

#  Copyright (c) 2025 Tom Villani, Ph.D.

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from panelmark.annotations import NodeAnnotations
from panelmark.classifier import NodeKind, classify, code_language_from_classes
from panelmark.config import PanelSelectors
from panelmark.constants import (
    CODE_HEADER_CLASS,
    COMMON_LANGS,
    CONTROL_ATTR,
    CONTROL_CLASS_MARKERS,
    DIAGRAM_CONTAINER_CLASS,
    DIAGRAM_LANGUAGE,
    KATEX_CLASS,
    KATEX_DISPLAY_CLASS,
    LANGUAGE_ATTRIBUTES,
    LIST_TAGS,
    MATHJAX_CLASS,
    MATHJAX_DISPLAY_CLASS,
    MATHJAX_TAG,
    TEX_ANNOTATION_ENCODING,
)
from panelmark.dom import (
    class_list,
    closest,
    element_children,
    is_element,
    is_text,
    parent_element,
    select,
    text_content,
)

logger = logging.getLogger(__name__)

MIN_CODE_FENCE_LENGTH = 3
MAX_CODE_FENCE_LENGTH = 10

_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")

_RENDERED_SUBTREE_SELECTOR = f".{KATEX_CLASS}, {MATHJAX_TAG}, .{MATHJAX_CLASS}, .{DIAGRAM_CONTAINER_CLASS}"
_CODE_SUBTREE_SELECTOR = '[class*="language-"]'
_CONTROL_SUBTREE_SELECTOR = ", ".join(
    [f'[class*="{marker}"]' for marker in CONTROL_CLASS_MARKERS] + [f"[{CONTROL_ATTR}]"]
)
_LANGUAGE_ATTRIBUTE_SELECTOR = ", ".join(f"[{attr}]" for attr in LANGUAGE_ATTRIBUTES)


@dataclass(frozen=True)
class ExtractionContext:
    """Per-call serialization context.

    A fresh context is created for every top-level :func:`serialize` call and
    nothing in it survives the call.

    Parameters
    ----------
    annotations : NodeAnnotations or None
        Side table holding cached diagram sources and render states.
    selectors : PanelSelectors
        Host markup selectors (code block and code line conventions).

    """

    annotations: Optional[NodeAnnotations] = None
    selectors: PanelSelectors = field(default_factory=PanelSelectors)


class MarkdownSerializer:
    """Convert a classified content subtree into Markdown text.

    Parameters
    ----------
    context : ExtractionContext
        Context for this serialization call.

    """

    def __init__(self, context: ExtractionContext):
        self.context = context

    def serialize(self, root: Any) -> str:
        """Serialize ``root`` and apply the top-level whitespace cleanup."""
        if root is None:
            return ""
        result = self._process_node(root)
        return _EXCESS_NEWLINES_RE.sub("\n\n", result).strip()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _process_node(self, node: Any) -> str:
        try:
            return self._dispatch(node)
        except Exception as exc:
            logger.warning("Could not serialize <%s>; flattening its children: %s", getattr(node, "name", "?"), exc)
            return self._process_children(node)

    def _dispatch(self, node: Any) -> str:
        kind = classify(node, self.context.annotations)

        if kind is NodeKind.TEXT:
            return self._process_text(node)
        if kind is NodeKind.IGNORED:
            return ""
        if kind is NodeKind.MATH_RENDERED:
            return self._process_math(node)
        if kind is NodeKind.DIAGRAM_RENDERED:
            return self._process_diagram(node)
        if kind is NodeKind.TABLE:
            return self._process_table(node)
        if kind is NodeKind.CODE_BLOCK:
            return self._process_code_block(node)
        if kind is NodeKind.HEADING:
            return self._process_heading(node)
        if kind is NodeKind.STRONG:
            return self._wrap_inline("**", node)
        if kind is NodeKind.EMPHASIS:
            return self._wrap_inline("*", node)
        if kind is NodeKind.STRIKE:
            return self._wrap_inline("~~", node)
        if kind is NodeKind.INLINE_CODE:
            return self._process_inline_code(node)
        if kind is NodeKind.LINK:
            return self._process_link(node)
        if kind is NodeKind.LIST:
            return self._process_list(node)
        if kind is NodeKind.LIST_ITEM:
            return self._process_list_item(node)
        if kind is NodeKind.PARAGRAPH:
            return self._process_paragraph(node)
        if kind is NodeKind.LINE_BREAK:
            return "\n"
        if kind is NodeKind.QUOTE:
            return self._process_blockquote(node)
        if kind is NodeKind.DIVIDER:
            return "\n---\n"
        if kind is NodeKind.CONTAINER:
            return self._process_children(node)
        raise AssertionError(f"Unhandled node kind: {kind}")

    def _process_children(self, node: Any) -> str:
        if not is_element(node) and not hasattr(node, "children"):
            return ""
        return "".join(self._process_node(child) for child in node.children)

    # ------------------------------------------------------------------
    # Text
    # ------------------------------------------------------------------

    def _process_text(self, node: Any) -> str:
        if self._is_excluded_text(node):
            return ""
        text = str(node)
        # Indentation between block elements is markup formatting, not content
        if "\n" in text and not text.strip():
            return "\n"
        return text

    def _is_excluded_text(self, node: Any) -> bool:
        """Return True for text that a dedicated branch extracts (or drops) instead."""
        parent = parent_element(node)
        if parent is None:
            return False
        if closest(parent, _RENDERED_SUBTREE_SELECTOR) is not None:
            return True
        if closest(parent, _CODE_SUBTREE_SELECTOR) is not None:
            return True
        if closest(parent, _CONTROL_SUBTREE_SELECTOR) is not None:
            return True
        return self._is_code_chrome(node, parent)

    def _is_code_chrome(self, node: Any, parent: Any) -> bool:
        pre = closest(parent, "pre")
        if pre is None:
            return False
        if CODE_HEADER_CLASS in class_list(parent) and pre.find_previous_sibling() is not None:
            return True
        label = str(node).strip().lower()
        pre_parent = parent_element(pre)
        return label in COMMON_LANGS and pre_parent is not None and bool(select(pre_parent, _CODE_SUBTREE_SELECTOR))

    # ------------------------------------------------------------------
    # Rendered content
    # ------------------------------------------------------------------

    def _process_math(self, node: Any) -> str:
        recovered = recover_math_source(node)
        if recovered is None:
            return self._process_children(node)
        source, display = recovered
        if display:
            return f"\n\n$${source}$$\n\n"
        return f"${source}$"

    def _process_diagram(self, node: Any) -> str:
        annotations = self.context.annotations
        source = annotations.diagram_source(node) if annotations is not None else None
        if not source:
            return ""
        return f"\n```{DIAGRAM_LANGUAGE}\n{source}\n```\n"

    # ------------------------------------------------------------------
    # Code
    # ------------------------------------------------------------------

    def _code_language(self, node: Any) -> str:
        language = code_language_from_classes(node)
        if language:
            return language
        for descendant in select(node, _CODE_SUBTREE_SELECTOR):
            language = code_language_from_classes(descendant)
            if language:
                return language
        parent = parent_element(node)
        if parent is not None:
            language = code_language_from_classes(parent)
            if language:
                return language
        for candidate in [node, *select(node, _LANGUAGE_ATTRIBUTE_SELECTOR)]:
            for attr in LANGUAGE_ATTRIBUTES:
                value = candidate.get(attr)
                if isinstance(value, str) and value.strip():
                    return value.strip().lower()
        return ""

    def _code_body(self, node: Any) -> str:
        return extract_code_text(node, self.context.selectors.code_line)

    def _process_code_block(self, node: Any) -> str:
        language = self._code_language(node)
        body = self._code_body(node)
        fence = get_code_fence(body)
        return f"\n{fence}{language}\n{body}\n{fence}\n"

    def _process_inline_code(self, node: Any) -> str:
        if node.name == "pre":
            code = node.find("code")
            text = text_content(code if code is not None else node)
        else:
            text = text_content(node)
        if not text.strip():
            return ""
        return f"`{text}`"

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    def _process_table(self, node: Any) -> str:
        lines = []
        for index, row in enumerate(select(node, "tr")):
            cells = [_table_cell_text(cell) for cell in row.find_all(["th", "td"], recursive=False)]
            lines.append("| " + " | ".join(cells) + " |")
            if index == 0 and row.find("th") is not None:
                lines.append("| " + " | ".join("---" for _ in cells) + " |")
        if not lines:
            return ""
        return "\n" + "\n".join(lines) + "\n\n"

    # ------------------------------------------------------------------
    # Block structure
    # ------------------------------------------------------------------

    def _process_heading(self, node: Any) -> str:
        level = int(node.name[1])
        content = self._process_children(node).strip()
        return f"\n{'#' * level} {content}\n"

    def _wrap_inline(self, marker: str, node: Any) -> str:
        content = self._process_children(node).strip()
        if not content:
            return ""
        return f"{marker}{content}{marker}"

    def _process_link(self, node: Any) -> str:
        content = self._process_children(node).strip()
        if not content:
            return ""
        href = node.get("href") or ""
        if isinstance(href, list):
            href = " ".join(href)
        href = href.strip()
        if href and href != "#" and not href.lower().startswith("javascript:"):
            return f"[{content}]({href})"
        return content

    def _process_paragraph(self, node: Any) -> str:
        content = self._process_children(node).strip()
        if not content:
            return ""
        return f"\n{content}\n"

    def _process_blockquote(self, node: Any) -> str:
        content = self._process_children(node).strip()
        if not content:
            return ""
        quoted = "\n".join(f"> {line}" for line in content.split("\n"))
        return f"\n{quoted}\n"

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    def _process_list(self, node: Any) -> str:
        content = self._process_children(node)
        parent = parent_element(node)
        is_top_level = parent is None or closest(parent, "li") is None
        return f"\n{content}" if is_top_level else content

    def _process_list_item(self, node: Any) -> str:
        depth = 0
        ancestor = parent_element(node)
        while ancestor is not None:
            if ancestor.name in LIST_TAGS:
                depth += 1
            ancestor = parent_element(ancestor)
        indent = "  " * max(0, depth - 1)

        text_parts = []
        nested_parts = []
        for child in node.children:
            if is_element(child):
                if child.name in LIST_TAGS:
                    nested_parts.append(self._process_node(child))
                else:
                    text_parts.append(self._process_node(child))
            elif is_text(child) and not self._is_excluded_text(child):
                text_parts.append(str(child))

        item_text = "".join(text_parts).strip()
        nested = "".join(nested_parts)
        if not item_text and not nested:
            return ""

        parent = parent_element(node)
        if parent is not None and parent.name == "ol":
            siblings = [child for child in element_children(parent) if child.name == "li"]
            index = next(i for i, sibling in enumerate(siblings, start=1) if sibling is node)
            prefix = f"{indent}{index}. "
        else:
            prefix = f"{indent}- "

        if nested:
            return f"{prefix}{item_text}\n{nested}"
        return f"{prefix}{item_text}\n"


def recover_math_source(node: Any) -> Optional[tuple[str, bool]]:
    """Recover the TeX source and display flag of typeset math markup.

    Parameters
    ----------
    node : Tag
        A KaTeX ``katex``/``katex-display`` element or a MathJax container

    Returns
    -------
    tuple of (str, bool) or None
        The original source and whether it is display math, or None when the
        markup carries no recoverable source

    """
    classes = class_list(node)
    target = node
    if KATEX_DISPLAY_CLASS in classes and KATEX_CLASS not in classes:
        target = node.find(class_=KATEX_CLASS) or node

    annotation = target.find("annotation", attrs={"encoding": TEX_ANNOTATION_ENCODING})
    if annotation is not None:
        source = annotation.get_text()
        if node.name == MATHJAX_TAG:
            return source, _is_mathjax_display(node)
        display = KATEX_DISPLAY_CLASS in classes or closest(node, f".{KATEX_DISPLAY_CLASS}") is not None
        return source, display

    if node.name == MATHJAX_TAG or MATHJAX_CLASS in classes:
        label = node.get("aria-label")
        if isinstance(label, str) and label:
            return label, _is_mathjax_display(node)
    return None


def _is_mathjax_display(node: Any) -> bool:
    return node.get("display") == "true" or MATHJAX_DISPLAY_CLASS in class_list(node)


def _table_cell_text(cell: Any) -> str:
    return text_content(cell).strip().replace("\n", " ").replace("|", "\\|")


def plain_text(node: Any) -> str:
    """Concatenate the text below ``node``, skipping text of embedded controls."""
    parts = []
    for descendant in node.descendants:
        if not is_text(descendant):
            continue
        parent = parent_element(descendant)
        if parent is not None and parent is not node and closest(parent, _CONTROL_SUBTREE_SELECTOR) is not None:
            continue
        parts.append(str(descendant))
    return "".join(parts)


def extract_code_text(node: Any, line_selector: str) -> str:
    """Reconstruct the body of a code block.

    Per-line nodes matching ``line_selector`` are joined with newlines; without
    line nodes the text of the first ``code`` element (or the block itself) is
    used with one trailing newline removed.
    """
    lines = select(node, line_selector)
    if lines:
        return "\n".join(plain_text(line) for line in lines)
    code = node if node.name == "code" else node.find("code")
    body = plain_text(code if code is not None else node)
    return body[:-1] if body.endswith("\n") else body


def get_code_fence(code_content: str) -> str:
    """Return a backtick fence longer than any backtick run in the content."""
    max_backticks = 0
    current_backticks = 0
    for char in code_content:
        if char == "`":
            current_backticks += 1
            max_backticks = max(max_backticks, current_backticks)
        else:
            current_backticks = 0

    fence_length = max(MIN_CODE_FENCE_LENGTH, max_backticks + 1)
    fence_length = min(fence_length, MAX_CODE_FENCE_LENGTH)
    return "`" * fence_length


def serialize(
    root: Any,
    annotations: Optional[NodeAnnotations] = None,
    selectors: Optional[PanelSelectors] = None,
) -> str:
    """Serialize a rendered content subtree to Markdown.

    Parameters
    ----------
    root : Tag
        Root of the subtree to serialize
    annotations : NodeAnnotations, optional
        Side table with cached diagram sources; without it rendered diagram
        containers contribute nothing
    selectors : PanelSelectors, optional
        Host markup selectors, defaults to the built-in conventions

    Returns
    -------
    str
        Markdown text with runs of three or more newlines collapsed to two
        and surrounding whitespace trimmed

    """
    context = ExtractionContext(annotations=annotations, selectors=selectors or PanelSelectors())
    return MarkdownSerializer(context).serialize(root)


__all__ = [
    "ExtractionContext",
    "MarkdownSerializer",
    "serialize",
    "recover_math_source",
    "plain_text",
    "extract_code_text",
    "get_code_fence",
]
