#  Copyright (c) 2025 Tom Villani, Ph.D.
"""Math notation rendering inside content containers.

A content container is rendered as a whole. The pass first undoes the host's
markdown layer splitting ``_`` and ``__`` inside dollar math into emphasis
and strong elements, then splits every eligible text node into plain text and
delimited math tokens and replaces each math token with a wrapper holding
the typeset output (or, when typesetting fails, the literal delimited text).

Supported delimiters, in priority order for ties at the same position:
``$$...$$``, ``\\[...\\]``, ``\\(...\\)`` and ``$...$``.

A container is re-rendered only when its text differs from the snapshot
recorded after its last successful pass, so streaming additions are picked
up while unchanged containers are skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from bs4 import NavigableString

from panelmark.annotations import NodeAnnotations, RenderState
from panelmark.config import PanelSelectors
from panelmark.constants import (
    CONTROL_ATTR,
    DIAGRAM_CONTAINER_CLASS,
    DOLLAR_DELIMITERS,
    EDITABLE_SELECTOR,
    KATEX_CLASS,
    KATEX_DISPLAY_CLASS,
    MATH_ATTR,
    MATH_DELIMITERS,
    MATH_DISPLAY_WRAPPER_CLASS,
    MATH_HINT_RE,
    MATH_INLINE_WRAPPER_CLASS,
    MATHJAX_TAG,
    SKIPPED_TAGS,
)
from panelmark.dom import (
    closest,
    is_attached,
    is_element,
    is_text,
    iter_text_nodes,
    merge_adjacent_text,
    new_tag,
    parse_fragment,
    text_content,
)
from panelmark.engines import EngineServices, MathEngine
from panelmark.exceptions import LoadFailure, PanelmarkError, RenderFailure

logger = logging.getLogger(__name__)

_FORMAT_MARKERS = {"em": "_", "strong": "__"}


@dataclass(frozen=True)
class MathToken:
    """One piece of a split text run.

    ``kind`` is ``"text"`` or ``"math"``; math tokens keep the delimiters they
    were found with so a failed render can show the literal source.
    """

    kind: str
    data: str
    display: bool = False
    left: str = ""
    right: str = ""

    @property
    def literal(self) -> str:
        return f"{self.left}{self.data}{self.right}"


def is_escaped(text: str, index: int) -> bool:
    """Return True if the character at ``index`` follows an odd run of backslashes."""
    count = 0
    position = index - 1
    while position >= 0 and text[position] == "\\":
        count += 1
        position -= 1
    return count % 2 == 1


def _is_valid_opener(text: str, index: int, left: str) -> bool:
    if is_escaped(text, index):
        return False
    if left == "$":
        following = text[index + 1 : index + 2]
        if following and following.isspace():
            return False
    return True


def find_next_delimiter(
    text: str, start: int, delimiters: tuple[tuple[str, str, bool], ...] = MATH_DELIMITERS
) -> Optional[tuple[int, tuple[str, str, bool]]]:
    """Find the earliest valid opening delimiter at or after ``start``.

    Returns
    -------
    tuple of (int, delimiter) or None
        Position and ``(left, right, display)`` of the opener; on a tie the
        longer opener wins

    """
    best: Optional[tuple[int, tuple[str, str, bool]]] = None
    for delimiter in delimiters:
        left = delimiter[0]
        index = text.find(left, start)
        while index != -1 and not _is_valid_opener(text, index, left):
            index = text.find(left, index + 1)
        if index == -1:
            continue
        if best is None or index < best[0] or (index == best[0] and len(left) > len(best[1][0])):
            best = (index, delimiter)
    return best


def find_end_delimiter(text: str, start: int, right: str) -> int:
    """Return the position of the closing delimiter, or -1 if there is none.

    A ``$`` closer preceded by whitespace or followed by another ``$`` is
    skipped, as is any escaped closer.
    """
    index = text.find(right, start)
    while index != -1:
        if not is_escaped(text, index):
            if right != "$":
                return index
            preceding = text[index - 1] if index > 0 else ""
            following = text[index + 1 : index + 2]
            if not preceding.isspace() and following != "$":
                return index
        index = text.find(right, index + len(right))
    return -1


def split_with_delimiters(text: str) -> list[MathToken]:
    """Split text into alternating plain text and math tokens.

    An opener without a matching closer leaves the rest of the text as plain
    text.
    """
    tokens: list[MathToken] = []
    position = 0
    while position < len(text):
        found = find_next_delimiter(text, position)
        if found is None:
            tokens.append(MathToken("text", text[position:]))
            break
        index, (left, right, display) = found
        if index > position:
            tokens.append(MathToken("text", text[position:index]))

        start = index + len(left)
        end = find_end_delimiter(text, start, right)
        if end == -1:
            tokens.append(MathToken("text", text[index:]))
            break

        tokens.append(MathToken("math", text[start:end], display=display, left=left, right=right))
        position = end + len(right)
    return tokens


def collect_dollar_math_ranges(text: str) -> list[tuple[int, int]]:
    """Return ``(start, end)`` content ranges of ``$...$`` and ``$$...$$`` spans."""
    dollar_delimiters = tuple((marker, marker, marker == "$$") for marker in DOLLAR_DELIMITERS)
    ranges = []
    position = 0
    while position < len(text):
        found = find_next_delimiter(text, position, dollar_delimiters)
        if found is None:
            break
        index, (left, right, _display) = found
        start = index + len(left)
        end = find_end_delimiter(text, start, right)
        if end == -1:
            position = start
            continue
        ranges.append((start, end))
        position = end + len(right)
    return ranges


@dataclass
class _Unit:
    text: str
    node: Any = None
    marker: str = ""
    start: int = 0
    end: int = 0

    @property
    def is_format(self) -> bool:
        return self.node is not None


class MathRenderer:
    """Render delimited math in content containers.

    Parameters
    ----------
    annotations : NodeAnnotations
        Side table for render states, snapshots and raw text.
    services : EngineServices
        Shared engine loaders; the math loader is used.
    selectors : PanelSelectors, optional
        Host markup selectors (code blocks are never rendered into).

    """

    def __init__(
        self,
        annotations: NodeAnnotations,
        services: EngineServices,
        selectors: Optional[PanelSelectors] = None,
    ):
        self.annotations = annotations
        self.services = services
        self.selectors = selectors or PanelSelectors()
        self._skip_selector = ", ".join(
            [
                "pre",
                "code",
                self.selectors.code_block,
                f".{DIAGRAM_CONTAINER_CLASS}",
                f".{KATEX_CLASS}",
                f".{KATEX_DISPLAY_CLASS}",
                MATHJAX_TAG,
                f".{MATH_INLINE_WRAPPER_CLASS}",
                f".{MATH_DISPLAY_WRAPPER_CLASS}",
                f"[{CONTROL_ATTR}]",
            ]
        )

    async def render(self, root: Any) -> bool:
        """Render math inside one content container.

        Parameters
        ----------
        root : Tag
            Content container to render

        Returns
        -------
        bool
            True if a render pass ran and completed

        """
        if not is_element(root) or not is_attached(root):
            return False
        if closest(root, EDITABLE_SELECTOR) is not None:
            return False

        text = text_content(root)
        state = self.annotations.state_for(root)
        if state.render_state is RenderState.RENDERING:
            return False
        if state.render_state is RenderState.RENDERED and state.math_snapshot == text:
            return False
        if not MATH_HINT_RE.search(text):
            return False

        if state.raw_text is None:
            state.raw_text = text
        previous_state = state.render_state
        state.render_state = RenderState.RENDERING
        state.last_source_seen = text

        try:
            try:
                engine = await self.services.math.ensure()
            except LoadFailure as e:
                logger.warning("Math engine unavailable: %s", e)
                state.render_state = RenderState.UNRENDERED
                return False

            if not is_attached(root):
                logger.debug("Discarding math render for a detached container")
                state.render_state = previous_state
                return False

            try:
                self.render_into(root, engine)
            except Exception as e:
                logger.warning("Math render pass failed: %s", e)
                state.render_state = RenderState.UNRENDERED
                if root.has_attr(MATH_ATTR):
                    del root[MATH_ATTR]
                return False

            root[MATH_ATTR] = "1"
            state.render_state = RenderState.RENDERED
            state.math_snapshot = text_content(root)
            return True
        finally:
            # Cancelled or interrupted passes must not keep the node locked
            if state.render_state is RenderState.RENDERING:
                state.render_state = RenderState.UNRENDERED

    def render_into(self, root: Any, engine: MathEngine) -> int:
        """Synchronously typeset every math span below ``root``.

        Returns
        -------
        int
            Number of math tokens replaced

        """
        restore_underscores(root, self._skip_selector)

        candidates = [
            node for node in iter_text_nodes(root) if not self._skip_text(node) and MATH_HINT_RE.search(str(node))
        ]
        replaced = 0
        for node in candidates:
            tokens = split_with_delimiters(str(node))
            if len(tokens) == 1 and tokens[0].kind == "text":
                continue
            replacement = []
            for token in tokens:
                if token.kind == "text":
                    if token.data:
                        replacement.append(NavigableString(token.data))
                    continue
                replacement.append(self._render_token(root, token, engine))
                replaced += 1
            node.replace_with(*replacement)
        return replaced

    def _render_token(self, root: Any, token: MathToken, engine: MathEngine) -> Any:
        wrapper = new_tag(
            root, "span", classes=[MATH_DISPLAY_WRAPPER_CLASS if token.display else MATH_INLINE_WRAPPER_CLASS]
        )
        try:
            nodes = parse_fragment(engine.render(token.data, token.display))
            if not any(is_element(node) for node in nodes):
                raise RenderFailure(f"Math engine returned no markup for {token.data!r}")
        except PanelmarkError as e:
            logger.debug("Math token left as text: %s", e)
            wrapper.append(NavigableString(token.literal))
        except Exception as e:
            logger.warning("Math engine raised on %r: %s", token.data, e)
            wrapper.append(NavigableString(token.literal))
        else:
            for node in nodes:
                wrapper.append(node)
        return wrapper

    def _skip_text(self, node: Any) -> bool:
        parent = node.parent
        if not is_element(parent):
            return True
        if parent.name in SKIPPED_TAGS:
            return True
        if closest(parent, EDITABLE_SELECTOR) is not None:
            return True
        return closest(parent, self._skip_selector) is not None

    def raw_text(self, root: Any) -> Optional[str]:
        """Return the text captured before the first render of ``root``."""
        state = self.annotations.get(root)
        return state.raw_text if state else None


def restore_underscores(element: Any, skip_selector: str) -> bool:
    """Turn emphasis/strong elements inside dollar math back into underscores.

    Runs of adjacent text and ``em``/``strong`` children are merged into one
    logical string; every format element lying entirely inside a ``$...$`` or
    ``$$...$$`` range of that string is replaced with its text wrapped in its
    markdown marker (``_`` or ``__``). A marker that would land directly
    before the closing delimiter is dropped, so ``$a`` + ``<em>b</em>`` +
    ``$`` becomes ``$a_b$``. Other child elements are processed recursively.

    Parameters
    ----------
    element : Tag
        Element whose children are examined
    skip_selector : str
        Selector of subtrees never touched (code, rendered math, diagrams)

    Returns
    -------
    bool
        True if any element was replaced

    """
    if not is_element(element) or closest(element, skip_selector) is not None:
        return False

    restored = False
    segment: list[_Unit] = []

    for child in list(element.children):
        if is_text(child):
            text = str(child)
            if not text:
                restored |= _restore_segment(segment)
                continue
            segment.append(_Unit(text))
            continue
        if not is_element(child) or closest(child, skip_selector) is not None:
            restored |= _restore_segment(segment)
            continue
        marker = _FORMAT_MARKERS.get(child.name)
        if marker is not None:
            text = text_content(child)
            if text:
                segment.append(_Unit(text, node=child, marker=marker))
                continue
        restored |= _restore_segment(segment)
        restored |= restore_underscores(child, skip_selector)

    restored |= _restore_segment(segment)
    if restored:
        merge_adjacent_text(element)
    return restored


def _restore_segment(segment: list[_Unit]) -> bool:
    units = list(segment)
    segment.clear()
    if not any(unit.is_format for unit in units):
        return False

    merged = ""
    for unit in units:
        unit.start = len(merged)
        merged += unit.text
        unit.end = len(merged)
    if "$" not in merged:
        return False

    ranges = collect_dollar_math_ranges(merged)
    restored = False
    for unit in units:
        if not unit.is_format:
            continue
        enclosing = next((r for r in ranges if r[0] <= unit.start and unit.end <= r[1]), None)
        if enclosing is None:
            continue
        trailing = "" if unit.end == enclosing[1] else unit.marker
        unit.node.replace_with(NavigableString(f"{unit.marker}{unit.text}{trailing}"))
        restored = True
    return restored


__all__ = [
    "MathRenderer",
    "MathToken",
    "is_escaped",
    "find_next_delimiter",
    "find_end_delimiter",
    "split_with_delimiters",
    "collect_dollar_math_ranges",
    "restore_underscores",
]
