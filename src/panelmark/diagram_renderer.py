#  Copyright (c) 2025 Tom Villani, Ph.D.
"""Diagram block rendering.

A diagram block is a fenced code block whose language is ``mermaid``. The
source node stays in the tree: on success a ``sidebar-mermaid-container``
holding the rendered SVG and a copy control is placed right after it and the
source node is hidden; on failure the container is emptied and hidden and the
source node is shown again.

Per source node the renderer tracks, in the annotation side table, the last
source it started from, the last source that failed and its render state.
A node is rendered again only when

- it has not been rendered yet and its source is not the one that last failed,
- or its source changed since the last attempt.

A render in progress blocks further attempts on the same node.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from panelmark.annotations import IdentitySet, NodeAnnotations, RenderState
from panelmark.config import PanelSelectors
from panelmark.constants import (
    DIAGRAM_ATTR,
    DIAGRAM_CONTAINER_CLASS,
    DIAGRAM_COPY_BTN_CLASS,
    DIAGRAM_LANGUAGE,
    LANGUAGE_ATTRIBUTES,
)
from panelmark.copy_buttons import CopyButtonInjector
from panelmark.dom import (
    class_list,
    class_string,
    closest,
    is_attached,
    is_element,
    matches,
    new_tag,
    next_element_sibling,
    parent_element,
    parse_fragment,
    remove_children,
    select,
    select_inclusive,
    set_style_property,
)
from panelmark.engines import DiagramEngine, EngineServices
from panelmark.exceptions import LoadFailure, PanelmarkError, ParseFailure, RenderFailure, StaleContentRace
from panelmark.serializer import extract_code_text

logger = logging.getLogger(__name__)

DIAGRAM_MARKER_SELECTOR = ", ".join(
    [f'[class*="language-{DIAGRAM_LANGUAGE}"]'] + [f'[{attr}="{DIAGRAM_LANGUAGE}"]' for attr in LANGUAGE_ATTRIBUTES]
)


def diagram_fence(source: str) -> str:
    return f"```{DIAGRAM_LANGUAGE}\n{source}\n```"


class DiagramRenderer:
    """Render mermaid code blocks into SVG diagrams.

    Parameters
    ----------
    annotations : NodeAnnotations
        Side table for render states and cached sources.
    services : EngineServices
        Shared engine loaders and render id counter.
    copy_buttons : CopyButtonInjector, optional
        Injector used to attach a copy control to each rendered diagram.
    selectors : PanelSelectors, optional
        Host markup selectors.

    """

    def __init__(
        self,
        annotations: NodeAnnotations,
        services: EngineServices,
        copy_buttons: Optional[CopyButtonInjector] = None,
        selectors: Optional[PanelSelectors] = None,
    ):
        self.annotations = annotations
        self.services = services
        self.copy_buttons = copy_buttons
        self.selectors = selectors or PanelSelectors()
        self.render_attempts = 0

    # ------------------------------------------------------------------
    # Source discovery
    # ------------------------------------------------------------------

    def find_blocks(self, root: Any) -> list[Any]:
        """Return the diagram candidate blocks below ``root``, one per source node."""
        if not is_element(root):
            return []
        candidates = select_inclusive(root, self.selectors.code_block)
        candidates.extend(node for node in select(root, "pre > code") if matches(node, DIAGRAM_MARKER_SELECTOR))

        seen: IdentitySet[Any] = IdentitySet(self.annotations.identity)
        blocks = []
        for block in candidates:
            source_root = self.resolve_source_root(block)
            if source_root is not None and seen.add(source_root):
                blocks.append(block)
        return blocks

    def resolve_source_root(self, block: Any) -> Optional[Any]:
        """Return the node that is hidden once its diagram is rendered."""
        if not is_element(block):
            return None
        root = closest(block, DIAGRAM_MARKER_SELECTOR) or block
        parent = parent_element(root)
        if root.name == "code" and parent is not None and parent.name == "pre":
            return parent
        return root

    def _resolve_code_block(self, node: Any) -> Optional[Any]:
        if not is_element(node):
            return None
        if matches(node, self.selectors.code_block):
            return node
        found = select(node, self.selectors.code_block)
        return found[0] if found else None

    def is_diagram_candidate(self, root: Any, code_block: Any) -> bool:
        marker = f"language-{DIAGRAM_LANGUAGE}"
        for node in (root, code_block, *select(root, "code")):
            if marker in class_string(node) or _language_attribute(node) == DIAGRAM_LANGUAGE:
                return True
        return False

    def extract_source(self, code_block: Any) -> str:
        return extract_code_text(code_block, self.selectors.code_line).strip()

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    async def scan(self, root: Any) -> int:
        """Render every diagram block below ``root`` one after another."""
        rendered = 0
        for block in self.find_blocks(root):
            if await self.render(block):
                rendered += 1
        return rendered

    async def render(self, block: Any) -> bool:
        """Render one diagram block if its state calls for it.

        Parameters
        ----------
        block : Tag
            A code block or any element inside a diagram source node

        Returns
        -------
        bool
            True if a diagram was rendered and inserted

        """
        root = self.resolve_source_root(block)
        if root is None or not is_attached(root):
            return False
        code_block = self._resolve_code_block(root) or self._resolve_code_block(block) or root

        source = self.extract_source(code_block)
        if not source or not self.is_diagram_candidate(root, code_block):
            return False

        state = self.annotations.state_for(root)
        if state.render_state is RenderState.RENDERING:
            logger.debug("Diagram render already in progress")
            return False

        is_rendered = state.render_state is RenderState.RENDERED
        content_changed = bool(state.last_source_seen) and state.last_source_seen != source
        if is_rendered and not content_changed:
            return False
        if not is_rendered and not content_changed and state.last_errored_source == source:
            return False

        previous_state = state.render_state
        state.last_source_seen = source
        state.render_state = RenderState.RENDERING
        self.render_attempts += 1

        try:
            try:
                engine = await self.services.diagram.ensure()
                render_id = self.services.next_render_id()
                svg_markup = await self._render_with(engine, render_id, source)
                if not is_attached(root):
                    logger.debug("Discarding diagram render for a detached node")
                    state.render_state = previous_state
                    return False
                current = self.extract_source(code_block)
                if current != source:
                    raise StaleContentRace(source, current)
                graphic = _parse_svg(svg_markup, render_id)
            except LoadFailure as e:
                logger.warning("Diagram engine unavailable: %s", e)
                state.render_state = RenderState.UNRENDERED
                return False
            except StaleContentRace as e:
                logger.debug("Diagram source changed while rendering; rendering again")
                state.render_state = RenderState.UNRENDERED
                state.last_source_seen = e.expected
                return await self.render(block)
            except (ParseFailure, RenderFailure) as e:
                logger.warning("Diagram render failed: %s", e)
                self._record_failure(root, state, source)
                return False

            self._insert(root, graphic, source)
            state.render_state = RenderState.RENDERED
            state.last_errored_source = None
            return True
        finally:
            # Cancelled or interrupted renders must not keep the node locked
            if state.render_state is RenderState.RENDERING:
                state.render_state = RenderState.UNRENDERED

    async def _render_with(self, engine: DiagramEngine, render_id: str, source: str) -> str:
        try:
            parse = getattr(engine, "parse", None)
            if parse is not None:
                await parse(source)
            return await engine.render(render_id, source)
        except PanelmarkError:
            raise
        except Exception as e:
            raise RenderFailure(f"Diagram engine raised: {e!r}", original_error=e) from e

    def _container_after(self, root: Any) -> Optional[Any]:
        sibling = next_element_sibling(root)
        if sibling is not None and DIAGRAM_CONTAINER_CLASS in class_list(sibling):
            return sibling
        return None

    def _insert(self, root: Any, graphic: Any, source: str) -> None:
        container = self._container_after(root)
        if container is None:
            container = new_tag(root, "div", classes=[DIAGRAM_CONTAINER_CLASS])
            root.insert_after(container)

        remove_children(container)
        container.append(graphic)
        set_style_property(container, "display", None)
        self.annotations.state_for(container).diagram_source = source

        if self.copy_buttons is not None:
            self.copy_buttons.attach_control(
                container,
                lambda: self._copy_text(container),
                extra_class=DIAGRAM_COPY_BTN_CLASS,
            )

        set_style_property(root, "display", "none")
        root[DIAGRAM_ATTR] = "1"

    def _copy_text(self, container: Any) -> str:
        source = self.annotations.diagram_source(container)
        return diagram_fence(source) if source else ""

    def _record_failure(self, root: Any, state: Any, source: str) -> None:
        state.last_errored_source = source
        state.render_state = RenderState.ERRORED
        if root.has_attr(DIAGRAM_ATTR):
            del root[DIAGRAM_ATTR]
        set_style_property(root, "display", None)
        container = self._container_after(root)
        if container is not None:
            remove_children(container)
            set_style_property(container, "display", "none")
            self.annotations.discard(container)


def _language_attribute(node: Any) -> str:
    if not is_element(node):
        return ""
    for attr in LANGUAGE_ATTRIBUTES:
        value = node.get(attr)
        if isinstance(value, str) and value.strip():
            return value.strip().lower()
    return ""


def _parse_svg(markup: str, render_id: str) -> Any:
    for node in parse_fragment(markup):
        if not is_element(node):
            continue
        graphic = node if node.name == "svg" else node.find("svg")
        if graphic is not None:
            graphic.extract()
            graphic["id"] = render_id
            return graphic
    raise RenderFailure("Diagram engine output contains no svg element")


__all__ = ["DiagramRenderer", "DIAGRAM_MARKER_SELECTOR", "diagram_fence"]
