#  Copyright (c) 2025 Tom Villani, Ph.D.
"""Copy controls attached to content containers and rendered diagrams.

Every content container receives a copy control that places the container's
Markdown serialization on the clipboard. Containers carry a bound marker
attribute so repeated scans do not attach a second control; a control that
the host removed while re-rendering is created again on the next pass.

Click handlers live in an identity-keyed table owned by the injector, never
on the host nodes. A successful copy flips the control into its "copied"
state for ``success_feedback_seconds``; clicking again while that state is
showing does not start a second feedback timer.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from bs4 import NavigableString

from panelmark.annotations import NodeAnnotations, NodeIdentity
from panelmark.config import PanelConfig
from panelmark.constants import (
    BOTTOM_BUTTON_CLASS,
    BOUND_ATTR,
    BUTTON_CLASS,
    COPIED_CLASS,
    COPY_BTN_CLASS,
    COPY_STATE_ATTR,
    CONTROL_ATTR,
    DEFAULT_COPY_BUTTON_LABEL,
)
from panelmark.dom import class_list, element_children, is_attached, is_element, new_tag, select_inclusive
from panelmark.serializer import serialize

logger = logging.getLogger(__name__)

CONTENT_ROLE = "content"
BOTTOM_ROLE = "content-bottom"
CUSTOM_ROLE = "custom"


@runtime_checkable
class Clipboard(Protocol):
    """System clipboard supplied by the host."""

    async def write_text(self, text: str) -> bool:
        """Write text; return True on success."""
        ...


class MemoryClipboard:
    """In-process clipboard keeping everything written to it."""

    def __init__(self) -> None:
        self.history: list[str] = []

    @property
    def text(self) -> Optional[str]:
        return self.history[-1] if self.history else None

    async def write_text(self, text: str) -> bool:
        self.history.append(text)
        return True


class CopyButtonInjector:
    """Create copy controls and run their click handlers.

    Parameters
    ----------
    config : PanelConfig
        Copy button style and placement settings.
    annotations : NodeAnnotations, optional
        Side table handed to the serializer so rendered diagrams copy their
        source.
    clipboard : Clipboard, optional
        Clipboard to write to, defaults to a :class:`MemoryClipboard`.

    """

    def __init__(
        self,
        config: Optional[PanelConfig] = None,
        annotations: Optional[NodeAnnotations] = None,
        clipboard: Optional[Clipboard] = None,
    ):
        self.config = config or PanelConfig()
        self.annotations = annotations
        self.clipboard = clipboard or MemoryClipboard()
        self._identity = annotations.identity if annotations is not None else NodeIdentity()
        self._handlers: dict[int, Callable[[], str]] = {}
        self._identity.on_collect(lambda identity: self._handlers.pop(identity, None))
        self._feedback: dict[int, asyncio.TimerHandle] = {}

    @property
    def label(self) -> str:
        return self.config.copy_button_custom_text.strip() or DEFAULT_COPY_BUTTON_LABEL

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_control(self, reference: Any, extra_class: Optional[str] = None, role: str = CUSTOM_ROLE) -> Any:
        """Create a detached copy control styled per configuration."""
        classes = [COPY_BTN_CLASS]
        if extra_class:
            classes.append(extra_class)
        control = new_tag(
            reference,
            "button",
            classes=classes,
            type="button",
            title=self.label,
            aria_label=self.label,
            **{CONTROL_ATTR: role},
        )
        if self.config.copy_button_smart_hover:
            control["data-smart-hover"] = "1"
        if self.config.copy_button_style == "text":
            control.append(NavigableString(self.label))
        else:
            control.append(new_tag(reference, "span", classes=["sidebar-copy-icon"], aria_hidden="true"))
        return control

    def attach_control(
        self,
        parent: Any,
        get_text: Callable[[], str],
        extra_class: Optional[str] = None,
        role: str = CUSTOM_ROLE,
    ) -> Any:
        """Append a copy control to ``parent`` whose click copies ``get_text()``.

        Parameters
        ----------
        parent : Tag
            Element receiving the control as its last child
        get_text : callable
            Produces the text to copy at click time
        extra_class : str, optional
            Additional class for the control
        role : str
            Value of the control marker attribute

        Returns
        -------
        Tag
            The attached control

        """
        control = self.create_control(parent, extra_class=extra_class, role=role)
        parent.append(control)
        self._handlers[self._identity.identify(control)] = get_text
        return control

    def _own_control(self, node: Any, role: str) -> Optional[Any]:
        for child in element_children(node):
            if child.get(CONTROL_ATTR) == role and self._identity.lookup(child) in self._handlers:
                return child
        return None

    def ensure_content_copy_button(self, node: Any) -> Optional[Any]:
        """Make sure a content container has its copy control(s).

        Returns
        -------
        Tag or None
            The top copy control, or None if ``node`` is not attached

        """
        if not is_element(node) or not is_attached(node):
            return None

        def copy_text() -> str:
            return serialize(node, self.annotations, self.config.selectors)

        control = self._own_control(node, CONTENT_ROLE)
        if control is None:
            for stale in [child for child in element_children(node) if child.get(CONTROL_ATTR) == CONTENT_ROLE]:
                stale.extract()
            control = self.create_control(node, extra_class=BUTTON_CLASS, role=CONTENT_ROLE)
            node.insert(0, control)
            self._handlers[self._identity.identify(control)] = copy_text
            logger.debug("Attached copy button to content container")
        node[BOUND_ATTR] = "1"

        mode = self.config.copy_button_show_bottom
        bottom = self._own_control(node, BOTTOM_ROLE)
        if mode == "none":
            if bottom is not None:
                bottom.extract()
            return control
        if bottom is None:
            bottom = self.attach_control(node, copy_text, extra_class=BOTTOM_BUTTON_CLASS, role=BOTTOM_ROLE)
        elif element_children(node)[-1] is not bottom:
            # Streaming content was appended after the bottom control
            node.append(bottom)
        bottom["data-placement"] = mode
        return control

    def add_feedback_copy_buttons(self, root: Any) -> int:
        """Ensure copy controls on every content container in ``root``.

        Returns
        -------
        int
            Number of containers visited

        """
        if not is_element(root):
            return 0
        nodes = select_inclusive(root, self.config.selectors.content)
        for node in nodes:
            self.ensure_content_copy_button(node)
        return len(nodes)

    # ------------------------------------------------------------------
    # Clicks
    # ------------------------------------------------------------------

    def has_handler(self, control: Any) -> bool:
        identity = self._identity.lookup(control)
        return identity is not None and identity in self._handlers

    async def click(self, control: Any) -> bool:
        """Run the click handler of ``control``.

        Returns
        -------
        bool
            True if text was written to the clipboard

        """
        identity = self._identity.lookup(control)
        handler = self._handlers.get(identity) if identity is not None else None
        if handler is None:
            logger.debug("Click on a control without a handler")
            return False

        text = handler()
        if not text:
            return False
        try:
            success = await self.clipboard.write_text(text)
        except Exception as e:
            logger.warning("Clipboard write failed: %s", e)
            return False
        if success:
            self.show_success(control)
        return success

    def show_success(self, control: Any) -> bool:
        """Show the copied state on ``control``; False if it is already showing."""
        identity = self._identity.identify(control)
        if identity in self._feedback:
            return False
        control[COPY_STATE_ATTR] = "copied"
        control["class"] = [*class_list(control), COPIED_CLASS]
        loop = asyncio.get_running_loop()
        self._feedback[identity] = loop.call_later(
            self.config.success_feedback_seconds, self._reset_feedback, identity, control
        )
        return True

    def is_showing_feedback(self, control: Any) -> bool:
        identity = self._identity.lookup(control)
        return identity is not None and identity in self._feedback

    def _reset_feedback(self, identity: int, control: Any) -> None:
        self._feedback.pop(identity, None)
        if control.has_attr(COPY_STATE_ATTR):
            del control[COPY_STATE_ATTR]
        control["class"] = [cls for cls in class_list(control) if cls != COPIED_CLASS]

    def close(self) -> None:
        """Cancel pending feedback timers."""
        for handle in self._feedback.values():
            handle.cancel()
        self._feedback.clear()


__all__ = ["Clipboard", "MemoryClipboard", "CopyButtonInjector"]
