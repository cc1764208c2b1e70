#  Copyright (c) 2025 Tom Villani, Ph.D.
"""Change-driven rescans of the bound panel root.

The scheduler subscribes to the host's mutation stream for one bound root.
Each change is mapped to its nearest scan boundary (the enclosing content
container, else the enclosing section, else the bound root) and queued in a
pending set. One flush per frame tick drains the set and, for every root that
is still attached, ensures copy controls and starts math and diagram renders.

Renders run as tracked asyncio tasks so that :meth:`ScanScheduler.wait_idle`
can wait for a quiet tree. A periodic pass re-attaches copy controls to
content the change stream never reported and prunes side table entries of
nodes that left the bound root.

All scheduling happens on the running event loop; :meth:`ScanScheduler.bind`
must be called from inside it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Iterable, Optional

from panelmark.annotations import NodeAnnotations, PendingScanSet
from panelmark.config import PanelConfig
from panelmark.copy_buttons import CopyButtonInjector
from panelmark.diagram_renderer import DiagramRenderer
from panelmark.dom import closest, contains, is_attached, is_element, parent_element, select_inclusive
from panelmark.engines import EngineServices
from panelmark.math_renderer import MathRenderer
from panelmark.mutations import MutationHub, MutationRecord, Subscription

logger = logging.getLogger(__name__)


class ScanScheduler:
    """Coalesce tree changes into per-frame scans of a bound root.

    Parameters
    ----------
    hub : MutationHub
        The host's change notification stream.
    config : PanelConfig, optional
        Feature flags, selectors and timings.
    annotations : NodeAnnotations, optional
        Side table shared with the renderers and the copy controls.
    services : EngineServices, optional
        Engine loaders injected into the renderers.
    copy_buttons : CopyButtonInjector, optional
        Copy control injector.

    """

    def __init__(
        self,
        hub: MutationHub,
        config: Optional[PanelConfig] = None,
        annotations: Optional[NodeAnnotations] = None,
        services: Optional[EngineServices] = None,
        copy_buttons: Optional[CopyButtonInjector] = None,
    ):
        self.hub = hub
        self.config = config or PanelConfig()
        self.annotations = annotations or NodeAnnotations()
        self.services = services or EngineServices.from_config(self.config)
        self.copy_buttons = copy_buttons or CopyButtonInjector(self.config, self.annotations)
        self.math = MathRenderer(self.annotations, self.services, self.config.selectors)
        self.diagrams = DiagramRenderer(self.annotations, self.services, self.copy_buttons, self.config.selectors)

        self.pending = PendingScanSet(self.annotations.identity)
        self.root: Optional[Any] = None
        self.flush_count = 0
        self._subscription: Optional[Subscription] = None
        self._flush_handle: Optional[asyncio.TimerHandle] = None
        self._periodic_task: Optional[asyncio.Task[None]] = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def is_bound(self) -> bool:
        return self.root is not None

    # ------------------------------------------------------------------
    # Binding
    # ------------------------------------------------------------------

    def bind(self, root: Any) -> bool:
        """Bind to ``root``, tearing down any previous binding first.

        Returns
        -------
        bool
            False if ``root`` is None or already bound

        """
        if root is None or root is self.root:
            return False

        self.unbind()
        self.root = root
        self.scan_root(root)
        self._subscription = self.hub.observe(root, self._on_mutations)
        self.run_periodic_pass()
        self._periodic_task = asyncio.get_running_loop().create_task(self._periodic_loop())
        logger.info("Scan scheduler bound to panel root <%s>", root.name)
        return True

    def unbind(self) -> None:
        """Disconnect the subscription and clear timers and pending roots.

        Renders already in flight are not cancelled; they discard their
        result if their node left the tree.
        """
        if self._subscription is not None:
            self._subscription.disconnect()
            self._subscription = None
        if self._periodic_task is not None:
            self._periodic_task.cancel()
            self._periodic_task = None
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None
        self.pending.clear()
        if self.root is not None:
            logger.debug("Scan scheduler unbound")
        self.root = None

    # ------------------------------------------------------------------
    # Change handling
    # ------------------------------------------------------------------

    def _on_mutations(self, records: list[MutationRecord]) -> None:
        nodes = []
        for record in records:
            if record.kind == "characterData":
                parent = parent_element(record.target)
                if parent is not None:
                    nodes.append(parent)
                continue
            nodes.extend(record.added_nodes)
        if nodes:
            self.schedule_scan(nodes)

    def resolve_scan_root(self, target: Any) -> Optional[Any]:
        """Return the scan boundary enclosing ``target`` inside the bound root."""
        if self.root is None or target is None:
            return None
        current = target if is_element(target) else parent_element(target)
        if current is None or not contains(self.root, current):
            return None

        selectors = self.config.selectors
        content = closest(current, selectors.content)
        if content is not None and contains(self.root, content):
            return content
        section = closest(current, selectors.section)
        if section is not None and contains(self.root, section):
            return section
        return self.root

    def schedule_scan(self, nodes: Iterable[Any]) -> bool:
        """Queue the scan roots of ``nodes`` and schedule one flush.

        Returns
        -------
        bool
            True if at least one scan root was queued

        """
        queued = False
        for node in nodes:
            scan_root = self.resolve_scan_root(node)
            if scan_root is not None:
                self.pending.add(scan_root)
                queued = True
        if queued and self._flush_handle is None:
            loop = asyncio.get_running_loop()
            self._flush_handle = loop.call_later(self.config.frame_interval, self.flush)
        return queued

    def flush(self) -> int:
        """Scan every pending root that is still attached.

        Returns
        -------
        int
            Number of roots scanned

        """
        self._flush_handle = None
        self.flush_count += 1
        scanned = 0
        for root in self.pending.drain():
            if self.root is not None and is_attached(root, self.root):
                self.scan_root(root)
                scanned += 1
        return scanned

    def scan_root(self, root: Any) -> None:
        """Ensure copy controls and start renders for everything in ``root``."""
        if not is_element(root) or not is_attached(root):
            return
        for node in select_inclusive(root, self.config.selectors.content):
            if self.config.copy_button:
                self.copy_buttons.ensure_content_copy_button(node)
            if self.config.math:
                self._spawn(self.math.render(node))
        if self.config.diagram:
            for block in self.diagrams.find_blocks(root):
                self._spawn(self.diagrams.render(block))

    # ------------------------------------------------------------------
    # Periodic pass
    # ------------------------------------------------------------------

    def run_periodic_pass(self) -> None:
        root = self.root
        if root is None:
            return
        if self.config.copy_button:
            self.copy_buttons.add_feedback_copy_buttons(root)
        self.annotations.prune(lambda node: is_attached(node, root))

    async def _periodic_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.feedback_interval)
            self.run_periodic_pass()

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def _spawn(self, work: Awaitable[Any]) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(work)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Render task failed: %s", error, exc_info=error)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def wait_idle(self) -> None:
        """Wait until no flush is pending and no render task is running."""
        while self._flush_handle is not None or self._tasks:
            if self._tasks:
                await asyncio.wait(list(self._tasks))
            else:
                await asyncio.sleep(self.config.frame_interval)

    async def aclose(self) -> None:
        """Unbind and wait for in-flight renders to finish."""
        self.unbind()
        await self.wait_idle()
        self.copy_buttons.close()


__all__ = ["ScanScheduler"]
