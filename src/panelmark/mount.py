#  Copyright (c) 2025 Tom Villani, Ph.D.
"""Mounting panelmark onto a host document.

:class:`PanelMount` owns everything one mounted panel needs: the annotation
side table, the engine services, the copy control injector and the scan
scheduler. Starting the mount applies the appearance settings, binds the
panel root if the host has mounted it and keeps checking for a new root so a
remounted panel is picked up.

Examples
--------
    >>> async def main(document, hub):
    ...     async with PanelMount(document, hub, PanelConfig()) as mount:
    ...         await mount.scheduler.wait_idle()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from bs4 import BeautifulSoup

from panelmark.annotations import NodeAnnotations
from panelmark.appearance import apply_appearance
from panelmark.config import PanelConfig
from panelmark.copy_buttons import Clipboard, CopyButtonInjector
from panelmark.engines import EngineServices
from panelmark.mutations import MutationHub
from panelmark.scheduler import ScanScheduler

logger = logging.getLogger(__name__)


class PanelMount:
    """One mounted panel.

    Parameters
    ----------
    document : BeautifulSoup
        The host document.
    hub : MutationHub
        The host's change notification stream.
    config : PanelConfig, optional
        Runtime configuration.
    services : EngineServices, optional
        Engine services; created from ``config`` when omitted.
    clipboard : Clipboard, optional
        System clipboard used by copy controls.

    """

    def __init__(
        self,
        document: BeautifulSoup,
        hub: MutationHub,
        config: Optional[PanelConfig] = None,
        services: Optional[EngineServices] = None,
        clipboard: Optional[Clipboard] = None,
    ):
        self.document = document
        self.hub = hub
        self.config = config or PanelConfig()
        self.services = services or EngineServices.from_config(self.config)
        self.annotations = NodeAnnotations()
        self.copy_buttons = CopyButtonInjector(self.config, self.annotations, clipboard)
        self.scheduler = ScanScheduler(hub, self.config, self.annotations, self.services, self.copy_buttons)
        self._root_check_task: Optional[asyncio.Task[None]] = None

    def find_panel_root(self) -> Optional[Any]:
        return self.document.select_one(self.config.selectors.panel)

    def try_bind(self) -> bool:
        """Bind the current panel root; return False if the host has none."""
        root = self.find_panel_root()
        if root is None:
            return False
        self.scheduler.bind(root)
        return True

    def start(self) -> None:
        """Apply appearance, bind the panel root and start the root check timer."""
        apply_appearance(self.document, self.config)
        if not self.try_bind():
            logger.info("Waiting for the panel root to be mounted")
        if self._root_check_task is None:
            self._root_check_task = asyncio.get_running_loop().create_task(self._root_check_loop())

    async def _root_check_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.root_check_interval)
            self.try_bind()

    def stop(self) -> None:
        """Unbind the scheduler and cancel the root check timer."""
        if self._root_check_task is not None:
            self._root_check_task.cancel()
            self._root_check_task = None
        self.scheduler.unbind()

    async def aclose(self) -> None:
        """Stop, wait for in-flight renders and release engine resources."""
        self.stop()
        await self.scheduler.aclose()
        await self.services.aclose()

    async def __aenter__(self) -> "PanelMount":
        self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


__all__ = ["PanelMount"]
