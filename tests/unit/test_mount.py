"""Unit tests for mounting panelmark on a host document."""

#  Copyright (c) 2025 Tom Villani, Ph.D.

import asyncio

import pytest
from utils import PanelHtmlGenerator, parse

from panelmark.constants import MATH_ATTR, PANEL_SELECTOR
from panelmark.dom import get_style
from panelmark.mount import PanelMount
from panelmark.mutations import MutationHub


def _panel(*messages):
    return parse(PanelHtmlGenerator.panel(*messages)).select_one(PANEL_SELECTOR)


@pytest.mark.unit
class TestPanelMount:
    """Test mounting, remounting and teardown."""

    def test_start_binds_panel(self, fast_config, services):
        """Starting applies appearance and binds the mounted panel."""
        soup = parse(PanelHtmlGenerator.panel("<p>$x$</p>"))

        async def run():
            async with PanelMount(soup, MutationHub(), fast_config, services=services) as mount:
                await mount.scheduler.wait_idle()
                return mount.scheduler.root

        root = asyncio.run(run())
        assert root is soup.select_one(PANEL_SELECTOR)
        assert get_style(soup.html)["--sidebar-panel-font-size"] == "16px"
        assert soup.select_one(".leading-relaxed")[MATH_ATTR] == "1"

    def test_waits_for_panel_root(self, fast_config, services):
        """A panel mounted later is picked up by the root check."""
        soup = parse("<html><head></head><body></body></html>")

        async def run():
            mount = PanelMount(soup, MutationHub(), fast_config, services=services)
            mount.start()
            before = mount.scheduler.is_bound
            panel = _panel("<p>late</p>")
            soup.body.append(panel)
            await asyncio.sleep(fast_config.root_check_interval * 5)
            bound_to_panel = mount.scheduler.root is panel
            await mount.aclose()
            return before, bound_to_panel

        assert asyncio.run(run()) == (False, True)

    def test_remounted_panel_is_rebound(self, fast_config, services):
        """Replacing the panel root moves the binding to the new root."""
        soup = parse(PanelHtmlGenerator.panel("<p>old</p>"))
        hub = MutationHub()

        async def run():
            mount = PanelMount(soup, hub, fast_config, services=services)
            mount.start()
            replacement = _panel("<p>new</p>")
            soup.select_one(PANEL_SELECTOR).replace_with(replacement)
            await asyncio.sleep(fast_config.root_check_interval * 5)
            result = (mount.scheduler.root is replacement, hub.subscriber_count)
            await mount.aclose()
            return result

        assert asyncio.run(run()) == (True, 1)

    def test_aclose_releases_everything(self, fast_config, services):
        """Closing unbinds, stops the root check and unloads engines."""
        soup = parse(PanelHtmlGenerator.panel("<p>$x$</p>"))
        hub = MutationHub()

        async def run():
            mount = PanelMount(soup, hub, fast_config, services=services)
            mount.start()
            await mount.scheduler.wait_idle()
            loaded = services.math.loaded
            await mount.aclose()
            return mount, loaded

        mount, loaded = asyncio.run(run())
        assert loaded is True
        assert hub.subscriber_count == 0
        assert not mount.scheduler.is_bound
        assert not services.math.loaded
        assert mount._root_check_task is None
