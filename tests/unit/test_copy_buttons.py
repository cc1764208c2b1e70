"""Unit tests for copy controls and their feedback state."""

#  Copyright (c) 2025 Tom Villani, Ph.D.

import asyncio

import pytest
from utils import PanelHtmlGenerator, parse

from panelmark.annotations import NodeAnnotations
from panelmark.config import PanelConfig
from panelmark.constants import BOUND_ATTR, COPY_STATE_ATTR, CONTROL_ATTR
from panelmark.copy_buttons import BOTTOM_ROLE, CONTENT_ROLE, CopyButtonInjector, MemoryClipboard
from panelmark.dom import element_children


def _content(body="<p>hello <strong>world</strong></p>"):
    soup = parse(PanelHtmlGenerator.panel(body))
    return soup, soup.select_one(".leading-relaxed")


def _controls(node, role):
    return node.select(f'[{CONTROL_ATTR}="{role}"]')


class FailingClipboard:
    async def write_text(self, text):
        raise PermissionError("clipboard denied")


@pytest.mark.unit
class TestContentControls:
    """Test attaching controls to content containers."""

    def test_attach_is_idempotent(self):
        """Repeated passes keep one top and one bottom control."""
        injector = CopyButtonInjector()
        _soup, content = _content()

        first = injector.ensure_content_copy_button(content)
        second = injector.ensure_content_copy_button(content)

        assert first is second
        assert content[BOUND_ATTR] == "1"
        assert element_children(content)[0] is first
        assert len(_controls(content, CONTENT_ROLE)) == 1
        assert len(_controls(content, BOTTOM_ROLE)) == 1

    def test_removed_control_is_recreated(self):
        """A control removed by the host is created again."""
        injector = CopyButtonInjector()
        _soup, content = _content()

        injector.ensure_content_copy_button(content).extract()
        control = injector.ensure_content_copy_button(content)

        assert control is not None
        assert len(_controls(content, CONTENT_ROLE)) == 1
        assert injector.has_handler(control)

    def test_bottom_control_follows_streamed_content(self):
        """The bottom control moves back to the end after new content."""
        injector = CopyButtonInjector()
        soup, content = _content()

        injector.ensure_content_copy_button(content)
        content.append(soup.new_tag("p"))
        injector.ensure_content_copy_button(content)

        bottom = element_children(content)[-1]
        assert bottom.get(CONTROL_ATTR) == BOTTOM_ROLE
        assert bottom["data-placement"] == "float"

    def test_bottom_control_disabled(self):
        """Placement "none" adds no bottom control."""
        _soup, content = _content()
        CopyButtonInjector(PanelConfig(copy_button_show_bottom="none")).ensure_content_copy_button(content)
        assert _controls(content, BOTTOM_ROLE) == []
        assert len(_controls(content, CONTENT_ROLE)) == 1

    def test_text_style(self):
        """Text style controls show the configured label."""
        config = PanelConfig(copy_button_style="text", copy_button_custom_text="Copy MD", copy_button_smart_hover=False)
        _soup, content = _content()
        control = CopyButtonInjector(config).ensure_content_copy_button(content)

        assert control.get_text() == "Copy MD"
        assert control["title"] == "Copy MD"
        assert not control.has_attr("data-smart-hover")

    def test_icon_style(self):
        """Icon style controls hold an icon and no text."""
        _soup, content = _content()
        control = CopyButtonInjector().ensure_content_copy_button(content)

        assert control.select_one(".sidebar-copy-icon") is not None
        assert control.get_text() == ""
        assert control["aria-label"] == "Copy"
        assert control["data-smart-hover"] == "1"

    def test_feedback_pass_covers_every_container(self):
        """The full pass visits every content container under a root."""
        soup = parse(PanelHtmlGenerator.panel("<p>a</p>", "<p>b</p>"))
        injector = CopyButtonInjector()
        assert injector.add_feedback_copy_buttons(soup.select_one(".antigravity-agent-side-panel")) == 2
        assert len(soup.select(f"[{BOUND_ATTR}]")) == 2


@pytest.mark.unit
class TestCopyClicks:
    """Test click handling and success feedback."""

    def test_click_copies_markdown(self):
        """Clicking copies the container's Markdown without control labels."""
        config = PanelConfig(copy_button_style="text")
        injector = CopyButtonInjector(config, NodeAnnotations())
        _soup, content = _content()

        async def run():
            control = injector.ensure_content_copy_button(content)
            copied = await injector.click(control)
            injector.close()
            return copied

        assert asyncio.run(run()) is True
        assert injector.clipboard.text == "hello **world**"

    def test_feedback_does_not_stack(self):
        """A second click while feedback shows does not start a second timer."""
        config = PanelConfig(success_feedback_seconds=0.02)
        clipboard = MemoryClipboard()
        injector = CopyButtonInjector(config, clipboard=clipboard)
        _soup, content = _content()

        async def run():
            control = injector.ensure_content_copy_button(content)
            await injector.click(control)
            first_timer = injector._feedback[injector._identity.lookup(control)]
            await injector.click(control)
            same_timer = injector._feedback[injector._identity.lookup(control)] is first_timer
            showing = (control.get(COPY_STATE_ATTR), "copied" in control["class"])
            await asyncio.sleep(0.08)
            return control, same_timer, showing

        control, same_timer, showing = asyncio.run(run())
        assert same_timer
        assert showing == ("copied", True)
        assert len(clipboard.history) == 2
        assert not injector.is_showing_feedback(control)
        assert not control.has_attr(COPY_STATE_ATTR)
        assert "copied" not in control["class"]

    def test_show_success_twice(self):
        """show_success reports whether it started the feedback."""
        injector = CopyButtonInjector(PanelConfig(success_feedback_seconds=0.01))
        _soup, content = _content()

        async def run():
            control = injector.ensure_content_copy_button(content)
            result = (injector.show_success(control), injector.show_success(control))
            injector.close()
            return result

        assert asyncio.run(run()) == (True, False)

    def test_clipboard_failure(self):
        """A failing clipboard leaves the control in its idle state."""
        injector = CopyButtonInjector(clipboard=FailingClipboard())
        _soup, content = _content()

        async def run():
            control = injector.ensure_content_copy_button(content)
            return control, await injector.click(control)

        control, copied = asyncio.run(run())
        assert copied is False
        assert not control.has_attr(COPY_STATE_ATTR)

    def test_custom_control(self):
        """Custom controls copy whatever their callback returns."""
        injector = CopyButtonInjector()
        soup, _content_node = _content()
        holder = soup.new_tag("div")
        soup.body.append(holder)

        async def run():
            control = injector.attach_control(holder, lambda: "custom text", extra_class="extra")
            copied = await injector.click(control)
            injector.close()
            return control, copied

        control, copied = asyncio.run(run())
        assert copied is True
        assert "extra" in control["class"]
        assert injector.clipboard.text == "custom text"

    def test_click_without_handler(self):
        """Controls the injector did not create are ignored."""
        injector = CopyButtonInjector()
        soup = parse("<button>x</button>")
        assert asyncio.run(injector.click(soup.button)) is False
