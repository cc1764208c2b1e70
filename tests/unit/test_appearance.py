"""Unit tests for panel appearance settings."""

#  Copyright (c) 2025 Tom Villani, Ph.D.

import pytest
from utils import parse

from panelmark.appearance import apply_appearance, document_root
from panelmark.config import PanelConfig
from panelmark.constants import MAX_WIDTH_ATTR
from panelmark.dom import get_style


def _document():
    return parse("<html><head></head><body><div></div></body></html>")


@pytest.mark.unit
class TestAppearance:
    """Test font size, width and table colour settings."""

    def test_font_size(self):
        """The font size is exposed as a custom property in pixels."""
        document = _document()
        apply_appearance(document, PanelConfig(font_size=18))
        assert get_style(document.html)["--sidebar-panel-font-size"] == "18px"

        apply_appearance(document, PanelConfig(font_size_enabled=False))
        assert "--sidebar-panel-font-size" not in get_style(document.html)

    def test_max_width_is_clamped(self):
        """The width ratio is clamped to 30..100 percent."""
        document = _document()
        apply_appearance(document, PanelConfig(max_width_enabled=True, max_width_ratio=120))
        assert document.html[MAX_WIDTH_ATTR] == "1"
        assert get_style(document.html)["--sidebar-panel-max-width-ratio"] == "100"

        apply_appearance(document, PanelConfig(max_width_enabled=True, max_width_ratio=10))
        assert get_style(document.html)["--sidebar-panel-max-width-ratio"] == "30"

    def test_max_width_disabled(self):
        """Disabling the width constraint removes it."""
        document = _document()
        apply_appearance(document, PanelConfig(max_width_enabled=True))
        apply_appearance(document, PanelConfig(max_width_enabled=False))
        assert not document.html.has_attr(MAX_WIDTH_ATTR)
        assert "--sidebar-panel-max-width-ratio" not in get_style(document.html)

    def test_table_color_stylesheet(self):
        """The table stylesheet is linked once and removed when disabled."""
        document = _document()
        apply_appearance(document, PanelConfig())
        apply_appearance(document, PanelConfig())
        links = document.head.select('link[href="table-fix.css"]')
        assert len(links) == 1
        assert links[0].get_attribute_list("rel") == ["stylesheet"]

        apply_appearance(document, PanelConfig(table_color=False))
        assert document.select('link[href="table-fix.css"]') == []

    def test_document_root_without_html(self):
        """Fragments use their first element as root."""
        fragment = parse("<main><p>x</p></main>")
        assert document_root(fragment) is fragment.main
        apply_appearance(fragment, PanelConfig())
        assert fragment.main.find("link") is not None

    def test_empty_document(self):
        """An empty document is left alone."""
        empty = parse("")
        apply_appearance(empty, PanelConfig())
        assert document_root(empty) is None
