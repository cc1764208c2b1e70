#  Copyright (c) 2025 Tom Villani, Ph.D.
"""Panel appearance settings applied to the document root.

Font size and conversation width are exposed to the host stylesheet as CSS
custom properties on the document's root element; the table colour fix is a
stylesheet link added to the document head.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Optional

from bs4 import BeautifulSoup, Tag

from panelmark.config import PanelConfig
from panelmark.constants import (
    FONT_SIZE_VARIABLE,
    MAX_MAX_WIDTH_RATIO,
    MAX_WIDTH_ATTR,
    MAX_WIDTH_VARIABLE,
    MIN_MAX_WIDTH_RATIO,
    TABLE_FIX_STYLESHEET,
)
from panelmark.dom import element_children, set_style_property

logger = logging.getLogger(__name__)


def document_root(document: BeautifulSoup) -> Optional[Tag]:
    """Return the ``html`` element, or the first top-level element."""
    html = document.find("html")
    if html is not None:
        return html
    children = element_children(document)
    return children[0] if children else None


def _positive(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    number = float(value)
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def _format_number(value: float) -> str:
    return str(int(value)) if value.is_integer() else str(value)


def apply_font_size(root: Tag, config: PanelConfig) -> None:
    size = _positive(config.font_size) if config.font_size_enabled else None
    if size is None:
        set_style_property(root, FONT_SIZE_VARIABLE, None)
        return
    set_style_property(root, FONT_SIZE_VARIABLE, f"{_format_number(size)}px")


def apply_max_width(root: Tag, config: PanelConfig) -> None:
    ratio = _positive(config.max_width_ratio) if config.max_width_enabled else None
    if ratio is None:
        if root.has_attr(MAX_WIDTH_ATTR):
            del root[MAX_WIDTH_ATTR]
        set_style_property(root, MAX_WIDTH_VARIABLE, None)
        return
    clamped = min(MAX_MAX_WIDTH_RATIO, max(MIN_MAX_WIDTH_RATIO, ratio))
    root[MAX_WIDTH_ATTR] = "1"
    set_style_property(root, MAX_WIDTH_VARIABLE, _format_number(clamped))


def apply_table_color(document: BeautifulSoup, root: Tag, config: PanelConfig) -> None:
    existing = document.select(f'link[href="{TABLE_FIX_STYLESHEET}"]')
    if not config.table_color:
        for link in existing:
            link.extract()
        return
    if existing:
        return
    link = document.new_tag("link", attrs={"rel": "stylesheet", "href": TABLE_FIX_STYLESHEET})
    head = document.find("head")
    (head if head is not None else root).append(link)


def apply_appearance(document: BeautifulSoup, config: PanelConfig) -> None:
    """Apply font size, maximum width and table colour settings to ``document``.

    Parameters
    ----------
    document : BeautifulSoup
        The host document
    config : PanelConfig
        Appearance settings

    """
    root = document_root(document)
    if root is None:
        logger.debug("Document has no root element; appearance not applied")
        return
    apply_font_size(root, config)
    apply_max_width(root, config)
    apply_table_color(document, root, config)


__all__ = ["apply_appearance", "document_root"]
