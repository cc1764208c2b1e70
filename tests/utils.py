"""Test utilities for the panelmark test suite.

This module provides builders for panel markup, fake rendering engines that
never touch the network, and small helpers for validating Markdown output.
"""

import asyncio
import tempfile
from html import escape
from pathlib import Path
from typing import Iterable, Optional

from bs4 import BeautifulSoup, Tag

from panelmark.exceptions import ParseFailure


class PanelHtmlGenerator:
    """Generator for host panel markup used across tests."""

    @staticmethod
    def panel(*messages: str) -> str:
        """Wrap message bodies in sections of a panel document."""
        sections = "".join(
            f'<div data-section-index="{index}"><div class="leading-relaxed select-text">{body}</div></div>'
            for index, body in enumerate(messages)
        )
        return (
            "<html><head></head><body>"
            f'<div class="antigravity-agent-side-panel">{sections}</div>'
            "</body></html>"
        )

    @staticmethod
    def code_block(language: str, lines: Iterable[str]) -> str:
        """Build a host code block with one node per line."""
        body = "".join(f'<div class="line-content">{escape(line)}</div>' for line in lines)
        return f'<div class="language-{language}"><div class="code-block">{body}</div></div>'

    @staticmethod
    def katex(source: str, display: bool = False) -> str:
        """Build KaTeX markup carrying ``source`` in its annotation."""
        markup = (
            '<span class="katex"><span class="katex-mathml"><math><semantics><mrow><mi>x</mi></mrow>'
            f'<annotation encoding="application/x-tex">{escape(source)}</annotation>'
            '</semantics></math></span><span class="katex-html" aria-hidden="true">x</span></span>'
        )
        if display:
            return f'<span class="katex-display">{markup}</span>'
        return markup


def parse(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def first_element(html: str) -> Tag:
    """Parse ``html`` and return its first element."""
    soup = parse(html)
    element = soup.find(True)
    assert element is not None
    return element


class FakeMathEngine:
    """Math engine producing KaTeX-shaped markup without typesetting."""

    def __init__(self, fail_on: Iterable[str] = (), load_failures: int = 0):
        self.fail_on = set(fail_on)
        self.load_failures = load_failures
        self.load_calls = 0
        self.render_calls: list[tuple[str, bool]] = []

    async def load(self) -> None:
        self.load_calls += 1
        await asyncio.sleep(0)
        if self.load_calls <= self.load_failures:
            raise ConnectionError("math assets unavailable")

    def render(self, latex: str, display: bool) -> str:
        self.render_calls.append((latex, display))
        if latex in self.fail_on:
            raise ValueError(f"cannot typeset {latex}")
        return PanelHtmlGenerator.katex(latex, display=display)


class FakeDiagramEngine:
    """Diagram engine returning a tiny SVG, optionally held until released."""

    def __init__(self, fail_on: Iterable[str] = (), load_failures: int = 0, gate: Optional[asyncio.Event] = None):
        self.fail_on = set(fail_on)
        self.load_failures = load_failures
        self.gate = gate
        self.load_calls = 0
        self.render_calls: list[str] = []

    async def load(self) -> None:
        self.load_calls += 1
        await asyncio.sleep(0)
        if self.load_calls <= self.load_failures:
            raise ConnectionError("diagram service unavailable")

    async def render(self, render_id: str, source: str) -> str:
        self.render_calls.append(source)
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        if source in self.fail_on:
            raise ParseFailure("Parse error on line 1", source=source)
        return f'<svg xmlns="http://www.w3.org/2000/svg" id="tmp"><text>{escape(source)}</text></svg>'


def assert_markdown_valid(markdown: str) -> None:
    """Assert the Markdown has no surrounding whitespace or runs of blank lines."""
    assert markdown == markdown.strip()
    assert "\n\n\n" not in markdown


def create_test_temp_dir() -> Path:
    """Create a temporary directory for test files."""
    return Path(tempfile.mkdtemp())


def cleanup_test_dir(temp_dir: Path) -> None:
    """Clean up test directory and files."""
    import shutil

    if temp_dir.exists():
        shutil.rmtree(temp_dir)
