#  Copyright (c) 2025 Tom Villani, Ph.D.
"""External typesetting and diagram engines.

Engines are loaded lazily on first use and shared by every renderer that
receives the same :class:`EngineServices` object. Each engine has exactly one
in-flight load at a time: concurrent callers await the same task, a
successful load is cached for the lifetime of the service object, and a
failed load is forgotten so that the next caller starts a fresh attempt.
There is no retry limit and no backoff; a failing engine is simply reloaded
on the next render trigger.

Default engines
---------------
Latex2MathMLEngine
    Converts TeX to MathML with the ``latex2mathml`` package and wraps it in
    KaTeX-compatible markup carrying the source in an ``annotation`` element.
KrokiDiagramEngine
    Renders mermaid source to SVG through a Kroki service using ``httpx``.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Generic, Optional, Protocol, TypeVar, runtime_checkable

import httpx
from bs4 import NavigableString

from panelmark.constants import (
    DEFAULT_ENGINE_TIMEOUT,
    DEFAULT_KROKI_URL,
    DEFAULT_USER_AGENT,
    DIAGRAM_LANGUAGE,
    DIAGRAM_RENDER_ID_PREFIX,
    KATEX_CLASS,
    KATEX_DISPLAY_CLASS,
    TEX_ANNOTATION_ENCODING,
)
from panelmark.dom import is_element, new_tag, parse_fragment
from panelmark.exceptions import LoadFailure, ParseFailure, RenderFailure

logger = logging.getLogger(__name__)

E = TypeVar("E")


@runtime_checkable
class MathEngine(Protocol):
    """Typesetting engine turning TeX source into markup."""

    def render(self, latex: str, display: bool) -> str:
        """Return markup for ``latex``; raise on invalid input."""
        ...


@runtime_checkable
class DiagramEngine(Protocol):
    """Diagram engine turning diagram source into SVG text.

    Engines may additionally provide ``async parse(source)`` which raises
    :class:`ParseFailure` for syntactically invalid source.
    """

    async def render(self, render_id: str, source: str) -> str:
        """Return SVG markup for ``source``."""
        ...


class EngineLoader(Generic[E]):
    """Single shared, retryable load of one engine.

    Parameters
    ----------
    name : str
        Engine name used in log messages and :class:`LoadFailure`.
    engine : object
        The engine instance. If it has an ``async load()`` method it is
        awaited to initialize the engine; its return value is ignored.

    """

    def __init__(self, name: str, engine: E):
        self.name = name
        self._engine = engine
        self._loaded = False
        self._task: Optional[asyncio.Future[E]] = None
        self.load_attempts = 0

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def engine(self) -> E:
        return self._engine

    async def ensure(self) -> E:
        """Load the engine if needed and return it.

        Returns
        -------
        E
            The loaded engine

        Raises
        ------
        LoadFailure
            If the load attempt this call joined failed

        """
        if self._loaded:
            return self._engine
        if self._task is None:
            self.load_attempts += 1
            self._task = asyncio.ensure_future(self._load())
        # A cancelled caller must not cancel the load shared with other callers
        return await asyncio.shield(self._task)

    async def _load(self) -> E:
        try:
            load = getattr(self._engine, "load", None)
            if load is not None:
                await load()
        except LoadFailure:
            self._task = None
            raise
        except Exception as e:
            self._task = None
            raise LoadFailure(self.name, original_error=e) from e
        self._loaded = True
        logger.debug("Engine %s loaded", self.name)
        return self._engine

    async def aclose(self) -> None:
        """Release engine resources; a later :meth:`ensure` loads it again."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        if self._loaded:
            close = getattr(self._engine, "aclose", None)
            if close is not None:
                await close()
        self._loaded = False


class Latex2MathMLEngine:
    """TeX to MathML typesetting using ``latex2mathml``.

    The produced markup mirrors what KaTeX emits, so the serializer recovers
    the TeX source the same way for both::

        <span class="katex">
          <math><semantics>...<annotation encoding="application/x-tex">x^2</annotation></semantics></math>
        </span>

    Display math is additionally wrapped in ``<span class="katex-display">``.
    """

    name = "latex2mathml"

    def __init__(self) -> None:
        self._convert: Any = None

    async def load(self) -> None:
        try:
            from latex2mathml.converter import convert
        except ImportError as e:
            raise LoadFailure(self.name, original_error=e) from e
        self._convert = convert

    def render(self, latex: str, display: bool) -> str:
        if self._convert is None:
            raise RenderFailure(f"Engine '{self.name}' is not loaded")
        try:
            mathml = self._convert(latex, display="block" if display else "inline")
        except Exception as e:
            raise RenderFailure(f"Could not typeset {latex!r}: {e}", original_error=e) from e
        return self._wrap(mathml, latex, display)

    def _wrap(self, mathml: str, latex: str, display: bool) -> str:
        math = next((node for node in parse_fragment(mathml) if is_element(node) and node.name == "math"), None)
        if math is None:
            raise RenderFailure(f"Engine '{self.name}' produced no math element for {latex!r}")

        semantics = new_tag(None, "semantics")
        content = new_tag(None, "mrow")
        for child in list(math.contents):
            content.append(child.extract())
        annotation = new_tag(None, "annotation", encoding=TEX_ANNOTATION_ENCODING)
        annotation.append(NavigableString(latex))
        semantics.append(content)
        semantics.append(annotation)
        math.append(semantics)

        wrapper = new_tag(None, "span", [KATEX_CLASS])
        wrapper.append(math)
        if display:
            outer = new_tag(None, "span", [KATEX_DISPLAY_CLASS])
            outer.append(wrapper)
            wrapper = outer
        return str(wrapper)


class KrokiDiagramEngine:
    """Mermaid rendering through a Kroki HTTP service.

    Parameters
    ----------
    base_url : str
        Base URL of the Kroki service.
    timeout : float
        Request timeout in seconds.
    client : httpx.AsyncClient, optional
        Preconfigured client (its base URL must point at the service). The
        engine does not close clients it did not create.

    """

    name = "kroki"

    def __init__(
        self,
        base_url: str = DEFAULT_KROKI_URL,
        timeout: float = DEFAULT_ENGINE_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def load(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": DEFAULT_USER_AGENT},
            )
        try:
            response = await self._client.get("/health")
            response.raise_for_status()
        except httpx.HTTPError as e:
            await self.aclose()
            raise LoadFailure(self.name, original_error=e) from e

    async def render(self, render_id: str, source: str) -> str:
        if self._client is None:
            raise RenderFailure(f"Engine '{self.name}' is not loaded")
        try:
            response = await self._client.post(
                f"/{DIAGRAM_LANGUAGE}/svg",
                content=source.encode("utf-8"),
                headers={"Content-Type": "text/plain"},
            )
        except httpx.HTTPError as e:
            raise RenderFailure(f"Diagram request {render_id} failed: {e!r}", original_error=e) from e

        if response.status_code == 400:
            raise ParseFailure(response.text.strip() or "Invalid diagram source", source=source)
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RenderFailure(f"Diagram request {render_id} failed: {e}", original_error=e) from e
        return response.text

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class EngineServices:
    """Engine loaders and render id counter shared by the renderers.

    One instance is owned by whoever mounts the scan scheduler and is
    injected into the math and diagram renderers.

    Parameters
    ----------
    math_engine : MathEngine, optional
        Typesetting engine, defaults to :class:`Latex2MathMLEngine`.
    diagram_engine : DiagramEngine, optional
        Diagram engine, defaults to :class:`KrokiDiagramEngine`.
    kroki_url : str
        Service URL for the default diagram engine.

    """

    def __init__(
        self,
        math_engine: Optional[MathEngine] = None,
        diagram_engine: Optional[DiagramEngine] = None,
        kroki_url: str = DEFAULT_KROKI_URL,
    ):
        self.math: EngineLoader[MathEngine] = EngineLoader("math", math_engine or Latex2MathMLEngine())
        self.diagram: EngineLoader[DiagramEngine] = EngineLoader(
            "diagram", diagram_engine or KrokiDiagramEngine(kroki_url)
        )
        self._render_ids = itertools.count(1)

    @classmethod
    def from_config(cls, config: Any) -> "EngineServices":
        return cls(kroki_url=getattr(config, "kroki_url", DEFAULT_KROKI_URL))

    def next_render_id(self) -> str:
        return f"{DIAGRAM_RENDER_ID_PREFIX}-{next(self._render_ids)}"

    async def aclose(self) -> None:
        await self.math.aclose()
        await self.diagram.aclose()


__all__ = [
    "MathEngine",
    "DiagramEngine",
    "EngineLoader",
    "Latex2MathMLEngine",
    "KrokiDiagramEngine",
    "EngineServices",
]
