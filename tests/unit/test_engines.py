"""Unit tests for engine loading and the default engines."""

#  Copyright (c) 2025 Tom Villani, Ph.D.

import asyncio

import httpx
import pytest
from utils import FakeMathEngine, first_element

from panelmark.config import PanelConfig
from panelmark.engines import EngineLoader, EngineServices, KrokiDiagramEngine, Latex2MathMLEngine
from panelmark.exceptions import LoadFailure, ParseFailure, RenderFailure
from panelmark.serializer import recover_math_source

SVG = '<svg xmlns="http://www.w3.org/2000/svg"><g></g></svg>'


def _kroki_handler(requests, health_status=200):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/health":
            return httpx.Response(health_status, json={"status": "ok"})
        body = request.content.decode("utf-8")
        if "bad" in body:
            return httpx.Response(400, text="Syntax error in graph")
        if "boom" in body:
            return httpx.Response(500, text="internal error")
        return httpx.Response(200, text=SVG)

    return handler


def _kroki(requests, health_status=200):
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(_kroki_handler(requests, health_status)), base_url="http://kroki.test"
    )
    return KrokiDiagramEngine("http://kroki.test", client=client), client


@pytest.mark.unit
class TestEngineLoader:
    """Test the shared, retryable engine load."""

    def test_concurrent_callers_share_one_load(self):
        """Callers arriving during a load await the same attempt."""
        engine = FakeMathEngine()
        loader = EngineLoader("math", engine)

        async def run():
            return await asyncio.gather(loader.ensure(), loader.ensure(), loader.ensure())

        results = asyncio.run(run())
        assert all(result is engine for result in results)
        assert engine.load_calls == 1
        assert loader.load_attempts == 1
        assert loader.loaded

    def test_loaded_engine_is_cached(self):
        """A successful load is not repeated."""
        engine = FakeMathEngine()
        loader = EngineLoader("math", engine)

        async def run():
            await loader.ensure()
            await loader.ensure()

        asyncio.run(run())
        assert engine.load_calls == 1

    def test_failed_load_is_retried(self):
        """A failed load is forgotten so the next caller tries again."""
        engine = FakeMathEngine(load_failures=1)
        loader = EngineLoader("math", engine)

        async def run():
            with pytest.raises(LoadFailure) as exc_info:
                await loader.ensure()
            assert exc_info.value.engine_name == "math"
            assert isinstance(exc_info.value.original_error, ConnectionError)
            return await loader.ensure()

        assert asyncio.run(run()) is engine
        assert engine.load_calls == 2
        assert loader.load_attempts == 2

    def test_concurrent_callers_share_failure(self):
        """Every caller of a failed attempt sees the failure."""
        engine = FakeMathEngine(load_failures=1)
        loader = EngineLoader("math", engine)

        async def run():
            return await asyncio.gather(loader.ensure(), loader.ensure(), return_exceptions=True)

        results = asyncio.run(run())
        assert all(isinstance(result, LoadFailure) for result in results)
        assert engine.load_calls == 1

    def test_engine_without_load(self):
        """Engines without a load method are ready immediately."""

        class Plain:
            def render(self, latex, display):
                return "<span></span>"

        plain = Plain()
        assert asyncio.run(EngineLoader("plain", plain).ensure()) is plain

    def test_aclose_forces_reload(self):
        """Closing a loader makes the next caller load again."""
        engine = FakeMathEngine()
        loader = EngineLoader("math", engine)

        async def run():
            await loader.ensure()
            await loader.aclose()
            assert not loader.loaded
            await loader.ensure()

        asyncio.run(run())
        assert engine.load_calls == 2


@pytest.mark.unit
class TestLatex2MathMLEngine:
    """Test the default math engine."""

    def test_inline_markup(self):
        """Inline output is KaTeX-shaped and carries its source."""
        engine = Latex2MathMLEngine()
        asyncio.run(engine.load())
        node = first_element(engine.render("x_1+y^2", False))

        assert node.name == "span"
        assert node["class"] == ["katex"]
        assert node.find("math") is not None
        assert recover_math_source(node) == ("x_1+y^2", False)

    def test_display_markup(self):
        """Display output is wrapped in a display span."""
        engine = Latex2MathMLEngine()
        asyncio.run(engine.load())
        node = first_element(engine.render("\\frac{a}{b}", True))

        assert node["class"] == ["katex-display"]
        assert recover_math_source(node) == ("\\frac{a}{b}", True)

    def test_render_before_load(self):
        """Rendering with an unloaded engine fails."""
        with pytest.raises(RenderFailure):
            Latex2MathMLEngine().render("x", False)


@pytest.mark.unit
class TestKrokiDiagramEngine:
    """Test the default diagram engine against a mocked service."""

    def test_render_svg(self):
        """Source is posted to the mermaid endpoint and SVG returned."""
        requests = []
        engine, _client = _kroki(requests)

        async def run():
            await engine.load()
            return await engine.render("sidebar-mermaid-1", "graph TD\nA-->B")

        assert asyncio.run(run()) == SVG
        post = requests[-1]
        assert post.method == "POST"
        assert post.url.path == "/mermaid/svg"
        assert post.content == b"graph TD\nA-->B"

    def test_syntax_error_is_parse_failure(self):
        """A 400 response is a parse failure carrying the source."""
        engine, _client = _kroki([])

        async def run():
            await engine.load()
            await engine.render("sidebar-mermaid-1", "graph bad")

        with pytest.raises(ParseFailure) as exc_info:
            asyncio.run(run())
        assert exc_info.value.source == "graph bad"
        assert "Syntax error" in exc_info.value.message

    def test_server_error_is_render_failure(self):
        """Other error responses are render failures."""
        engine, _client = _kroki([])

        async def run():
            await engine.load()
            await engine.render("sidebar-mermaid-1", "graph boom")

        with pytest.raises(RenderFailure):
            asyncio.run(run())

    def test_unhealthy_service_fails_load(self):
        """An unhealthy service is a load failure; an injected client stays open."""
        engine, client = _kroki([], health_status=503)

        with pytest.raises(LoadFailure):
            asyncio.run(engine.load())
        assert not client.is_closed

    def test_render_before_load(self):
        """Rendering without a client fails."""
        with pytest.raises(RenderFailure):
            asyncio.run(KrokiDiagramEngine().render("sidebar-mermaid-1", "graph TD"))


@pytest.mark.unit
class TestEngineServices:
    """Test the shared engine services."""

    def test_render_ids_are_unique(self):
        """Render ids count up per service object."""
        services = EngineServices(math_engine=FakeMathEngine())
        assert services.next_render_id() == "sidebar-mermaid-1"
        assert services.next_render_id() == "sidebar-mermaid-2"

    def test_defaults_from_config(self):
        """Default engines are created from configuration."""
        services = EngineServices.from_config(PanelConfig(kroki_url="http://kroki.local/"))
        assert isinstance(services.math.engine, Latex2MathMLEngine)
        assert isinstance(services.diagram.engine, KrokiDiagramEngine)
        assert services.diagram.engine.base_url == "http://kroki.local"
