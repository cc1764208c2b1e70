"""panelmark - Markdown export and math/diagram rendering for live chat panels.

panelmark works on a host-rendered, continuously changing content tree (a
BeautifulSoup document mirroring a chat or assistant panel) and provides:

- Deterministic serialization of rendered rich content back to Markdown,
  recovering TeX source from typeset math and diagram source from rendered
  diagrams
- Incremental rendering of delimited math and ``mermaid`` code blocks, with
  streaming re-render, retry after a fix and graceful fallback on failure
- Copy controls on every content container wired to the serializer
- A scan scheduler that coalesces tree changes into one rescan per frame

Examples
--------
Serialize a fragment:

    >>> from bs4 import BeautifulSoup
    >>> from panelmark import serialize
    >>> soup = BeautifulSoup('<ul><li>one</li><li>two</li></ul>', "html.parser")
    >>> serialize(soup)
    '- one\\n- two'

Mount on a live document:

    >>> from panelmark import MutationHub, PanelConfig, PanelMount
    >>> async def run(document):
    ...     async with PanelMount(document, MutationHub(), PanelConfig()) as mount:
    ...         await mount.scheduler.wait_idle()

"""

#  Copyright (c) 2025 Tom Villani, Ph.D.

import sys

if sys.version_info < (3, 10):
    raise ImportError(
        "panelmark requires Python 3.10 or later. "
        f"You are using Python {sys.version_info.major}.{sys.version_info.minor}."
    )

__version__ = "1.0.0"

from panelmark.annotations import NodeAnnotations, PendingScanSet, RenderState  # noqa: E402
from panelmark.classifier import NodeKind, classify  # noqa: E402
from panelmark.config import PanelConfig, PanelSelectors, load_config  # noqa: E402
from panelmark.copy_buttons import Clipboard, CopyButtonInjector, MemoryClipboard  # noqa: E402
from panelmark.diagram_renderer import DiagramRenderer  # noqa: E402
from panelmark.engines import (  # noqa: E402
    EngineLoader,
    EngineServices,
    KrokiDiagramEngine,
    Latex2MathMLEngine,
)
from panelmark.exceptions import (  # noqa: E402
    ConfigError,
    LoadFailure,
    PanelmarkError,
    ParseFailure,
    RenderFailure,
    StaleContentRace,
)
from panelmark.math_renderer import MathRenderer  # noqa: E402
from panelmark.mount import PanelMount  # noqa: E402
from panelmark.mutations import MutationHub, MutationRecord  # noqa: E402
from panelmark.scheduler import ScanScheduler  # noqa: E402
from panelmark.serializer import ExtractionContext, MarkdownSerializer, serialize  # noqa: E402

__all__ = [
    "__version__",
    # Serialization
    "serialize",
    "MarkdownSerializer",
    "ExtractionContext",
    "NodeKind",
    "classify",
    # Rendering
    "MathRenderer",
    "DiagramRenderer",
    "EngineLoader",
    "EngineServices",
    "Latex2MathMLEngine",
    "KrokiDiagramEngine",
    # Scheduling
    "ScanScheduler",
    "PanelMount",
    "MutationHub",
    "MutationRecord",
    "NodeAnnotations",
    "PendingScanSet",
    "RenderState",
    # Copy controls
    "Clipboard",
    "CopyButtonInjector",
    "MemoryClipboard",
    # Configuration
    "PanelConfig",
    "PanelSelectors",
    "load_config",
    # Exceptions
    "PanelmarkError",
    "LoadFailure",
    "ParseFailure",
    "RenderFailure",
    "StaleContentRace",
    "ConfigError",
]
