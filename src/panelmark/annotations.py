#  Copyright (c) 2025 Tom Villani, Ph.D.
"""Out-of-band side tables for nodes owned by the host.

panelmark never stores its own state on host nodes. Render states, cached
sources and text snapshots live in a :class:`NodeAnnotations` table keyed by a
stable per-node identity. ``bs4.Tag`` compares and hashes by markup, so two
distinct empty ``<div>`` elements are "equal"; identities are therefore
assigned on first observation and tied to the node object through a weak
reference.

Entries disappear when the node is garbage collected, and explicitly when a
scan pass prunes nodes it no longer observes under the bound root.
"""

from __future__ import annotations

import itertools
import logging
import weakref
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generic, Iterator, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RenderState(Enum):
    """Lifecycle of a math root or diagram source node."""

    UNRENDERED = "unrendered"
    RENDERING = "rendering"
    RENDERED = "rendered"
    ERRORED = "errored"


@dataclass
class NodeState:
    """Annotations panelmark keeps for one node.

    Parameters
    ----------
    render_state : RenderState
        Current render lifecycle state.
    last_source_seen : str or None
        Source text the last render attempt started from.
    last_errored_source : str or None
        Source text of the last failed diagram render.
    diagram_source : str or None
        Diagram source cached on a rendered diagram container.
    math_snapshot : str or None
        Text content of a math root right after its last successful render.
    raw_text : str or None
        Text content captured before the first math render touched the node.

    """

    render_state: RenderState = RenderState.UNRENDERED
    last_source_seen: Optional[str] = None
    last_errored_source: Optional[str] = None
    diagram_source: Optional[str] = None
    math_snapshot: Optional[str] = None
    raw_text: Optional[str] = None


class NodeIdentity:
    """Assign stable integer identities to node objects.

    The identity of a node is created the first time it is observed and stays
    the same for as long as the node object is alive.
    """

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        # id(node) -> (weakref to node, identity)
        self._entries: dict[int, tuple[weakref.ref, int]] = {}
        self._listeners: list[Callable[[int], None]] = []

    def identify(self, node: Any) -> int:
        address = id(node)
        entry = self._entries.get(address)
        if entry is not None and entry[0]() is node:
            return entry[1]

        identity = next(self._counter)

        def _forget(_ref: weakref.ref, address: int = address, identity: int = identity) -> None:
            current = self._entries.get(address)
            if current is not None and current[1] == identity:
                del self._entries[address]
            for listener in self._listeners:
                listener(identity)

        self._entries[address] = (weakref.ref(node, _forget), identity)
        return identity

    def lookup(self, node: Any) -> Optional[int]:
        """Return the identity of an already observed node without assigning one."""
        entry = self._entries.get(id(node))
        if entry is not None and entry[0]() is node:
            return entry[1]
        return None

    def on_collect(self, listener: Callable[[int], None]) -> None:
        self._listeners.append(listener)


class NodeAnnotations:
    """Identity-keyed side table of :class:`NodeState` records."""

    def __init__(self, identity: Optional[NodeIdentity] = None) -> None:
        self.identity = identity or NodeIdentity()
        self._states: dict[int, NodeState] = {}
        self._nodes: dict[int, weakref.ref] = {}
        self.identity.on_collect(self._evict)

    def get(self, node: Any) -> Optional[NodeState]:
        """Return the state of a node, or None if nothing was recorded."""
        identity = self.identity.lookup(node)
        if identity is None:
            return None
        return self._states.get(identity)

    def state_for(self, node: Any) -> NodeState:
        """Return the state of a node, creating an empty record on first use."""
        identity = self.identity.identify(node)
        state = self._states.get(identity)
        if state is None:
            state = NodeState()
            self._states[identity] = state
            self._nodes[identity] = weakref.ref(node)
        return state

    def render_state(self, node: Any) -> RenderState:
        state = self.get(node)
        return state.render_state if state else RenderState.UNRENDERED

    def diagram_source(self, node: Any) -> Optional[str]:
        state = self.get(node)
        return state.diagram_source if state else None

    def discard(self, node: Any) -> None:
        identity = self.identity.lookup(node)
        if identity is not None:
            self._evict(identity)

    def prune(self, is_live: Callable[[Any], bool]) -> int:
        """Evict entries whose node is gone or fails ``is_live``.

        Returns
        -------
        int
            Number of evicted entries.

        """
        stale = []
        for identity, ref in self._nodes.items():
            node = ref()
            if node is None or not is_live(node):
                stale.append(identity)
        for identity in stale:
            self._evict(identity)
        if stale:
            logger.debug("Evicted %d stale node annotations", len(stale))
        return len(stale)

    def _evict(self, identity: int) -> None:
        self._states.pop(identity, None)
        self._nodes.pop(identity, None)

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, node: Any) -> bool:
        return self.get(node) is not None


class IdentitySet(Generic[T]):
    """Insertion-ordered set of nodes deduplicated by node identity."""

    def __init__(self, identity: Optional[NodeIdentity] = None) -> None:
        self.identity = identity or NodeIdentity()
        self._items: dict[int, T] = {}

    def add(self, node: T) -> bool:
        """Add a node; return False if it was already present."""
        identity = self.identity.identify(node)
        if identity in self._items:
            return False
        self._items[identity] = node
        return True

    def drain(self) -> list[T]:
        """Return all nodes in insertion order and empty the set."""
        items = list(self._items.values())
        self._items.clear()
        return items

    def clear(self) -> None:
        self._items.clear()

    def __contains__(self, node: object) -> bool:
        identity = self.identity.lookup(node)
        return identity is not None and identity in self._items

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items.values()))

    def __len__(self) -> int:
        return len(self._items)


class PendingScanSet(IdentitySet[Any]):
    """Scan roots accumulated between two scheduler ticks."""


__all__ = [
    "RenderState",
    "NodeState",
    "NodeIdentity",
    "NodeAnnotations",
    "IdentitySet",
    "PendingScanSet",
]
