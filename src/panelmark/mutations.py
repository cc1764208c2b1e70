#  Copyright (c) 2025 Tom Villani, Ph.D.
"""Change notifications for the host content tree.

The host publishes every change it makes to the tree through a
:class:`MutationHub`; observers subscribe with a root and receive the records
whose target lies inside that root, in delivery order. Records mirror the two
kinds of change the scheduler reacts to: inserted children (``childList``)
and replaced text payloads (``characterData``).

The module also provides the host-side helpers used to stream content into a
tree while publishing the matching records.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from bs4 import NavigableString

from panelmark.constants import MutationKind
from panelmark.dom import contains

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MutationRecord:
    """One change to the content tree.

    Parameters
    ----------
    kind : {"childList", "characterData"}
        Kind of change.
    target : Tag or NavigableString
        The parent that received children, or the text node that changed.
    added_nodes : tuple
        Nodes inserted by a ``childList`` change.

    """

    kind: MutationKind
    target: Any
    added_nodes: tuple[Any, ...] = ()


MutationCallback = Callable[[list[MutationRecord]], None]


class Subscription:
    """Handle returned by :meth:`MutationHub.observe`."""

    def __init__(self, hub: "MutationHub", root: Any, callback: MutationCallback):
        self.hub = hub
        self.root = root
        self.callback = callback
        self.active = True

    def disconnect(self) -> None:
        """Stop delivery; safe to call more than once."""
        if self.active:
            self.active = False
            self.hub._remove(self)


class MutationHub:
    """Synchronous change notification stream."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    def observe(self, root: Any, callback: MutationCallback) -> Subscription:
        """Deliver records for changes inside ``root`` (inclusive) to ``callback``."""
        subscription = Subscription(self, root, callback)
        self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        self._subscriptions = [s for s in self._subscriptions if s is not subscription]

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def notify(self, *records: MutationRecord) -> None:
        for subscription in list(self._subscriptions):
            if not subscription.active:
                continue
            relevant = [record for record in records if contains(subscription.root, record.target)]
            if not relevant:
                continue
            try:
                subscription.callback(relevant)
            except Exception:
                logger.exception("Mutation observer raised")


def append_child(hub: MutationHub, parent: Any, child: Any) -> Any:
    """Append ``child`` to ``parent`` and publish the insertion."""
    parent.append(child)
    hub.notify(MutationRecord("childList", parent, (child,)))
    return child


def insert_after(hub: MutationHub, reference: Any, node: Any) -> Any:
    """Insert ``node`` right after ``reference`` and publish the insertion."""
    reference.insert_after(node)
    hub.notify(MutationRecord("childList", reference.parent, (node,)))
    return node


def set_text(hub: MutationHub, text_node: NavigableString, value: str) -> NavigableString:
    """Replace a text payload and publish the change.

    Text nodes are immutable, so the payload is swapped for a new node, which
    is returned and is the target of the published record.
    """
    replacement = NavigableString(value)
    text_node.replace_with(replacement)
    hub.notify(MutationRecord("characterData", replacement))
    return replacement


def append_text(hub: MutationHub, text_node: NavigableString, suffix: str) -> NavigableString:
    """Append to a text payload, the way streamed tokens arrive."""
    return set_text(hub, text_node, str(text_node) + suffix)


__all__ = [
    "MutationRecord",
    "MutationHub",
    "Subscription",
    "append_child",
    "insert_after",
    "set_text",
    "append_text",
]
