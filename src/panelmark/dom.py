#  Copyright (c) 2025 Tom Villani, Ph.D.
"""Helpers for reading and mutating the host content tree.

The content tree is a BeautifulSoup document owned by the host. Elements are
``bs4.Tag`` objects and text payloads are ``bs4.NavigableString`` objects.
These helpers give the rest of the package a small, DOM-like vocabulary
(``closest``, ``text_content``, ``is_attached`` ...) so that the classifier,
serializer and renderers read the same way regardless of where a node sits.

Selector matching is delegated to soupsieve, the CSS selector engine bs4
itself uses for ``Tag.select``.
"""

from __future__ import annotations

import re
from typing import Any, Iterator, Optional

import soupsieve as sv
from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString

_STYLE_DECLARATION_RE = re.compile(r"\s*;\s*")

# Detached scratch document used to create nodes for trees that have no owner
_FACTORY = BeautifulSoup("", "html.parser")


def is_element(node: Any) -> bool:
    """Return True for element nodes (the document object itself excluded)."""
    return isinstance(node, Tag) and not isinstance(node, BeautifulSoup)


def is_text(node: Any) -> bool:
    """Return True for text payload nodes.

    Comments, doctypes, CDATA and processing instructions are not text.
    """
    return isinstance(node, NavigableString) and not isinstance(node, PreformattedString)


def class_list(node: Any) -> list[str]:
    """Return the class tokens of an element, or an empty list."""
    if not is_element(node):
        return []
    classes = node.get("class")
    if not classes:
        return []
    if isinstance(classes, str):
        return classes.split()
    return [str(cls) for cls in classes]


def class_string(node: Any) -> str:
    """Return the class attribute of an element as a single string."""
    return " ".join(class_list(node))


def parent_element(node: Any) -> Optional[Tag]:
    """Return the parent element, or None at the top of the tree."""
    parent = getattr(node, "parent", None)
    if parent is None or isinstance(parent, BeautifulSoup):
        return None
    return parent


def closest(node: Any, selector: str) -> Optional[Tag]:
    """Return the nearest ancestor-or-self element matching ``selector``.

    Text nodes start the search at their parent element.
    """
    element = node if is_element(node) else parent_element(node)
    if element is None:
        return None
    return sv.closest(selector, element)


def matches(node: Any, selector: str) -> bool:
    return is_element(node) and sv.match(selector, node)


def select(node: Any, selector: str) -> list[Tag]:
    """Return the descendants of ``node`` matching ``selector`` in document order."""
    if not isinstance(node, Tag):
        return []
    return list(sv.select(selector, node))


def select_inclusive(node: Any, selector: str) -> list[Tag]:
    """Like :func:`select`, but the node itself is included when it matches."""
    found = [node] if matches(node, selector) else []
    found.extend(select(node, selector))
    return found


def text_content(node: Any) -> str:
    """Return the concatenated text of a node and its descendants."""
    if node is None:
        return ""
    if isinstance(node, Tag):
        return "".join(text for text in node.descendants if is_text(text))
    if is_text(node):
        return str(node)
    return ""


def iter_text_nodes(node: Tag) -> Iterator[NavigableString]:
    """Yield the text payload nodes below ``node`` in document order."""
    for descendant in node.descendants:
        if is_text(descendant):
            yield descendant


def element_children(node: Any) -> list[Tag]:
    if not isinstance(node, Tag):
        return []
    return [child for child in node.children if is_element(child)]


def next_element_sibling(node: Tag) -> Optional[Tag]:
    sibling = node.next_sibling
    while sibling is not None and not is_element(sibling):
        sibling = sibling.next_sibling
    return sibling


def owner_document(node: Any) -> Optional[BeautifulSoup]:
    """Return the BeautifulSoup document a node belongs to, if any."""
    current = node
    while current is not None:
        if isinstance(current, BeautifulSoup):
            return current
        current = current.parent
    return None


def is_attached(node: Any, root: Any = None) -> bool:
    """Check that a node is still part of the live tree.

    With ``root`` the node must be ``root`` itself or one of its descendants,
    and ``root`` must in turn be attached to a document. Without ``root`` the
    node's parent chain must reach a document.
    """
    if node is None:
        return False
    if root is None:
        return owner_document(node) is not None
    current = node
    while current is not None:
        if current is root:
            return owner_document(root) is not None
        current = current.parent
    return False


def contains(ancestor: Any, node: Any) -> bool:
    """Return True when ``node`` is ``ancestor`` or sits below it."""
    current = node
    while current is not None:
        if current is ancestor:
            return True
        current = current.parent
    return False


def new_tag(reference: Any, name: str, classes: Optional[list[str]] = None, **attrs: str) -> Tag:
    """Create an element using the document that owns ``reference``."""
    document = owner_document(reference) or _FACTORY
    tag = document.new_tag(name)
    if classes:
        tag["class"] = list(classes)
    for attr_name, value in attrs.items():
        tag[attr_name.replace("_", "-")] = value
    return tag


def parse_fragment(markup: str) -> list[Any]:
    """Parse an HTML/SVG fragment and return its top-level nodes, detached."""
    fragment = BeautifulSoup(markup, "html.parser")
    return [child.extract() for child in list(fragment.contents)]


def remove_children(node: Tag) -> None:
    for child in list(node.contents):
        child.extract()


def merge_adjacent_text(node: Tag) -> None:
    """Merge runs of adjacent plain text children into single text nodes."""
    children = list(node.contents)
    index = 0
    while index < len(children):
        child = children[index]
        if type(child) is not NavigableString:
            index += 1
            continue
        run = [child]
        while index + len(run) < len(children) and type(children[index + len(run)]) is NavigableString:
            run.append(children[index + len(run)])
        if len(run) > 1:
            merged = NavigableString("".join(str(part) for part in run))
            run[0].replace_with(merged)
            for part in run[1:]:
                part.extract()
        index += len(run)


def get_style(node: Tag) -> dict[str, str]:
    """Parse an element's inline style attribute into a property mapping."""
    raw = node.get("style") or ""
    if isinstance(raw, list):
        raw = " ".join(raw)
    declarations: dict[str, str] = {}
    for declaration in _STYLE_DECLARATION_RE.split(raw.strip()):
        if ":" not in declaration:
            continue
        prop, value = declaration.split(":", 1)
        declarations[prop.strip()] = value.strip()
    return declarations


def set_style_property(node: Tag, prop: str, value: Optional[str]) -> None:
    """Set (or with ``None`` remove) one inline style property."""
    declarations = get_style(node)
    if value is None or value == "":
        declarations.pop(prop, None)
    else:
        declarations[prop] = value
    if declarations:
        node["style"] = "; ".join(f"{key}: {val}" for key, val in declarations.items())
    elif "style" in node.attrs:
        del node["style"]


def is_hidden(node: Tag) -> bool:
    return get_style(node).get("display") == "none"
