"""Helpers for working with documents parsed by `selectolax.lexbor`."""

import inspect
import re
from enum import Enum
from typing import Awaitable, Callable, List, NamedTuple, Sequence, Union

from selectolax.lexbor import LexborHTMLParser, LexborNode

DOCTYPE_REGEX = re.compile(r"^\s*<!DOCTYPE [^>]+>", re.IGNORECASE)
DEFAULT_DOCTYPE = "<!DOCTYPE html>"


class Action(Enum):
    """What the walker should do with a node after the visitor has seen it."""

    CONTINUE = "continue"
    """Descend into the node's children."""
    SKIP_CHILDREN = "skip_children"
    """Treat the node as fully handled, don't descend."""
    REMOVE = "remove"
    """Detach the node from its parent."""


class Replace(NamedTuple):
    """
    Put `nodes` in place of the visited node. Strings become text nodes.

    The replacement nodes are NOT visited.
    """

    nodes: Sequence[Union[LexborNode, str]]


WalkResult = Union[Action, Replace]
Visitor = Callable[[LexborNode], Union[WalkResult, Awaitable[WalkResult]]]


async def walk(node: LexborNode, visitor: Visitor) -> WalkResult:
    """
    Visit `node` and its descendants depth-first, in document order.

    The visitor decides the fate of each node by returning an `Action`
    or `Replace`. The visitor may be a coroutine function, in which case each
    visit (and the whole subtree under it) is awaited before moving on to the
    next sibling.

    Structural edits (`REMOVE` / `Replace`) are carried out by the parent's loop.
    For the node passed in, there is no parent loop, so its outcome is returned
    to the caller instead.

    NOTE: `selectolax` imports (copies) nodes when inserting them. So the nodes
    passed in `Replace` may come from another document (e.g. `parse_html_fragment()`),
    and the originals are left untouched.
    """
    result = visitor(node)
    if inspect.isawaitable(result):
        result = await result

    if result is Action.SKIP_CHILDREN:
        return Action.CONTINUE
    if result is not Action.CONTINUE:
        return result

    # Snapshot the children, so that edits made by the visitor to the node that's
    # currently being visited don't shift the nodes we have yet to see.
    child_nodes: List[LexborNode] = list(node.iter(include_text=True))
    index = 0
    while index < len(child_nodes):
        child = child_nodes[index]
        child_result = await walk(child, visitor)

        if child_result is Action.REMOVE:
            remove_node(child)
            child_nodes.pop(index)
            # The next sibling now sits at the current index
            index -= 1
        elif isinstance(child_result, Replace):
            new_nodes = replace_node(child, child_result.nodes)
            child_nodes[index : index + 1] = new_nodes
            # Skip over the replacements, they are not visited
            index += len(new_nodes) - 1

        index += 1

    return Action.CONTINUE


def remove_node(node: LexborNode) -> None:
    """
    Detach the node (with its subtree) from the tree.

    Once detached, the node has no parent and no siblings.
    """
    node.decompose(recursive=False)


def replace_node(node: LexborNode, replacements: Sequence[Union[LexborNode, str]]) -> List[LexborNode]:
    """
    Insert `replacements` where `node` is and detach `node`.

    Returns the nodes that are now in the tree, in order.
    """
    for replacement in replacements:
        node.insert_before(replacement)

    # The inserted nodes are copies. Collect them by walking back from the old node.
    inserted: List[LexborNode] = []
    curr = node.prev
    for _ in replacements:
        if curr is None:
            break
        inserted.append(curr)
        curr = curr.prev
    inserted.reverse()

    remove_node(node)
    return inserted


def get_text(node: LexborNode) -> str:
    """Raw text of an element like `<style>` or `<script>`, without descending into child elements."""
    return "".join(child.text_content or "" for child in node.iter(include_text=True) if child.is_text_node)


def set_text(node: LexborNode, text: str) -> None:
    """Replace all children of the node with a single text node."""
    for child in list(node.iter(include_text=True)):
        remove_node(child)
    if text:
        node.insert_child(text)


def ensure_html_has_doctype(html: str) -> str:
    if DOCTYPE_REGEX.match(html):
        return html
    return f"{DEFAULT_DOCTYPE}\n{html}"


def parse_html_fragment(html: str) -> List[LexborNode]:
    """Parse HTML without adding `<html>`, `<head>` or `<body>`, and return the top-level nodes."""
    fragment = LexborHTMLParser(html, is_fragment=True)
    nodes: List[LexborNode] = []
    node = fragment.root
    while node is not None:
        nodes.append(node)
        node = node.next
    return nodes
