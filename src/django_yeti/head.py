"""
Merging of `<head>` contents.

Pages are usually composed of nested layouts, and each may contribute its own head
content (`<title>`, `<meta>`, `<link>`, ...). We collect the children of all
head-equivalent elements in the document, drop duplicates, and put what's left
into a single `<head>` at the start of `<html>`.
"""

from typing import Dict, List

from selectolax.lexbor import LexborHTMLParser, LexborNode

from django_yeti.util.html import Action, WalkResult, get_text, walk
from django_yeti.util.logger import logger
from django_yeti.util.misc import content_hash

HEAD_TAG_NAMES = ("head", "head--")

# Meta attributes that make a `<meta>` unique, in the order they are checked
META_KEY_ATTRS = ("name", "charset", "property", "http-equiv")


def get_head_dedup_key(node: LexborNode, index: int) -> str:
    """
    Key that identifies the node among head content. Nodes with the same key
    are duplicates of each other.

    Nodes that are never considered duplicates get a key derived from `index`,
    their position among all collected head nodes.
    """
    unique_key = f"#{index}"
    if not node.is_element_node:
        return unique_key

    tag = node.tag
    attrs = node.attrs

    if tag == "title":
        return "title"

    if tag == "meta":
        for attr_name in META_KEY_ATTRS:
            value = attrs.get(attr_name)
            if value is not None:
                return f'meta[{attr_name}="{value}"]'
        return unique_key

    if tag == "link":
        return f'link[rel="{attrs.sget("rel")}"][href="{attrs.sget("href")}"]'

    if tag == "script":
        src = attrs.get("src")
        if src:
            return f'script[src="{src}"]'
        return f"script/{content_hash(get_text(node))}"

    if tag == "style":
        return f"style/{content_hash(get_text(node))}"

    return unique_key


async def dedupe_head(parser: LexborHTMLParser) -> None:
    """
    Replace all head-equivalent elements in the document with a single `<head>`.

    When several nodes share a key, the LAST one is kept, but it takes the position
    of the FIRST one. E.g. a `<title>` set by a page replaces the layout's `<title>`
    in place, so the order of the head stays stable as pages override layouts.
    """
    html_node = parser.root
    if html_node is None:
        return

    head_nodes: Dict[str, LexborNode] = {}
    collected: List[LexborNode] = []

    def collect(head: LexborNode) -> None:
        for child in head.iter(include_text=True):
            if _is_head_node(child):
                collect(child)
                continue

            key = get_head_dedup_key(child, len(collected))
            collected.append(child)
            if key in head_nodes:
                logger.debug(f"Dropping duplicate head element '{key}'")
            head_nodes[key] = child

    def on_node(node: LexborNode) -> WalkResult:
        if not _is_head_node(node):
            return Action.CONTINUE
        collect(node)
        return Action.REMOVE

    await walk(html_node, on_node)

    new_head = parser.create_node("head")
    for child in head_nodes.values():
        new_head.insert_child(child)

    first_child = html_node.first_child
    if first_child is None:
        html_node.insert_child(new_head)
    else:
        first_child.insert_before(new_head)


def _is_head_node(node: LexborNode) -> bool:
    return node.is_element_node and node.tag in HEAD_TAG_NAMES
