import asyncio

from selectolax.lexbor import LexborHTMLParser

from django_yeti.util.html import (
    Action,
    Replace,
    ensure_html_has_doctype,
    get_text,
    parse_html_fragment,
    set_text,
    walk,
)


def _parse(html):
    parser = LexborHTMLParser(html)
    return parser, parser.body


def _tags(node):
    return [child.tag for child in node.iter()]


def test_walk_is_pre_order():
    _, body = _parse("<div><p><b>1</b></p><span>2</span></div>")
    visited = []

    def on_node(node):
        if node.is_element_node:
            visited.append(node.tag)
        return Action.CONTINUE

    result = asyncio.run(walk(body, on_node))

    assert result is Action.CONTINUE
    assert visited == ["body", "div", "p", "b", "span"]


def test_walk_remove_does_not_skip_next_sibling():
    parser, body = _parse("<div><p>1</p><p>2</p><span>3</span><p>4</p></div>")
    visited = []
    removed = []

    def on_node(node):
        if not node.is_element_node:
            return Action.CONTINUE
        visited.append(node.tag)
        if node.tag == "p":
            removed.append(node)
            return Action.REMOVE
        return Action.CONTINUE

    asyncio.run(walk(body, on_node))

    div = parser.css_first("div")
    assert visited == ["body", "div", "p", "p", "span", "p"]
    assert _tags(div) == ["span"]
    assert len(removed) == 3
    assert all(node.parent is None for node in removed)
    assert div.first_child.parent.mem_id == div.mem_id


def test_walk_replace_does_not_visit_replacements():
    parser, body = _parse("<div><i>old</i><b>next</b></div>")
    visited = []
    replaced = []

    def on_node(node):
        if not node.is_element_node:
            return Action.CONTINUE
        visited.append(node.tag)
        if node.tag == "i":
            replaced.append(node)
            return Replace(parse_html_fragment("<em>a</em><em>b</em>"))
        return Action.CONTINUE

    asyncio.run(walk(body, on_node))

    div = parser.css_first("div")
    assert visited == ["body", "div", "i", "b"]
    assert _tags(div) == ["em", "em", "b"]
    assert [node.text() for node in parser.css("em")] == ["a", "b"]
    assert replaced[0].parent is None
    assert all(child.parent.mem_id == div.mem_id for child in div.iter())


def test_walk_replace_with_nothing_removes_node():
    parser, body = _parse("<div><i>old</i><b>next</b></div>")

    def on_node(node):
        if node.is_element_node and node.tag == "i":
            return Replace([])
        return Action.CONTINUE

    asyncio.run(walk(body, on_node))

    assert _tags(parser.css_first("div")) == ["b"]


def test_walk_skip_children():
    _, body = _parse("<div><section><p>inner</p></section><p>outer</p></div>")
    visited = []

    def on_node(node):
        if not node.is_element_node:
            return Action.CONTINUE
        visited.append(node.tag)
        return Action.SKIP_CHILDREN if node.tag == "section" else Action.CONTINUE

    result = asyncio.run(walk(body, on_node))

    assert result is Action.CONTINUE
    assert visited == ["body", "div", "section", "p"]


def test_walk_returns_outcome_for_root():
    _, body = _parse("<div></div>")

    result = asyncio.run(walk(body, lambda node: Action.REMOVE))

    assert result is Action.REMOVE


def test_walk_awaits_async_visitor_in_order():
    _, body = _parse("<div><p>1</p><p>2</p></div><span>3</span>")
    visited = []

    async def on_node(node):
        await asyncio.sleep(0)
        if node.is_element_node:
            visited.append(node.tag)
        return Action.CONTINUE

    asyncio.run(walk(body, on_node))

    assert visited == ["body", "div", "p", "p", "span"]


def test_get_and_set_text():
    parser = LexborHTMLParser("<html><head><style> a { color: red; } </style></head></html>")
    style = parser.css_first("style")

    assert get_text(style) == " a { color: red; } "

    set_text(style, "a{color:red}")

    assert get_text(style) == "a{color:red}"
    assert "<style>a{color:red}</style>" in parser.html


def test_ensure_html_has_doctype():
    assert ensure_html_has_doctype("<html></html>") == "<!DOCTYPE html>\n<html></html>"
    assert ensure_html_has_doctype("  <!doctype html><html></html>") == "  <!doctype html><html></html>"


def test_parse_html_fragment():
    nodes = parse_html_fragment("<p>a</p>text<p>b</p>")

    assert len(nodes) == 3
    assert nodes[0].tag == "p"
    assert nodes[2].text() == "b"
