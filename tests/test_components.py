import asyncio

import pytest

from django_yeti import Head, css, html, js, render_component, render_page_component


def Title(text):
    return html("<h1>{{ text }}</h1>", text=text)


Title.css = css("h1{color:red}")


def Layout(children=None):
    return html("<body>{{ children }}</body>", children=children)


Layout.css = css("body{margin:0}")
Layout.js = js("{{ b }}console.log(1)", b=js.bundle("app"))


def test_render_component_includes_own_assets():
    result = render_component(Title, text="Hello")

    assert result.html == "<h1>Hello</h1>"
    assert list(result.css_bundles["default"]) == ["h1{color:red}"]


def test_own_assets_come_before_children():
    result = render_component(Layout, children=render_component(Title, text="Hello"))

    assert result.html == "<body><h1>Hello</h1></body>"
    assert list(result.css_bundles["default"]) == ["body{margin:0}", "h1{color:red}"]
    assert list(result.js_bundles["app"]) == ["{\nconsole.log(1)\n}"]


def test_component_may_return_string():
    def Plain():
        return "<p>plain</p>"

    result = render_component(Plain)

    assert result.html == "<p>plain</p>"


def test_component_with_invalid_assets():
    def Broken():
        return html("<p></p>")

    Broken.css = "p { color: red; }"

    with pytest.raises(TypeError, match="must be created with css"):
        render_component(Broken)


def test_render_component_rejects_async_component():
    async def AsyncPage():
        return html("<p></p>")

    with pytest.raises(TypeError, match="is async"):
        render_component(AsyncPage)


def test_render_page_component_awaits_async_component():
    async def AsyncPage(title):
        return render_component(Title, text=title)

    AsyncPage.css = css("main{}")

    result = asyncio.run(render_page_component(AsyncPage, title="Async"))

    assert result.html == "<h1>Async</h1>"
    assert list(result.css_bundles["default"]) == ["main{}", "h1{color:red}"]


def test_head_wraps_children_in_head_container():
    result = Head(children=html("<title>Home</title>"))

    assert result.html == "<head--><title>Home</title></head-->"


def test_children_rendered_in_loop_keep_their_assets():
    titles = [render_component(Title, text=text) for text in ("a", "b")]

    result = render_component(
        Layout,
        children=html("{% for title in titles %}{{ title }}{% endfor %}", titles=titles),
    )

    assert result.html == "<body><h1>a</h1><h1>b</h1></body>"
    assert list(result.css_bundles["default"]) == ["body{margin:0}", "h1{color:red}"]
