import asyncio
import logging

from selectolax.lexbor import LexborHTMLParser

from django_yeti import css, html, js, render_component
from django_yeti.bundle import AssetType


def _compile(builder, page, page_url="/"):
    output = asyncio.run(builder.compile_page(page, page_url=page_url))
    return LexborHTMLParser(output)


def _page(body, head="", **values):
    def Page():
        return html(f"<html><head>{head}</head><body>{body}</body></html>", **values)

    return Page


def test_named_url_reference_is_resolved(make_builder):
    page = _page("", head='<link rel="stylesheet" href="{{ main }}">', main=css.src("main"))
    page.css = css("{{ b }}body { margin: 0; }", b=css.bundle("main"))
    builder = make_builder()

    parser = _compile(builder, page)

    assert parser.css_first("link").attrs["href"] == "/css/main.css"
    assert builder.bundle_table.combined(AssetType.CSS) == {"main": {"body { margin: 0; }": None}}


def test_script_src_reference_is_resolved(make_builder):
    page = _page('<script src="{{ app }}"></script>', app=js.src("app"))
    page.js = js("{{ b }}init();", b=js.bundle("app"))
    builder = make_builder(js={"output_dir": "static/js"})

    parser = _compile(builder, page)

    assert parser.css_first("script").attrs["src"] == "/static/js/app.js"
    assert builder.bundle_table.combined(AssetType.JS) == {"app": {"{\ninit();\n}": None}}


def test_unused_bundle_reference_is_removed(make_builder, caplog):
    page = _page("<p>x</p>", head='<link rel="stylesheet" href="{{ missing }}">', missing=css.src("missing"))

    with caplog.at_level(logging.WARNING, logger="django_yeti"):
        parser = _compile(make_builder(), page, page_url="/about/")

    assert parser.css_first("link") is None
    assert 'CSS bundle "missing" is unused on page /about/. Removing <link> tag.' in caplog.text


def test_wildcard_url_reference_expands_to_unconsumed_bundles(make_builder):
    page = _page(
        "",
        head='<link rel="stylesheet" href="{{ b }}"><link rel="stylesheet" href="{{ rest }}">',
        b=css.src("b"),
        rest=css.src("*"),
    )
    page.css = css(
        "{{ a }}.a{}{{ b }}.b{}{{ c }}.c{}",
        a=css.bundle("a"),
        b=css.bundle("b"),
        c=css.bundle("c"),
    )
    builder = make_builder()

    parser = _compile(builder, page)

    hrefs = [node.attrs["href"] for node in parser.css("link")]
    assert hrefs == ["/css/b.css", "/css/a.css", "/css/c.css"]
    assert set(builder.bundle_table.combined(AssetType.CSS)) == {"a", "b", "c"}


def test_wildcard_url_reference_without_remaining_bundles_is_removed(make_builder):
    page = _page("", head='<link rel="stylesheet" href="{{ rest }}">', rest=css.src("*"))

    parser = _compile(make_builder(), page)

    assert parser.css_first("link") is None


def test_inline_bundle_is_transformed(make_builder, transformer):
    page = _page("<style>{{ main }}</style>", main=css.inline("main"))
    page.css = css("{{ b }}body {\n  margin: 0;\n}", b=css.bundle("main"))
    builder = make_builder()

    parser = _compile(builder, page, page_url="/blog/")

    assert parser.css_first("style").text() == "body { margin: 0; }"
    assert transformer.calls[0]["kind"] == "css"
    assert transformer.calls[0]["minify"] is True
    assert transformer.calls[0]["filename"] == "%2Fblog%2F__<style>(0).css"
    # Inlined bundles are not written to files
    assert builder.bundle_table.combined(AssetType.CSS) == {}


def test_inline_and_wildcard_share_the_same_bundles(make_builder):
    page = _page(
        "<style>{{ critical }}</style><style>{{ rest }}</style>",
        critical=css.inline("critical"),
        rest=css.inline("*"),
    )
    page.css = css(
        "{{ a }}.a{}{{ critical }}.critical{}{{ b }}.b{}",
        a=css.bundle("a"),
        critical=css.bundle("critical"),
        b=css.bundle("b"),
    )

    parser = _compile(make_builder(), page)

    styles = [node.text() for node in parser.css("style")]
    assert styles == [".critical{}", ".a{} .b{}"]


def test_inline_placeholder_for_unknown_bundle_removes_tag(make_builder, caplog):
    page = _page("<style>{{ missing }}</style>", missing=css.inline("missing"))

    with caplog.at_level(logging.WARNING, logger="django_yeti"):
        parser = _compile(make_builder(), page)

    assert parser.css_first("style") is None
    assert 'No CSS bundle found with name "missing"' in caplog.text


def test_empty_inline_tag_is_removed(make_builder, caplog):
    page = _page("<script>  </script><p>x</p>")

    with caplog.at_level(logging.WARNING, logger="django_yeti"):
        parser = _compile(make_builder(), page)

    assert parser.css_first("script") is None
    assert "Empty <script> tag found on page /" in caplog.text


def test_lazy_preload_consumes_bundle(make_builder):
    page = _page(
        "",
        head=(
            '<link rel="preload" as="style" href="{{ a }}" onload="this.rel=\'stylesheet\'">'
            '<link rel="stylesheet" href="{{ rest }}">'
        ),
        a=css.src("a"),
        rest=css.src("*"),
    )
    page.css = css("{{ a }}.a{}{{ b }}.b{}", a=css.bundle("a"), b=css.bundle("b"))

    parser = _compile(make_builder(), page)

    hrefs = [node.attrs["href"] for node in parser.css("link")]
    assert hrefs == ["/css/a.css", "/css/b.css"]


def test_plain_preload_does_not_consume_bundle(make_builder):
    page = _page(
        "",
        head='<link rel="preload" as="style" href="{{ a }}"><link rel="stylesheet" href="{{ rest }}">',
        a=css.src("a"),
        rest=css.src("*"),
    )
    page.css = css("{{ a }}.a{}", a=css.bundle("a"))

    parser = _compile(make_builder(), page)

    hrefs = [node.attrs["href"] for node in parser.css("link")]
    assert hrefs == ["/css/a.css", "/css/a.css"]


def test_preload_of_other_resources_is_ignored(make_builder):
    page = _page("", head='<link rel="preload" as="font" href="{{ a }}">', a=css.src("a"))
    page.css = css("{{ a }}.a{}", a=css.bundle("a"))

    parser = _compile(make_builder(), page)

    assert parser.css_first("link").attrs["href"] == "@bundle/a"


def test_skip_inline_processing(make_builder, transformer):
    page = _page("<style data-skip-inline-processing>a  {  }</style><style>b  {  }</style>")

    parser = _compile(make_builder(), page)

    styles = parser.css("style")
    assert [node.text() for node in styles] == ["a  {  }", "b { }"]
    assert all("data-skip-inline-processing" not in node.attrs for node in styles)
    assert [call["code"] for call in transformer.calls] == ["b  {  }"]


def test_non_js_scripts_are_not_transformed(make_builder, transformer):
    page = _page('<script type="application/ld+json">{"name":  "x"}</script><script>run(  1  )</script>')

    parser = _compile(make_builder(), page)

    scripts = parser.css("script")
    assert scripts[0].text() == '{"name":  "x"}'
    assert scripts[1].text() == "run( 1 )"
    assert len(transformer.calls) == 1


def test_inline_transform_error_keeps_content(make_builder, caplog):
    page = _page("<style>a { color: red; }\nb { SYNTAX_ERROR }</style>")

    with caplog.at_level(logging.ERROR, logger="django_yeti"):
        parser = _compile(make_builder(), page, page_url="/broken/")

    assert parser.css_first("style").text() == "a { color: red; }\nb { SYNTAX_ERROR }"
    assert "Error processing inlined CSS on page /broken/" in caplog.text
    assert "> 2 | b { SYNTAX_ERROR }" in caplog.text


def test_inline_transform_is_cached_by_content(make_builder, transformer):
    page = _page("<style>a  {}</style>")
    builder = make_builder()

    _compile(builder, page, page_url="/one/")
    _compile(builder, page, page_url="/two/")

    assert len(transformer.calls) == 1


def test_html_bundle_is_inlined(make_builder, write_file):
    path = write_file("sprite.svg", '<svg id="sprite"></svg>')
    page = _page(
        "{{ sprite }}<main>{{ slot }}</main>",
        sprite=html.import_(f"file://{path}", bundle_name="sprites"),
        slot=html.inline("sprites"),
    )

    parser = _compile(make_builder(), page)

    assert parser.css_first("main > svg").attrs["id"] == "sprite"
    assert "yeti-html-bundle" not in parser.html


def test_html_wildcard_bundle(make_builder, write_file):
    a = write_file("a.html", "<p>a</p>")
    b = write_file("b.html", "<p>b</p>")
    page = _page(
        "{{ a }}{{ b }}<main>{{ rest }}</main>",
        a=html.import_(f"file://{a}", bundle_name="a"),
        b=html.import_(f"file://{b}", bundle_name="b"),
        rest=html.inline("*"),
    )

    parser = _compile(make_builder(), page)

    assert [node.text() for node in parser.css("main > p")] == ["a", "b"]


def test_bundles_of_page_and_component_are_concatenated(make_builder):
    def Heading():
        return html("<h1>Hello</h1>")

    Heading.css = css("h1{color:red}")

    def Page():
        return html(
            "<html><head><style>{{ styles }}</style></head><body>{{ heading }}</body></html>",
            styles=css.inline("default"),
            heading=render_component(Heading),
        )

    Page.css = css("body{margin:0}")

    parser = _compile(make_builder(), Page)

    assert parser.css_first("style").text() == "body{margin:0}h1{color:red}"
