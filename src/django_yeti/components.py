import inspect
from typing import Any, Callable, List, NamedTuple, Optional, Union

from django.utils.safestring import mark_safe

from django_yeti.render_result import RenderResult, merge_render_results
from django_yeti.templates import AssetTemplate, html
from django_yeti.util.misc import get_import_path

# A component is any callable that returns the rendered HTML. It may declare its own
# CSS / JS by setting `css` / `js` attributes to `css(...)` / `js(...)` templates:
#
# ```python
# def Button(label, children=None):
#     return html("<button>{{ label }}{{ children }}</button>", label=label, children=children)
#
# Button.css = css("button { all: unset; }")
# ```
ComponentOutput = Union[RenderResult, List[RenderResult], str]
Component = Callable[..., ComponentOutput]


class PageContext(NamedTuple):
    """Passed to page components as the `page` prop."""

    url: str
    """URL of the page, e.g. `/blog/`"""
    input_path: str
    """File that defines the page component"""
    output_path: str
    """File the rendered HTML is written to"""


def get_own_result(component: Any) -> RenderResult:
    """Bundles and dependencies from the component's own `css` / `js` templates."""
    results: List[RenderResult] = []
    for attr in ("css", "js"):
        template: Optional[AssetTemplate] = getattr(component, attr, None)
        if template is None:
            continue
        if not isinstance(template, AssetTemplate):
            raise TypeError(
                f"{get_import_path(component)}.{attr} must be created with {attr}(...), "
                f"got {type(template).__name__}"
            )
        results.append(template.render().to_render_result())
    return merge_render_results(None, results)


def _normalize_output(output: Any) -> Union[RenderResult, List[RenderResult]]:
    if isinstance(output, str):
        return RenderResult(html=mark_safe(output))
    if isinstance(output, (list, tuple)):
        return [item if not isinstance(item, str) else RenderResult(html=mark_safe(item)) for item in output]
    return output


def render_component(component: Component, **props: Any) -> RenderResult:
    """
    Render the component, including the CSS and JS it declares.

    Use this instead of calling the component directly, otherwise the component's
    own `css` / `js` would be left out.
    """
    own = get_own_result(component)
    output = component(**props)
    if inspect.isawaitable(output):
        if inspect.iscoroutine(output):
            output.close()
        raise TypeError(f"{get_import_path(component)} is async, render it with `await render_page_component(...)`")
    return merge_render_results(own, _normalize_output(output))


async def render_page_component(component: Component, **props: Any) -> RenderResult:
    """Same as `render_component()`, but the page component may be a coroutine function."""
    own = get_own_result(component)
    output = component(**props)
    if inspect.isawaitable(output):
        output = await output
    return merge_render_results(own, _normalize_output(output))


def Head(children: Any = None) -> RenderResult:
    """
    Content for the page's `<head>`. Layouts and pages may each render their own `Head`,
    all of them are merged into a single `<head>`, with duplicates removed.

    ```python
    html("{{ head }}<main>...</main>", head=render_component(Head, children=html("<title>Home</title>")))
    ```
    """
    return html("<head-->{{ children }}</head-->", children=children)
