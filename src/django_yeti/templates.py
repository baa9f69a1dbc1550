"""
The `css`, `js` and `html` template tags.

Templates are written in the Django template language. Variables interpolated
with `{{ }}` are inspected before they are turned into text, so that bundle
descriptors and rendered components can be told apart from plain values:

```python
def Greeting(name):
    return html("<h1>Hello {{ name }}!</h1>{{ footer }}", name=name, footer=render_component(Footer))

Greeting.css = css(
    '''
    {{ bundle }}
    h1 { color: red; }
    ''',
    bundle=css.bundle("greeting"),
)
```
"""

from functools import lru_cache
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Tuple

from django.template import Context, Engine, Template
from django.template.base import TextNode, VariableNode
from django.utils.html import conditional_escape
from django.utils.safestring import mark_safe

from django_yeti import types
from django_yeti.app_settings import app_settings
from django_yeti.bundle import (
    AssetType,
    BundleDescriptor,
    BundleRole,
    bundle_inline,
    bundle_src,
    html_bundle_inline,
    import_descriptor,
    inline_descriptor,
    nested_value_renderer,
    read_import,
    start_descriptor,
)
from django_yeti.render_result import AssetResult, RenderResult, flatten_render_results
from django_yeti.util.misc import get_caller_file

# (is_literal, value)
TemplatePart = Tuple[bool, Any]
NestedRenderer = Callable[[Any], Optional[str]]


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    # Standalone engine, so that templates work regardless of the project's `TEMPLATES`.
    return Engine(autoescape=True)


@lru_cache(maxsize=512)
def compile_template(source: str) -> Template:
    return get_engine().from_string(source)


def iter_template_parts(
    source: str,
    values: Dict[str, Any],
    render_nested: NestedRenderer,
    autoescape: bool = True,
) -> Iterator[TemplatePart]:
    """
    Walk the top-level nodes of the template.

    - Literal text is yielded as is, with `is_literal=True`.
    - For `{{ variable }}` we yield the resolved value (with filters applied),
      so the caller can decide what to do with it.
    - Other tags (`{% if %}`, `{% for %}`, ...) are rendered by Django and yielded as literal text.
      While they render, descriptors and render results found inside them are passed
      to `render_nested`, and the text it returns is rendered in their place.
    """
    template = compile_template(source)
    context = Context(values, autoescape=autoescape)

    with context.render_context.push_state(template):
        with context.bind_template(template):
            for node in template.nodelist:
                if isinstance(node, TextNode):
                    yield True, node.s
                elif isinstance(node, VariableNode):
                    yield False, node.filter_expression.resolve(context)
                else:
                    token = nested_value_renderer.set(render_nested)
                    try:
                        rendered = node.render_annotated(context)
                    finally:
                        nested_value_renderer.reset(token)
                    yield True, rendered


def _check_asset_type(descriptor: BundleDescriptor, expected: AssetType) -> None:
    if descriptor.asset_type is not expected:
        target = f' "{descriptor.source_path}"' if descriptor.source_path else ""
        raise TypeError(
            f"Cannot use a {descriptor.asset_type.value} bundle {descriptor.role.value}{target} "
            f"inside a {expected.value} template"
        )


#########################################################
# CSS / JS
#########################################################


class AssetTemplate:
    """
    A `css` or `js` template. It is evaluated lazily on every `render()`, so that
    changes to the imported files are picked up between builds.
    """

    def __init__(self, asset_type: AssetType, source: str, values: Dict[str, Any]) -> None:
        self.asset_type = asset_type
        self.source = source
        self.values = values

        # Fail early on descriptors that could never be used here
        for value in values.values():
            if isinstance(value, BundleDescriptor):
                _check_asset_type(value, asset_type)

    def render(self) -> AssetResult:
        raw_bundles: Dict[str, List[str]] = {}
        dependencies: Set[str] = set()

        bundle_name = app_settings.DEFAULT_BUNDLE_NAME
        current_chunk: List[str] = []

        def commit_chunk() -> None:
            chunk = "".join(current_chunk).strip()
            current_chunk.clear()
            if chunk:
                raw_bundles.setdefault(bundle_name, []).append(chunk)

        for is_literal, value in iter_template_parts(
            self.source, self.values, render_nested=self._render_nested, autoescape=False
        ):
            if is_literal:
                current_chunk.append(value)
            elif isinstance(value, BundleDescriptor):
                _check_asset_type(value, self.asset_type)
                commit_chunk()

                if value.role is BundleRole.START:
                    bundle_name = value.bundle_name  # type: ignore[assignment]
                elif value.role is BundleRole.IMPORT:
                    dependencies.add(value.source_path)  # type: ignore[arg-type]
                    import_bundle_name = value.bundle_name or bundle_name
                    content = read_import(value).strip()
                    if content:
                        raw_bundles.setdefault(import_bundle_name, []).append(content)
            elif value is not None:
                current_chunk.append(str(value))

        commit_chunk()

        bundles: Dict[str, str] = {}
        for name, chunks in raw_bundles.items():
            content = "\n".join(chunks).strip()
            if not content:
                continue
            bundles[name] = self._wrap(content)

        return AssetResult(self.asset_type, bundles=bundles, dependencies=dependencies)

    def _render_nested(self, value: Any) -> Optional[str]:
        # Bundles are switched only between top-level nodes
        if isinstance(value, BundleDescriptor):
            raise TypeError(
                f"{value.asset_type.value} bundle {value.role.value} can't be used inside "
                f"{{% if %}}, {{% for %}} or other template tags, place it at the top level "
                f"of the {self.asset_type.value} template"
            )
        return None

    def _wrap(self, content: str) -> str:
        # Each component's JS lives in its own block scope, so that `const`/`let`
        # from different components don't clash once concatenated.
        if self.asset_type is AssetType.JS:
            return "{\n" + content + "\n}"
        return content


class AssetTemplateTag:
    """
    Callable that creates `AssetTemplate`s, plus helpers to create bundle
    descriptors and placeholders for its asset type.
    """

    def __init__(self, asset_type: AssetType) -> None:
        self.asset_type = asset_type

    def __call__(self, source: str, **values: Any) -> AssetTemplate:
        return AssetTemplate(self.asset_type, source, values)

    def bundle(self, bundle_name: Optional[str] = None) -> BundleDescriptor:
        """Content that follows in the template goes into the bundle `bundle_name`."""
        return start_descriptor(self.asset_type, bundle_name or app_settings.DEFAULT_BUNDLE_NAME)

    def import_(self, import_path: str, bundle_name: Optional[str] = None) -> BundleDescriptor:
        """
        Add the contents of a file to the current bundle, or to `bundle_name` if given.

        Relative paths (`./`, `../`) are relative to the file that calls `import_()`.
        """
        return import_descriptor(
            self.asset_type,
            import_path,
            bundle_name=bundle_name,
            caller_file=get_caller_file(depth=1),
        )

    def src(self, bundle_name: str) -> str:
        """Placeholder for the bundle's URL, for `<link href>` or `<script src>`."""
        return bundle_src(bundle_name)

    def inline(self, bundle_name: str) -> str:
        """Placeholder for the bundle's content, for the body of `<style>` or `<script>`."""
        return bundle_inline(bundle_name)


#########################################################
# HTML
#########################################################


class HtmlTemplateTag:
    def __call__(self, source: types.django_html, **values: Any) -> RenderResult:
        """
        Render an HTML template into a `RenderResult`.

        Interpolated values are handled as follows:
        - `RenderResult` - Its HTML is inserted as is, its bundles and dependencies are merged in.
        - `list` / `tuple` - Each item is handled separately.
        - `None` / `False` - Renders nothing.
        - `html.import_(path)` - File contents inserted as is (or escaped with `escape=True`).
        - `html.import_(path, bundle_name)` - File contents added to an HTML bundle.
        - `html.inline(name)` - Placeholder for an HTML bundle's content.
        - Anything else is converted to string and escaped, unless marked safe.

        The same applies to values inside `{% if %}`, `{% for %}` and other tags.
        """
        own = RenderResult()
        caller_file = get_caller_file(depth=1)
        if caller_file:
            own.html_dependencies.add(caller_file)

        html_parts: List[str] = []
        children: List[RenderResult] = []

        def render_value(value: Any) -> str:
            if value is None or value is False:
                return ""
            if isinstance(value, RenderResult):
                # HTML of children is inserted here. Merge only the rest.
                children.append(_without_html(value))
                return value.html
            if isinstance(value, (list, tuple)):
                return "".join(render_value(item) for item in value)
            if isinstance(value, BundleDescriptor):
                return self._render_descriptor(value, own)
            return conditional_escape(value)

        def render_nested(value: Any) -> Optional[str]:
            if isinstance(value, (RenderResult, BundleDescriptor)):
                return mark_safe(render_value(value))
            return None

        for is_literal, value in iter_template_parts(source, values, render_nested=render_nested):
            if is_literal:
                html_parts.append(value)
            else:
                html_parts.append(render_value(value))

        result = flatten_render_results([own, *children])
        result.html = mark_safe("".join(html_parts))
        return result

    def _render_descriptor(self, descriptor: BundleDescriptor, own: RenderResult) -> str:
        _check_asset_type(descriptor, AssetType.HTML)

        if descriptor.role is BundleRole.INLINE_PLACEHOLDER:
            return html_bundle_inline(descriptor.bundle_name)  # type: ignore[arg-type]
        if descriptor.role is BundleRole.START:
            raise TypeError("HTML templates don't support html.bundle(), use html.import_(path, bundle_name)")

        content = read_import(descriptor)
        own.html_dependencies.add(descriptor.source_path)  # type: ignore[arg-type]
        if descriptor.escape_content:
            content = conditional_escape(content)

        if descriptor.bundle_name is None:
            return content

        own.add_chunk(AssetType.HTML, descriptor.bundle_name, content)
        return ""

    def import_(self, import_path: str, bundle_name: Optional[str] = None, escape: bool = False) -> BundleDescriptor:
        """
        Insert the contents of a file, or add them to the HTML bundle `bundle_name`
        to be inserted wherever `html.inline(bundle_name)` is placed.
        """
        return import_descriptor(
            AssetType.HTML,
            import_path,
            bundle_name=bundle_name,
            escape=escape,
            caller_file=get_caller_file(depth=1),
        )

    def inline(self, bundle_name: str) -> BundleDescriptor:
        """Placeholder for an HTML bundle's content. Accepts the wildcard `"*"`."""
        return inline_descriptor(AssetType.HTML, bundle_name)


def _without_html(result: RenderResult) -> RenderResult:
    return RenderResult(
        html="",
        css_bundles=result.css_bundles,
        js_bundles=result.js_bundles,
        html_bundles=result.html_bundles,
        css_dependencies=result.css_dependencies,
        js_dependencies=result.js_dependencies,
        html_dependencies=result.html_dependencies,
    )


css = AssetTemplateTag(AssetType.CSS)
js = AssetTemplateTag(AssetType.JS)
html = HtmlTemplateTag()
