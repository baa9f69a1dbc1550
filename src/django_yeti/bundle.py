"""
Bundle descriptors and the placeholders that refer to bundles.

Descriptors are the values that authors interpolate into `css`, `js` and `html`
templates to say "the following content belongs to bundle X" or "pull this file
into bundle X". Placeholders are plain strings (or, for HTML, a tag) that end up
in the rendered page, and that are later replaced with the bundle's URL or content.
"""

import importlib.util
import os
from contextvars import ContextVar
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

WILDCARD_BUNDLE_NAME = "*"
DEFAULT_BUNDLE_NAME = "default"

BUNDLE_SRC_PREFIX = "@bundle/"
INLINE_BUNDLE_PREFIX = "/*@--BUNDLE--"
INLINE_BUNDLE_SUFFIX = "--@*/"
INLINED_HTML_BUNDLE_TAG = "yeti-html-bundle"

FILE_URL_PREFIX = "file://"


class AssetType(Enum):
    CSS = "css"
    JS = "js"
    HTML = "html"


class BundleRole(Enum):
    START = "start"
    """Everything after this marker (up to the next one) goes into the named bundle."""
    IMPORT = "import"
    """Contents of a file, added to the current (or named) bundle."""
    INLINE_PLACEHOLDER = "inline_placeholder"
    """Spot where the bundle's content will be inlined."""


# Set by the `css` / `js` / `html` templates while Django renders their block tags
# (`{% if %}`, `{% for %}`, ...). Inside those, Django turns interpolated values into
# text with `str()`, so descriptors and render results hand themselves over to the
# template that is being rendered instead. Returns `None` to fall back to `repr()`.
nested_value_renderer: ContextVar[Optional[Callable[[Any], Optional[str]]]] = ContextVar(
    "nested_value_renderer", default=None
)


def render_nested_value(value: Any) -> str:
    renderer = nested_value_renderer.get()
    rendered = renderer(value) if renderer is not None else None
    return rendered if rendered is not None else repr(value)


@dataclass(frozen=True)
class BundleDescriptor:
    asset_type: AssetType
    role: BundleRole
    bundle_name: Optional[str] = None
    source_path: Optional[str] = None
    """Absolute path of the imported file. Set only for `BundleRole.IMPORT`."""
    escape_content: bool = False
    """Whether to HTML-escape the imported file. Applies only to HTML imports."""

    def __str__(self) -> str:
        return render_nested_value(self)


class BundleImportError(Exception):
    """Raised when a file passed to `*.import_()` cannot be located or read."""


def bundle_src(bundle_name: str) -> str:
    """
    Placeholder for the URL of the bundle's output file, to be used in `href` / `src`, e.g.

    ```html
    <link rel="stylesheet" href="@bundle/main">
    ```
    """
    return f"{BUNDLE_SRC_PREFIX}{bundle_name}"


def bundle_inline(bundle_name: str) -> str:
    """
    Placeholder for the bundle's content, to be used inside `<style>` or `<script>`, e.g.

    ```html
    <style>/*@--BUNDLE--main--@*/</style>
    ```
    """
    return f"{INLINE_BUNDLE_PREFIX}{bundle_name}{INLINE_BUNDLE_SUFFIX}"


def html_bundle_inline(bundle_name: str) -> str:
    """Placeholder tag that's replaced with the content of an HTML bundle."""
    return f'<{INLINED_HTML_BUNDLE_TAG} name="{bundle_name}"></{INLINED_HTML_BUNDLE_TAG}>'


def validate_bundle_name(bundle_name: str, fn_name: str) -> None:
    if bundle_name == WILDCARD_BUNDLE_NAME:
        raise ValueError(f'{fn_name} called with reserved wildcard bundle name "{WILDCARD_BUNDLE_NAME}"')
    if not isinstance(bundle_name, str) or not bundle_name:
        raise ValueError(f"{fn_name} called with invalid bundle name {bundle_name!r}")


def start_descriptor(asset_type: AssetType, bundle_name: str) -> BundleDescriptor:
    validate_bundle_name(bundle_name, f"{asset_type.value}.bundle()")
    return BundleDescriptor(asset_type, BundleRole.START, bundle_name=bundle_name)


def import_descriptor(
    asset_type: AssetType,
    import_path: str,
    bundle_name: Optional[str] = None,
    escape: bool = False,
    caller_file: Optional[str] = None,
) -> BundleDescriptor:
    if bundle_name is not None:
        validate_bundle_name(bundle_name, f"{asset_type.value}.import_()")

    source_path = resolve_import_path(import_path, caller_file)
    return BundleDescriptor(
        asset_type,
        BundleRole.IMPORT,
        bundle_name=bundle_name,
        source_path=source_path,
        escape_content=escape,
    )


def inline_descriptor(asset_type: AssetType, bundle_name: str) -> BundleDescriptor:
    return BundleDescriptor(asset_type, BundleRole.INLINE_PLACEHOLDER, bundle_name=bundle_name)


def resolve_import_path(import_path: str, caller_file: Optional[str] = None) -> str:
    """
    Resolve the path given to `*.import_()` to an absolute file path.

    - `file:///abs/path.css` - The `file://` prefix is dropped.
    - `/styles/reset.css` - Relative to the site's input directory.
    - `./reset.css`, `../reset.css` - Relative to the file that called `*.import_()`.
    - `some_package/static/reset.css` - Relative to the directory of the importable
      Python package `some_package`.
    """
    # Avoid circular import
    from django_yeti.app_settings import app_settings

    if import_path.startswith(FILE_URL_PREFIX):
        import_path = import_path[len(FILE_URL_PREFIX) :]
        # `file:///abs/path` is already absolute
        if os.path.isabs(import_path):
            return os.path.normpath(import_path)

    if import_path.startswith("/"):
        return os.path.normpath(os.path.join(app_settings.INPUT_DIR, import_path.lstrip("/")))

    if import_path.startswith(("./", "../")):
        if caller_file is None:
            raise BundleImportError(
                f'Cannot resolve relative import "{import_path}", because it was not called from a file'
            )
        return os.path.normpath(os.path.join(os.path.dirname(caller_file), import_path))

    package_name, _, resource_path = import_path.partition("/")
    try:
        spec = importlib.util.find_spec(package_name)
    except (ImportError, ValueError) as err:
        raise BundleImportError(f'Cannot resolve import "{import_path}": {err}') from err

    if spec is None or not spec.submodule_search_locations:
        raise BundleImportError(f'Cannot resolve import "{import_path}": no package named "{package_name}"')

    package_dir = Path(list(spec.submodule_search_locations)[0])
    return os.path.normpath(package_dir / resource_path)


def read_import(descriptor: BundleDescriptor) -> str:
    path = descriptor.source_path
    try:
        return Path(path).read_text(encoding="utf-8")  # type: ignore[arg-type]
    except OSError as err:
        raise BundleImportError(
            f'{descriptor.asset_type.value}.import_() failed to import file at path "{path}"'
        ) from err
