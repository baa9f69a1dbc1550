"""
All code related to resolving the bundles referenced by a rendered page.

A page refers to its bundles with placeholders:

```html
<link rel="stylesheet" href="@bundle/main">      <!-- URL of the bundle file -->
<script src="@bundle/*"></script>                <!-- one tag per bundle not referenced elsewhere -->
<style>/*@--BUNDLE--critical--@*/</style>        <!-- bundle content, inlined -->
<yeti-html-bundle name="icons"></yeti-html-bundle>
```

Resolution happens in three passes over the parsed page:

1. Named references are replaced with URLs or content, and the bundles are marked
   as consumed. Wildcard references are only recorded.
2. Wildcard references are expanded to all bundles that were not consumed by name.
3. Contents of inline `<style>` and `<script>` tags are post-processed (minified).
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union
from urllib.parse import quote

from selectolax.lexbor import LexborHTMLParser, LexborNode

from django_yeti.app_settings import AssetSettings
from django_yeti.bundle import (
    BUNDLE_SRC_PREFIX,
    INLINE_BUNDLE_PREFIX,
    INLINE_BUNDLE_SUFFIX,
    INLINED_HTML_BUNDLE_TAG,
    WILDCARD_BUNDLE_NAME,
    AssetType,
    bundle_inline,
)
from django_yeti.compilers import Transformer, run_transformer
from django_yeti.render_result import BundleMap, ChunkSet, RenderResult
from django_yeti.util.html import (
    Action,
    Replace,
    WalkResult,
    get_text,
    parse_html_fragment,
    remove_node,
    set_text,
    walk,
)
from django_yeti.util.logger import format_error_context, logger
from django_yeti.util.misc import content_hash

INLINE_BUNDLE_REGEX = re.compile(re.escape(INLINE_BUNDLE_PREFIX) + r"(.*?)" + re.escape(INLINE_BUNDLE_SUFFIX))
LAZY_PRELOAD_ONLOAD_REGEX = re.compile(r"""\bthis\.rel\s*=\s*['"`]stylesheet['"`]""")

SKIP_PROCESSING_ATTR = "data-skip-inline-processing"
JS_SCRIPT_TYPES = ("", "text/javascript", "application/javascript", "module")

INLINE_TAG_NAMES = {
    AssetType.CSS: "style",
    AssetType.JS: "script",
}


def get_bundle_url(output_dir: str, bundle_name: str, asset_type: AssetType) -> str:
    """URL of the bundle file, e.g. `/css/main.css`"""
    directory = output_dir.strip("/")
    prefix = f"/{directory}" if directory else ""
    return f"{prefix}/{bundle_name}.{asset_type.value}"


#########################################################
# 1. Traversal state
#########################################################


@dataclass
class PageBundles:
    """State of resolving the bundles of a single page."""

    page_url: str
    rendered: RenderResult
    output_dirs: Dict[AssetType, str]

    unconsumed: Dict[AssetType, ChunkSet] = field(default_factory=dict)
    """Names of bundles not yet referenced by name, in the order the bundles were created."""
    url_bundles: Dict[AssetType, BundleMap] = field(default_factory=dict)
    """Chunks of bundles that the page links to by URL. These must be written to bundle files."""

    wildcard_url_nodes: List[Tuple[AssetType, LexborNode, str]] = field(default_factory=list)
    wildcard_inline_nodes: List[Tuple[AssetType, LexborNode]] = field(default_factory=list)
    wildcard_html_nodes: List[LexborNode] = field(default_factory=list)
    inline_nodes: List[Tuple[AssetType, LexborNode]] = field(default_factory=list)
    """`<style>` / `<script>` tags whose content will be post-processed"""

    def __post_init__(self) -> None:
        for asset_type in AssetType:
            self.unconsumed.setdefault(asset_type, dict.fromkeys(self.rendered.get_bundles(asset_type)))
            self.url_bundles.setdefault(asset_type, {})

    def consume(self, asset_type: AssetType, bundle_name: str) -> None:
        self.unconsumed[asset_type].pop(bundle_name, None)

    def remaining(self, asset_type: AssetType) -> List[str]:
        return list(self.unconsumed[asset_type])

    def get_content(self, asset_type: AssetType, bundle_name: str, separator: str = "") -> Optional[str]:
        chunks = self.rendered.get_bundles(asset_type).get(bundle_name)
        if not chunks:
            return None
        return separator.join(chunks) or None

    def use_by_url(self, asset_type: AssetType, bundle_name: str) -> Optional[str]:
        """
        Record that the page links to the bundle file, and return the file's URL.

        Returns `None` if the page has no content for the bundle.
        """
        chunks = self.rendered.get_bundles(asset_type).get(bundle_name)
        if not chunks:
            return None
        self.url_bundles[asset_type].setdefault(bundle_name, {}).update(chunks)
        return get_bundle_url(self.output_dirs[asset_type], bundle_name, asset_type)


#########################################################
# 2. Named references
#########################################################


async def resolve_bundle_references(parser: LexborHTMLParser, page: PageBundles) -> None:
    def on_node(node: LexborNode) -> WalkResult:
        if not node.is_element_node:
            return Action.CONTINUE

        tag = node.tag
        if tag == "link":
            return _handle_link(node, page)
        if tag == "style":
            return _handle_inline(node, AssetType.CSS, page)
        if tag == "script":
            if "src" in node.attrs:
                return _handle_url_reference(node, "src", AssetType.JS, page)
            return _handle_inline(node, AssetType.JS, page)
        if tag == INLINED_HTML_BUNDLE_TAG:
            return _handle_html_bundle(node, page)
        return Action.CONTINUE

    await walk(parser.root, on_node)


def _handle_link(node: LexborNode, page: PageBundles) -> WalkResult:
    rel = node.attrs.get("rel")
    if rel is None:
        return Action.CONTINUE

    is_preload = False
    is_lazy_preload = False
    if rel == "preload":
        is_preload = True
        # Stylesheets may be loaded via preload links, but only with `as="style"`
        as_attr = node.attrs.get("as")
        if as_attr is not None and as_attr != "style":
            return Action.CONTINUE
        onload = node.attrs.get("onload")
        is_lazy_preload = bool(onload and LAZY_PRELOAD_ONLOAD_REGEX.search(onload))
    elif rel != "stylesheet":
        return Action.CONTINUE

    # A plain preload doesn't apply the stylesheet, so it doesn't count as a usage
    consumes = not is_preload or is_lazy_preload
    return _handle_url_reference(node, "href", AssetType.CSS, page, consumes=consumes)


def _handle_url_reference(
    node: LexborNode,
    attr_name: str,
    asset_type: AssetType,
    page: PageBundles,
    consumes: bool = True,
) -> WalkResult:
    value = node.attrs.get(attr_name)
    if not value or not value.startswith(BUNDLE_SRC_PREFIX):
        return Action.CONTINUE

    bundle_name = value[len(BUNDLE_SRC_PREFIX) :]
    if bundle_name == WILDCARD_BUNDLE_NAME:
        page.wildcard_url_nodes.append((asset_type, node, attr_name))
        return Action.CONTINUE

    if consumes:
        page.consume(asset_type, bundle_name)

    url = page.use_by_url(asset_type, bundle_name)
    if url is None:
        logger.warning(
            f'{asset_type.value.upper()} bundle "{bundle_name}" is unused on page {page.page_url}. '
            f"Removing <{node.tag}> tag."
        )
        return Action.REMOVE

    node.attrs[attr_name] = url
    return Action.CONTINUE


def _handle_inline(node: LexborNode, asset_type: AssetType, page: PageBundles) -> WalkResult:
    tag = node.tag
    skip_processing = False
    if SKIP_PROCESSING_ATTR in node.attrs:
        skip_processing = (node.attrs.get(SKIP_PROCESSING_ATTR) or "") != "false"
        del node.attrs[SKIP_PROCESSING_ATTR]

    text = get_text(node).strip()
    if not text:
        logger.warning(f"Empty <{tag}> tag found on page {page.page_url}. Removing.")
        return Action.REMOVE

    has_wildcard = False

    def on_placeholder(match: "re.Match[str]") -> str:
        nonlocal has_wildcard
        bundle_name = match.group(1)
        if bundle_name == WILDCARD_BUNDLE_NAME:
            has_wildcard = True
            return match.group(0)

        page.consume(asset_type, bundle_name)
        content = page.get_content(asset_type, bundle_name)
        if content is None:
            logger.warning(
                f'No {asset_type.value.upper()} bundle found with name "{bundle_name}" '
                f"to inline on page {page.page_url}"
            )
            return ""
        return content

    text = INLINE_BUNDLE_REGEX.sub(on_placeholder, text).strip()
    if not text:
        logger.warning(f"Empty <{tag}> tag found on page {page.page_url} after resolving bundles. Removing.")
        return Action.REMOVE

    set_text(node, text)

    if has_wildcard:
        page.wildcard_inline_nodes.append((asset_type, node))
    if not skip_processing and _is_processable(node, asset_type):
        page.inline_nodes.append((asset_type, node))

    return Action.SKIP_CHILDREN


def _is_processable(node: LexborNode, asset_type: AssetType) -> bool:
    # E.g. `<script type="application/ld+json">` holds data, not code
    if asset_type is AssetType.JS:
        script_type = (node.attrs.get("type") or "").strip().lower()
        return script_type in JS_SCRIPT_TYPES
    return True


def _handle_html_bundle(node: LexborNode, page: PageBundles) -> WalkResult:
    bundle_name = node.attrs.get("name") or ""
    if bundle_name == WILDCARD_BUNDLE_NAME:
        page.wildcard_html_nodes.append(node)
        return Action.SKIP_CHILDREN

    page.consume(AssetType.HTML, bundle_name)
    content = page.get_content(AssetType.HTML, bundle_name)
    if content is None:
        logger.warning(f'HTML bundle "{bundle_name}" is unused on page {page.page_url}. Removing placeholder.')
        return Action.REMOVE

    return Replace(parse_html_fragment(content))


#########################################################
# 3. Wildcard references
#########################################################


async def expand_wildcard_references(parser: LexborHTMLParser, page: PageBundles) -> None:
    """
    Expand the wildcard references to the bundles that were not referenced by name.

    - `<link href="@bundle/*">` / `<script src="@bundle/*">` - Replaced with one copy
      of the tag per remaining bundle.
    - `/*@--BUNDLE--*--@*/` - Replaced with the content of all remaining bundles.
    - `<yeti-html-bundle name="*">` - Replaced with the content of all remaining HTML bundles.

    Bundles are expanded in the order in which they were created during rendering.
    """
    replacements: Dict[int, Sequence[Union[LexborNode, str]]] = {}

    for asset_type, node, attr_name in page.wildcard_url_nodes:
        # The node may have been detached, e.g. if it was inside a removed tag
        if node.parent is None:
            continue

        copies: List[LexborNode] = []
        for bundle_name in page.remaining(asset_type):
            url = page.use_by_url(asset_type, bundle_name)
            if url is None:
                continue
            copy = node.clone()
            copy.attrs[attr_name] = url
            copies.append(copy)
        replacements[node.mem_id] = copies

    for node in page.wildcard_html_nodes:
        if node.parent is None:
            continue
        content = "".join(
            page.get_content(AssetType.HTML, bundle_name) or "" for bundle_name in page.remaining(AssetType.HTML)
        )
        replacements[node.mem_id] = parse_html_fragment(content) if content else []

    if replacements:

        def on_node(node: LexborNode) -> WalkResult:
            nodes = replacements.get(node.mem_id)
            if nodes is None:
                return Action.CONTINUE
            return Replace(nodes)

        await walk(parser.root, on_node)

    for asset_type, node in page.wildcard_inline_nodes:
        if node.parent is None:
            continue

        combined = "\n".join(
            page.get_content(asset_type, bundle_name, separator="\n") or ""
            for bundle_name in page.remaining(asset_type)
        ).strip()

        text = get_text(node).replace(bundle_inline(WILDCARD_BUNDLE_NAME), combined).strip()
        if not text:
            logger.warning(
                f"Empty <{node.tag}> tag found on page {page.page_url} after resolving wildcard bundles. Removing."
            )
            remove_node(node)
            continue
        set_text(node, text)


#########################################################
# 4. Inline content post-processing
#########################################################


class InlineContentProcessor:
    """
    Runs the transformer over inlined CSS and JS.

    Results are cached by content hash for the lifetime of `cache`, so identical
    `<style>` / `<script>` payloads (e.g. from a shared layout) are transformed once.
    """

    def __init__(
        self,
        transformer: Transformer,
        asset_settings: Dict[AssetType, AssetSettings],
        cache: Optional[Dict[str, str]] = None,
    ) -> None:
        self.transformer = transformer
        self.asset_settings = asset_settings
        self.cache: Dict[str, str] = cache if cache is not None else {}

    async def process_page(self, page: PageBundles) -> None:
        tag_indices = {AssetType.CSS: -1, AssetType.JS: -1}

        for asset_type, node in page.inline_nodes:
            if node.parent is None:
                continue

            tag_indices[asset_type] += 1
            tag = INLINE_TAG_NAMES[asset_type]
            filename = f"{quote(page.page_url, safe='')}__<{tag}>({tag_indices[asset_type]}).{asset_type.value}"

            text = get_text(node).strip()
            text = await self.transform(asset_type, text, filename, page.page_url)

            if not text:
                logger.warning(f"Empty <{tag}> tag found on page {page.page_url} after processing. Removing.")
                remove_node(node)
            else:
                set_text(node, text)

    async def transform(self, asset_type: AssetType, text: str, filename: str, page_url: str) -> str:
        cache_key = f"{asset_type.value}/{content_hash(text)}"
        if cache_key in self.cache:
            return self.cache[cache_key]

        conf = self.asset_settings[asset_type]
        try:
            output = await run_transformer(
                self.transformer,
                text,
                kind=asset_type.value,  # type: ignore[arg-type]
                minify=conf.minify,
                source_map=False,
                filename=filename,
            )
        except Exception as err:
            # Keep the authored content, only the minification is skipped
            logger.error(
                f"Error processing inlined {asset_type.value.upper()} on page {page_url} ({filename}): {err}"
                + format_error_context(err, text)
            )
            return text

        self.cache[cache_key] = output.code
        return output.code


async def process_page_bundles(
    parser: LexborHTMLParser,
    page: PageBundles,
    processor: InlineContentProcessor,
) -> None:
    """Resolve all bundle references in the page, in order: named, wildcard, then inline processing."""
    await resolve_bundle_references(parser, page)
    await expand_wildcard_references(parser, page)
    await processor.process_page(page)
