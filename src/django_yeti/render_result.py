"""
Results of rendering components, and how they are combined.

Every render returns a `RenderResult` - the HTML, plus the CSS / JS / HTML bundle
contents and file dependencies that the component and its descendants contributed.
A parent merges the results of its children into its own, so that the page
component ends up with a single result that describes the whole page.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Sequence, Set, Union

from django_yeti.bundle import AssetType, render_nested_value

# Insertion-ordered set. Keys are the chunks, values are always `None`.
ChunkSet = Dict[str, None]
BundleMap = Dict[str, ChunkSet]


@dataclass
class RenderResult:
    html: str = ""
    css_bundles: BundleMap = field(default_factory=dict)
    js_bundles: BundleMap = field(default_factory=dict)
    html_bundles: BundleMap = field(default_factory=dict)
    css_dependencies: Set[str] = field(default_factory=set)
    js_dependencies: Set[str] = field(default_factory=set)
    html_dependencies: Set[str] = field(default_factory=set)

    def __str__(self) -> str:
        return render_nested_value(self)

    def get_bundles(self, asset_type: AssetType) -> BundleMap:
        return getattr(self, f"{asset_type.value}_bundles")

    def get_dependencies(self, asset_type: AssetType) -> Set[str]:
        return getattr(self, f"{asset_type.value}_dependencies")

    def add_chunk(self, asset_type: AssetType, bundle_name: str, chunk: str) -> None:
        # Empty chunks are never stored
        if not chunk:
            return
        bundles = self.get_bundles(asset_type)
        bundles.setdefault(bundle_name, {})[chunk] = None

    @property
    def dependencies(self) -> Set[str]:
        """All files that affect this result, regardless of the asset type."""
        return self.css_dependencies | self.js_dependencies | self.html_dependencies


@dataclass
class AssetResult:
    """
    Output of a `css` or `js` template - content per bundle name, and the
    files that were read to produce it.
    """

    asset_type: AssetType
    bundles: Dict[str, str] = field(default_factory=dict)
    dependencies: Set[str] = field(default_factory=set)

    def to_render_result(self) -> RenderResult:
        result = RenderResult()
        for bundle_name, content in self.bundles.items():
            result.add_chunk(self.asset_type, bundle_name, content)
        result.get_dependencies(self.asset_type).update(self.dependencies)
        return result


def _check_render_result(result: RenderResult) -> None:
    if not isinstance(result, RenderResult):
        raise TypeError(f"Expected a RenderResult, got {type(result).__name__}: {result!r}")

    for asset_type in AssetType:
        if not isinstance(result.get_bundles(asset_type), dict):
            raise TypeError(f"RenderResult is missing the '{asset_type.value}_bundles' map")
        if not isinstance(result.get_dependencies(asset_type), set):
            raise TypeError(f"RenderResult is missing the '{asset_type.value}_dependencies' set")


def flatten_render_results(results: Iterable[RenderResult]) -> RenderResult:
    """
    Combine several results into one.

    - HTML is concatenated in the given order.
    - Chunks of bundles with the same name are united, never overwritten.
      Identical chunks are kept once, at the position where they first appeared.
    - Dependencies are united.
    """
    merged = RenderResult()
    html_parts = []
    for result in results:
        _check_render_result(result)
        html_parts.append(result.html)

        for asset_type in AssetType:
            merged_bundles = merged.get_bundles(asset_type)
            for bundle_name, chunks in result.get_bundles(asset_type).items():
                merged_chunks = merged_bundles.setdefault(bundle_name, {})
                for chunk in chunks:
                    if chunk:
                        merged_chunks[chunk] = None

            merged.get_dependencies(asset_type).update(result.get_dependencies(asset_type))

    merged.html = "".join(html_parts)
    return merged


def merge_render_results(
    own: Optional[RenderResult],
    children: Union[RenderResult, Sequence[RenderResult]],
) -> RenderResult:
    """
    Merge a component's own contributions with the results of the children it rendered.

    The component's own bundles come first, then those of each child in the order
    the children were given. So e.g. a reset stylesheet declared by a layout ends up
    before the styles of the components the layout renders.
    """
    if isinstance(children, RenderResult):
        children = [children]
    elif not isinstance(children, (list, tuple)):
        raise TypeError(f"Expected a RenderResult or a list of them, got {type(children).__name__}")

    results = [own] if own is not None else []
    results.extend(children)
    return flatten_render_results(results)
