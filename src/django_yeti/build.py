"""
Build-wide state, and the hooks through which a build drives the rendering of pages.

A `BundleBuilder` is created once per build:

```python
builder = BundleBuilder()
builder.before_build(input_dir)
for page in pages:
    html = await builder.compile_page(page.component, page.data, page_url=page.url, page_key=page.path)
    ...
written_files = await builder.after_build(output_dir)
```

While pages are compiled, the bundle contents that each page links to by URL are
collected into the global bundle table. After all pages are compiled, each bundle
is written to a single file shared by all pages.
"""

import os
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from selectolax.lexbor import LexborHTMLParser

from django_yeti.app_settings import YetiSettings, load_settings, set_input_dir
from django_yeti.bundle import AssetType
from django_yeti.compilers import Transformer, get_transformer, run_transformer
from django_yeti.components import Component, render_page_component
from django_yeti.dependencies import InlineContentProcessor, PageBundles, process_page_bundles
from django_yeti.head import dedupe_head
from django_yeti.render_result import BundleMap, ChunkSet
from django_yeti.util.html import ensure_html_has_doctype
from django_yeti.util.logger import format_error_context, logger, quiet_mode
from django_yeti.util.misc import content_hash

# Asset types that are written to bundle files
FILE_ASSET_TYPES = (AssetType.CSS, AssetType.JS)

SOURCE_MAP_COMMENTS = {
    AssetType.CSS: "/*# sourceMappingURL={map_name} */",
    AssetType.JS: "//# sourceMappingURL={map_name}",
}


class BundleWriteError(Exception):
    """Raised when a bundle file could not be produced. Aborts the build."""


class GlobalBundleTable:
    """
    Bundle contents linked to by URL, collected from all pages.

    Contributions are stored per page, so that when a page is compiled again
    (e.g. on rebuild), its previous contribution is replaced rather than added to.
    """

    def __init__(self) -> None:
        self._pages: Dict[str, Dict[AssetType, BundleMap]] = {}
        self._lock = threading.Lock()

    def set_page(self, page_key: str, bundles: Dict[AssetType, BundleMap]) -> None:
        with self._lock:
            self._pages[page_key] = {
                asset_type: {name: dict(chunks) for name, chunks in bundles.get(asset_type, {}).items()}
                for asset_type in FILE_ASSET_TYPES
            }

    def combined(self, asset_type: AssetType) -> Dict[str, ChunkSet]:
        """Chunks per bundle name, united across all pages in the order pages were compiled."""
        combined: Dict[str, ChunkSet] = {}
        for page_bundles in self._pages.values():
            for bundle_name, chunks in page_bundles[asset_type].items():
                combined.setdefault(bundle_name, {}).update(chunks)
        return combined

    def clear(self) -> None:
        self._pages.clear()

    def __len__(self) -> int:
        return len(self._pages)


class BundleHashCache:
    """Hash of the content last written to each bundle file."""

    def __init__(self) -> None:
        self._hashes: Dict[str, str] = {}

    def is_fresh(self, path: Path, content_digest: str) -> bool:
        # The file may have been deleted since it was written, e.g. by cleaning the output dir
        return self._hashes.get(str(path)) == content_digest and path.exists()

    def update(self, path: Path, content_digest: str) -> None:
        self._hashes[str(path)] = content_digest


class BundleBuilder:
    def __init__(
        self,
        config: Optional[YetiSettings] = None,
        transformer: Optional[Transformer] = None,
    ) -> None:
        self.config = config or load_settings()
        self.transformer = transformer or get_transformer(self.config.transformer)

        self.bundle_table = GlobalBundleTable()
        self.hash_cache = BundleHashCache()
        self.inline_cache: Dict[str, str] = {}
        self.page_dependencies: Dict[str, List[str]] = {}

        self.asset_settings = {
            AssetType.CSS: self.config.css,
            AssetType.JS: self.config.js,
        }
        self.inline_processor = InlineContentProcessor(self.transformer, self.asset_settings, self.inline_cache)

    ###########################
    # Hooks
    ###########################

    def before_build(self, input_dir: Optional[str] = None) -> None:
        """Start a new build. `input_dir` is where page modules and `/`-rooted imports are resolved from."""
        if input_dir is not None:
            input_dir = os.path.abspath(input_dir)
            set_input_dir(input_dir)
        self.bundle_table.clear()
        self.page_dependencies.clear()
        with quiet_mode(self.config.quiet_mode):
            logger.debug(f"Starting build with input directory '{input_dir}'")

    async def compile_page(
        self,
        page_component: Component,
        data: Optional[Dict[str, Any]] = None,
        page_url: str = "/",
        page_key: Optional[str] = None,
        add_dependencies: Optional[Callable[[List[str]], None]] = None,
    ) -> str:
        """
        Render the page component and turn it into the final HTML document.

        `page_key` identifies the page across rebuilds (e.g. its input file path),
        and defaults to `page_url`. `add_dependencies` is called with all files that were
        read to render the page.
        """
        with quiet_mode(self.config.quiet_mode):
            return await self._compile_page(page_component, data, page_url, page_key or page_url, add_dependencies)

    async def _compile_page(
        self,
        page_component: Component,
        data: Optional[Dict[str, Any]],
        page_url: str,
        page_key: str,
        add_dependencies: Optional[Callable[[List[str]], None]],
    ) -> str:
        rendered = await render_page_component(page_component, **(data or {}))

        dependencies = sorted(rendered.dependencies)
        self.page_dependencies[page_key] = dependencies
        if add_dependencies is not None:
            add_dependencies(dependencies)

        parser = LexborHTMLParser(ensure_html_has_doctype(rendered.html))
        await dedupe_head(parser)

        page = PageBundles(
            page_url=page_url,
            rendered=rendered,
            output_dirs={
                AssetType.CSS: self.config.css.output_dir,
                AssetType.JS: self.config.js.output_dir,
                AssetType.HTML: "",
            },
        )
        await process_page_bundles(parser, page, self.inline_processor)
        self.bundle_table.set_page(page_key, page.url_bundles)

        return parser.html or ""

    async def after_build(self, output_root: Optional[str] = None) -> List[Path]:
        """Write the bundle files of this build. Returns the files that were written."""
        output_root = output_root or self.config.output_dir
        written: List[Path] = []
        with quiet_mode(self.config.quiet_mode):
            for asset_type in FILE_ASSET_TYPES:
                written.extend(await self.flush(asset_type, Path(output_root)))
        return written

    ###########################
    # Bundle files
    ###########################

    async def flush(self, asset_type: AssetType, output_root: Path) -> List[Path]:
        bundles = self.bundle_table.combined(asset_type)
        if not bundles:
            return []

        conf = self.asset_settings[asset_type]
        output_dir = (output_root / conf.output_dir.strip("/")).resolve()
        output_dir.mkdir(parents=True, exist_ok=True)

        written: List[Path] = []
        for bundle_name, chunks in bundles.items():
            content = "".join(chunks)
            if not content:
                continue
            written.extend(await self.write_bundle(asset_type, bundle_name, content, output_dir))
        return written

    async def write_bundle(
        self,
        asset_type: AssetType,
        bundle_name: str,
        content: str,
        output_dir: Path,
    ) -> List[Path]:
        conf = self.asset_settings[asset_type]
        ext = asset_type.value
        file_name = f"{bundle_name}.{ext}"
        map_name = f"{file_name}.map"
        file_path = output_dir / file_name
        map_path = output_dir / map_name

        digest = content_hash(content)
        if self.hash_cache.is_fresh(file_path, digest):
            logger.debug(f"{ext.upper()} bundle '{bundle_name}' is unchanged, skipping")
            return []

        try:
            output = await run_transformer(
                self.transformer,
                content,
                kind=ext,  # type: ignore[arg-type]
                minify=conf.minify,
                source_map=conf.source_maps,
                filename=file_name,
            )
        except Exception as err:
            logger.error(
                f"Error processing {ext.upper()} bundle {bundle_name}: {err}" + format_error_context(err, content)
            )
            raise BundleWriteError(f"Error processing {ext.upper()} bundle {bundle_name}") from err

        code = output.code
        if conf.source_maps and output.map:
            code += "\n" + SOURCE_MAP_COMMENTS[asset_type].format(map_name=map_name)

        logger.info(f"Writing {ext.upper()} bundle {bundle_name} to {file_path}")
        written = [file_path]
        try:
            file_path.write_text(code, encoding="utf-8")
            if conf.source_maps and output.map:
                map_path.write_text(output.map, encoding="utf-8")
                written.append(map_path)
        except OSError as err:
            raise BundleWriteError(f"Error writing {ext.upper()} bundle {bundle_name} to {file_path}") from err

        # Only record the hash once the file is on disk, so a failed write is retried next build
        self.hash_cache.update(file_path, digest)
        return written

