"""
Transformers post-process the CSS and JS that ends up in bundle files and in inlined
`<style>` / `<script>` tags. By default, CSS is minified with `rcssmin` and JS
with `rjsmin`.

Use your own transformer by pointing `YETI["transformer"]` to a callable
with the same signature as `Transformer`, e.g. one that shells out to esbuild.
"""

import inspect
import json
from typing import Awaitable, Callable, Dict, Literal, NamedTuple, Optional, Protocol, Union

import rcssmin
import rjsmin
from django.utils.module_loading import import_string

AssetKind = Literal["css", "js"]


class TransformOutput(NamedTuple):
    code: str
    map: Optional[str] = None
    """Source map as a JSON string, if one was requested"""


class TransformError(Exception):
    """
    Raised by transformers when the code cannot be processed.

    `line` and `column` (both 1-based) point to the offending code, if known.
    """

    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None) -> None:
        super().__init__(message)
        self.line = line
        self.column = column


class Transformer(Protocol):
    def __call__(
        self,
        code: str,
        *,
        kind: AssetKind,
        minify: bool,
        source_map: bool,
        filename: str,
    ) -> Union[TransformOutput, Awaitable[TransformOutput]]: ...


MINIFIERS: Dict[AssetKind, Callable[[str], str]] = {
    "css": rcssmin.cssmin,
    "js": rjsmin.jsmin,
}


def minify_transformer(
    code: str,
    *,
    kind: AssetKind,
    minify: bool,
    source_map: bool,
    filename: str,
) -> TransformOutput:
    if minify:
        try:
            out_code = MINIFIERS[kind](code)
        except (ValueError, TypeError) as err:
            raise TransformError(f"Failed to minify {filename}: {err}") from err
    else:
        out_code = code

    out_map = build_source_map(code, filename, line_mappings=not minify) if source_map else None
    return TransformOutput(out_code.strip(), out_map)


def build_source_map(source: str, filename: str, line_mappings: bool) -> str:
    """
    Build a v3 source map that embeds the original source.

    Minifiers used here don't track positions. So when the code was minified,
    the whole output is mapped to the start of the source. Otherwise the output
    lines match the source lines one to one.
    """
    if line_mappings:
        # Each line: generated column 0 -> source 0, next source line, column 0
        line_count = source.count("\n") + 1
        mappings = ";".join(["AAAA"] + ["AACA"] * (line_count - 1))
    else:
        mappings = "AAAA"

    return json.dumps(
        {
            "version": 3,
            "file": filename,
            "sources": [filename],
            "sourcesContent": [source],
            "names": [],
            "mappings": mappings,
        }
    )


def get_transformer(import_path: Optional[str] = None) -> Transformer:
    if import_path is None:
        return minify_transformer
    return import_string(import_path)


async def run_transformer(
    transformer: Transformer,
    code: str,
    *,
    kind: AssetKind,
    minify: bool,
    source_map: bool,
    filename: str,
) -> TransformOutput:
    """Call the transformer, awaiting its result if it's async."""
    result = transformer(code, kind=kind, minify=minify, source_map=source_map, filename=filename)
    if inspect.isawaitable(result):
        result = await result
    if isinstance(result, str):
        result = TransformOutput(result)
    return result
