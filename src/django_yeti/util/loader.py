"""Discovery and loading of page modules, e.g. `blog/index.page.py`"""

import importlib.util
from pathlib import Path
from types import ModuleType
from typing import Any, Dict, List, NamedTuple, Optional, Union

from django_yeti.components import Component
from django_yeti.util.misc import content_hash


class PageModule(NamedTuple):
    path: Path
    """Absolute path to the page file"""
    url: str
    """URL of the page, e.g. `/blog/`"""
    component: Component
    """The `page` callable defined by the module"""
    data: Dict[str, Any]
    """Props passed to the page component, taken from the module's `data` dict"""


def get_page_files(input_dir: Union[str, Path], suffix: str) -> List[Path]:
    """Find all page files under `input_dir`, sorted by path."""
    root = Path(input_dir)
    return sorted(path for path in root.rglob(f"*.{suffix}") if path.is_file())


def page_url_for(rel_path: Union[str, Path], suffix: str) -> str:
    """
    Map a page file (relative to the input dir) to its URL:

    - `index.page.py` -> `/`
    - `about.page.py` -> `/about/`
    - `blog/index.page.py` -> `/blog/`
    """
    parts = list(Path(rel_path).parts)
    filename = parts.pop()
    stem = filename[: -len(f".{suffix}")] if filename.endswith(f".{suffix}") else filename
    if stem != "index":
        parts.append(stem)

    if not parts:
        return "/"
    return "/" + "/".join(parts) + "/"


def page_output_path(output_root: Union[str, Path], page_url: str) -> Path:
    """`/blog/` -> `<output_root>/blog/index.html`"""
    url_path = page_url.strip("/")
    output_dir = Path(output_root) / url_path if url_path else Path(output_root)
    return output_dir / "index.html"


def import_page_file(path: Path) -> ModuleType:
    """
    Execute the page file as a standalone module.

    The file is executed anew on each call, so that edits are picked up on rebuild.
    """
    module_name = f"_yeti_page_{content_hash(str(path))}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Could not create a module spec for {path}")

    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def load_page(path: Path, input_dir: Union[str, Path], suffix: str) -> PageModule:
    module = import_page_file(path)

    component: Optional[Component] = getattr(module, "page", None)
    if not callable(component):
        raise TypeError(f"Page file {path} must define a callable named 'page'")

    data = getattr(module, "data", None) or {}
    if not isinstance(data, dict):
        raise TypeError(f"'data' in page file {path} must be a dict, got {type(data).__name__}")

    url = page_url_for(path.relative_to(input_dir), suffix)
    return PageModule(path=path, url=url, component=component, data=data)
