import sys
from hashlib import md5
from typing import Any, Dict, Optional, Type


def content_hash(content: str) -> str:
    """Hash of a text, used to detect unchanged bundles and inline payloads."""
    return md5(content.encode("utf-8")).hexdigest()


# See https://stackoverflow.com/a/2020083/9788634
def get_import_path(cls_or_fn: Type[Any]) -> str:
    """
    Get the full import path for a class or a function, e.g. `"path.to.MyClass"`
    """
    module = cls_or_fn.__module__
    if module == "builtins":
        return cls_or_fn.__qualname__  # avoid outputs like 'builtins.str'
    return module + "." + getattr(cls_or_fn, "__qualname__", type(cls_or_fn).__qualname__)


def get_caller_file(depth: int = 1) -> Optional[str]:
    """
    Get the full path of the file from which the current function was called.

    `depth=1` means the caller of the function that calls `get_caller_file()`.

    Returns `None` if the caller was not defined in a file, e.g. in REPL.
    """
    # +1 to skip this function's own frame
    frame = sys._getframe(depth + 1)
    return frame.f_globals.get("__file__")


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge `override` into a copy of `base`. Nested dicts are merged key by key,
    everything else is replaced.
    """
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
