import os
from contextvars import ContextVar
from typing import Any, Dict, Optional

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from pydantic import BaseModel, Field, ValidationError

from django_yeti.bundle import DEFAULT_BUNDLE_NAME
from django_yeti.util.misc import deep_merge


class AssetSettings(BaseModel):
    """Output settings for one asset type (CSS or JS)."""

    minify: bool = Field(default=True, description="Minify bundle files and inlined content")
    source_maps: bool = Field(default=False, description="Write a `.map` file next to each bundle file")
    output_dir: str = Field(..., description="Directory for bundle files, relative to the output root")


class YetiSettings(BaseModel):
    """
    Settings for django_yeti. Set them in your `settings.py` as a dict:

    ```python
    YETI = {
        "input_dir": BASE_DIR / "site",
        "output_dir": BASE_DIR / "_site",
        "css": {"minify": True, "source_maps": True},
    }
    ```

    Nested dicts are merged into the defaults, so you need to list only
    the keys you want to change.
    """

    input_dir: str = Field(default="", description="Directory with page modules. Defaults to BASE_DIR")
    output_dir: str = Field(default="_site", description="Directory where pages and bundles are written")
    default_bundle_name: str = Field(default=DEFAULT_BUNDLE_NAME, description="Bundle used by `css.bundle()`")
    page_file_suffix: str = Field(default="page.py", description="Files ending with this are pages")
    quiet_mode: bool = Field(default=False, description="Log only errors")
    transformer: Optional[str] = Field(
        default=None, description="Import path of the CSS/JS transformer. Defaults to rcssmin/rjsmin"
    )
    css: AssetSettings = Field(default_factory=lambda: AssetSettings(output_dir="css"))
    js: AssetSettings = Field(default_factory=lambda: AssetSettings(output_dir="js"))


DEFAULTS: Dict[str, Any] = {
    "css": {"minify": True, "source_maps": False, "output_dir": "css"},
    "js": {"minify": True, "source_maps": False, "output_dir": "js"},
}

# Set by the "before build" hook. Takes precedence over `settings.YETI["input_dir"]`.
_input_dir_override: ContextVar[Optional[str]] = ContextVar("yeti_input_dir", default=None)


def load_settings(overrides: Optional[Dict[str, Any]] = None) -> YetiSettings:
    """Validate `settings.YETI`, optionally merged with `overrides`."""
    user_settings: Dict[str, Any] = getattr(settings, "YETI", None) or {}
    merged = deep_merge(DEFAULTS, _stringify_paths(user_settings))
    if overrides:
        merged = deep_merge(merged, _stringify_paths(overrides))

    try:
        return YetiSettings.model_validate(merged)
    except ValidationError as err:
        raise ImproperlyConfigured(f"Invalid YETI settings:\n{err}") from err


def _stringify_paths(conf: Dict[str, Any]) -> Dict[str, Any]:
    # Allow `pathlib.Path` values for directories, as is common in `settings.py`
    out: Dict[str, Any] = {}
    for key, value in conf.items():
        if isinstance(value, dict):
            value = _stringify_paths(value)
        elif isinstance(value, os.PathLike):
            value = os.fspath(value)
        out[key] = value
    return out


class AppSettings:
    """Read-only view of the settings, re-read on every access so `override_settings` works."""

    @property
    def SETTINGS(self) -> YetiSettings:
        return load_settings()

    @property
    def INPUT_DIR(self) -> str:
        override = _input_dir_override.get()
        if override:
            return override
        input_dir = self.SETTINGS.input_dir
        if input_dir:
            return input_dir
        base_dir = getattr(settings, "BASE_DIR", None)
        return os.fspath(base_dir) if base_dir else os.getcwd()

    @property
    def OUTPUT_DIR(self) -> str:
        return self.SETTINGS.output_dir

    @property
    def DEFAULT_BUNDLE_NAME(self) -> str:
        return self.SETTINGS.default_bundle_name

    @property
    def QUIET_MODE(self) -> bool:
        return self.SETTINGS.quiet_mode


def set_input_dir(input_dir: Optional[str]) -> None:
    _input_dir_override.set(input_dir)


app_settings = AppSettings()
