import json
from pathlib import Path
from typing import Any, Dict, List

import django
import pytest
from django.conf import settings

from django_yeti.app_settings import load_settings, set_input_dir
from django_yeti.build import BundleBuilder
from django_yeti.compilers import TransformError, TransformOutput
from django_yeti.util.logger import set_quiet_mode

if not settings.configured:
    settings.configure(
        INSTALLED_APPS=["django_yeti"],
        BASE_DIR=Path(__file__).resolve().parent,
        YETI={},
    )
    django.setup()


class RecordingTransformer:
    """
    Stands in for a real minifier. Collapses whitespace when minifying, and fails
    on code that contains `SYNTAX_ERROR`, pointing at the line it's on.
    """

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []

    def __call__(self, code: str, *, kind: str, minify: bool, source_map: bool, filename: str) -> TransformOutput:
        self.calls.append(
            {"code": code, "kind": kind, "minify": minify, "source_map": source_map, "filename": filename}
        )
        if "SYNTAX_ERROR" in code:
            line = code[: code.index("SYNTAX_ERROR")].count("\n") + 1
            raise TransformError("Unexpected token", line=line, column=1)

        out_code = " ".join(code.split()) if minify else code
        out_map = json.dumps({"version": 3, "sources": [filename], "mappings": ""}) if source_map else None
        return TransformOutput(out_code, out_map)


@pytest.fixture(autouse=True)
def reset_build_state():
    yield
    set_input_dir(None)
    set_quiet_mode(False)


@pytest.fixture
def transformer() -> RecordingTransformer:
    return RecordingTransformer()


@pytest.fixture
def make_builder(transformer):
    def _make_builder(**overrides: Any) -> BundleBuilder:
        return BundleBuilder(config=load_settings(overrides), transformer=transformer)

    return _make_builder


@pytest.fixture
def write_file(tmp_path):
    def _write_file(rel_path: str, content: str) -> Path:
        path = tmp_path / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    return _write_file
