import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

logger = logging.getLogger("django_yeti")

# Quiet mode of the build that is running in the current context. `None` outside
# of builds, in which case the filter's own setting applies.
_build_quiet_mode: ContextVar[Optional[bool]] = ContextVar("build_quiet_mode", default=None)


class QuietModeFilter(logging.Filter):
    """
    Drop log records below `ERROR` while quiet mode is on.

    Errors are always let through, so a quiet build still reports what broke.
    """

    def __init__(self, enabled: bool = False) -> None:
        super().__init__()
        self.enabled = enabled

    def filter(self, record: logging.LogRecord) -> bool:
        enabled = _build_quiet_mode.get()
        if enabled is None:
            enabled = self.enabled
        if not enabled:
            return True
        return record.levelno >= logging.ERROR


quiet_filter = QuietModeFilter()
logger.addFilter(quiet_filter)


def set_quiet_mode(enabled: bool) -> None:
    """Set the process-wide default, e.g. from `settings.YETI["quiet_mode"]`."""
    quiet_filter.enabled = enabled


@contextmanager
def quiet_mode(enabled: bool) -> Iterator[None]:
    """Quiet mode for the logs emitted inside the block only, e.g. by one builder's hooks."""
    token = _build_quiet_mode.set(enabled)
    try:
        yield
    finally:
        _build_quiet_mode.reset(token)


def format_code_frame(source: str, line: int, column: Optional[int] = None, context: int = 2) -> str:
    """
    Render the lines around `line` (1-based), marking the offending line with `>`
    and, when `column` (1-based) is known, pointing at it with a caret. E.g.

    ```
      1 | a {
    > 2 |   color red;
        |         ^
      3 | }
    ```
    """
    lines = source.split("\n")
    start = max(line - context, 1)
    end = min(line + context, len(lines))
    gutter_width = len(str(end))

    out_lines = []
    for lineno in range(start, end + 1):
        marker = ">" if lineno == line else " "
        gutter = str(lineno).rjust(gutter_width)
        out_lines.append(f"{marker} {gutter} | {lines[lineno - 1]}")
        if lineno == line and column is not None:
            out_lines.append(f"  {' ' * gutter_width} | {' ' * max(column - 1, 0)}^")

    return "\n".join(out_lines)


def format_error_context(err: BaseException, source: str) -> str:
    """Code frame for errors that carry `line` / `column`, e.g. `TransformError`. Empty otherwise."""
    line = getattr(err, "line", None)
    if line is None:
        return ""
    return "\n" + format_code_frame(source, line, getattr(err, "column", None))
