"""Helper types for IDEs, to mark strings that hold source code of a given language."""

from typing_extensions import Annotated

css = Annotated[str, "css"]
js = Annotated[str, "js"]
django_html = Annotated[str, "django_html"]
