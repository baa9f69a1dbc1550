import asyncio
from pathlib import Path
from typing import Any, List, Tuple

from django.core.management.base import BaseCommand, CommandError, CommandParser

from django_yeti.app_settings import app_settings, set_input_dir
from django_yeti.build import BundleBuilder, BundleWriteError
from django_yeti.components import PageContext
from django_yeti.util.loader import get_page_files, load_page, page_output_path
from django_yeti.util.logger import logger


class Command(BaseCommand):
    """
    ### Management Command Usage

    ```bash
    python manage.py buildsite --input <input_dir> --output <output_dir>
    ```

    Every file under the input directory that ends with `YETI["page_file_suffix"]`
    (`.page.py` by default) is a page. The file must define a callable named `page`,
    and may define a `data` dict, which is passed to `page` as props, along with
    `page`, the `PageContext`:

    ```python
    # site/blog/index.page.py
    from django_yeti import html

    data = {"title": "Blog"}

    def page(title, page):
        return html("<h1>{{ title }}</h1><p>{{ url }}</p>", title=title, url=page.url)
    ```

    The page is written to `<output_dir>/blog/index.html`. After all pages are built,
    the CSS and JS bundles that the pages link to are written to `<output_dir>/css/`
    and `<output_dir>/js/`.

    A page that fails to render is reported and skipped, the rest of the site is still built.
    """

    help = "Render all pages of the site, and write their HTML and CSS / JS bundles."

    def add_arguments(self, parser: CommandParser) -> None:
        parser.add_argument(
            "--input",
            type=str,
            help="Directory with page files. Defaults to `YETI.input_dir`, or `BASE_DIR`.",
        )
        parser.add_argument(
            "--output",
            type=str,
            help="Directory where the site is written. Defaults to `YETI.output_dir`.",
        )

    def handle(self, *args: Any, **kwargs: Any) -> None:
        builder = BundleBuilder()

        input_dir = Path(kwargs.get("input") or app_settings.INPUT_DIR).resolve()
        output_dir = Path(kwargs.get("output") or app_settings.OUTPUT_DIR).resolve()
        if not input_dir.is_dir():
            raise CommandError(f"Input directory {input_dir} does not exist")

        page_files = get_page_files(input_dir, builder.config.page_file_suffix)
        if not page_files:
            self.stdout.write(self.style.WARNING(f"No pages found in {input_dir}"))

        builder.before_build(str(input_dir))
        try:
            built, failed = asyncio.run(self._build(builder, page_files, input_dir, output_dir))
        finally:
            set_input_dir(None)

        for path in built:
            self.stdout.write(f"Wrote {path}")

        if failed:
            failed_list = "\n".join(f"  {path}: {err}" for path, err in failed)
            raise CommandError(f"{len(failed)} page(s) failed to build:\n{failed_list}")

        self.stdout.write(self.style.SUCCESS(f"Built {len(page_files)} page(s) into {output_dir}"))

    async def _build(
        self,
        builder: BundleBuilder,
        page_files: List[Path],
        input_dir: Path,
        output_dir: Path,
    ) -> Tuple[List[Path], List[Tuple[Path, Exception]]]:
        built: List[Path] = []
        failed: List[Tuple[Path, Exception]] = []
        suffix = builder.config.page_file_suffix

        for page_file in page_files:
            try:
                page = load_page(page_file, input_dir, suffix)
                out_path = page_output_path(output_dir, page.url)
                context = PageContext(url=page.url, input_path=str(page_file), output_path=str(out_path))
                content = await builder.compile_page(
                    page.component,
                    {**page.data, "page": context},
                    page_url=page.url,
                    page_key=str(page_file),
                )
            # Page code is user code, any error in it fails only that page
            except Exception as err:
                logger.error(f"Failed to build page {page_file}: {err}")
                failed.append((page_file, err))
                continue

            out_path.parent.mkdir(parents=True, exist_ok=True)
            out_path.write_text(content, encoding="utf-8")
            built.append(out_path)

        try:
            built.extend(await builder.after_build(str(output_dir)))
        except BundleWriteError as err:
            raise CommandError(str(err)) from err

        return built, failed
