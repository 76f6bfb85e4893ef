"""Batch command: tag a folder or zip archive and write caption files.

Every ``Settings`` field is accepted as a ``--flag`` and falls back to the
matching ``TAGGERX_*`` environment variable.
"""

from __future__ import annotations

import logging
import sys
import zipfile
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic_settings import CliPositionalArg, SettingsConfigDict

from taggerx.config import Settings
from taggerx.errors import TaggerError
from taggerx.ml.model_manager import OnnxModelManager
from taggerx.ml.tagger import Tagger

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from taggerx.ml.ranker import ImageTagResult

logger = logging.getLogger(__name__)


class BatchSettings(Settings):
    """Settings for one batch run, parsed from the command line."""

    model_config = SettingsConfigDict(
        env_prefix="TAGGERX_",
        case_sensitive=False,
        cli_prog_name="taggerx-batch",
    )

    input_path: CliPositionalArg[Path]


def caption_path(result: ImageTagResult, output_dir: Path) -> Path:
    """Return ``output_dir/<image basename without extension>.txt``."""
    stem = Path(result.file_name.replace("\\", "/")).stem
    return output_dir / f"{stem}.txt"


def write_captions(results: Iterable[ImageTagResult], output_dir: Path) -> int:
    """Write one comma-separated tag file per result and return how many were written."""
    output_dir.mkdir(parents=True, exist_ok=True)
    written = 0
    for result in results:
        caption_path(result, output_dir).write_text(", ".join(result.names), encoding="utf-8")
        written += 1
    return written


def run(settings: BatchSettings) -> int:
    """Tag ``settings.input_path`` and write captions into ``settings.output_dir``."""
    model_manager = OnnxModelManager(settings)
    try:
        tagger = Tagger.from_settings(settings, model_manager)
        written = write_captions(tagger.tag_path(settings.input_path), settings.output_dir)
    finally:
        model_manager.shutdown()
    logger.info("Wrote %d caption files to %s", written, settings.output_dir)
    return written


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    args = list(sys.argv[1:] if argv is None else argv)
    settings = BatchSettings(_cli_parse_args=args)  # type: ignore[call-arg]

    logger.info(
        "Starting TaggerX batch (input=%s, device=%s, precision=%s, preload=%s)",
        settings.input_path,
        settings.device,
        settings.precision,
        settings.preload,
    )
    try:
        run(settings)
    except (TaggerError, OSError, ValueError, zipfile.BadZipFile) as exc:
        logger.error("Aborting: %s", exc)  # noqa: TRY400
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
