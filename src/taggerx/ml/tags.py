"""Tag list loading."""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from itertools import islice
from typing import TYPE_CHECKING

from taggerx.errors import AssetNotFound

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TagRecord:
    """One usable model output class.

    ``tag_id`` is the id on the source tagging site, not the model column.
    """

    tag_id: int
    name: str
    category: str
    count: int
    localized_name: str | None = None


def load_tags(path: Path, skip_rows: int = 5) -> list[TagRecord]:
    """Load ``tag_id,name,category,count[,localized_name]`` rows.

    The first ``skip_rows`` rows (header plus reserved classes) are dropped
    so that list position ``j`` matches score column ``reserved + j``.

    Raises:
        AssetNotFound: If the file does not exist.
        ValueError: If a row is malformed.
    """
    if not path.is_file():
        raise AssetNotFound(f"Tag file not found: {path}")

    tags: list[TagRecord] = []
    with path.open(encoding="utf-8", newline="") as fh:
        for line_no, row in enumerate(islice(csv.reader(fh), skip_rows, None), start=skip_rows + 1):
            if not row or not any(field.strip() for field in row):
                continue
            if len(row) < 4:
                raise ValueError(f"{path}:{line_no}: expected at least 4 fields, got {len(row)}")
            try:
                tags.append(
                    TagRecord(
                        tag_id=int(row[0]),
                        name=row[1],
                        category=row[2],
                        count=int(row[3]),
                        localized_name=(row[4] or None) if len(row) > 4 else None,
                    )
                )
            except ValueError as exc:
                raise ValueError(f"{path}:{line_no}: {exc}") from None

    logger.info("Loaded %d tags from %s", len(tags), path)
    return tags
