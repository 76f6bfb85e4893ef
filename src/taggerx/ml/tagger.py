"""High-level tagging driver.

Ties a dataset, the batch loader, the model forward pass and the ranker
together and streams one ``ImageTagResult`` per decodable image.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

import numpy as np

from taggerx.ml.dataset import ImageDataset, prepare_image, to_bgr
from taggerx.ml.loader import BatchLoader
from taggerx.ml.ranker import ImageTagResult, InferenceRanker
from taggerx.ml.sources import FileSystemSource, decode_image
from taggerx.ml.tags import load_tags

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Sequence
    from pathlib import Path

    from numpy.typing import NDArray

    from taggerx.config import Settings
    from taggerx.ml.model_manager import ModelManager
    from taggerx.ml.tags import TagRecord

logger = logging.getLogger(__name__)


class Tagger:
    """Batch image tagger around an opaque ``forward(batch) -> scores`` model."""

    def __init__(
        self,
        settings: Settings,
        tags: Sequence[TagRecord],
        forward: Callable[[NDArray[np.floating]], NDArray[np.floating]],
    ) -> None:
        self._settings = settings
        self._tags = list(tags)
        self._forward = forward
        self._ranker = InferenceRanker(
            self._tags,
            threshold=settings.threshold,
            reserved_classes=settings.reserved_classes,
        )

    @classmethod
    def from_settings(cls, settings: Settings, model_manager: ModelManager) -> Tagger:
        """Load the tag list and bind the model manager's forward pass.

        Raises:
            AssetNotFound: If the tag file is missing and cannot be downloaded.
        """
        tag_path = model_manager.ensure_asset(settings.tag_file)
        tags = load_tags(tag_path, skip_rows=settings.tag_skip_rows)
        return cls(settings, tags, model_manager.forward)

    @property
    def tags(self) -> list[TagRecord]:
        return self._tags

    @property
    def ranker(self) -> InferenceRanker:
        return self._ranker

    # -- Public API ---------------------------------------------------------

    def tag_path(self, path: str | Path) -> Iterator[ImageTagResult]:
        """Tag every image in a folder tree or a ``.zip`` archive."""
        with ImageDataset.open(path, self._settings) as dataset:
            yield from self.tag_dataset(dataset)

    def tag_files(self, file_names: Sequence[str | Path]) -> Iterator[ImageTagResult]:
        """Tag an explicit list of image files."""
        source = FileSystemSource(file_names, max_pixels=self._settings.max_image_pixels)
        with ImageDataset(source, image_size=self._settings.image_size, dtype=self._settings.dtype) as dataset:
            if self._settings.preload:
                dataset.enable_preload(
                    self._settings.cache_capacity,
                    self._settings.warm_fraction,
                    self._settings.warm_timeout,
                )
            yield from self.tag_dataset(dataset)

    def tag_file(self, file_name: str | Path) -> ImageTagResult | None:
        """Tag a single file; None if it could not be decoded."""
        results = list(self.tag_files([file_name]))
        return results[0] if results else None

    def tag_image(self, data: bytes, file_name: str = "") -> ImageTagResult:
        """Tag one in-memory encoded image.

        Raises:
            DecodeFailure: If the bytes cannot be decoded.
        """
        raw = decode_image(data, self._settings.max_image_pixels)
        image = to_bgr(prepare_image(raw, self._settings.image_size, self._settings.dtype))
        scores = self._forward(image[np.newaxis])
        return ImageTagResult(index=0, file_name=file_name, tags=self._ranker.rank(scores)[0])

    def tag_dataset(self, dataset: ImageDataset) -> Iterator[ImageTagResult]:
        """Stream results batch by batch, in dataset order."""
        loader = BatchLoader(
            dataset,
            batch_size=self._settings.batch_size,
            num_workers=self._settings.num_workers,
        )
        started = time.perf_counter()
        tagged = 0
        for step, batch in enumerate(loader, start=1):
            logger.info("Process: %d/%d......", step, len(loader))
            scores = self._forward(batch.images)
            for index, ranked in zip(batch.indices.tolist(), self._ranker.rank(scores), strict=True):
                tagged += 1
                yield ImageTagResult(index=index, file_name=dataset.file_name_of(index), tags=ranked)

        logger.info(
            "All done. Tagged %d/%d images in %.2f seconds",
            tagged,
            len(dataset),
            time.perf_counter() - started,
        )
