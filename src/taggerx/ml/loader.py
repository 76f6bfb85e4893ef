"""Thread-pool batch loader.

Architecture:
    BatchLoader -> ThreadPoolExecutor(num_workers) -> ImageDataset.sample_at

Samples that fail to decode are logged and dropped from their batch. A
prefetch-cache miss falls back to a synchronous decode. The next batch is
submitted before the current one is handed to the caller.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from taggerx.errors import DecodeFailure, InvalidDimension, SampleNotReady

if TYPE_CHECKING:
    from collections.abc import Iterator
    from concurrent.futures import Future

    from numpy.typing import NDArray

    from taggerx.ml.dataset import ImageDataset, Sample

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Batch:
    """Stacked samples and the dataset indices they came from."""

    images: NDArray[np.floating]
    indices: NDArray[np.int64]

    def __len__(self) -> int:
        return len(self.indices)


class BatchLoader:
    """Iterate an ``ImageDataset`` in order, in batches of ``batch_size``."""

    def __init__(self, dataset: ImageDataset, batch_size: int = 32, num_workers: int = 1) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        if num_workers < 1:
            raise ValueError(f"num_workers must be positive, got {num_workers}")
        self._dataset = dataset
        self._batch_size = batch_size
        self._num_workers = num_workers

    def __len__(self) -> int:
        return math.ceil(len(self._dataset) / self._batch_size)

    def __iter__(self) -> Iterator[Batch]:
        total = len(self._dataset)
        starts = range(0, total, self._batch_size)
        with ThreadPoolExecutor(max_workers=self._num_workers, thread_name_prefix="batch-loader") as executor:
            pending: list[Future[Sample | None]] | None = None
            for start in starts:
                submitted = [
                    executor.submit(self._load, index) for index in range(start, min(start + self._batch_size, total))
                ]
                if pending is not None:
                    batch = _collate([f.result() for f in pending])
                    if batch is not None:
                        yield batch
                pending = submitted
            if pending is not None:
                batch = _collate([f.result() for f in pending])
                if batch is not None:
                    yield batch

    def _load(self, index: int) -> Sample | None:
        try:
            try:
                return self._dataset.sample_at(index)
            except SampleNotReady:
                logger.debug("Cache miss for index %d, decoding directly", index)
                return self._dataset.sample_direct(index)
        except (DecodeFailure, InvalidDimension) as exc:
            logger.warning("Skipping %s: %s", self._dataset.file_name_of(index), exc)
            return None


def _collate(samples: list[Sample | None]) -> Batch | None:
    kept = [s for s in samples if s is not None]
    if not kept:
        return None
    return Batch(
        images=np.stack([s.image for s in kept]),
        indices=np.array([s.index for s in kept], dtype=np.int64),
    )
