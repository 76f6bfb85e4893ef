"""Random-access dataset feeding the batch loader."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

from taggerx.errors import SampleNotReady
from taggerx.ml.letterbox import letterbox
from taggerx.ml.prefetch import WindowedPrefetchCache
from taggerx.ml.sources import ArchiveSource, FileSystemSource

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from taggerx.config import Settings
    from taggerx.ml.sources import ImageSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Sample:
    """A model-ready (3, S, S) BGR image and its dataset index."""

    image: NDArray[np.floating]
    index: int


class ImageDataset:
    """Index -> ``Sample`` provider over an ``ImageSource``.

    With a prefetch cache attached (preload mode) samples are served from
    the cache only; otherwise each sample is decoded synchronously.
    """

    def __init__(
        self,
        source: ImageSource,
        image_size: int = 448,
        dtype: type[np.floating] = np.float32,
        cache: WindowedPrefetchCache | None = None,
    ) -> None:
        self._source = source
        self._image_size = image_size
        self._dtype = dtype
        self._cache = cache

    @classmethod
    def open(cls, path: str | Path, settings: Settings) -> ImageDataset:
        """Open a folder or ``.zip`` archive, starting the prefetch cache if enabled."""
        path = Path(path)
        source: ImageSource
        if path.is_file() and path.suffix.lower() == ".zip":
            source = ArchiveSource(path, max_pixels=settings.max_image_pixels)
        else:
            source = FileSystemSource.from_folder(path, max_pixels=settings.max_image_pixels)

        dataset = cls(source, image_size=settings.image_size, dtype=settings.dtype)
        if settings.preload:
            try:
                dataset.enable_preload(settings.cache_capacity, settings.warm_fraction, settings.warm_timeout)
            except BaseException:
                dataset.close()
                raise
        return dataset

    def enable_preload(self, capacity: int, warm_fraction: float = 0.5, timeout: float | None = None) -> None:
        """Attach a prefetch cache, start its refill thread and wait for warm-up."""
        if self._cache is not None:
            raise RuntimeError("Preload already enabled")
        self._cache = WindowedPrefetchCache(self._source, capacity, self.prepare)
        self._cache.start_background()
        self._cache.await_warm(warm_fraction, timeout=timeout)

    @property
    def preload(self) -> bool:
        return self._cache is not None

    @property
    def cache(self) -> WindowedPrefetchCache | None:
        return self._cache

    def __len__(self) -> int:
        return len(self._source)

    def file_name_of(self, index: int) -> str:
        return self._source.name_of(index)

    def prepare(self, raw: NDArray[np.uint8]) -> NDArray[np.floating]:
        return prepare_image(raw, self._image_size, self._dtype)

    def sample_at(self, index: int) -> Sample:
        """Return the sample for ``index`` from the cache or by direct decoding.

        Raises:
            SampleNotReady: In preload mode, if the cache has not produced the sample yet.
            DecodeFailure: If the image cannot be decoded.
            InvalidDimension: If the image geometry is unusable.
        """
        if self._cache is None:
            return self.sample_direct(index)

        self._cache.notify_accessed(index)
        image = self._cache.get(index)
        if image is None:
            error = self._cache.failure(index)
            if error is not None:
                raise error
            raise SampleNotReady(index)
        return Sample(image=to_bgr(image), index=index)

    def sample_direct(self, index: int) -> Sample:
        """Decode and prepare ``index`` synchronously, bypassing the cache."""
        image = self.prepare(self._source.load(index))
        return Sample(image=to_bgr(image), index=index)

    def close(self) -> None:
        if self._cache is not None:
            self._cache.close()
        self._source.close()

    def __enter__(self) -> ImageDataset:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def prepare_image(raw: NDArray[np.uint8], image_size: int, dtype: type[np.floating]) -> NDArray[np.floating]:
    """Normalize to [0, 1], letterbox to a square model input and cast to ``dtype``."""
    image = raw.astype(np.float32) / 255.0
    image = letterbox(image, image_size, image_size)
    return image.astype(dtype, copy=False)


def to_bgr(image: NDArray[np.floating]) -> NDArray[np.floating]:
    """Swap channels 0 and 2 into a fresh contiguous array."""
    return np.ascontiguousarray(image[::-1])
