"""Image sources: addressable image blobs in a folder tree or a zip archive.

Both sources expose the same capability so datasets never care where the
bytes come from. ``ArchiveSource`` reads through one shared zip handle and
serializes every entry read behind its own lock; ``FileSystemSource`` reads
independent files and needs no locking.
"""

from __future__ import annotations

import io
import logging
import threading
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Protocol

import numpy as np
from PIL import Image, UnidentifiedImageError

from taggerx.errors import DecodeFailure

if TYPE_CHECKING:
    from collections.abc import Iterable

    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS: frozenset[str] = frozenset({".jpg", ".jpeg", ".png", ".bmp", ".webp"})


def is_image(file_name: str) -> bool:
    """Return True if the file name carries a supported image extension."""
    return PurePosixPath(file_name).suffix.lower() in IMAGE_EXTENSIONS


def decode_image(data: bytes, max_pixels: int | None = None) -> NDArray[np.uint8]:
    """Decode raw image bytes into a (3, H, W) RGB uint8 array.

    Transparent images are composited onto white.

    Raises:
        DecodeFailure: If the bytes cannot be decoded or the image exceeds ``max_pixels``.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            if max_pixels is not None and img.width * img.height > max_pixels:
                raise DecodeFailure(f"Image is {img.width}x{img.height}, larger than {max_pixels} pixels")
            if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
                rgba = img.convert("RGBA")
                canvas = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
                canvas.alpha_composite(rgba)
                rgb = canvas.convert("RGB")
            else:
                rgb = img.convert("RGB")
            pixels = np.asarray(rgb, dtype=np.uint8)
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise DecodeFailure(str(exc) or type(exc).__name__) from exc
    return np.ascontiguousarray(pixels.transpose(2, 0, 1))


@dataclass(frozen=True)
class ImageRecord:
    """One addressable image and its stable dataset index."""

    index: int
    name: str


class ImageSource(Protocol):
    """Protocol for a fixed, indexable list of images."""

    def __len__(self) -> int: ...

    def record(self, index: int) -> ImageRecord:
        """Return the record stored at ``index``."""
        ...

    def name_of(self, index: int) -> str:
        """Return the file path or archive entry name of an image."""
        ...

    def read_bytes(self, index: int) -> bytes:
        """Return the raw encoded bytes of an image."""
        ...

    def load(self, index: int) -> NDArray[np.uint8]:
        """Read and decode an image into a (3, H, W) RGB uint8 array.

        Raises:
            DecodeFailure: If the image cannot be read or decoded.
        """
        ...

    def close(self) -> None:
        """Release any underlying handles."""
        ...


class _BaseSource:
    """Record bookkeeping shared by the concrete sources."""

    def __init__(self, names: Iterable[str], max_pixels: int | None = None) -> None:
        self._records = tuple(ImageRecord(index=i, name=name) for i, name in enumerate(names))
        self._max_pixels = max_pixels

    def __len__(self) -> int:
        return len(self._records)

    def record(self, index: int) -> ImageRecord:
        return self._records[index]

    def name_of(self, index: int) -> str:
        return self._records[index].name

    def read_bytes(self, index: int) -> bytes:
        raise NotImplementedError

    def load(self, index: int) -> NDArray[np.uint8]:
        try:
            data = self.read_bytes(index)
        except OSError as exc:
            raise DecodeFailure(f"Cannot read {self.name_of(index)}: {exc}") from exc
        return decode_image(data, self._max_pixels)

    def close(self) -> None:
        return None

    def __enter__(self) -> _BaseSource:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class FileSystemSource(_BaseSource):
    """Images stored as independent files."""

    def __init__(self, paths: Iterable[str | Path], max_pixels: int | None = None) -> None:
        super().__init__((str(p) for p in paths), max_pixels)

    @classmethod
    def from_folder(
        cls, root: str | Path, *, recursive: bool = True, max_pixels: int | None = None
    ) -> FileSystemSource:
        """Collect every supported image below ``root`` in sorted order."""
        root = Path(root)
        if not root.is_dir():
            raise NotADirectoryError(f"Not a directory: {root}")
        candidates = root.rglob("*") if recursive else root.glob("*")
        paths = sorted(p for p in candidates if p.is_file() and is_image(p.name))
        logger.info("Found %d images under %s", len(paths), root)
        return cls(paths, max_pixels)

    def read_bytes(self, index: int) -> bytes:
        return Path(self.name_of(index)).read_bytes()


class ArchiveSource(_BaseSource):
    """Images stored as entries of a single zip archive.

    All entry reads share one file handle, so they are serialized by
    ``self.lock``. Decoding happens after the lock is released.
    """

    def __init__(self, zip_path: str | Path, max_pixels: int | None = None) -> None:
        self._archive = zipfile.ZipFile(zip_path)
        self.lock = threading.Lock()
        entries = [info for info in self._archive.infolist() if not info.is_dir() and is_image(info.filename)]
        self._entries = entries
        super().__init__((info.filename for info in entries), max_pixels)
        logger.info("Found %d images in %s", len(entries), zip_path)

    def read_bytes(self, index: int) -> bytes:
        info = self._entries[index]
        with self.lock, self._archive.open(info) as stream:
            return stream.read()

    def load(self, index: int) -> NDArray[np.uint8]:
        try:
            return super().load(index)
        except zipfile.BadZipFile as exc:
            raise DecodeFailure(f"Corrupt archive entry {self.name_of(index)}: {exc}") from exc

    def close(self) -> None:
        with self.lock:
            self._archive.close()
