"""Shared fixtures: in-memory image sources, generated images and tag files."""

from __future__ import annotations

import io
import threading
from typing import TYPE_CHECKING

import numpy as np
import pytest
from PIL import Image

from taggerx.errors import DecodeFailure
from taggerx.ml.sources import ImageRecord

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from numpy.typing import NDArray

TAG_CSV = (
    "tag_id,name,category,count,zh\n"
    "9999999,general,9,807691,一般\n"
    "9999998,sensitive,9,3165,敏感\n"
    "9999995,questionable,9,3096,可疑\n"
    "9999997,explicit,9,1421,露骨\n"
    "5,cat,general,100,猫\n"
    "6,outdoors,general,50,户外\n"
)


def png_bytes(width: int, height: int, color: tuple[int, ...] = (255, 0, 0), mode: str = "RGB") -> bytes:
    buf = io.BytesIO()
    Image.new(mode, (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


class FakeSource:
    """In-memory source whose samples encode their own index."""

    def __init__(self, length: int, failing: set[int] | None = None) -> None:
        self._length = length
        self._failing = failing or set()
        self.loads: dict[int, int] = {}
        self._lock = threading.Lock()
        self.closed = False

    def __len__(self) -> int:
        return self._length

    def record(self, index: int) -> ImageRecord:
        return ImageRecord(index=index, name=self.name_of(index))

    def name_of(self, index: int) -> str:
        return f"image_{index:03d}.png"

    def read_bytes(self, index: int) -> bytes:
        return b""

    def load(self, index: int) -> NDArray[np.uint8]:
        if not 0 <= index < self._length:
            raise IndexError(index)
        with self._lock:
            self.loads[index] = self.loads.get(index, 0) + 1
        if index in self._failing:
            raise DecodeFailure(f"broken image {index}")
        return np.full((3, 4, 6), index % 256, dtype=np.uint8)

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def png() -> Callable[..., bytes]:
    return png_bytes


@pytest.fixture()
def make_source() -> type[FakeSource]:
    return FakeSource


@pytest.fixture()
def tag_file(tmp_path: Path) -> Path:
    path = tmp_path / "selected_tags.csv"
    path.write_text(TAG_CSV, encoding="utf-8")
    return path


@pytest.fixture()
def image_folder(tmp_path: Path) -> Path:
    """Folder with three decodable images of different shapes."""
    folder = tmp_path / "images"
    (folder / "nested").mkdir(parents=True)
    (folder / "a.png").write_bytes(png_bytes(40, 20))
    (folder / "b.png").write_bytes(png_bytes(20, 40, (0, 0, 255)))
    (folder / "nested" / "c.png").write_bytes(png_bytes(30, 30, (0, 255, 0)))
    (folder / "notes.txt").write_text("not an image")
    return folder
