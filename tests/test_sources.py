"""Tests for image decoding and the file/archive sources."""

from __future__ import annotations

import threading
import zipfile
from typing import TYPE_CHECKING

import numpy as np
import pytest

from taggerx.errors import DecodeFailure
from taggerx.ml.sources import ArchiveSource, FileSystemSource, decode_image, is_image

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path


class _CountingLock:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.entered = 0

    def __enter__(self) -> _CountingLock:
        self._lock.acquire()
        self.entered += 1
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._lock.release()


def _make_zip(path: Path, png: Callable[..., bytes]) -> Path:
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("set/first.png", png(8, 4))
        zf.writestr("set/", "")
        zf.writestr("set/readme.txt", "hello")
        zf.writestr("SECOND.PNG", png(4, 8, (0, 0, 255)))
        zf.writestr("broken.jpg", b"definitely not a jpeg")
    return path


class TestDecodeImage:
    def test_decodes_rgb_channels_first(self, png: Callable[..., bytes]) -> None:
        pixels = decode_image(png(5, 3, (255, 0, 0)))
        assert pixels.shape == (3, 3, 5)
        assert pixels.dtype == np.uint8
        assert np.all(pixels[0] == 255)
        assert np.all(pixels[1:] == 0)

    def test_transparent_pixels_become_white(self, png: Callable[..., bytes]) -> None:
        pixels = decode_image(png(4, 4, (0, 0, 0, 0), mode="RGBA"))
        assert np.all(pixels == 255)

    def test_grayscale_expands_to_three_channels(self, png: Callable[..., bytes]) -> None:
        pixels = decode_image(png(4, 4, 128, mode="L"))
        assert pixels.shape == (3, 4, 4)
        assert np.all(pixels == 128)

    def test_garbage_raises_decode_failure(self) -> None:
        with pytest.raises(DecodeFailure):
            decode_image(b"\x00\x01not an image")

    def test_pixel_limit(self, png: Callable[..., bytes]) -> None:
        with pytest.raises(DecodeFailure, match="larger than"):
            decode_image(png(100, 100), max_pixels=50)

    @pytest.mark.parametrize(
        ("name", "expected"),
        [("a.jpg", True), ("b.JPEG", True), ("c.webp", True), ("d.bmp", True), ("e.gif", False), ("png", False)],
    )
    def test_is_image(self, name: str, expected: bool) -> None:
        assert is_image(name) is expected


class TestFileSystemSource:
    def test_from_folder_filters_and_sorts(self, image_folder: Path) -> None:
        source = FileSystemSource.from_folder(image_folder)
        names = [source.name_of(i) for i in range(len(source))]
        assert names == sorted(names)
        assert len(source) == 3
        assert all(not name.endswith(".txt") for name in names)

    def test_from_folder_non_recursive(self, image_folder: Path) -> None:
        source = FileSystemSource.from_folder(image_folder, recursive=False)
        assert len(source) == 2

    def test_from_folder_missing_directory(self, tmp_path: Path) -> None:
        with pytest.raises(NotADirectoryError):
            FileSystemSource.from_folder(tmp_path / "missing")

    def test_records_carry_index(self, image_folder: Path) -> None:
        source = FileSystemSource.from_folder(image_folder)
        record = source.record(1)
        assert record.index == 1
        assert record.name == source.name_of(1)

    def test_load_decodes_file(self, image_folder: Path) -> None:
        source = FileSystemSource([image_folder / "a.png"])
        assert source.load(0).shape == (3, 20, 40)

    def test_missing_file_is_decode_failure(self, tmp_path: Path) -> None:
        source = FileSystemSource([tmp_path / "gone.png"])
        with pytest.raises(DecodeFailure, match="Cannot read"):
            source.load(0)


class TestArchiveSource:
    def test_lists_image_entries_only(self, tmp_path: Path, png: Callable[..., bytes]) -> None:
        with ArchiveSource(_make_zip(tmp_path / "images.zip", png)) as source:
            names = [source.name_of(i) for i in range(len(source))]
        assert names == ["set/first.png", "SECOND.PNG", "broken.jpg"]

    def test_load_entry(self, tmp_path: Path, png: Callable[..., bytes]) -> None:
        with ArchiveSource(_make_zip(tmp_path / "images.zip", png)) as source:
            first = source.load(0)
            second = source.load(1)
        assert first.shape == (3, 4, 8)
        assert second.shape == (3, 8, 4)
        assert np.all(second[2] == 255)

    def test_reads_go_through_source_lock(self, tmp_path: Path, png: Callable[..., bytes]) -> None:
        source = ArchiveSource(_make_zip(tmp_path / "images.zip", png))
        counting = _CountingLock()
        source.lock = counting  # type: ignore[assignment]

        source.load(0)
        source.read_bytes(1)
        source.close()

        assert counting.entered == 3

    def test_corrupt_entry_raises_decode_failure(self, tmp_path: Path, png: Callable[..., bytes]) -> None:
        with ArchiveSource(_make_zip(tmp_path / "images.zip", png)) as source, pytest.raises(DecodeFailure):
            source.load(2)
