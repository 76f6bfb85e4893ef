"""Exception types raised by the tagging pipeline."""

from __future__ import annotations


class TaggerError(Exception):
    """Base class for TaggerX errors."""


class InvalidDimension(TaggerError, ValueError):  # noqa: N818
    """An image or target size has a non-positive or malformed geometry."""


class DecodeFailure(TaggerError):  # noqa: N818
    """Image bytes are corrupt, unsupported, or exceed the pixel limit."""


class SampleNotReady(TaggerError):  # noqa: N818
    """The prefetch cache has not produced the requested sample yet."""

    def __init__(self, index: int) -> None:
        super().__init__(f"Sample {index} is not cached yet")
        self.index = index


class AssetNotFound(TaggerError, FileNotFoundError):  # noqa: N818
    """A required model or tag file is missing."""
