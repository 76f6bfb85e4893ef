"""Aspect-preserving resize with white padding."""

from __future__ import annotations

from typing import TYPE_CHECKING

import cv2
import numpy as np

from taggerx.errors import InvalidDimension

if TYPE_CHECKING:
    from numpy.typing import NDArray

PAD_VALUE: float = 1.0


def letterbox(image: NDArray[np.floating], target_width: int, target_height: int) -> NDArray[np.floating]:
    """Fit a (C, H, W) image inside a (C, target_height, target_width) canvas.

    The image is scaled by ``min(target_width / W, target_height / H)`` with
    bilinear interpolation and centered on a canvas filled with ``PAD_VALUE``.
    Offsets use floor division, so odd leftovers go to the right and bottom.

    Raises:
        InvalidDimension: If the image is not 3D or any dimension is not positive.
    """
    if target_width <= 0 or target_height <= 0:
        raise InvalidDimension(f"Target size must be positive, got {target_width}x{target_height}")
    if image.ndim != 3:
        raise InvalidDimension(f"Expected a (C, H, W) image, got shape {image.shape}")

    channels, height, width = image.shape
    if channels <= 0 or height <= 0 or width <= 0:
        raise InvalidDimension(f"Source image has empty dimensions {image.shape}")

    width_scale = target_width / width
    height_scale = target_height / height
    scale = min(width_scale, height_scale)
    # the side that sets the scale fills the target exactly
    scaled_width = target_width if scale == width_scale else max(1, int(width * scale))
    scaled_height = target_height if scale == height_scale else max(1, int(height * scale))

    if (scaled_height, scaled_width) == (height, width):
        scaled = image
    else:
        # cv2 has no float16 kernels, works on (H, W, C) and drops a trailing single channel
        source = image.astype(np.float32) if image.dtype == np.float16 else image
        resized = cv2.resize(
            np.ascontiguousarray(source.transpose(1, 2, 0)),
            (scaled_width, scaled_height),
            interpolation=cv2.INTER_LINEAR,
        )
        if resized.ndim == 2:
            resized = resized[:, :, np.newaxis]
        scaled = resized.transpose(2, 0, 1)

    pad_left = (target_width - scaled_width) // 2
    pad_top = (target_height - scaled_height) // 2

    padded = np.full((channels, target_height, target_width), PAD_VALUE, dtype=image.dtype)
    padded[:, pad_top : pad_top + scaled_height, pad_left : pad_left + scaled_width] = scaled
    return padded
