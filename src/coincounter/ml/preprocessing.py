"""Image preprocessing pipeline.

Decodes uploaded bytes with Pillow (EXIF orientation applied, RGB), centre
crops to a square, resizes, and lays the pixels out the way the model's input
expects.
"""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

DEFAULT_INPUT_SIZE = 224


def decode_image(image_bytes: bytes, max_pixels: int) -> NDArray[np.uint8]:
    """Decode raw image bytes into an RGB uint8 numpy array.

    Raises:
        ValueError: If the image cannot be decoded or exceeds ``max_pixels``.
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            width, height = img.size
            if width * height > max_pixels:
                raise ValueError(f"Image too large: {width}x{height} exceeds {max_pixels} pixels")
            oriented = ImageOps.exif_transpose(img)
            rgb = oriented.convert("RGB")
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise ValueError(f"Cannot decode image: {exc}") from exc
    return np.asarray(rgb, dtype=np.uint8)


def center_crop_resize(image: NDArray[np.uint8], size: int) -> NDArray[np.uint8]:
    """Crop the largest centred square and resize it to ``size`` x ``size``."""
    height, width = image.shape[:2]
    side = min(height, width)
    top = (height - side) // 2
    left = (width - side) // 2
    cropped = image[top : top + side, left : left + side]
    resized = Image.fromarray(cropped).resize((size, size), Image.Resampling.BILINEAR)
    return np.asarray(resized, dtype=np.uint8)


def input_size(input_shape: Sequence[int | str | None]) -> int:
    """Spatial size of a square model input; symbolic dims fall back to 224."""
    dims = [dim for dim in input_shape[1:] if isinstance(dim, int) and dim > 3]
    return dims[0] if dims else DEFAULT_INPUT_SIZE


def is_channels_first(input_shape: Sequence[int | str | None]) -> bool:
    """True for NCHW inputs, False for NHWC."""
    return len(input_shape) == 4 and input_shape[1] == 3


def to_model_input(
    image: NDArray[np.uint8],
    input_shape: Sequence[int | str | None],
    input_type: str = "tensor(float)",
) -> NDArray[np.generic]:
    """Build a batch-of-one tensor for the model from an RGB image.

    Args:
        image: HxWx3 RGB uint8 array.
        input_shape: The model input's shape as reported by the session.
        input_type: The ONNX element type, e.g. ``tensor(float)`` or ``tensor(uint8)``.

    Returns:
        A (1, 3, S, S) or (1, S, S, 3) tensor, float32 in [0, 1] or uint8.
    """
    square = center_crop_resize(image, input_size(input_shape))
    tensor: NDArray[np.generic]
    if input_type == "tensor(uint8)":
        tensor = square
    else:
        tensor = square.astype(np.float32) / 255.0
    if is_channels_first(input_shape):
        tensor = np.transpose(tensor, (2, 0, 1))
    return tensor[np.newaxis, ...]
