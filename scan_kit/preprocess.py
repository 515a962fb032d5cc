from __future__ import annotations

import numpy as np


_SCALE = np.float32(255.0)


def preprocess(image_rgb: np.ndarray, input_size: int = 640) -> np.ndarray:
    """
    Convert a decoded RGB(A) uint8 image into the model's NCHW float32 blob.

    The image must already be `input_size` x `input_size`; cropping and
    resizing are the caller's job (see `center_crop_resize`). Alpha, if
    present, is dropped.

    Returns:
        blob: (1, 3, input_size, input_size) float32 in [0, 1], planes R, G, B
    """
    if image_rgb is None or not hasattr(image_rgb, "shape"):
        raise TypeError("image_rgb must be a NumPy array (RGB or RGBA).")
    if image_rgb.ndim != 3 or image_rgb.shape[2] not in (3, 4):
        raise ValueError(f"Expected image shape (H, W, 3) or (H, W, 4), got {image_rgb.shape}")
    if image_rgb.dtype != np.uint8:
        raise TypeError(f"Expected uint8 samples, got {image_rgb.dtype}")
    h, w = image_rgb.shape[:2]
    if (h, w) != (input_size, input_size):
        raise ValueError(f"Expected a {input_size}x{input_size} image, got {w}x{h}")

    # HWC -> CHW, normalize, add batch
    blob = image_rgb[:, :, :3].astype(np.float32) / _SCALE
    blob = np.ascontiguousarray(np.transpose(blob, (2, 0, 1))[None, ...])
    return blob
