from __future__ import annotations

import numpy as np


def center_crop_resize(image: np.ndarray, size: int = 640) -> np.ndarray:
    """
    Crop the largest centered square and resize it to `size` x `size`.

    This is the step upload handlers run before calling `Detector.infer`;
    the detector itself never crops or resizes.

    Returns:
        square: (size, size, C) image with the input's dtype and channel order
    """
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for center_crop_resize(). Install with `pip install opencv-python`.") from e

    if image is None or not hasattr(image, "shape"):
        raise TypeError("image must be a NumPy array.")
    if image.ndim != 3:
        raise ValueError(f"Expected image shape (H, W, C), got {image.shape}")
    if size < 1:
        raise ValueError("size must be >= 1")

    h, w = image.shape[:2]
    side = min(h, w)
    if side == 0:
        raise ValueError(f"Cannot crop an empty image of shape {image.shape}")

    top = (h - side) // 2
    left = (w - side) // 2
    square = image[top : top + side, left : left + side]

    if side != size:
        square = cv2.resize(square, (size, size), interpolation=cv2.INTER_CUBIC)
    return np.ascontiguousarray(square)
