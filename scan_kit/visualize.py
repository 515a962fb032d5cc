from __future__ import annotations

from typing import Dict, Iterable, Tuple

import numpy as np

from .types import Detection


# RGB, keyed by class label; anything else uses the default color.
DEFAULT_COLORS: Dict[str, Tuple[int, int, int]] = {
    "Normal": (72, 249, 10),
    "Incipient": (255, 56, 56),
}
_DEFAULT_COLOR = (255, 178, 29)


def draw_detections(
    image_rgb: np.ndarray,
    detections: Iterable[Detection],
    *,
    colors: Dict[str, Tuple[int, int, int]] = DEFAULT_COLORS,
    show_score: bool = True,
    box_thickness: int = 1,
    font_scale: float = 0.5,
    font_thickness: int = 1,
) -> np.ndarray:
    """
    Draw bounding boxes + labels on an RGB image and return a copy.

    Args:
        image_rgb: input image in RGB (H, W, 3), the same frame passed to the detector.
        detections: iterable of Detection with top-left + size in image coordinates.
        colors: optional mapping {classification: RGB color}.
    """

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for draw_detections(). Install with `pip install opencv-python`.") from e

    if image_rgb is None or not hasattr(image_rgb, "shape"):
        raise TypeError("image_rgb must be a NumPy array (RGB).")
    if image_rgb.ndim != 3 or image_rgb.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_rgb, 'shape', None)}")

    out = np.ascontiguousarray(image_rgb.copy())
    h, w = out.shape[:2]

    for det in detections:
        x1, y1, x2, y2 = det.as_xyxy()
        x1i = int(np.clip(round(x1), 0, w - 1))
        y1i = int(np.clip(round(y1), 0, h - 1))
        x2i = int(np.clip(round(x2), 0, w - 1))
        y2i = int(np.clip(round(y2), 0, h - 1))

        color = colors.get(det.classification, _DEFAULT_COLOR)
        cv2.rectangle(out, (x1i, y1i), (x2i, y2i), color, thickness=box_thickness)

        label = det.classification
        if show_score:
            label = f"{label} {det.probability:.2f}"

        (tw, th), baseline = cv2.getTextSize(label, cv2.FONT_HERSHEY_SIMPLEX, font_scale, font_thickness)
        # Place label above the box if possible, else inside.
        y_text_top = y1i - th - baseline
        if y_text_top < 0:
            y_text_top = y1i

        x_text_right = min(x1i + tw, w - 1)
        y_text_bottom = min(y_text_top + th + baseline, h - 1)

        cv2.rectangle(out, (x1i, y_text_top), (x_text_right, y_text_bottom), color, thickness=-1)
        cv2.putText(
            out,
            label,
            (x1i, min(y_text_top + th, h - 1)),
            cv2.FONT_HERSHEY_SIMPLEX,
            font_scale,
            (255, 255, 255),
            thickness=font_thickness,
            lineType=cv2.LINE_AA,
        )

    return out
