from __future__ import annotations

import argparse
import logging
from pathlib import Path

import cv2

from scan_kit import center_crop_resize, detections_to_json, draw_detections, load_detector, load_detector_config
from scan_kit.config import DetectorConfig


def read_image_rgb(path: str):
    img = cv2.imread(path, cv2.IMREAD_COLOR)
    if img is None:
        raise FileNotFoundError(f"Could not read image at path: {path}")
    return cv2.cvtColor(img, cv2.COLOR_BGR2RGB)


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the detector on one image and print detections as JSON.")
    parser.add_argument("image", help="Path to an input image (any size; center-cropped to a square).")
    parser.add_argument(
        "--model",
        required=True,
        help="Path to the ONNX model. Not shipped with the repo; use the export that matches Models/metadata.yaml.",
    )
    parser.add_argument("--metadata", default=None, help="Optional metadata.yaml with class names.")
    parser.add_argument("--config", default=None, help="Optional detector config JSON.")
    parser.add_argument("--out", default=None, help="Write an annotated copy of the cropped image here.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    cfg = load_detector_config(Path(args.config)) if args.config else DetectorConfig()
    detector = load_detector(args.model, cfg=cfg, class_names_path=args.metadata)

    with detector:
        frame = center_crop_resize(read_image_rgb(args.image), size=cfg.input_size)
        detections = detector(frame)

    print(detections_to_json(detections, indent=2))

    if args.out:
        vis = draw_detections(frame, detections, show_score=True)
        if not cv2.imwrite(args.out, cv2.cvtColor(vis, cv2.COLOR_RGB2BGR)):
            raise RuntimeError(f"Could not write image to: {args.out}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
