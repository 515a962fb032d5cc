from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from .nms import NMSConfig, nms
from .types import CandidateBoxes, ClassMap, Detection


LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class PostConfig:
    """
    Thresholds for decoding and duplicate suppression.
    """
    conf_threshold: float = 0.3
    iou_threshold: float = 0.75
    # None keeps every box that survives suppression.
    max_detections: Optional[int] = None
    # If False, runs per-class NMS then merges results by score.
    class_agnostic_nms: bool = True

    def __post_init__(self) -> None:
        if not 0.0 <= self.conf_threshold <= 1.0:
            raise ValueError("conf_threshold must be in [0, 1]")
        if not 0.0 < self.iou_threshold <= 1.0:
            raise ValueError("iou_threshold must be in (0, 1]")
        if self.max_detections is not None and self.max_detections < 1:
            raise ValueError("max_detections must be >= 1 when set")


def decode(raw: np.ndarray, class_map: ClassMap, conf_threshold: float = 0.3) -> CandidateBoxes:
    """
    Decode a candidate-major output (N, 4 + C) into corner-form candidates.

    Each row is [cx, cy, w, h, score_0, ..., score_{C-1}]. The class with the
    highest score wins (first maximum on ties) and its score becomes the
    candidate's probability. Rows scoring below `conf_threshold` are dropped.
    """

    p = np.asarray(raw, dtype=np.float32)
    if p.ndim != 2:
        raise ValueError(f"Expected candidate-major output (N, 4 + C), got shape {p.shape}")
    if p.shape[1] < 5:
        raise ValueError(f"Output has no class score columns: shape {p.shape}")
    if p.shape[0] == 0:
        return CandidateBoxes.empty(class_map)

    class_scores = p[:, 4:]
    class_ids = np.argmax(class_scores, axis=1)
    scores = class_scores[np.arange(class_scores.shape[0]), class_ids]

    keep = scores >= np.float32(conf_threshold)
    if not np.any(keep):
        return CandidateBoxes.empty(class_map)
    p, scores, class_ids = p[keep], scores[keep], class_ids[keep]

    # Convert cxcywh -> xyxy
    cx, cy, w_box, h_box = p[:, 0], p[:, 1], p[:, 2], p[:, 3]
    half_w = w_box * np.float32(0.5)
    half_h = h_box * np.float32(0.5)
    xyxy = np.stack([cx - half_w, cy - half_h, cx + half_w, cy + half_h], axis=1)
    wh = np.stack([w_box, h_box], axis=1)

    return CandidateBoxes(
        xyxy=xyxy,
        wh=wh,
        scores=scores,
        class_ids=class_ids.astype(np.int64),
        class_map=class_map,
    )


def filter_and_suppress(
    candidates: CandidateBoxes,
    conf_threshold: float = 0.3,
    iou_threshold: float = 0.75,
    max_detections: Optional[int] = None,
    class_agnostic: bool = True,
) -> List[Detection]:
    """
    Drop low-confidence candidates and greedily suppress overlapping ones.

    Returns detections in descending probability order. No two returned
    boxes (within the same class, for per-class NMS) have IoU >= `iou_threshold`.
    """

    if len(candidates) == 0:
        return []

    keep = candidates.scores >= np.float32(conf_threshold)
    if not np.all(keep):
        candidates = candidates.select(np.where(keep)[0])
        if len(candidates) == 0:
            return []

    nms_cfg = NMSConfig(iou_threshold=iou_threshold, max_detections=max_detections)

    if class_agnostic:
        keep_idx = nms(candidates.xyxy, candidates.scores, nms_cfg)
    else:
        keep_idx = _per_class_nms(candidates, nms_cfg)

    return [box.to_detection() for box in candidates.select(keep_idx).boxes()]


def _per_class_nms(candidates: CandidateBoxes, nms_cfg: NMSConfig) -> np.ndarray:
    kept: List[int] = []
    for cls in np.unique(candidates.class_ids):
        idx = np.where(candidates.class_ids == cls)[0]
        keep_local = nms(candidates.xyxy[idx], candidates.scores[idx], nms_cfg)
        kept.extend(idx[keep_local].tolist())

    if not kept:
        return np.empty((0,), dtype=np.int64)

    kept_arr = np.array(kept, dtype=np.int64)
    order = np.argsort(-candidates.scores[kept_arr], kind="stable")
    kept_arr = kept_arr[order]
    if nms_cfg.max_detections is not None:
        kept_arr = kept_arr[: nms_cfg.max_detections]
    return kept_arr


class ScanPostprocessor:
    """
    Decode + filter + suppress for one candidate-major model output.

    Input is the (N, 4 + C) array produced by the session wrapper; output is
    the ordered detection list handed back to callers.
    """

    def __init__(self, cfg: PostConfig = PostConfig(), class_map: Optional[ClassMap] = None):
        self.cfg = cfg
        self.class_map = class_map if class_map is not None else ClassMap()

    def process(self, raw: np.ndarray) -> List[Detection]:
        candidates = decode(raw, self.class_map, self.cfg.conf_threshold)
        detections = filter_and_suppress(
            candidates,
            conf_threshold=self.cfg.conf_threshold,
            iou_threshold=self.cfg.iou_threshold,
            max_detections=self.cfg.max_detections,
            class_agnostic=self.cfg.class_agnostic_nms,
        )
        LOGGER.debug("Kept %d of %d candidates after suppression", len(detections), len(candidates))
        return detections
