from __future__ import annotations

import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Tuple

import numpy as np


DEFAULT_CLASS_NAMES: Dict[int, str] = {0: "Normal", 1: "Incipient"}


@dataclass(frozen=True)
class ClassMap:
    """
    Closed index -> label mapping paired with one packaged model.

    Indices the model emits but the mapping does not cover resolve to
    `fallback` instead of failing the request.
    """

    # Read-only view; hashing goes by the fallback alone.
    names: Mapping[int, str] = field(default_factory=lambda: dict(DEFAULT_CLASS_NAMES), hash=False)
    fallback: str = "Incipient"

    def __post_init__(self) -> None:
        if not self.names:
            raise ValueError("class map must contain at least one class")
        for idx, label in self.names.items():
            if isinstance(idx, bool) or not isinstance(idx, int) or idx < 0:
                raise ValueError(f"class index must be a non-negative integer, got {idx!r}")
            if not isinstance(label, str) or not label:
                raise ValueError(f"class label for index {idx} must be a non-empty string")
        if not isinstance(self.fallback, str) or not self.fallback:
            raise ValueError("fallback label must be a non-empty string")
        object.__setattr__(self, "names", MappingProxyType(dict(self.names)))

    def label(self, class_id: int) -> str:
        return self.names.get(int(class_id), self.fallback)

    def __len__(self) -> int:
        return len(self.names)


@dataclass(frozen=True)
class OutputBox:
    """Single decoded candidate in both corner and size form."""

    left: float
    top: float
    right: float
    bottom: float
    width: float
    height: float
    probability: float
    class_id: int
    classification: str

    def to_detection(self) -> "Detection":
        return Detection(
            x=self.left,
            y=self.top,
            width=self.width,
            height=self.height,
            probability=self.probability,
            classification=self.classification,
            class_id=self.class_id,
        )


@dataclass
class CandidateBoxes:
    """
    Decoded candidates for one image, one array per field.

    xyxy: (N, 4) left, top, right, bottom
    wh: (N, 2) width, height
    scores: (N,) max class score
    class_ids: (N,) index of the max class score
    """

    xyxy: np.ndarray
    wh: np.ndarray
    scores: np.ndarray
    class_ids: np.ndarray
    class_map: ClassMap = field(default_factory=ClassMap)

    @classmethod
    def empty(cls, class_map: ClassMap) -> "CandidateBoxes":
        return cls(
            xyxy=np.empty((0, 4), dtype=np.float32),
            wh=np.empty((0, 2), dtype=np.float32),
            scores=np.empty((0,), dtype=np.float32),
            class_ids=np.empty((0,), dtype=np.int64),
            class_map=class_map,
        )

    def __len__(self) -> int:
        return int(self.scores.shape[0])

    def select(self, idx: np.ndarray) -> "CandidateBoxes":
        return CandidateBoxes(
            xyxy=self.xyxy[idx],
            wh=self.wh[idx],
            scores=self.scores[idx],
            class_ids=self.class_ids[idx],
            class_map=self.class_map,
        )

    def boxes(self) -> Iterator[OutputBox]:
        for (x1, y1, x2, y2), (w, h), score, cls_id in zip(self.xyxy, self.wh, self.scores, self.class_ids):
            yield OutputBox(
                left=float(x1),
                top=float(y1),
                right=float(x2),
                bottom=float(y2),
                width=float(w),
                height=float(h),
                probability=float(score),
                class_id=int(cls_id),
                classification=self.class_map.label(int(cls_id)),
            )


@dataclass
class Detection:
    """
    Detection returned to callers. (x, y) is the top-left corner.
    """

    x: float
    y: float
    width: float
    height: float
    probability: float
    classification: str
    class_id: int = -1

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x, self.y, self.x + self.width, self.y + self.height

    def to_dict(self) -> Dict[str, Any]:
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "probability": self.probability,
            "classification": self.classification,
        }


def detections_to_json(detections: Iterable[Detection], **kwargs: Any) -> str:
    payload: List[Dict[str, Any]] = [det.to_dict() for det in detections]
    return json.dumps(payload, **kwargs)
