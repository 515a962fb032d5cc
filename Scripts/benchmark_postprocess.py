from __future__ import annotations

import argparse
import statistics
import time
from dataclasses import dataclass
from typing import List

import numpy as np
from tqdm import tqdm

from scan_kit import ClassMap, PostConfig, decode, filter_and_suppress


@dataclass(frozen=True)
class TimingSummary:
    n: int
    mean_ms: float
    p50_ms: float
    p90_ms: float
    p95_ms: float


def _percentile(sorted_values: List[float], q: float) -> float:
    if not sorted_values:
        raise ValueError("No values provided.")
    if q < 0.0 or q > 100.0:
        raise ValueError("q must be in [0, 100].")
    if len(sorted_values) == 1:
        return float(sorted_values[0])
    # Linear interpolation between closest ranks.
    pos = (q / 100.0) * (len(sorted_values) - 1)
    lo = int(np.floor(pos))
    hi = int(np.ceil(pos))
    if lo == hi:
        return float(sorted_values[lo])
    t = pos - lo
    return float(sorted_values[lo] * (1.0 - t) + sorted_values[hi] * t)


def _summarize_ms(values_s: List[float]) -> TimingSummary:
    ms_sorted = sorted(v * 1000.0 for v in values_s)
    return TimingSummary(
        n=len(ms_sorted),
        mean_ms=float(statistics.fmean(ms_sorted)),
        p50_ms=_percentile(ms_sorted, 50.0),
        p90_ms=_percentile(ms_sorted, 90.0),
        p95_ms=_percentile(ms_sorted, 95.0),
    )


def _format_summary(label: str, s: TimingSummary) -> str:
    return (
        f"{label}: n={s.n} mean={s.mean_ms:.3f}ms p50={s.p50_ms:.3f}ms "
        f"p90={s.p90_ms:.3f}ms p95={s.p95_ms:.3f}ms"
    )


def _synthetic_output(n: int, n_classes: int, seed: int) -> np.ndarray:
    # Candidate-major layout: [cx, cy, w, h, score_0, ...]
    rng = np.random.default_rng(seed)
    centers = rng.uniform(0, 640, size=(n, 2)).astype(np.float32)
    sizes = rng.uniform(5, 120, size=(n, 2)).astype(np.float32)
    scores = rng.uniform(0.0, 1.0, size=(n, n_classes)).astype(np.float32)
    return np.concatenate([centers, sizes, scores], axis=1)


def main() -> int:
    parser = argparse.ArgumentParser(description="Benchmark decode + NMS latency on synthetic model outputs.")
    parser.add_argument("--candidates", type=int, default=8400, help="Candidate rows per output (8400 for 640x640).")
    parser.add_argument("--classes", type=int, default=2, help="Number of class score columns.")
    parser.add_argument("--conf", type=float, default=0.3, help="Confidence threshold.")
    parser.add_argument("--iou", type=float, default=0.75, help="IoU threshold for NMS.")
    parser.add_argument("--per-class-nms", action="store_true", help="Use per-class NMS (default is class-agnostic).")
    parser.add_argument("--warmup", type=int, default=10, help="Iterations to run but not record.")
    parser.add_argument("--repeats", type=int, default=200, help="Recorded iterations.")
    parser.add_argument("--seed", type=int, default=0)
    args = parser.parse_args()

    if args.candidates < 1:
        raise ValueError("--candidates must be >= 1")
    if args.classes < 1:
        raise ValueError("--classes must be >= 1")
    if args.warmup < 0:
        raise ValueError("--warmup must be >= 0")
    if args.repeats < 1:
        raise ValueError("--repeats must be >= 1")

    cfg = PostConfig(conf_threshold=args.conf, iou_threshold=args.iou, class_agnostic_nms=not args.per_class_nms)
    class_map = ClassMap(names={i: f"class_{i}" for i in range(args.classes)}, fallback="unknown")
    raw = _synthetic_output(args.candidates, args.classes, args.seed)

    t_decode: List[float] = []
    t_nms: List[float] = []
    kept: List[int] = []

    for i in tqdm(range(args.warmup + args.repeats), desc="benchmark", unit="it"):
        t0 = time.perf_counter()
        candidates = decode(raw, class_map, cfg.conf_threshold)
        t1 = time.perf_counter()
        detections = filter_and_suppress(
            candidates,
            conf_threshold=cfg.conf_threshold,
            iou_threshold=cfg.iou_threshold,
            class_agnostic=cfg.class_agnostic_nms,
        )
        t2 = time.perf_counter()

        if i < args.warmup:
            continue
        t_decode.append(t1 - t0)
        t_nms.append(t2 - t1)
        kept.append(len(detections))

    print(_format_summary("decode", _summarize_ms(t_decode)))
    print(_format_summary("filter_and_suppress", _summarize_ms(t_nms)))
    print(f"candidates={args.candidates} classes={args.classes} kept_mean={statistics.fmean(kept):.1f}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
