from __future__ import annotations

import argparse
import statistics
import time
from dataclasses import dataclass
from typing import List

import numpy as np

from yolo_edge import ModelConfig, YoloPostConfig, YoloPostprocessor, decode


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
        mean_ms=float(statistics.fmean(ms_sorted)) if ms_sorted else 0.0,
        p50_ms=_percentile(ms_sorted, 50.0) if ms_sorted else 0.0,
        p90_ms=_percentile(ms_sorted, 90.0) if ms_sorted else 0.0,
        p95_ms=_percentile(ms_sorted, 95.0) if ms_sorted else 0.0,
    )


def _format_summary(label: str, s: TimingSummary) -> str:
    return (
        f"{label}: n={s.n} mean={s.mean_ms:.3f}ms p50={s.p50_ms:.3f}ms "
        f"p90={s.p90_ms:.3f}ms p95={s.p95_ms:.3f}ms"
    )


def synthetic_output(model: ModelConfig, positives: int, rng: np.random.Generator) -> np.ndarray:
    """
    Random (4 + C, A) tensor where `positives` anchors carry a confident class
    score and the rest stay below 0.1, roughly what a real frame looks like.
    """

    s = model.input_size
    a = model.num_anchors
    p = np.empty((model.num_channels, a), dtype=np.float32)
    p[0:2] = rng.uniform(0, s, size=(2, a))
    p[2:4] = rng.uniform(s * 0.02, s * 0.3, size=(2, a))
    p[4:] = rng.uniform(0.0, 0.1, size=(model.num_classes, a))

    hot = rng.choice(a, size=min(positives, a), replace=False)
    cls = rng.integers(0, model.num_classes, size=hot.size)
    p[4 + cls, hot] = rng.uniform(0.5, 1.0, size=hot.size)
    return p


def main() -> int:
    parser = argparse.ArgumentParser(description="Benchmark YOLO decode + NMS latency on synthetic outputs.")
    parser.add_argument("--imgsz", type=int, nargs="+", default=[320, 640], help="Model input sizes to benchmark.")
    parser.add_argument("--classes", type=int, default=80, help="Number of classes.")
    parser.add_argument("--positives", type=int, default=50, help="Anchors above the confidence threshold.")
    parser.add_argument("--conf", type=float, default=0.5, help="Confidence threshold.")
    parser.add_argument("--iou", type=float, default=0.3, help="IoU threshold for NMS.")
    parser.add_argument("--max-results", type=int, default=3, help="Maximum detections per frame.")
    parser.add_argument("--repeats", type=int, default=200, help="Timed iterations per input size.")
    parser.add_argument("--warmup", type=int, default=10, help="Untimed warm-up iterations.")
    parser.add_argument("--seed", type=int, default=0)
    args = parser.parse_args()

    if args.repeats < 1:
        raise ValueError("--repeats must be >= 1")

    rng = np.random.default_rng(args.seed)
    names = tuple(f"class_{i}" for i in range(args.classes))
    post_cfg = YoloPostConfig(confidence_threshold=args.conf, iou_threshold=args.iou, max_results=args.max_results)

    for size in args.imgsz:
        model = ModelConfig(input_size=size, class_names=names)
        post = YoloPostprocessor(post_cfg, model)
        raw = synthetic_output(model, args.positives, rng)
        orig = (1280, 720)

        t_decode: List[float] = []
        t_total: List[float] = []
        kept = 0
        for i in range(args.warmup + args.repeats):
            t0 = time.perf_counter()
            decode(raw, args.conf, names, size, *orig)
            t1 = time.perf_counter()
            kept = len(post.process(raw, orig))
            t2 = time.perf_counter()
            if i >= args.warmup:
                t_decode.append(t1 - t0)
                t_total.append(t2 - t1)

        print(f"imgsz={size} output={model.num_channels}x{model.num_anchors} kept={kept}")
        print("  " + _format_summary("decode", _summarize_ms(t_decode)))
        print("  " + _format_summary("decode+nms", _summarize_ms(t_total)))

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
