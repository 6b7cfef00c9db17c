import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence

import numpy as np

from .types import BoundingBox, Detection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NMSConfig:
    iou_threshold: float = 0.3
    max_detections: int = 3

    def __post_init__(self) -> None:
        if self.max_detections < 0:
            raise ValueError(f"max_detections must be >= 0 (got {self.max_detections})")


def iou(a: BoundingBox, b: BoundingBox) -> float:
    """
    Intersection over union of two corner-form boxes.

    Touching or disjoint boxes, and any pair whose union has no area, give 0.
    """

    inter_left = max(a.left, b.left)
    inter_top = max(a.top, b.top)
    inter_right = min(a.right, b.right)
    inter_bottom = min(a.bottom, b.bottom)
    if inter_left >= inter_right or inter_top >= inter_bottom:
        return 0.0

    inter = (inter_right - inter_left) * (inter_bottom - inter_top)
    union = a.area + b.area - inter
    return inter / union if union > 0 else 0.0


def pairwise_iou(box: np.ndarray, boxes: np.ndarray) -> np.ndarray:
    """
    IoU of one xyxy box (4,) against many (N, 4). Same rules as `iou`.
    """

    xx1 = np.maximum(box[0], boxes[:, 0])
    yy1 = np.maximum(box[1], boxes[:, 1])
    xx2 = np.minimum(box[2], boxes[:, 2])
    yy2 = np.minimum(box[3], boxes[:, 3])

    w = xx2 - xx1
    h = yy2 - yy1
    inter = np.where((w > 0) & (h > 0), w * h, 0.0)

    area = max(0.0, float(box[2] - box[0])) * max(0.0, float(box[3] - box[1]))
    areas = np.maximum(0.0, boxes[:, 2] - boxes[:, 0]) * np.maximum(0.0, boxes[:, 3] - boxes[:, 1])
    union = area + areas - inter

    out = np.zeros_like(inter, dtype=np.float64)
    np.divide(inter, union, out=out, where=union > 0)
    return out


def nms(boxes: np.ndarray, scores: np.ndarray, cfg: NMSConfig) -> np.ndarray:
    """
    Greedy NumPy NMS. Expects boxes shape (N,4) in xyxy and scores shape (N,).
    Returns indices of boxes to keep, highest score first.

    Ordering is stable: equal scores keep their input order.
    """

    if boxes.size == 0 or cfg.max_detections == 0:
        return np.empty((0,), dtype=np.int64)

    order = np.argsort(-scores, kind="stable")
    keep: List[int] = []

    while order.size > 0 and len(keep) < cfg.max_detections:
        i = order[0]
        keep.append(int(i))

        rest = order[1:]
        if rest.size == 0:
            break
        overlaps = pairwise_iou(boxes[i], boxes[rest])
        # strictly greater than the threshold is a duplicate
        order = rest[overlaps <= cfg.iou_threshold]

    return np.array(keep, dtype=np.int64)


def _as_arrays(candidates: Sequence[Detection]):
    boxes = np.array([d.as_xyxy() for d in candidates], dtype=np.float64).reshape(-1, 4)
    scores = np.array([d.confidence for d in candidates], dtype=np.float64)
    return boxes, scores


def suppress(candidates: Sequence[Detection], iou_threshold: float, max_results: int) -> List[Detection]:
    """
    Class-agnostic greedy NMS over decoded detections.

    Returns at most `max_results` detections ordered by non-increasing
    confidence. Running it again on its own output changes nothing.
    """

    cfg = NMSConfig(iou_threshold=iou_threshold, max_detections=max_results)
    candidates = list(candidates)
    if not candidates or max_results == 0:
        return []

    boxes, scores = _as_arrays(candidates)
    keep = nms(boxes, scores, cfg)
    logger.debug("NMS kept %d of %d candidates", keep.size, len(candidates))
    return [candidates[i] for i in keep]


def suppress_per_class(candidates: Sequence[Detection], iou_threshold: float, max_results: int) -> List[Detection]:
    """
    Runs NMS separately for every class, then merges survivors by confidence.
    Boxes of different classes never suppress each other.
    """

    cfg = NMSConfig(iou_threshold=iou_threshold, max_detections=max_results)
    candidates = list(candidates)
    if not candidates or max_results == 0:
        return []

    by_class: Dict[int, List[int]] = {}
    for idx, det in enumerate(candidates):
        by_class.setdefault(det.class_index, []).append(idx)

    boxes, scores = _as_arrays(candidates)
    kept: List[int] = []
    for cls_idx in sorted(by_class):
        idx = np.array(by_class[cls_idx], dtype=np.int64)
        keep_local = nms(boxes[idx], scores[idx], cfg)
        kept.extend(idx[keep_local].tolist())

    kept.sort(key=lambda i: (-scores[i], i))
    return [candidates[i] for i in kept[: cfg.max_detections]]
