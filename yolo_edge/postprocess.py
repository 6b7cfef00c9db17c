import logging
import math
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from .nms import suppress, suppress_per_class
from .types import BoundingBox, Detection

logger = logging.getLogger(__name__)

# cx, cy, w, h
GEOMETRY_CHANNELS = 4


@dataclass(frozen=True)
class ModelConfig:
    """
    Constants of one exported model. Passed explicitly so a 320 and a 640
    model can live side by side.
    """

    input_size: int = 640
    class_names: Tuple[str, ...] = ()
    batch_size: int = 1
    pixel_channels: int = 3  # RGB
    bytes_per_channel: int = 4  # float32

    def __post_init__(self) -> None:
        if self.input_size <= 0:
            raise ValueError(f"input_size must be > 0 (got {self.input_size})")
        if self.batch_size != 1:
            raise ValueError("Only batch_size=1 is supported.")
        object.__setattr__(self, "class_names", tuple(self.class_names))

    @property
    def num_classes(self) -> int:
        return len(self.class_names)

    @property
    def num_channels(self) -> int:
        return GEOMETRY_CHANNELS + self.num_classes

    @property
    def num_anchors(self) -> int:
        # strides 8, 16 and 32: (s/8)^2 + (s/16)^2 + (s/32)^2 == 21 * (s/32)^2
        return 21 * (self.input_size // 32) ** 2

    @property
    def expected_output_shape(self) -> Tuple[int, int, int]:
        return self.batch_size, self.num_channels, self.num_anchors

    @property
    def input_nbytes(self) -> int:
        return self.batch_size * self.input_size * self.input_size * self.pixel_channels * self.bytes_per_channel


@dataclass(frozen=True)
class YoloPostConfig:
    """
    Thresholds for decoding and suppression.
    """

    confidence_threshold: float = 0.5
    iou_threshold: float = 0.3
    max_results: int = 3
    # If False, runs per-class NMS then merges results by confidence.
    class_agnostic_nms: bool = True

    def __post_init__(self) -> None:
        for name in ("confidence_threshold", "iou_threshold"):
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0.0 or value > 1.0:
                raise ValueError(f"{name} must be within [0, 1] (got {value})")
        if self.max_results < 0:
            raise ValueError(f"max_results must be >= 0 (got {self.max_results})")


def _require_positive(name: str, value: int) -> None:
    if value <= 0:
        raise ValueError(f"{name} must be > 0 (got {value})")


def _as_channels_first(raw_output, num_classes: int) -> np.ndarray:
    """
    Validate and return the raw output as a (4 + C, A) float array.
    """

    try:
        p = np.asarray(raw_output, dtype=np.float32)
    except ValueError as e:
        raise ValueError("Raw output must be a rectangular [4 + C, A] array; rows are ragged.") from e

    if p.ndim == 3:
        if p.shape[0] != 1:
            raise ValueError(f"Batch > 1 is not supported (got shape {p.shape}). Pass one image at a time.")
        p = p[0]
    if p.ndim != 2:
        raise ValueError(f"Unsupported YOLO output shape: {p.shape}")

    expected = GEOMETRY_CHANNELS + num_classes
    if p.shape[0] != expected:
        raise ValueError(
            f"Expected {expected} channels ({GEOMETRY_CHANNELS} box + {num_classes} classes), got shape {p.shape}."
        )
    return p


def decode(
    raw_output,
    confidence_threshold: float,
    class_names: Sequence[str],
    input_size: int,
    original_width: int,
    original_height: int,
) -> List[Detection]:
    """
    Turn a raw (4 + C, A) YOLO output into thresholded candidate detections.

    Geometry rows are in model-input units. They are projected into the
    original image with independent X/Y factors (the frame was stretched to a
    square), converted to corners, normalized by the original size and
    clamped to [0, 1].

    Class selection scans left to right with a strict `>` starting from
    score 0 / class 0, so the first maximal score wins.

    Args:
        raw_output: array-like shaped (4 + C, A) or (1, 4 + C, A)
        confidence_threshold: minimum best-class score to keep an anchor
        class_names: ordered label table, C entries
        input_size: side of the square model input
        original_width, original_height: size of the frame before resizing
    """

    _require_positive("input_size", input_size)
    _require_positive("original_width", original_width)
    _require_positive("original_height", original_height)

    num_classes = len(class_names)
    if num_classes == 0:
        return []

    p = _as_channels_first(raw_output, num_classes)
    num_anchors = p.shape[1]
    if num_anchors == 0:
        return []

    scale_x = original_width / input_size
    scale_y = original_height / input_size
    cx = p[0].astype(np.float64) * scale_x
    cy = p[1].astype(np.float64) * scale_y
    w = p[2].astype(np.float64) * scale_x
    h = p[3].astype(np.float64) * scale_y

    class_scores = p[GEOMETRY_CHANNELS:]
    best = np.argmax(class_scores, axis=0)
    best_score = class_scores[best, np.arange(num_anchors)]
    positive = best_score > 0
    best = np.where(positive, best, 0)
    best_score = np.where(positive, best_score, 0.0)

    keep = (best_score >= confidence_threshold) & (best < num_classes)
    idx = np.flatnonzero(keep)
    if idx.size == 0:
        return []

    cx, cy, w, h = cx[idx], cy[idx], w[idx], h[idx]
    xa = np.clip((cx - w / 2) / original_width, 0.0, 1.0)
    xb = np.clip((cx + w / 2) / original_width, 0.0, 1.0)
    ya = np.clip((cy - h / 2) / original_height, 0.0, 1.0)
    yb = np.clip((cy + h / 2) / original_height, 0.0, 1.0)
    # a negative predicted size must not invert the box
    left, right = np.minimum(xa, xb), np.maximum(xa, xb)
    top, bottom = np.minimum(ya, yb), np.maximum(ya, yb)

    return [
        Detection(
            box=BoundingBox(left=float(x1), top=float(y1), right=float(x2), bottom=float(y2)),
            confidence=float(score),
            class_index=int(cls_idx),
            label=class_names[int(cls_idx)],
        )
        for x1, y1, x2, y2, score, cls_idx in zip(left, top, right, bottom, best_score[idx], best[idx])
    ]


class YoloPostprocessor:
    """
    Decoder followed by the suppressor for single-image YOLO exports laid
    out as (4 + C, A), e.g. 84 x 8400 for an 80-class 640 model.
    """

    def __init__(self, cfg: YoloPostConfig, model: ModelConfig):
        self.cfg = cfg
        self.model = model

    def process(self, raw_output, original_size: Tuple[int, int]) -> List[Detection]:
        """
        Args:
            raw_output: model output for a single image
            original_size: (width, height) of the frame before resizing
        """

        orig_w, orig_h = original_size
        candidates = decode(
            raw_output,
            self.cfg.confidence_threshold,
            self.model.class_names,
            self.model.input_size,
            orig_w,
            orig_h,
        )
        if not candidates:
            return []

        if self.cfg.class_agnostic_nms:
            results = suppress(candidates, self.cfg.iou_threshold, self.cfg.max_results)
        else:
            results = suppress_per_class(candidates, self.cfg.iou_threshold, self.cfg.max_results)
        logger.debug("Decoded %d candidates, kept %d", len(candidates), len(results))
        return results
