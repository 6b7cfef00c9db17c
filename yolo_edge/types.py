from dataclasses import dataclass, replace
from typing import Tuple


@dataclass(frozen=True)
class BoundingBox:
    """
    Axis-aligned box in corner form (left, top, right, bottom).
    """

    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return max(0.0, self.right - self.left)

    @property
    def height(self) -> float:
        return max(0.0, self.bottom - self.top)

    @property
    def area(self) -> float:
        return self.width * self.height

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.left, self.top, self.right, self.bottom

    def scaled(self, sx: float, sy: float) -> "BoundingBox":
        return BoundingBox(
            left=self.left * sx,
            top=self.top * sy,
            right=self.right * sx,
            bottom=self.bottom * sy,
        )


@dataclass(frozen=True)
class Detection:
    """
    Single recognized object.

    Boxes produced by the decoder are normalized to [0, 1] relative to the
    original image. `scaled()` is the only way to move to pixel space and it
    returns a new value.
    """

    box: BoundingBox
    confidence: float
    class_index: int
    label: str

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.box.as_xyxy()

    def scaled(self, width: float, height: float) -> "Detection":
        return replace(self, box=self.box.scaled(width, height))


@dataclass(frozen=True)
class DetectionResult:
    """
    Immutable snapshot handed from the detector to whoever renders it.
    """

    detections: Tuple[Detection, ...]
    inference_time_ms: float
    image_width: int
    image_height: int

    def __len__(self) -> int:
        return len(self.detections)
