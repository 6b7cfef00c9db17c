"""
On-device YOLO detection post-processing.

Turns the raw (4 + C, A) output tensor of a YOLO export into a small,
deduplicated, confidence-ranked list of detections with boxes normalized to
the original frame. The core (decode + NMS) needs only NumPy; OpenCV is
used for preprocessing and overlays, ONNX Runtime for inference.
"""

from .types import BoundingBox, Detection, DetectionResult
from .errors import DetectorError, DetectorInitError, DetectorNotReadyError, InferenceError
from .nms import NMSConfig, iou, nms, suppress, suppress_per_class
from .postprocess import ModelConfig, YoloPostConfig, YoloPostprocessor, decode
from .metadata import ModelMetadata, load_class_names, load_model_metadata
from .config import DetectorProfile, load_detector_profile
from .runtime import DetectorState, YoloDetector, load_detector, load_detector_from_profile, prepare_input
from .worker import DetectionListener, DetectionWorker
from .visualize import draw_detections

__all__ = [
    "BoundingBox",
    "Detection",
    "DetectionResult",
    "DetectorError",
    "DetectorInitError",
    "DetectorNotReadyError",
    "InferenceError",
    "NMSConfig",
    "iou",
    "nms",
    "suppress",
    "suppress_per_class",
    "ModelConfig",
    "YoloPostConfig",
    "YoloPostprocessor",
    "decode",
    "ModelMetadata",
    "load_class_names",
    "load_model_metadata",
    "DetectorProfile",
    "load_detector_profile",
    "DetectorState",
    "YoloDetector",
    "load_detector",
    "load_detector_from_profile",
    "prepare_input",
    "DetectionListener",
    "DetectionWorker",
    "draw_detections",
]
