from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .postprocess import YoloPostConfig


@dataclass(frozen=True)
class DetectorProfile:
    schema_version: int
    model_path: str
    metadata_path: Optional[str] = None
    confidence_threshold: float = 0.5
    iou_threshold: float = 0.3
    max_results: int = 3
    num_threads: int = 2
    channels_last: bool = False
    class_agnostic_nms: bool = True
    providers: Optional[Tuple[str, ...]] = None

    def __post_init__(self) -> None:
        if self.schema_version != 1:
            raise ValueError("detector profile schema_version must be 1")
        if not self.model_path:
            raise ValueError("model_path must not be empty")
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ValueError("confidence_threshold must be within [0, 1]")
        if not 0.0 <= self.iou_threshold <= 1.0:
            raise ValueError("iou_threshold must be within [0, 1]")
        if self.max_results < 0:
            raise ValueError("max_results must be >= 0")
        if self.num_threads < 0:
            raise ValueError("num_threads must be >= 0")

    def post_config(self) -> YoloPostConfig:
        return YoloPostConfig(
            confidence_threshold=self.confidence_threshold,
            iou_threshold=self.iou_threshold,
            max_results=self.max_results,
            class_agnostic_nms=self.class_agnostic_nms,
        )


def _require_number(payload: Dict[str, Any], key: str, default: Optional[float] = None) -> float:
    if key not in payload:
        if default is None:
            raise ValueError(f"Missing required key: {key}")
        return default
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _require_int(payload: Dict[str, Any], key: str, default: Optional[int] = None) -> int:
    if key not in payload:
        if default is None:
            raise ValueError(f"Missing required key: {key}")
        return default
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _require_bool(payload: Dict[str, Any], key: str, default: bool) -> bool:
    value = payload.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be a boolean")
    return value


def _optional_str(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"{key} must be a string if provided")
    return value


def load_detector_profile(path: Path) -> DetectorProfile:
    """
    Load a detector profile from JSON. Relative model/metadata paths are
    resolved against the profile's directory.
    """

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Detector profile not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid detector profile JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Detector profile must be a JSON object")

    allowed = {
        "schema_version",
        "model_path",
        "metadata_path",
        "confidence_threshold",
        "iou_threshold",
        "max_results",
        "num_threads",
        "channels_last",
        "class_agnostic_nms",
        "providers",
    }
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown detector profile keys: {unknown}")

    model_path = _optional_str(payload, "model_path")
    if model_path is None:
        raise ValueError("Missing required key: model_path")
    metadata_path = _optional_str(payload, "metadata_path")

    providers = payload.get("providers")
    if providers is not None:
        if not isinstance(providers, list) or not all(isinstance(p, str) for p in providers):
            raise ValueError("providers must be a list of strings if provided")
        providers = tuple(providers)

    base = path.parent
    return DetectorProfile(
        schema_version=_require_int(payload, "schema_version"),
        model_path=str(base / model_path),
        metadata_path=str(base / metadata_path) if metadata_path is not None else None,
        confidence_threshold=_require_number(payload, "confidence_threshold", 0.5),
        iou_threshold=_require_number(payload, "iou_threshold", 0.3),
        max_results=_require_int(payload, "max_results", 3),
        num_threads=_require_int(payload, "num_threads", 2),
        channels_last=_require_bool(payload, "channels_last", False),
        class_agnostic_nms=_require_bool(payload, "class_agnostic_nms", True),
        providers=providers,
    )
