from __future__ import annotations

import enum
import functools
import logging
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Union

import numpy as np

from .backends.base import InferenceBackend
from .config import DetectorProfile
from .errors import DetectorError, DetectorInitError, DetectorNotReadyError, InferenceError
from .metadata import load_model_metadata
from .postprocess import ModelConfig, YoloPostConfig, YoloPostprocessor
from .types import Detection, DetectionResult

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
BackendFactory = Callable[[], InferenceBackend]


class DetectorState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


def prepare_input(image_bgr: np.ndarray, input_size: int, channels_last: bool = False) -> np.ndarray:
    """
    Stretch a BGR frame to `input_size x input_size` and build the model blob.

    The frame is resized without letterboxing, so the aspect ratio changes;
    the decoder undoes this with separate X/Y scale factors.

    Returns:
        float32 RGB blob in [0, 1], (1, 3, S, S) or (1, S, S, 3) when `channels_last`
    """

    try:
        import cv2  # type: ignore
    except ImportError as e:  # pragma: no cover
        raise ImportError("OpenCV is required for prepare_input(). Install with `pip install opencv-python`.") from e

    if image_bgr is None or not hasattr(image_bgr, "shape"):
        raise TypeError("image_bgr must be a NumPy array (BGR).")
    if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")
    if input_size <= 0:
        raise ValueError(f"input_size must be > 0 (got {input_size})")

    h, w = image_bgr.shape[:2]
    img = image_bgr
    if (w, h) != (input_size, input_size):
        img = cv2.resize(img, (input_size, input_size), interpolation=cv2.INTER_LINEAR)

    blob = img[:, :, ::-1].astype(np.float32) / 255.0
    if not channels_last:
        blob = np.transpose(blob, (2, 0, 1))
    return np.ascontiguousarray(blob[None, ...])


class YoloDetector:
    """
    One detector capability: preprocess -> backend inference -> postprocess.

    Lifecycle is an explicit state machine (UNINITIALIZED, READY, FAILED,
    CLOSED). A failed backend is never rebuilt behind the caller's back;
    the caller observes FAILED and calls `reinitialize()`.

    `detect()` is single-flight: while a frame is being processed, further
    calls return None at once instead of queueing.
    """

    def __init__(
        self,
        backend_factory: BackendFactory,
        model: ModelConfig,
        post_cfg: YoloPostConfig = YoloPostConfig(),
        *,
        channels_last: bool = False,
        warm_up: bool = True,
    ):
        self._backend_factory = backend_factory
        self.model = model
        self.post = YoloPostprocessor(post_cfg, model)
        self.channels_last = channels_last
        self.warm_up = warm_up

        self._backend: Optional[InferenceBackend] = None
        self._state = DetectorState.UNINITIALIZED
        self._state_lock = threading.Lock()
        self._in_flight = threading.Lock()
        self.last_error: Optional[BaseException] = None

    @property
    def state(self) -> DetectorState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._in_flight.locked()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    def initialize(self) -> None:
        with self._state_lock:
            if self._state is DetectorState.READY:
                return
            if self._state is DetectorState.CLOSED:
                raise DetectorError("Detector is closed; call reinitialize() to reopen it.")
            self._initialize_locked()

    def reinitialize(self) -> None:
        """
        Drop the current backend (if any) and build a fresh one.
        Waits for an in-flight detection to finish first.
        """

        with self._in_flight:
            with self._state_lock:
                logger.info("Reinitializing detector (state=%s)", self._state.value)
                self._initialize_locked()

    def close(self) -> None:
        with self._in_flight:
            with self._state_lock:
                self._release_backend_locked()
                self._state = DetectorState.CLOSED
        logger.debug("Detector closed")

    def __enter__(self) -> "YoloDetector":
        if self._state is DetectorState.UNINITIALIZED:
            self.initialize()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _initialize_locked(self) -> None:
        self._release_backend_locked()
        backend: Optional[InferenceBackend] = None
        try:
            backend = self._backend_factory()
            if self.warm_up:
                # first run is much slower on most runtimes
                backend.infer(self._zero_blob())
        except Exception as exc:
            if backend is not None:
                backend.close()
            self._backend = None
            self._state = DetectorState.FAILED
            self.last_error = exc
            logger.exception("Detector initialization failed")
            raise DetectorInitError(f"Failed to initialize detector: {exc}") from exc

        self._backend = backend
        self._state = DetectorState.READY
        self.last_error = None
        logger.info(
            "Detector ready: input %dx%d, %d classes",
            self.model.input_size,
            self.model.input_size,
            self.model.num_classes,
        )

    def _release_backend_locked(self) -> None:
        if self._backend is not None:
            try:
                self._backend.close()
            except Exception:
                logger.warning("Backend close() raised; ignoring", exc_info=True)
        self._backend = None

    def _zero_blob(self) -> np.ndarray:
        s = self.model.input_size
        c = self.model.pixel_channels
        shape: Tuple[int, ...] = (1, s, s, c) if self.channels_last else (1, c, s, s)
        return np.zeros(shape, dtype=np.float32)

    # ------------------------------------------------------------------ #
    # Detection
    # ------------------------------------------------------------------ #
    def detect(self, image_bgr: np.ndarray) -> Optional[DetectionResult]:
        """
        Run one BGR frame through the network.

        Returns None when another frame is still in flight (the frame is
        dropped). Raises DetectorNotReadyError unless READY, and
        InferenceError (leaving the detector FAILED) if the backend raises.
        """

        if not self._in_flight.acquire(blocking=False):
            logger.debug("Detection already in progress, skipping frame")
            return None
        try:
            return self._detect_locked(image_bgr)
        finally:
            self._in_flight.release()

    def detect_tensor(self, raw_output, original_size: Tuple[int, int]) -> List[Detection]:
        """
        Post-process an already computed raw output for a frame of
        `original_size` (width, height).
        """

        return self.post.process(raw_output, original_size)

    def _detect_locked(self, image_bgr: np.ndarray) -> DetectionResult:
        with self._state_lock:
            backend = self._backend
            state = self._state
        if state is not DetectorState.READY or backend is None:
            raise DetectorNotReadyError(f"Detector is {state.value}, not ready.")

        start = time.perf_counter()
        blob = prepare_input(image_bgr, self.model.input_size, channels_last=self.channels_last)
        orig_h, orig_w = image_bgr.shape[:2]

        try:
            raw = backend.infer(blob)
        except Exception as exc:
            with self._state_lock:
                self._state = DetectorState.FAILED
                self.last_error = exc
            logger.exception("Inference failed; detector marked FAILED")
            raise InferenceError(f"Inference failed: {exc}") from exc

        detections = self.post.process(raw, (orig_w, orig_h))
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        logger.debug("Found %d detections in %.1fms", len(detections), elapsed_ms)

        return DetectionResult(
            detections=tuple(detections),
            inference_time_ms=elapsed_ms,
            image_width=int(orig_w),
            image_height=int(orig_h),
        )


def load_detector(
    model_path: PathLike,
    metadata_path: Optional[PathLike] = None,
    *,
    class_names: Optional[Sequence[str]] = None,
    input_size: Optional[int] = None,
    post_cfg: YoloPostConfig = YoloPostConfig(),
    providers: Optional[Sequence[str]] = None,
    num_threads: int = 2,
    channels_last: bool = False,
    initialize: bool = True,
) -> YoloDetector:
    """
    Build an ONNX Runtime backed detector for a model on disk.

    Class names and input size come from `metadata_path` unless passed
    explicitly.
    """

    from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

    names: Sequence[str] = ()
    size = 640
    if metadata_path is not None:
        meta = load_model_metadata(metadata_path)
        names, size = meta.class_names, meta.input_size
    if class_names is not None:
        names = class_names
    if input_size is not None:
        size = input_size
    if not names:
        logger.warning("No class names configured; every frame will yield zero detections")

    model = ModelConfig(input_size=int(size), class_names=tuple(names))
    factory = functools.partial(
        OnnxRuntimeBackend,
        Path(model_path),
        OnnxRuntimeBackendConfig(providers=providers, num_threads=num_threads),
    )
    detector = YoloDetector(factory, model, post_cfg, channels_last=channels_last)
    if initialize:
        detector.initialize()
    return detector


def load_detector_from_profile(profile: DetectorProfile, *, initialize: bool = True) -> YoloDetector:
    return load_detector(
        profile.model_path,
        profile.metadata_path,
        post_cfg=profile.post_config(),
        providers=profile.providers,
        num_threads=profile.num_threads,
        channels_last=profile.channels_last,
        initialize=initialize,
    )
