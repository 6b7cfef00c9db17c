"""Background execution of a detector, one frame at a time.

Frames arriving while a pass is still running are dropped, never queued,
so slow hardware cannot build up a backlog.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Protocol

import numpy as np

from .runtime import YoloDetector
from .types import DetectionResult

logger = logging.getLogger(__name__)


class DetectionListener(Protocol):
    def on_results(self, result: DetectionResult) -> None:
        ...

    def on_error(self, error: BaseException) -> None:
        ...


class DetectionWorker:
    def __init__(self, detector: YoloDetector, listener: DetectionListener, *, name: str = "YoloInference"):
        """
        Args:
            detector: an initialized YoloDetector
            listener: receives results and errors on the worker thread
        """
        self._detector = detector
        self._listener = listener
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
        self._running = threading.Event()
        self._lock = threading.Lock()
        self._closed = False
        self.submitted = 0
        self.dropped = 0

    @property
    def busy(self) -> bool:
        return self._running.is_set()

    def submit(self, frame_bgr: np.ndarray) -> bool:
        """
        Hand a frame to the worker. Returns False if it was dropped because
        a previous frame is still being processed.
        """

        with self._lock:
            if self._closed:
                raise RuntimeError("DetectionWorker has been shut down.")
            if self._running.is_set():
                self.dropped += 1
                logger.debug("Skipping frame - inference already running")
                return False
            self._running.set()
            self.submitted += 1
            self._executor.submit(self._run, frame_bgr)
        return True

    def _run(self, frame_bgr: np.ndarray) -> None:
        try:
            result = self._detector.detect(frame_bgr)
        except Exception as exc:
            logger.error("Detection failed: %s", exc)
            self._deliver_error(exc)
        else:
            if result is not None:
                self._deliver(result)
            else:
                # the detector's own gate refused the frame
                with self._lock:
                    self.dropped += 1
        finally:
            self._running.clear()

    def _deliver(self, result: DetectionResult) -> None:
        try:
            self._listener.on_results(result)
        except Exception:
            logger.exception("Listener on_results raised")

    def _deliver_error(self, error: BaseException) -> None:
        try:
            self._listener.on_error(error)
        except Exception:
            logger.exception("Listener on_error raised")

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "DetectionWorker":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()
