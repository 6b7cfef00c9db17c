class DetectorError(RuntimeError):
    """Base class for detector lifecycle failures."""


class DetectorInitError(DetectorError):
    """The inference backend could not be created or warmed up."""


class DetectorNotReadyError(DetectorError):
    """`detect()` was called while the detector is not READY."""


class InferenceError(DetectorError):
    """The backend raised while running a frame; the detector is now FAILED."""
