"""Interface every inference backend implements."""

from __future__ import annotations

from typing import Protocol

import numpy as np


class InferenceBackend(Protocol):
    """Runs the network on a preprocessed blob and returns the raw output."""

    def infer(self, blob: np.ndarray) -> np.ndarray:
        """Return the primary output tensor, e.g. shaped (1, 4 + C, A)."""
        ...

    def close(self) -> None:
        """Release the runtime session."""
        ...
