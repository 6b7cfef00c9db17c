"""
Inference backends for yolo_edge.

Backends are kept in a separate module so the post-processing core stays
lightweight and can be used without installing an inference runtime.
"""

from __future__ import annotations

from .base import InferenceBackend

__all__ = ["InferenceBackend"]
