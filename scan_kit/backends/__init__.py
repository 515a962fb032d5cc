"""
Inference backends for scan_kit.

Backends are kept in a separate module so pre/post-processing stays
lightweight and can be used without importing the inference runtime.
"""

from __future__ import annotations

from .onnxruntime_backend import OnnxRuntimeBackend, SessionConfig, to_candidate_major

__all__ = ["OnnxRuntimeBackend", "SessionConfig", "to_candidate_major"]
