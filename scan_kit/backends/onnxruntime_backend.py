from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple

import numpy as np

from ..errors import InferenceError, ModelLoadError


LOGGER = logging.getLogger(__name__)

DEFAULT_PROVIDERS: Tuple[str, ...] = (
    "CUDAExecutionProvider",
    "DnnlExecutionProvider",
    "CPUExecutionProvider",
)

OUTPUT_LAYOUTS = ("channels_first", "candidates_first")

_OPTIMIZATION_LEVELS = {
    "disable": "ORT_DISABLE_ALL",
    "basic": "ORT_ENABLE_BASIC",
    "extended": "ORT_ENABLE_EXTENDED",
    "all": "ORT_ENABLE_ALL",
}


@dataclass(frozen=True)
class SessionConfig:
    """
    Configuration for the ONNX Runtime session, fixed for the process lifetime.

    - providers: ORT execution providers in priority order; unavailable ones are skipped
    - graph_optimization_level: one of "disable", "basic", "extended", "all"
    - output_layout: "channels_first" for (1, 4 + C, N) exports, "candidates_first" for (1, N, 4 + C)
    - input_name/output_name: override auto-selected I/O names if needed
    """

    providers: Sequence[str] = DEFAULT_PROVIDERS
    graph_optimization_level: str = "all"
    intra_op_num_threads: int = 1
    log_severity_level: int = 2
    output_layout: str = "channels_first"
    input_name: Optional[str] = None
    output_name: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.providers, str):
            raise ValueError("providers must be a sequence of provider names, not a string")
        if not self.providers:
            raise ValueError("providers must not be empty")
        object.__setattr__(self, "providers", tuple(self.providers))
        if self.graph_optimization_level not in _OPTIMIZATION_LEVELS:
            raise ValueError(
                f"graph_optimization_level must be one of {sorted(_OPTIMIZATION_LEVELS)}, "
                f"got {self.graph_optimization_level!r}"
            )
        if self.intra_op_num_threads < 0:
            raise ValueError("intra_op_num_threads must be >= 0")
        if not 0 <= self.log_severity_level <= 4:
            raise ValueError("log_severity_level must be in [0, 4]")
        if self.output_layout not in OUTPUT_LAYOUTS:
            raise ValueError(f"output_layout must be one of {OUTPUT_LAYOUTS}, got {self.output_layout!r}")


def to_candidate_major(raw: np.ndarray, layout: str = "channels_first") -> np.ndarray:
    """
    Reorient a native model output to (N, 4 + C), one row per candidate box.

    - "channels_first": (1, 4 + C, N) or (4 + C, N), e.g. 5 x 8400 for YOLOv8
    - "candidates_first": (1, N, 4 + C) or (N, 4 + C)
    """

    p = np.asarray(raw)
    if p.ndim == 3:
        if p.shape[0] != 1:
            raise ValueError(f"Batch > 1 is not supported (got shape {p.shape}). Pass one image at a time.")
        p = p[0]
    if p.ndim != 2:
        raise ValueError(f"Unsupported model output shape: {np.shape(raw)}")

    if layout == "channels_first":
        p = p.T
    elif layout != "candidates_first":
        raise ValueError(f"Unsupported output layout: {layout!r}")
    return np.ascontiguousarray(p, dtype=np.float32)


def _select_providers(requested: Sequence[str], available: Sequence[str]) -> Tuple[str, ...]:
    chosen = tuple(p for p in requested if p in available)
    missing = [p for p in requested if p not in available]
    if missing:
        LOGGER.warning("Execution providers not available, skipping: %s", ", ".join(missing))
    return chosen


class OnnxRuntimeBackend:
    """
    Exclusive-access wrapper around one ONNX Runtime session.

    Expects an NCHW float32 blob shaped (1, 3, H, W) and returns the primary
    output reoriented to (N, 4 + C). `run` holds a process-wide lock for the
    full native call; the session handle is never shared or duplicated.
    """

    def __init__(self, session: Any, cfg: SessionConfig = SessionConfig()):
        self.session = session
        self.cfg = cfg
        self.input_name = cfg.input_name or self.session.get_inputs()[0].name
        # If output_name not provided, pick first output.
        self.output_name = cfg.output_name or self.session.get_outputs()[0].name
        self._lock = threading.Lock()

    @classmethod
    def from_bytes(cls, model_bytes: bytes, cfg: SessionConfig = SessionConfig()) -> "OnnxRuntimeBackend":
        """
        Build the session from an in-memory model. Any failure here is a
        configuration error and raises `ModelLoadError`.
        """
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime` "
                "(or `onnxruntime-gpu`)."
            ) from e

        if not model_bytes:
            raise ModelLoadError("Model bytes are empty")

        providers = _select_providers(cfg.providers, ort.get_available_providers())
        if not providers:
            raise ModelLoadError(f"None of the requested execution providers are available: {list(cfg.providers)}")

        sess_opts = ort.SessionOptions()
        sess_opts.graph_optimization_level = getattr(
            ort.GraphOptimizationLevel, _OPTIMIZATION_LEVELS[cfg.graph_optimization_level]
        )
        sess_opts.intra_op_num_threads = cfg.intra_op_num_threads
        sess_opts.log_severity_level = cfg.log_severity_level

        try:
            session = ort.InferenceSession(bytes(model_bytes), sess_options=sess_opts, providers=list(providers))
        except Exception as exc:
            raise ModelLoadError(f"Failed to initialise ONNX Runtime session: {exc}") from exc

        backend = cls(session, cfg)
        LOGGER.info(
            "Loaded model (%d bytes), input=%s output=%s providers=%s",
            len(model_bytes),
            backend.input_name,
            backend.output_name,
            ", ".join(backend.providers_in_use),
        )
        return backend

    @property
    def providers_in_use(self) -> Sequence[str]:
        # ORT returns providers in priority order for this session.
        return tuple(self.session.get_providers())

    def run(self, blob: np.ndarray) -> np.ndarray:
        with self._lock:
            try:
                outputs = self.session.run([self.output_name], {self.input_name: blob})
            except Exception as exc:
                raise InferenceError(f"Inference failed: {exc}") from exc
        try:
            return to_candidate_major(outputs[0], self.cfg.output_layout)
        except ValueError as exc:
            raise InferenceError(f"Unexpected model output: {exc}") from exc
