from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from importlib import resources
from pathlib import Path
from typing import List, Optional, Sequence, Union

import numpy as np

from .backends.onnxruntime_backend import OnnxRuntimeBackend
from .config import DetectorConfig
from .metadata import load_class_map
from .postprocess import ScanPostprocessor
from .preprocess import preprocess
from .types import Detection


LOGGER = logging.getLogger(__name__)

PathLike = Union[str, Path]


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", "setup.py", ".git", "requirements.txt"),
) -> Path:
    """
    Best-effort project root discovery, used to resolve relative model paths.
    """

    p = Path(start) if start is not None else Path.cwd()
    p = p.resolve()

    # If a file is provided, start from its directory.
    if p.is_file():
        p = p.parent

    for parent in (p, *p.parents):
        for m in markers:
            if (parent / m).exists():
                return parent
    return p


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Resolve `path` to an absolute Path.

    - Absolute paths are returned as-is.
    - Relative paths are resolved against:
      - `root` if provided
      - project root (auto) otherwise
    """

    p = Path(path)
    if p.is_absolute():
        return p

    if root == "auto" or root is None:
        base = find_project_root()
    else:
        base = Path(root).resolve()

    return (base / p).resolve()


def read_packaged_model(package: str, resource: str) -> bytes:
    """Read a model blob shipped as package data, e.g. ("my_app.models", "model.onnx")."""
    return resources.files(package).joinpath(resource).read_bytes()


class Detector:
    """
    Preprocess -> exclusive inference -> decode -> suppress, for one 640x640 RGB image.

    The detector owns the only reference to its backend. Awaiting `infer`
    from many tasks is safe: pre/post-processing run concurrently on the
    loop's default executor while native calls are serialized, one at a time,
    on a dedicated worker thread.
    """

    def __init__(self, backend: OnnxRuntimeBackend, cfg: DetectorConfig = DetectorConfig()):
        self.backend = backend
        self.cfg = cfg
        self.post = ScanPostprocessor(cfg.post, cfg.class_map)
        # Bound lazily to the running loop; the backend lock covers other loops and threads.
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="scan-kit-infer")

    def _session_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    @property
    def session_busy(self) -> bool:
        """True while an awaited inference call holds the session on the current loop."""
        return self._lock is not None and self._lock.locked()

    def preprocess(self, image_rgb: np.ndarray) -> np.ndarray:
        return preprocess(image_rgb, self.cfg.input_size)

    def __call__(self, image_rgb: np.ndarray) -> List[Detection]:
        blob = self.preprocess(image_rgb)
        raw = self.backend.run(blob)
        return self.post.process(raw)

    async def infer(self, image_rgb: np.ndarray, timeout: Optional[float] = None) -> List[Detection]:
        """
        Detect objects in one image.

        Args:
            image_rgb: (H, W, 3|4) uint8, already cropped to `cfg.input_size`
            timeout: seconds; defaults to `cfg.inference_timeout` (None = no limit).
                On expiry `asyncio.TimeoutError` is raised. A native call that
                already started still runs to completion before the session is
                handed to the next caller.
        """
        if timeout is None:
            timeout = self.cfg.inference_timeout
        if timeout is None:
            return await self._infer(image_rgb)
        return await asyncio.wait_for(self._infer(image_rgb), timeout)

    async def _infer(self, image_rgb: np.ndarray) -> List[Detection]:
        loop = asyncio.get_running_loop()
        blob = await loop.run_in_executor(None, self.preprocess, image_rgb)
        raw = await self._run_exclusive(blob)
        detections = await loop.run_in_executor(None, self.post.process, raw)
        LOGGER.debug("Inference produced %d detections", len(detections))
        return detections

    async def _run_exclusive(self, blob: np.ndarray) -> np.ndarray:
        loop = asyncio.get_running_loop()
        lock = self._session_lock()

        # Cancelled waiters leave the lock queue without acquiring.
        await lock.acquire()
        try:
            future = loop.run_in_executor(self._executor, self.backend.run, blob)
        except BaseException:
            lock.release()
            raise
        # The lock follows the native call, not the awaiting task.
        future.add_done_callback(lambda _future: lock.release())

        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            future.add_done_callback(_discard_abandoned)
            raise

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "Detector":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _discard_abandoned(future: "asyncio.Future[np.ndarray]") -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        LOGGER.debug("Abandoned inference call failed: %s", exc)
    else:
        LOGGER.debug("Discarded result of abandoned inference call")


def load_detector(
    model_path: Optional[PathLike] = None,
    *,
    model_bytes: Optional[bytes] = None,
    cfg: DetectorConfig = DetectorConfig(),
    class_names_path: Optional[PathLike] = None,
    root: Optional[PathLike] = "auto",
) -> Detector:
    """
    Build a detector once at process start.

    Typical usage:
        detector = load_detector("models/model.onnx", class_names_path="models/metadata.yaml")

    Args:
        model_path: path to the .onnx file; read into memory once, never reopened
        model_bytes: an already loaded model blob (e.g. from `read_packaged_model`)
        cfg: thresholds, session options and class map
        class_names_path: optional metadata.yaml whose class names replace `cfg.class_map`
        root: base directory for resolving relative paths ("auto" uses best-effort project root)

    Raises:
        ModelLoadError: the runtime rejected the model or no execution provider is usable
    """

    if (model_path is None) == (model_bytes is None):
        raise ValueError("Pass exactly one of model_path or model_bytes.")

    if model_bytes is None:
        resolved = resolve_path(model_path, root=root)
        if not resolved.exists():
            raise FileNotFoundError(str(resolved))
        model_bytes = resolved.read_bytes()

    if class_names_path is not None:
        class_map = load_class_map(resolve_path(class_names_path, root=root), fallback=None)
        cfg = replace(cfg, class_map=class_map)

    backend = OnnxRuntimeBackend.from_bytes(model_bytes, cfg.session)
    LOGGER.info("Detector ready, classes=%s fallback=%s", dict(cfg.class_map.names), cfg.class_map.fallback)
    return Detector(backend, cfg)
