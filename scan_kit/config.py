from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .backends.onnxruntime_backend import SessionConfig
from .postprocess import PostConfig
from .types import ClassMap


@dataclass(frozen=True)
class DetectorConfig:
    input_size: int = 640
    post: PostConfig = field(default_factory=PostConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    class_map: ClassMap = field(default_factory=ClassMap)
    # Seconds; None waits for the session indefinitely.
    inference_timeout: Optional[float] = None

    def __post_init__(self) -> None:
        if self.input_size < 32:
            raise ValueError("input_size must be >= 32")
        if self.inference_timeout is not None and self.inference_timeout <= 0:
            raise ValueError("inference_timeout must be > 0 when set")


def _require_number(payload: Dict[str, Any], key: str) -> float:
    if key not in payload:
        raise ValueError(f"Missing required key: {key}")
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _require_int(payload: Dict[str, Any], key: str) -> int:
    if key not in payload:
        raise ValueError(f"Missing required key: {key}")
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _require_str(payload: Dict[str, Any], key: str) -> str:
    if key not in payload:
        raise ValueError(f"Missing required key: {key}")
    value = payload[key]
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{key} must be a non-empty string")
    return value.strip()


def _check_keys(payload: Dict[str, Any], allowed: set, where: str) -> None:
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown {where} keys: {unknown}")


def _coerce_str_list(value: object, key: str) -> List[str]:
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ValueError(f"{key} must not be an empty string")
        return [value]
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        cleaned = [item.strip() for item in value]
        if not cleaned or any(not item for item in cleaned):
            raise ValueError(f"{key} must not contain empty strings")
        return cleaned
    raise ValueError(f"{key} must be a string or list of strings")


def _parse_post(payload: object) -> PostConfig:
    if not isinstance(payload, dict):
        raise ValueError("'post' must be an object")
    _check_keys(payload, {"conf_threshold", "iou_threshold", "max_detections", "class_agnostic_nms"}, "post")
    kwargs: Dict[str, Any] = {}
    if "conf_threshold" in payload:
        kwargs["conf_threshold"] = _require_number(payload, "conf_threshold")
    if "iou_threshold" in payload:
        kwargs["iou_threshold"] = _require_number(payload, "iou_threshold")
    if payload.get("max_detections") is not None:
        kwargs["max_detections"] = _require_int(payload, "max_detections")
    if "class_agnostic_nms" in payload:
        if not isinstance(payload["class_agnostic_nms"], bool):
            raise ValueError("class_agnostic_nms must be a boolean")
        kwargs["class_agnostic_nms"] = payload["class_agnostic_nms"]
    return PostConfig(**kwargs)


def _parse_session(payload: object) -> SessionConfig:
    if not isinstance(payload, dict):
        raise ValueError("'session' must be an object")
    _check_keys(
        payload,
        {
            "providers",
            "graph_optimization_level",
            "intra_op_num_threads",
            "log_severity_level",
            "output_layout",
            "input_name",
            "output_name",
        },
        "session",
    )
    kwargs: Dict[str, Any] = {}
    if "providers" in payload:
        kwargs["providers"] = tuple(_coerce_str_list(payload["providers"], "providers"))
    for key in ("graph_optimization_level", "output_layout"):
        if key in payload:
            kwargs[key] = _require_str(payload, key)
    for key in ("intra_op_num_threads", "log_severity_level"):
        if key in payload:
            kwargs[key] = _require_int(payload, key)
    for key in ("input_name", "output_name"):
        if payload.get(key) is not None:
            kwargs[key] = _require_str(payload, key)
    return SessionConfig(**kwargs)


def _parse_class_map(payload: object) -> ClassMap:
    if not isinstance(payload, dict):
        raise ValueError("'classes' must be an object")
    _check_keys(payload, {"names", "fallback"}, "classes")
    raw_names = payload.get("names")
    if not isinstance(raw_names, dict) or not raw_names:
        raise ValueError("classes.names must be a non-empty object of index -> label")
    names: Dict[int, str] = {}
    for key, label in raw_names.items():
        if not str(key).isdigit():
            raise ValueError(f"classes.names key must be a class index, got {key!r}")
        if not isinstance(label, str):
            raise ValueError(f"classes.names[{key}] must be a string")
        names[int(key)] = label
    fallback = payload.get("fallback")
    if fallback is None:
        fallback = names[max(names)]
    elif not isinstance(fallback, str):
        raise ValueError("classes.fallback must be a string")
    return ClassMap(names=names, fallback=fallback)


def detector_config_from_dict(payload: Dict[str, Any]) -> DetectorConfig:
    _check_keys(payload, {"input_size", "post", "session", "classes", "inference_timeout"}, "detector config")

    kwargs: Dict[str, Any] = {}
    if "input_size" in payload:
        kwargs["input_size"] = _require_int(payload, "input_size")
    if "post" in payload:
        kwargs["post"] = _parse_post(payload["post"])
    if "session" in payload:
        kwargs["session"] = _parse_session(payload["session"])
    if "classes" in payload:
        kwargs["class_map"] = _parse_class_map(payload["classes"])
    if payload.get("inference_timeout") is not None:
        kwargs["inference_timeout"] = _require_number(payload, "inference_timeout")
    return DetectorConfig(**kwargs)


def load_detector_config(path: Path) -> DetectorConfig:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Detector config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid detector config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Detector config must be a JSON object")
    return detector_config_from_dict(payload)
