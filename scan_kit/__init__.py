"""
Detection-inference core for fixed-size 640x640 RGB scans.

preprocess -> exclusive ONNX Runtime call -> decode -> confidence filter ->
greedy NMS. Everything around it (upload handling, storage, HTTP) lives in
the calling application. Only NumPy and ONNX Runtime are needed at runtime;
OpenCV is used by the crop and drawing helpers.
"""

from .types import CandidateBoxes, ClassMap, Detection, OutputBox, detections_to_json
from .errors import InferenceError, ModelLoadError, ScanKitError
from .preprocess import preprocess
from .letterbox import center_crop_resize
from .nms import NMSConfig, box_iou, nms
from .postprocess import PostConfig, ScanPostprocessor, decode, filter_and_suppress
from .backends import OnnxRuntimeBackend, SessionConfig, to_candidate_major
from .config import DetectorConfig, load_detector_config
from .metadata import load_class_map, load_class_names
from .runtime import Detector, find_project_root, load_detector, read_packaged_model, resolve_path
from .visualize import draw_detections

__all__ = [
    "CandidateBoxes",
    "ClassMap",
    "Detection",
    "OutputBox",
    "detections_to_json",
    "InferenceError",
    "ModelLoadError",
    "ScanKitError",
    "preprocess",
    "center_crop_resize",
    "NMSConfig",
    "box_iou",
    "nms",
    "PostConfig",
    "ScanPostprocessor",
    "decode",
    "filter_and_suppress",
    "OnnxRuntimeBackend",
    "SessionConfig",
    "to_candidate_major",
    "DetectorConfig",
    "load_detector_config",
    "load_class_map",
    "load_class_names",
    "Detector",
    "find_project_root",
    "load_detector",
    "read_packaged_model",
    "resolve_path",
    "draw_detections",
]
