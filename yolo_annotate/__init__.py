"""
YOLO image annotation pipeline.

Upload bytes go in, the same image with boxes, labels and scores comes out:
decode -> tensor -> inference engine -> decode detections -> NMS -> render.
Runtime backends (ONNX Runtime, TorchScript) are imported lazily; the rest
needs only NumPy and OpenCV.
"""

from .types import Detection, Image
from .errors import DecodeError, EncodeError, InferenceError, ModelLoadError, PipelineError, ShapeError
from .letterbox import letterbox
from .codec import CodecConfig, ScaleInfo, TensorCodec, decode_image, encode, map_back
from .backends import CallableBackend, InferenceEngine, load_engine
from .postprocess import DecoderConfig, YoloDecoder, decode
from .nms import NMSConfig, box_iou, nms, suppress
from .labels import COCO_LABELS, LabelTable, load_class_names
from .visualize import draw_detections, render
from .config import PipelineConfig, load_pipeline_config
from .runtime import AnnotationPipeline, AnnotationResult, find_project_root, load_pipeline, resolve_path
from .log import setup_logging

__all__ = [
    "Detection",
    "Image",
    "DecodeError",
    "EncodeError",
    "InferenceError",
    "ModelLoadError",
    "PipelineError",
    "ShapeError",
    "letterbox",
    "CodecConfig",
    "ScaleInfo",
    "TensorCodec",
    "decode_image",
    "encode",
    "map_back",
    "CallableBackend",
    "InferenceEngine",
    "load_engine",
    "DecoderConfig",
    "YoloDecoder",
    "decode",
    "NMSConfig",
    "box_iou",
    "nms",
    "suppress",
    "COCO_LABELS",
    "LabelTable",
    "load_class_names",
    "draw_detections",
    "render",
    "PipelineConfig",
    "load_pipeline_config",
    "AnnotationPipeline",
    "AnnotationResult",
    "find_project_root",
    "load_pipeline",
    "resolve_path",
    "setup_logging",
]
