from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .codec import CHANNEL_ORDERS, RESIZE_MODES
from .postprocess import LAYOUTS


BACKENDS = ("onnxruntime", "torchscript")


@dataclass(frozen=True)
class PipelineConfig:
    """
    Startup configuration for one model. Relative paths resolve against the
    project root when the pipeline is loaded.
    """

    model: str
    labels: Optional[str] = None
    backend: Optional[str] = None
    onnx_providers: Optional[Tuple[str, ...]] = None
    input_size: Tuple[int, int] = (640, 640)
    resize_mode: str = "stretch"
    channel_order: str = "rgb"
    layout: str = "auto"
    has_objectness: bool = False
    conf_threshold: float = 0.25
    iou_threshold: float = 0.45
    max_detections: int = 300
    output_format: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.model:
            raise ValueError("model must be a non-empty path")
        if self.backend is not None and self.backend not in BACKENDS:
            raise ValueError(f"backend must be one of {BACKENDS}")
        if len(self.input_size) != 2 or any(d < 32 for d in self.input_size):
            raise ValueError("input_size must be [width, height], each >= 32")
        if self.resize_mode not in RESIZE_MODES:
            raise ValueError(f"resize_mode must be one of {RESIZE_MODES}")
        if self.channel_order not in CHANNEL_ORDERS:
            raise ValueError(f"channel_order must be one of {CHANNEL_ORDERS}")
        if self.layout not in LAYOUTS:
            raise ValueError(f"layout must be one of {LAYOUTS}")
        if not 0.0 <= self.conf_threshold <= 1.0:
            raise ValueError("conf_threshold must be within [0, 1]")
        if not 0.0 <= self.iou_threshold <= 1.0:
            raise ValueError("iou_threshold must be within [0, 1]")
        if self.max_detections < 1:
            raise ValueError("max_detections must be >= 1")


def _require_number(payload: Dict[str, Any], key: str) -> float:
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _require_int(payload: Dict[str, Any], key: str) -> int:
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _require_str(payload: Dict[str, Any], key: str) -> str:
    value = payload[key]
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{key} must be a non-empty string")
    return value.strip()


def _input_size(value: Any) -> Tuple[int, int]:
    if isinstance(value, int) and not isinstance(value, bool):
        return value, value
    if (
        isinstance(value, list)
        and len(value) == 2
        and all(isinstance(v, int) and not isinstance(v, bool) for v in value)
    ):
        return value[0], value[1]
    raise ValueError("input_size must be an integer or [width, height]")


def _providers(value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        items = [p.strip() for p in value.split(",")]
    elif isinstance(value, list) and all(isinstance(p, str) for p in value):
        items = [p.strip() for p in value]
    else:
        raise ValueError("onnx_providers must be a string or list of strings")
    if not items or any(not p for p in items):
        raise ValueError("onnx_providers must not contain empty names")
    return tuple(items)


def pipeline_config_from_dict(payload: Dict[str, Any]) -> PipelineConfig:
    allowed = {
        "model",
        "labels",
        "backend",
        "onnx_providers",
        "input_size",
        "resize_mode",
        "channel_order",
        "layout",
        "has_objectness",
        "conf_threshold",
        "iou_threshold",
        "max_detections",
        "output_format",
    }
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown pipeline config keys: {unknown}")
    if "model" not in payload:
        raise ValueError("Missing required key: model")

    kwargs: Dict[str, Any] = {"model": _require_str(payload, "model")}
    for key in ("labels", "backend", "resize_mode", "channel_order", "layout", "output_format"):
        if payload.get(key) is not None:
            kwargs[key] = _require_str(payload, key)
    for key in ("conf_threshold", "iou_threshold"):
        if payload.get(key) is not None:
            kwargs[key] = _require_number(payload, key)
    if payload.get("max_detections") is not None:
        kwargs["max_detections"] = _require_int(payload, "max_detections")
    if payload.get("has_objectness") is not None:
        if not isinstance(payload["has_objectness"], bool):
            raise ValueError("has_objectness must be a boolean")
        kwargs["has_objectness"] = payload["has_objectness"]
    if payload.get("input_size") is not None:
        kwargs["input_size"] = _input_size(payload["input_size"])
    if payload.get("onnx_providers") is not None:
        kwargs["onnx_providers"] = _providers(payload["onnx_providers"])

    return PipelineConfig(**kwargs)


def load_pipeline_config(path: Path) -> PipelineConfig:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Pipeline config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid pipeline config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Pipeline config must be a JSON object")
    return pipeline_config_from_dict(payload)
