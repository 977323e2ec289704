from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Union

import numpy as np

from .backends import InferenceEngine, load_engine
from .codec import CodecConfig, TensorCodec, decode_image, normalize_format
from .config import PipelineConfig
from .errors import InferenceError, ModelLoadError, PipelineError
from .labels import LabelTable
from .nms import DetectionSet, NMSConfig, suppress
from .postprocess import DecoderConfig, YoloDecoder
from .types import Image
from .visualize import render


PathLike = Union[str, Path]

logger = logging.getLogger(__name__)


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", "setup.py", ".git", "requirements.txt"),
) -> Path:
    """
    Best-effort project root discovery, used to resolve relative model and
    label paths from config files.
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
    Absolute paths are returned as-is; relative ones resolve against `root`,
    or the project root when `root` is "auto"/None.
    """

    p = Path(path)
    if p.is_absolute():
        return p

    if root == "auto" or root is None:
        base = find_project_root()
    else:
        base = Path(root).resolve()

    return (base / p).resolve()


@dataclass(frozen=True)
class AnnotationResult:
    image_bytes: bytes
    detections: DetectionSet
    format: str


def _check_threshold(value: Optional[float], name: str) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be a number within [0, 1], got {value!r}")


class AnnotationPipeline:
    """
    decode image -> preprocess -> inference -> decode detections -> NMS -> render.

    Built once at startup and shared by every request. It only holds
    immutable state, so `annotate` may run concurrently from many threads.
    Any stage failure aborts the request with a stage-tagged `PipelineError`.
    """

    def __init__(
        self,
        engine: InferenceEngine,
        *,
        labels: Optional[LabelTable] = None,
        codec_cfg: Optional[CodecConfig] = None,
        decoder_cfg: DecoderConfig = DecoderConfig(),
        nms_cfg: NMSConfig = NMSConfig(),
        output_format: Optional[str] = None,
    ):
        self.engine = engine
        self.labels = labels if labels is not None else LabelTable()
        if codec_cfg is None:
            codec_cfg = CodecConfig(input_size=self._engine_input_size(engine))
        self.codec = TensorCodec(codec_cfg)
        self.decoder = YoloDecoder(decoder_cfg, labels=self.labels)
        self.nms_cfg = nms_cfg
        self.output_format = output_format

    @staticmethod
    def _engine_input_size(engine: InferenceEngine):
        _, _, h, w = engine.input_shape
        if h is None or w is None:
            return CodecConfig().input_size
        return int(w), int(h)

    def detect(
        self,
        image: Image,
        conf_threshold: Optional[float] = None,
        iou_threshold: Optional[float] = None,
    ) -> DetectionSet:
        _check_threshold(conf_threshold, "conf_threshold")
        _check_threshold(iou_threshold, "iou_threshold")

        t0 = time.perf_counter()
        blob, scale = self.codec.encode(image)
        t1 = time.perf_counter()
        preds = self.engine.run(blob)
        t2 = time.perf_counter()
        candidates = self.decoder.decode(preds, scale=scale, conf_threshold=conf_threshold)
        detections = suppress(
            candidates,
            iou_threshold=self.nms_cfg.iou_threshold if iou_threshold is None else iou_threshold,
            max_detections=self.nms_cfg.max_detections,
            class_agnostic=self.nms_cfg.class_agnostic,
        )
        t3 = time.perf_counter()

        logger.debug(
            "preprocess=%.1fms inference=%.1fms postprocess=%.1fms candidates=%d kept=%d",
            (t1 - t0) * 1e3,
            (t2 - t1) * 1e3,
            (t3 - t2) * 1e3,
            len(candidates),
            len(detections),
        )
        return detections

    def annotate(
        self,
        data: bytes,
        conf_threshold: Optional[float] = None,
        iou_threshold: Optional[float] = None,
        output_format: Optional[str] = None,
    ) -> AnnotationResult:
        try:
            image = decode_image(data)
            detections = self.detect(image, conf_threshold=conf_threshold, iou_threshold=iou_threshold)
            fmt = normalize_format(output_format or self.output_format or image.format)
            if not detections and fmt == image.format:
                # Nothing drawn; hand back the upload untouched.
                encoded = bytes(data)
            else:
                encoded = render(image, detections, self.labels, fmt=fmt)
        except PipelineError as e:
            logger.warning("Annotation failed: %s", e)
            raise
        return AnnotationResult(image_bytes=encoded, detections=detections, format=fmt)

    __call__ = annotate


def _blank_frame_output_shape(engine: InferenceEngine, width: int, height: int):
    """Run one blank frame through `engine` to learn its output shape."""

    _, _, eh, ew = engine.input_shape
    blob = np.zeros((1, 3, eh or height, ew or width), dtype=np.float32)
    try:
        return np.shape(engine.run(blob))
    except InferenceError as e:
        raise ModelLoadError(f"Model failed on a blank {width}x{height} frame: {e}") from e


def load_pipeline(cfg: PipelineConfig, *, root: Optional[PathLike] = "auto") -> AnnotationPipeline:
    """
    Build the process-wide pipeline from config.

    Raises ModelLoadError when the model or its labels cannot be loaded, or the
    model's input/output signature does not fit the config; callers should not
    serve requests in that case.
    """

    model_path = resolve_path(cfg.model, root=root)
    width, height = cfg.input_size
    engine = load_engine(
        model_path,
        backend=cfg.backend,
        onnx_providers=cfg.onnx_providers,
        input_shape=(1, 3, height, width),
    )

    _, _, eh, ew = engine.input_shape
    if (eh is not None and eh != height) or (ew is not None and ew != width):
        raise ModelLoadError(f"Model input is {ew}x{eh} but config input_size is {width}x{height}")

    if cfg.labels:
        labels_path = resolve_path(cfg.labels, root=root)
        try:
            labels = LabelTable.from_file(labels_path)
        except (OSError, ValueError) as e:
            raise ModelLoadError(f"Could not load labels from {labels_path}: {e}") from e
    else:
        labels = LabelTable()

    pipeline = AnnotationPipeline(
        engine,
        labels=labels,
        codec_cfg=CodecConfig(
            input_size=(width, height),
            resize_mode=cfg.resize_mode,
            channel_order=cfg.channel_order,
        ),
        decoder_cfg=DecoderConfig(
            conf_threshold=cfg.conf_threshold,
            layout=cfg.layout,
            has_objectness=cfg.has_objectness,
        ),
        nms_cfg=NMSConfig(iou_threshold=cfg.iou_threshold, max_detections=cfg.max_detections),
        output_format=cfg.output_format,
    )

    out_shape = engine.output_shape
    if out_shape is None:
        out_shape = _blank_frame_output_shape(engine, width, height)
    if not pipeline.decoder.accepts_shape(out_shape):
        raise ModelLoadError(
            f"Model output {tuple(out_shape)} does not fit {pipeline.decoder.channels} values per candidate "
            f"(4 box + {int(cfg.has_objectness)} objectness + {pipeline.decoder.num_classes} classes, "
            f"layout={cfg.layout})"
        )

    logger.info("Pipeline ready: model=%s classes=%d output=%s", model_path, labels.num_classes, tuple(out_shape))
    return pipeline
