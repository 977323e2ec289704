from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from .config import PipelineConfig, load_pipeline_config
from .errors import ModelLoadError, PipelineError
from .log import setup_logging
from .runtime import load_pipeline


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run YOLO detection on an image and write the annotated result.")
    parser.add_argument("--image", required=True, help="Path to an input image.")
    parser.add_argument("--out", required=True, help="Output path; its extension picks the encoding.")
    parser.add_argument("--config", default=None, help="Pipeline config JSON. Flags below override it.")
    parser.add_argument("--model", default=None, help="Path to a YOLO model (.onnx/.torchscript).")
    parser.add_argument("--labels", default=None, help="Class names file (names: mapping or one per line).")
    parser.add_argument("--backend", default=None, choices=["onnxruntime", "torchscript"])
    parser.add_argument("--imgsz", type=int, default=None, help="Square model input size (e.g., 640).")
    parser.add_argument("--resize-mode", default=None, choices=["stretch", "letterbox"])
    parser.add_argument("--layout", default=None, choices=["auto", "rows", "channels"])
    parser.add_argument("--objectness", action="store_true", default=None, help="Rows carry an objectness score.")
    parser.add_argument("--conf", type=float, default=None, help="Confidence threshold.")
    parser.add_argument("--iou", type=float, default=None, help="IoU threshold for NMS.")
    parser.add_argument(
        "--onnx-providers",
        default=None,
        help='Comma-separated ORT providers, e.g. "CUDAExecutionProvider,CPUExecutionProvider".',
    )
    parser.add_argument("--log-level", default="INFO")
    return parser


def config_from_args(args: argparse.Namespace) -> PipelineConfig:
    if args.config:
        cfg = load_pipeline_config(Path(args.config))
    elif args.model:
        cfg = PipelineConfig(model=args.model)
    else:
        raise ValueError("Either --config or --model is required")

    overrides = {
        "model": args.model,
        "labels": args.labels,
        "backend": args.backend,
        "input_size": (args.imgsz, args.imgsz) if args.imgsz is not None else None,
        "resize_mode": args.resize_mode,
        "layout": args.layout,
        "has_objectness": args.objectness,
        "conf_threshold": args.conf,
        "iou_threshold": args.iou,
        "onnx_providers": (
            tuple(p.strip() for p in args.onnx_providers.split(",") if p.strip()) if args.onnx_providers else None
        ),
    }
    return dataclasses.replace(cfg, **{k: v for k, v in overrides.items() if v is not None})


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    try:
        cfg = config_from_args(args)
    except (ValueError, FileNotFoundError) as e:
        parser.error(str(e))

    try:
        pipeline = load_pipeline(cfg)
    except ModelLoadError as e:
        logger.error("%s", e)
        return 2

    image_path = Path(args.image)
    if not image_path.exists():
        parser.error(f"Could not read image at path: {image_path}")

    try:
        result = pipeline.annotate(image_path.read_bytes(), output_format=Path(args.out).suffix or None)
    except PipelineError as e:
        print(e.to_dict(), file=sys.stderr)
        return 1

    Path(args.out).write_bytes(result.image_bytes)
    for det in result.detections:
        print(det.label, f"{det.score:.2f}", det.as_xyxy())
    logger.info("Wrote %s (%d detections)", args.out, len(result.detections))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
