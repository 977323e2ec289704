from __future__ import annotations

import logging
from typing import Iterable, Optional, Tuple

import numpy as np

from .errors import EncodeError
from .labels import LabelTable
from .types import Detection, Image


logger = logging.getLogger(__name__)

# BGR, OpenCV order.
PALETTE: Tuple[Tuple[int, int, int], ...] = (
    (255, 56, 56),
    (255, 157, 151),
    (255, 112, 31),
    (255, 178, 29),
    (207, 210, 49),
    (72, 249, 10),
    (146, 204, 23),
    (61, 219, 134),
    (26, 147, 52),
    (0, 212, 187),
    (44, 153, 168),
    (0, 194, 255),
    (52, 69, 147),
    (100, 115, 255),
    (0, 24, 236),
    (132, 56, 255),
    (82, 0, 133),
    (203, 56, 255),
    (255, 149, 200),
    (255, 55, 199),
)

FONT_SCALE = 0.5
FONT_THICKNESS = 1
BOX_THICKNESS = 2
TEXT_COLOR = (255, 255, 255)


def color_for_class_id(class_id: int) -> Tuple[int, int, int]:
    return PALETTE[int(class_id) % len(PALETTE)]


def format_label(det: Detection, labels: Optional[LabelTable] = None) -> str:
    name = det.label or (labels.name(det.class_id) if labels is not None else str(det.class_id))
    return f"{name} {det.score:.2f}"


def draw_detections(
    image_bgr: np.ndarray,
    detections: Iterable[Detection],
    labels: Optional[LabelTable] = None,
) -> np.ndarray:
    """
    Draw bounding boxes + labels on an OpenCV BGR image and return a copy.

    Each label tag sits on the box's top-left corner: above the box when
    there is room, otherwise just inside it, and is shifted so it always
    stays fully on the canvas.
    """

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for draw_detections(). Install with `pip install opencv-python`.") from e

    if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
        raise EncodeError(f"Expected image shape (H, W, 3), got {image_bgr.shape}")

    out = np.array(image_bgr, copy=True)
    h, w = out.shape[:2]
    font = cv2.FONT_HERSHEY_SIMPLEX

    for det in detections:
        x1, y1, x2, y2 = det.as_xyxy()
        x1i = int(np.clip(round(x1), 0, w - 1))
        y1i = int(np.clip(round(y1), 0, h - 1))
        x2i = int(np.clip(round(x2), 0, w - 1))
        y2i = int(np.clip(round(y2), 0, h - 1))

        color = color_for_class_id(det.class_id)
        cv2.rectangle(out, (x1i, y1i), (x2i, y2i), color, thickness=BOX_THICKNESS)

        text = format_label(det, labels)
        (tw, th), baseline = cv2.getTextSize(text, font, FONT_SCALE, FONT_THICKNESS)
        tag_h = th + baseline

        tag_top = y1i - tag_h
        if tag_top < 0:
            tag_top = y1i
        tag_top = max(0, min(tag_top, h - tag_h))
        tag_left = max(0, min(x1i, w - tw))

        cv2.rectangle(out, (tag_left, tag_top), (tag_left + tw, tag_top + tag_h), color, thickness=-1)
        cv2.putText(
            out,
            text,
            (tag_left, tag_top + th),
            font,
            FONT_SCALE,
            TEXT_COLOR,
            thickness=FONT_THICKNESS,
            lineType=cv2.LINE_AA,
        )

    return out


def encode_image(pixels: np.ndarray, fmt: str = ".png") -> bytes:
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for encode_image(). Install with `pip install opencv-python`.") from e

    ext = fmt if fmt.startswith(".") else f".{fmt}"
    try:
        ok, buf = cv2.imencode(ext.lower(), pixels)
    except cv2.error as e:
        raise EncodeError(f"Could not encode image as {ext}: {e}") from e
    if not ok:
        raise EncodeError(f"Could not encode image as {ext}")
    return buf.tobytes()


def render(
    image: Image,
    detections: Iterable[Detection],
    labels: Optional[LabelTable] = None,
    fmt: Optional[str] = None,
) -> bytes:
    """
    Draw `detections` on `image` and encode the result.

    `fmt` defaults to the upload's own format.
    """

    dets = list(detections)
    canvas = draw_detections(image.pixels, dets, labels)
    data = encode_image(canvas, fmt or image.format)
    logger.debug("Rendered %d detections into %d bytes", len(dets), len(data))
    return data
