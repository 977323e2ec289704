"""
Image <-> tensor conversion.

Decodes upload bytes into an `Image`, turns it into the model's NCHW float
input and maps model-space boxes back to original pixels. The resize policy
and its inverse live together in `ScaleInfo` so they can never disagree.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .errors import DecodeError, ShapeError
from .letterbox import letterbox
from .types import Image


RESIZE_MODES = ("letterbox", "stretch")
CHANNEL_ORDERS = ("rgb", "bgr")

_MAGIC = (
    (b"\x89PNG\r\n\x1a\n", ".png"),
    (b"\xff\xd8\xff", ".jpg"),
    (b"BM", ".bmp"),
    (b"II*\x00", ".tiff"),
    (b"MM\x00*", ".tiff"),
)


_ALIASES = {".jpeg": ".jpg", ".jpe": ".jpg", ".tif": ".tiff"}


def normalize_format(fmt: str) -> str:
    """'JPEG' / 'jpeg' / '.jpg' -> '.jpg'."""

    ext = fmt.lower() if fmt.startswith(".") else f".{fmt.lower()}"
    return _ALIASES.get(ext, ext)


def sniff_format(data: bytes) -> Optional[str]:
    """Return the container extension for `data`, or None when unknown."""

    for magic, ext in _MAGIC:
        if data.startswith(magic):
            return ext
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return ".webp"
    return None


def decode_image(data: bytes) -> Image:
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for decode_image(). Install with `pip install opencv-python`.") from e

    if not data:
        raise DecodeError("Upload is empty")
    fmt = sniff_format(data)
    if fmt is None:
        raise DecodeError("Unsupported image format")

    buf = np.frombuffer(data, dtype=np.uint8)
    pixels = cv2.imdecode(buf, cv2.IMREAD_COLOR)
    if pixels is None or pixels.size == 0:
        raise DecodeError(f"Could not decode {fmt} image ({len(data)} bytes)")

    pixels.setflags(write=False)
    return Image(pixels=pixels, format=fmt)


@dataclass(frozen=True)
class CodecConfig:
    """
    Model input contract.

    - input_size: (width, height) expected by the model
    - resize_mode: "stretch" (exact resize) or "letterbox" (aspect kept, padded)
    - channel_order: channel order the model was trained on
    - normalize: pixel values are divided by this
    """

    input_size: Tuple[int, int] = (640, 640)
    resize_mode: str = "stretch"
    channel_order: str = "rgb"
    normalize: float = 255.0
    pad_color: Tuple[int, int, int] = (114, 114, 114)

    def __post_init__(self) -> None:
        if len(self.input_size) != 2:
            raise ValueError("input_size must be (width, height)")
        if self.resize_mode not in RESIZE_MODES:
            raise ValueError(f"resize_mode must be one of {RESIZE_MODES}, got {self.resize_mode!r}")
        if self.channel_order not in CHANNEL_ORDERS:
            raise ValueError(f"channel_order must be one of {CHANNEL_ORDERS}, got {self.channel_order!r}")
        if self.normalize <= 0:
            raise ValueError("normalize must be > 0")


@dataclass(frozen=True)
class ScaleInfo:
    orig_size: Tuple[int, int]
    ratio: Tuple[float, float] = (1.0, 1.0)
    pad: Tuple[float, float] = (0.0, 0.0)


class TensorCodec:
    def __init__(self, cfg: CodecConfig = CodecConfig()):
        self.cfg = cfg

    def encode(self, image: Image) -> Tuple[np.ndarray, ScaleInfo]:
        """
        Letterbox/stretch, reorder channels, normalize, HWC -> CHW and add batch.
        """

        pixels = image.pixels
        if pixels.ndim != 3 or pixels.shape[2] != 3:
            raise ShapeError(f"Expected image shape (H, W, 3), got {pixels.shape}")

        img, ratio, pad = letterbox(
            pixels,
            new_shape=self.cfg.input_size,
            color=self.cfg.pad_color,
            scale_fill=self.cfg.resize_mode == "stretch",
        )
        if self.cfg.channel_order == "rgb":
            img = img[:, :, ::-1]

        blob = img.astype(np.float32) / np.float32(self.cfg.normalize)
        blob = np.ascontiguousarray(np.transpose(blob, (2, 0, 1))[None, ...])
        return blob, ScaleInfo(orig_size=image.size, ratio=ratio, pad=pad)


def encode(
    image: Image,
    target_width: int,
    target_height: int,
    cfg: Optional[CodecConfig] = None,
) -> Tuple[np.ndarray, ScaleInfo]:
    base = cfg or CodecConfig()
    if target_width <= 0 or target_height <= 0:
        raise ShapeError(f"Target size must be positive, got {target_width}x{target_height}")
    codec = TensorCodec(
        CodecConfig(
            input_size=(int(target_width), int(target_height)),
            resize_mode=base.resize_mode,
            channel_order=base.channel_order,
            normalize=base.normalize,
            pad_color=base.pad_color,
        )
    )
    return codec.encode(image)


def map_back(boxes: np.ndarray, scale: ScaleInfo) -> np.ndarray:
    """
    Map (N, 4) xyxy boxes from model input space to original image pixels.

    Returns a new array; boxes are clamped to [0, width] x [0, height].
    """

    out = np.array(boxes, dtype=np.float32, copy=True).reshape(-1, 4)
    dw, dh = scale.pad
    rw, rh = scale.ratio
    out[:, [0, 2]] = (out[:, [0, 2]] - dw) / rw
    out[:, [1, 3]] = (out[:, [1, 3]] - dh) / rh

    orig_w, orig_h = scale.orig_size
    out[:, [0, 2]] = np.clip(out[:, [0, 2]], 0, orig_w)
    out[:, [1, 3]] = np.clip(out[:, [1, 3]], 0, orig_h)
    return out
