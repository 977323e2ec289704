from typing import Tuple

import numpy as np

from .errors import ShapeError


def letterbox(
    image: np.ndarray,
    new_shape: Tuple[int, int] = (640, 640),
    color: Tuple[int, int, int] = (114, 114, 114),
    scale_fill: bool = False,
    scaleup: bool = True,
):
    """
    Fit `image` into `new_shape` (width, height).

    By default the aspect ratio is kept and the borders are padded with
    `color`. With `scale_fill=True` the image is stretched to the exact
    target size and no padding is added.

    Returns:
        out: resized (+ padded) image of exactly `new_shape`
        ratio: (w_ratio, h_ratio) applied to the source pixels
        pad: (dw, dh) left/top padding in target pixels
    """
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for letterbox(). Install with `pip install opencv-python`.") from e

    if isinstance(new_shape, int):
        new_shape = (new_shape, new_shape)

    h, w = image.shape[:2]
    new_w, new_h = int(new_shape[0]), int(new_shape[1])
    if new_w <= 0 or new_h <= 0:
        raise ShapeError(f"Target size must be positive, got {new_w}x{new_h}")
    if w <= 0 or h <= 0:
        raise ShapeError(f"Image size must be positive, got {w}x{h}")

    if scale_fill:
        out = image
        if (w, h) != (new_w, new_h):
            out = cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_LINEAR)
        return out, (new_w / w, new_h / h), (0.0, 0.0)

    r = min(new_w / w, new_h / h)
    if not scaleup:
        r = min(r, 1.0)

    resized_w, resized_h = int(round(w * r)), int(round(h * r))
    if resized_w <= 0 or resized_h <= 0:
        raise ShapeError(f"Resize of {w}x{h} to {new_w}x{new_h} produced {resized_w}x{resized_h}")

    if (w, h) != (resized_w, resized_h):
        image = cv2.resize(image, (resized_w, resized_h), interpolation=cv2.INTER_LINEAR)

    # Split padding so the odd pixel goes right/bottom.
    pad_w, pad_h = new_w - resized_w, new_h - resized_h
    left, top = pad_w // 2, pad_h // 2
    out = cv2.copyMakeBorder(
        image, top, pad_h - top, left, pad_w - left, cv2.BORDER_CONSTANT, value=color
    )
    return out, (r, r), (float(left), float(top))
