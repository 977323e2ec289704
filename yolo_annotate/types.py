from dataclasses import dataclass
from typing import Tuple

import numpy as np


@dataclass(frozen=True)
class Image:
    """
    Decoded upload. `pixels` is a read-only (H, W, 3) uint8 array in BGR order
    (OpenCV-style); `format` is the source container extension, e.g. ".png".
    """

    pixels: np.ndarray
    format: str = ".png"

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height


@dataclass(frozen=True)
class Detection:
    """
    Single detection in original image pixel coordinates.

    `index` is the candidate's position in the raw output tensor and is used
    as the final tie-breaker when ordering detections.
    """

    x: float
    y: float
    width: float
    height: float
    score: float
    class_id: int
    label: str = ""
    index: int = 0

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x, self.y, self.x + self.width, self.y + self.height

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)
