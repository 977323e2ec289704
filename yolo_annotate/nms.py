from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .types import Detection


DetectionSet = Tuple[Detection, ...]


@dataclass(frozen=True)
class NMSConfig:
    iou_threshold: float = 0.45
    # None keeps every survivor.
    max_detections: Optional[int] = 300
    # Cross-class overlaps are only suppressed when this is True.
    class_agnostic: bool = False

    def __post_init__(self) -> None:
        if not 0.0 <= self.iou_threshold <= 1.0:
            raise ValueError("iou_threshold must be within [0, 1]")
        if self.max_detections is not None and self.max_detections < 1:
            raise ValueError("max_detections must be >= 1")


def box_iou(a: Sequence[float], b: Sequence[float]) -> float:
    """IoU of two xyxy boxes; 0.0 when the union is empty."""

    ix = max(0.0, min(a[2], b[2]) - max(a[0], b[0]))
    iy = max(0.0, min(a[3], b[3]) - max(a[1], b[1]))
    inter = ix * iy
    union = (a[2] - a[0]) * (a[3] - a[1]) + (b[2] - b[0]) * (b[3] - b[1]) - inter
    if union <= 0:
        return 0.0
    return inter / union


def nms(boxes: np.ndarray, scores: np.ndarray, cfg: NMSConfig = NMSConfig()) -> np.ndarray:
    """
    NumPy NMS. Expects boxes shape (N,4) in xyxy and scores shape (N,).
    Returns indices of boxes to keep, highest score first.

    Equal scores keep their input order, so callers control tie-breaks by
    ordering the input.
    """

    if boxes.size == 0:
        return np.empty((0,), dtype=np.int64)

    boxes = np.asarray(boxes, dtype=np.float64)
    x1, y1, x2, y2 = boxes[:, 0], boxes[:, 1], boxes[:, 2], boxes[:, 3]
    areas = np.maximum(0.0, x2 - x1) * np.maximum(0.0, y2 - y1)

    order = np.argsort(-np.asarray(scores, dtype=np.float64), kind="stable")
    keep: List[int] = []
    limit = cfg.max_detections

    while order.size > 0 and (limit is None or len(keep) < limit):
        i = order[0]
        keep.append(int(i))
        rest = order[1:]

        w = np.maximum(0.0, np.minimum(x2[i], x2[rest]) - np.maximum(x1[i], x1[rest]))
        h = np.maximum(0.0, np.minimum(y2[i], y2[rest]) - np.maximum(y1[i], y1[rest]))
        inter = w * h
        union = areas[i] + areas[rest] - inter
        iou = np.where(union > 0, inter / np.maximum(union, 1e-12), 0.0)

        order = rest[iou <= cfg.iou_threshold]

    return np.array(keep, dtype=np.int64)


def _suppress_group(group: List[Detection], cfg: NMSConfig) -> List[Detection]:
    group = sorted(group, key=lambda d: d.index)
    boxes = np.array([d.as_xyxy() for d in group], dtype=np.float64).reshape(-1, 4)
    scores = np.array([d.score for d in group], dtype=np.float64)
    return [group[i] for i in nms(boxes, scores, cfg)]


def suppress(
    detections: Sequence[Detection],
    iou_threshold: float = 0.45,
    max_detections: Optional[int] = None,
    class_agnostic: bool = False,
) -> DetectionSet:
    """
    Per-class non-maximum suppression.

    Survivors are ordered by descending score, then class id, then decode
    order. Empty input gives an empty tuple.
    """

    cfg = NMSConfig(iou_threshold=iou_threshold, max_detections=None, class_agnostic=class_agnostic)
    if max_detections is not None and max_detections < 1:
        raise ValueError("max_detections must be >= 1")
    if not detections:
        return ()

    if cfg.class_agnostic:
        kept = _suppress_group(list(detections), cfg)
    else:
        groups: Dict[int, List[Detection]] = defaultdict(list)
        for det in detections:
            groups[det.class_id].append(det)
        kept = []
        for cls in sorted(groups):
            kept.extend(_suppress_group(groups[cls], cfg))

    kept.sort(key=lambda d: (-d.score, d.class_id, d.index))
    if max_detections is not None:
        kept = kept[:max_detections]
    return tuple(kept)
