from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .codec import ScaleInfo, map_back
from .errors import ShapeError
from .labels import LabelTable
from .types import Detection


LAYOUTS = ("auto", "rows", "channels")


@dataclass(frozen=True)
class DecoderConfig:
    """
    How to read the raw output tensor.

    - layout: "rows" for (1, N, 4+[1]+C), "channels" for (1, 4+[1]+C, N)
      (YOLOv8/v9 exports), "auto" picks whichever axis matches the channel count
    - has_objectness: rows carry an objectness score before the class scores
    - class_ids: keep only these classes; None keeps all
    """

    conf_threshold: float = 0.25
    layout: str = "auto"
    has_objectness: bool = False
    class_ids: Optional[Sequence[int]] = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.conf_threshold <= 1.0:
            raise ValueError("conf_threshold must be within [0, 1]")
        if self.layout not in LAYOUTS:
            raise ValueError(f"layout must be one of {LAYOUTS}, got {self.layout!r}")


class YoloDecoder:
    """
    Turns a single-image YOLO output tensor into `Detection`s in original
    image coordinates, in the tensor's native candidate order.

    Supported candidate layouts:
    - (N, 4 + C):     [cx, cy, w, h, class_scores...]
    - (N, 5 + C):     [cx, cy, w, h, obj, class_scores...]
    - and the transposed channel-first forms, e.g. 84 x 8400 for YOLOv8
    """

    def __init__(
        self,
        cfg: DecoderConfig = DecoderConfig(),
        labels: Optional[LabelTable] = None,
        num_classes: Optional[int] = None,
    ):
        self.cfg = cfg
        self.labels = labels if labels is not None else LabelTable()
        self.num_classes = num_classes if num_classes is not None else self.labels.num_classes
        if self.num_classes < 1:
            raise ValueError("num_classes must be >= 1")

    @property
    def channels(self) -> int:
        return 4 + int(self.cfg.has_objectness) + self.num_classes

    def decode(
        self,
        preds: np.ndarray,
        scale: Optional[ScaleInfo] = None,
        conf_threshold: Optional[float] = None,
    ) -> List[Detection]:
        """
        Args:
            preds: raw model output for one image
            scale: inverse-resize bookkeeping from the codec; None leaves boxes in model space
            conf_threshold: per-call override of `cfg.conf_threshold`
        """

        threshold = self.cfg.conf_threshold if conf_threshold is None else conf_threshold
        rows = self._to_rows(preds)

        boxes = rows[:, :4]
        if self.cfg.has_objectness:
            objectness = rows[:, 4]
            class_scores = rows[:, 5:]
        else:
            objectness = None
            class_scores = rows[:, 4:]

        if rows.shape[0] == 0:
            return []

        # Scores are compared and reported in float64 so a kept score never
        # prints below the threshold it passed.
        class_ids = np.argmax(class_scores, axis=1)
        scores = class_scores[np.arange(class_scores.shape[0]), class_ids].astype(np.float64)
        if objectness is not None:
            scores = objectness.astype(np.float64) * scores

        # Reject cheaply before building any Detection; NaN never passes.
        keep = scores >= float(threshold)
        if self.cfg.class_ids is not None:
            keep &= np.isin(class_ids, np.asarray(list(self.cfg.class_ids)))
        idx = np.flatnonzero(keep)
        if idx.size == 0:
            return []

        # cxcywh -> xyxy
        cx, cy, w, h = boxes[idx].T
        xyxy = np.stack([cx - w / 2, cy - h / 2, cx + w / 2, cy + h / 2], axis=1)
        if scale is not None:
            xyxy = map_back(xyxy, scale)

        out: List[Detection] = []
        for row, (x1, y1, x2, y2) in zip(idx, xyxy):
            cls = int(class_ids[row])
            out.append(
                Detection(
                    x=float(x1),
                    y=float(y1),
                    width=float(x2 - x1),
                    height=float(y2 - y1),
                    score=float(min(1.0, max(0.0, scores[row]))),
                    class_id=cls,
                    label=self.labels.name(cls),
                    index=int(row),
                )
            )
        return out

    def accepts_shape(self, shape: Sequence[Optional[int]]) -> bool:
        """
        Whether an engine-reported output shape can be decoded with this
        config. None stands for a dynamic dim and matches anything.
        """

        dims = list(shape)
        if len(dims) == 3:
            if dims[0] not in (None, 1):
                return False
            dims = dims[1:]
        if len(dims) != 2:
            return False

        c = self.channels
        first, second = dims
        if self.cfg.layout == "channels":
            return first in (None, c)
        if self.cfg.layout == "rows":
            return second in (None, c)
        return first in (None, c) or second in (None, c)

    def _to_rows(self, preds: np.ndarray) -> np.ndarray:
        """Normalize the output to (N, channels) float32, candidate-first."""

        p = np.asarray(preds)
        if p.ndim == 3:
            if p.shape[0] != 1:
                raise ShapeError(
                    f"Batch > 1 is not supported (got shape {p.shape}).", stage="decode_detections"
                )
            p = p[0]
        if p.ndim != 2:
            raise ShapeError(f"Unsupported YOLO output shape: {np.shape(preds)}", stage="decode_detections")

        c = self.channels
        layout = self.cfg.layout
        if layout == "auto":
            if p.shape[0] == c:
                # Square outputs are ambiguous; channel-first is the common export.
                layout = "channels"
            elif p.shape[1] == c:
                layout = "rows"
            else:
                raise ShapeError(
                    f"Output shape {np.shape(preds)} has no axis of size {c} "
                    f"(4 box + {int(self.cfg.has_objectness)} objectness + {self.num_classes} classes)",
                    stage="decode_detections",
                )

        if layout == "channels":
            p = p.T
        if p.shape[1] != c:
            raise ShapeError(
                f"Expected {c} values per candidate for {layout} layout, got shape {np.shape(preds)}",
                stage="decode_detections",
            )
        return np.ascontiguousarray(p, dtype=np.float32)


def decode(
    output: np.ndarray,
    num_classes: int,
    *,
    conf_threshold: float = 0.25,
    scale: Optional[ScaleInfo] = None,
    layout: str = "auto",
    has_objectness: bool = False,
    labels: Optional[LabelTable] = None,
) -> List[Detection]:
    cfg = DecoderConfig(conf_threshold=conf_threshold, layout=layout, has_objectness=has_objectness)
    return YoloDecoder(cfg, labels=labels, num_classes=num_classes).decode(output, scale=scale)
