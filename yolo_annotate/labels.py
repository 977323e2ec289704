from __future__ import annotations

from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, Mapping, Union


PathLike = Union[str, Path]

COCO_LABELS = (
    "person", "bicycle", "car", "motorcycle", "airplane", "bus", "train", "truck", "boat",
    "traffic light", "fire hydrant", "stop sign", "parking meter", "bench", "bird", "cat", "dog", "horse",
    "sheep", "cow", "elephant", "bear", "zebra", "giraffe", "backpack", "umbrella", "handbag", "tie",
    "suitcase", "frisbee", "skis", "snowboard", "sports ball", "kite", "baseball bat", "baseball glove",
    "skateboard", "surfboard", "tennis racket", "bottle", "wine glass", "cup", "fork", "knife", "spoon",
    "bowl", "banana", "apple", "sandwich", "orange", "broccoli", "carrot", "hot dog", "pizza", "donut",
    "cake", "chair", "couch", "potted plant", "bed", "dining table", "toilet", "tv", "laptop", "mouse",
    "remote", "keyboard", "cell phone", "microwave", "oven", "toaster", "sink", "refrigerator", "book",
    "clock", "vase", "scissors", "teddy bear", "hair drier", "toothbrush",
)


def load_class_names(metadata_path: PathLike) -> Dict[int, str]:
    """
    Load class names from a lightweight metadata file.

    Two layouts are understood. The Ultralytics-style YAML mapping:

        names:
          0: person
          1: bicycle
          ...

    and a plain text file with one class name per line (line number = id).

    This function intentionally avoids adding a PyYAML dependency.
    """

    path = Path(metadata_path)
    if not path.exists():
        raise FileNotFoundError(f"Label file not found: {path}")

    lines = path.read_text(encoding="utf-8").splitlines()
    if any(line.strip() == "names:" for line in lines):
        return _parse_names_mapping(lines)
    names = [line.strip() for line in lines if line.strip() and not line.strip().startswith("#")]
    return dict(enumerate(names))


def _parse_names_mapping(lines: Iterable[str]) -> Dict[int, str]:
    names: Dict[int, str] = {}
    in_names = False
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line == "names:":
            in_names = True
            continue
        if not in_names:
            continue
        # A non-indented key ends the names block.
        if not raw[:1].isspace() and not line[:1].isdigit():
            break
        if ":" not in line:
            continue
        left, right = line.split(":", 1)
        left = left.strip()
        if not left.isdigit():
            continue
        names[int(left)] = right.strip().strip("'").strip('"')
    return names


class LabelTable(Mapping[int, str]):
    """
    Read-only class id -> name table shared by every request.
    """

    def __init__(self, names: Union[Mapping[int, str], Iterable[str]] = COCO_LABELS):
        if isinstance(names, Mapping):
            table = {int(k): str(v) for k, v in names.items()}
        else:
            table = {i: str(name) for i, name in enumerate(names)}
        if any(k < 0 for k in table):
            raise ValueError("class ids must be >= 0")
        self._names = MappingProxyType(table)

    @classmethod
    def from_file(cls, path: PathLike) -> "LabelTable":
        names = load_class_names(path)
        if not names:
            raise ValueError(f"No class names found in {path}")
        return cls(names)

    @property
    def num_classes(self) -> int:
        # Sparse tables still cover every id up to the largest one.
        return max(self._names) + 1 if self._names else 0

    def name(self, class_id: int) -> str:
        return self._names.get(int(class_id), str(class_id))

    def __getitem__(self, class_id: int) -> str:
        return self._names[class_id]

    def __iter__(self) -> Iterator[int]:
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __repr__(self) -> str:
        return f"LabelTable(num_classes={self.num_classes})"
