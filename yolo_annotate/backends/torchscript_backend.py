from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from ..errors import InferenceError, ModelLoadError
from .base import Dim, check_input, normalize_signature


PathLike = Union[str, Path]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TorchScriptBackendConfig:
    """
    Configuration for TorchScript inference.

    - device: "cpu" or "cuda" (if available)
    - half: cast input to float16 (only if the model expects it)
    - output_index: if the model returns multiple outputs, select this index
    - input_shape: TorchScript carries no input signature, so it is declared here
    """

    device: str = "cpu"
    half: bool = False
    output_index: int = 0
    input_shape: Sequence[Optional[int]] = (1, 3, 640, 640)


class TorchScriptBackend:
    """
    TorchScript engine using `torch.jit.load`.

    Works without the model's Python class code, unlike raw .pt checkpoints.
    """

    def __init__(
        self,
        model: Union[PathLike, bytes],
        cfg: TorchScriptBackendConfig = TorchScriptBackendConfig(),
    ):
        try:
            import torch  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError("torch is required for the TorchScript backend. Install with `pip install torch`.") from e

        self._torch = torch
        if isinstance(model, (bytes, bytearray)):
            self.model_path: Optional[Path] = None
            source = io.BytesIO(bytes(model))
            label = "<torchscript bytes>"
        else:
            self.model_path = Path(model)
            if not self.model_path.exists():
                raise ModelLoadError(f"Model file not found: {self.model_path}")
            source = str(self.model_path)
            label = str(self.model_path)

        self._input_shape = normalize_signature(tuple(cfg.input_shape), label)
        self.device = torch.device(cfg.device)
        self.half = cfg.half
        self.output_index = cfg.output_index

        try:
            model_obj = torch.jit.load(source, map_location=self.device)
        except Exception as e:
            raise ModelLoadError(f"Could not load TorchScript model {label}: {e}") from e
        model_obj.eval()
        self.model = model_obj
        logger.info("Loaded TorchScript model %s on %s", label, self.device)

    @property
    def input_shape(self) -> Tuple[Dim, ...]:
        return self._input_shape

    @property
    def output_shape(self) -> Optional[Tuple[Dim, ...]]:
        # TorchScript modules carry no output signature.
        return None

    def run(self, blob: np.ndarray) -> np.ndarray:
        check_input(blob, self._input_shape)
        torch = self._torch
        x = torch.as_tensor(blob, device=self.device)
        x = x.half() if self.half else x.float()
        x = x.contiguous()

        try:
            with torch.no_grad():
                y = self.model(x)
        except Exception as e:
            raise InferenceError(f"TorchScript model failed: {e}") from e

        if isinstance(y, (tuple, list)):
            y = y[self.output_index]
        return y.detach().float().to("cpu").numpy()
