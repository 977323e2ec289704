from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from ..errors import InferenceError, ModelLoadError
from .base import Dim, check_input, normalize_signature, output_dims


PathLike = Union[str, Path]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    Configuration for ONNX Runtime inference.

    - providers: ORT execution providers (e.g., ["CUDAExecutionProvider", "CPUExecutionProvider"]);
      unavailable ones are dropped, CPU is the fallback
    - input_name/output_name: override auto-selected I/O names if needed
    - intra_op_threads: 0 lets ORT decide
    """

    providers: Optional[Sequence[str]] = None
    input_name: Optional[str] = None
    output_name: Optional[str] = None
    intra_op_threads: int = 0


class OnnxRuntimeBackend:
    """
    ONNX Runtime engine.

    Accepts a model path or the serialized model bytes. Expects an NCHW
    float32 blob shaped (1, 3, H, W) and returns the primary output.
    """

    def __init__(
        self,
        model: Union[PathLike, bytes],
        cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig(),
    ):
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime` "
                "(or `onnxruntime-gpu`)."
            ) from e

        self._ort = ort
        if isinstance(model, (bytes, bytearray)):
            self.model_path: Optional[Path] = None
            source: Union[str, bytes] = bytes(model)
            label = "<onnx bytes>"
        else:
            self.model_path = Path(model)
            if not self.model_path.exists():
                raise ModelLoadError(f"Model file not found: {self.model_path}")
            source = str(self.model_path)
            label = str(self.model_path)

        sess_opts = ort.SessionOptions()
        if cfg.intra_op_threads > 0:
            sess_opts.intra_op_num_threads = cfg.intra_op_threads
        providers = self._select_providers(cfg.providers)
        try:
            self.session = ort.InferenceSession(source, sess_options=sess_opts, providers=providers)
        except Exception as e:
            raise ModelLoadError(f"Could not load ONNX model {label}: {e}") from e

        inputs = self.session.get_inputs()
        outputs = self.session.get_outputs()
        if not inputs or not outputs:
            raise ModelLoadError(f"{label}: model must have at least one input and one output")

        self.input_name = cfg.input_name or inputs[0].name
        self.output_name = cfg.output_name or outputs[0].name
        by_name = {i.name: i for i in inputs}
        if self.input_name not in by_name:
            raise ModelLoadError(f"Input name {self.input_name!r} not found. Available: {sorted(by_name)}")
        if self.output_name not in {o.name for o in outputs}:
            raise ModelLoadError(f"Output name {self.output_name!r} not found in {label}")

        self._input_shape = normalize_signature(by_name[self.input_name].shape, label)
        out_shape = next(o.shape for o in outputs if o.name == self.output_name)
        # Unknown rank is reported as None.
        self._output_shape = output_dims(out_shape) if out_shape is not None else None
        logger.info(
            "Loaded ONNX model %s (input %s %s, output %s %s, providers %s)",
            label,
            self.input_name,
            self._input_shape,
            self.output_name,
            self._output_shape,
            ",".join(self.providers_in_use),
        )

    def _select_providers(self, requested: Optional[Sequence[str]]) -> Optional[Sequence[str]]:
        if requested is None:
            return None
        available = set(self._ort.get_available_providers())
        chosen = [p for p in requested if p in available]
        dropped = [p for p in requested if p not in available]
        if dropped:
            logger.warning("Execution providers not available, skipping: %s", ", ".join(dropped))
        if "CPUExecutionProvider" not in chosen:
            chosen.append("CPUExecutionProvider")
        return chosen

    @property
    def input_shape(self) -> Tuple[Dim, ...]:
        return self._input_shape

    @property
    def output_shape(self) -> Optional[Tuple[Dim, ...]]:
        return self._output_shape

    @property
    def providers_in_use(self) -> Sequence[str]:
        # ORT returns providers in priority order for this session.
        return tuple(self.session.get_providers())

    def run(self, blob: np.ndarray) -> np.ndarray:
        check_input(blob, self._input_shape)
        try:
            outputs = self.session.run([self.output_name], {self.input_name: blob})
        except Exception as e:
            raise InferenceError(f"ONNX Runtime failed: {e}") from e
        return outputs[0]
