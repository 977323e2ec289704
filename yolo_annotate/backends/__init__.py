"""
Inference engines for yolo_annotate.

Runtime-specific backends import their runtime lazily so the pre/post-processing
code stays usable without installing every inference library.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence, Union

from ..errors import ModelLoadError
from .base import CallableBackend, InferenceEngine, check_input, normalize_signature


PathLike = Union[str, Path]

__all__ = [
    "CallableBackend",
    "InferenceEngine",
    "check_input",
    "load_engine",
    "normalize_signature",
]


def _infer_backend(model: Union[PathLike, bytes]) -> str:
    if isinstance(model, (bytes, bytearray)):
        return "onnxruntime"
    suffix = Path(model).suffix.lower()
    if suffix == ".onnx":
        return "onnxruntime"
    if suffix in {".torchscript", ".ts", ".pt"}:
        return "torchscript"
    raise ModelLoadError(f"Could not infer backend from extension '{suffix}'. Pass backend=... explicitly.")


def load_engine(
    model: Union[PathLike, bytes],
    *,
    backend: Optional[str] = None,
    onnx_providers: Optional[Sequence[str]] = None,
    onnx_input_name: Optional[str] = None,
    onnx_output_name: Optional[str] = None,
    torch_device: str = "cpu",
    torch_half: bool = False,
    torch_output_index: int = 0,
    input_shape: Sequence[Optional[int]] = (1, 3, 640, 640),
) -> InferenceEngine:
    """
    Load a model once at startup.

    Args:
        model: path to the model file, or its serialized bytes (ONNX unless backend says otherwise)
        backend: "onnxruntime" / "torchscript"; None infers it from the file extension
        input_shape: declared NCHW input for runtimes that do not expose one (TorchScript)

    Raises:
        ModelLoadError: missing/corrupt model or an incompatible input signature.
    """

    chosen = (backend or _infer_backend(model)).lower()

    if chosen == "onnxruntime":
        from .onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

        return OnnxRuntimeBackend(
            model,
            OnnxRuntimeBackendConfig(
                providers=onnx_providers,
                input_name=onnx_input_name,
                output_name=onnx_output_name,
            ),
        )

    if chosen == "torchscript":
        from .torchscript_backend import TorchScriptBackend, TorchScriptBackendConfig

        return TorchScriptBackend(
            model,
            TorchScriptBackendConfig(
                device=torch_device,
                half=torch_half,
                output_index=torch_output_index,
                input_shape=tuple(input_shape),
            ),
        )

    raise ModelLoadError(f"Unsupported backend: {backend!r}")
