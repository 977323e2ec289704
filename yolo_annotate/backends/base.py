from __future__ import annotations

from typing import Callable, Optional, Protocol, Sequence, Tuple, Union

import numpy as np

from ..errors import InferenceError, ModelLoadError


Dim = Optional[int]


class InferenceEngine(Protocol):
    """
    Loaded model, ready to run. Construction is the load step; `run` must be
    safe to call from several threads at once and must not mutate the engine.
    """

    @property
    def input_shape(self) -> Tuple[Dim, ...]:
        ...

    @property
    def output_shape(self) -> Optional[Tuple[Dim, ...]]:
        """Primary output shape with None for dynamic dims, or None when the runtime cannot tell."""
        ...

    def run(self, blob: np.ndarray) -> np.ndarray:
        ...


def output_dims(shape: Sequence[Union[int, str, None]]) -> Tuple[Dim, ...]:
    return tuple(d if isinstance(d, int) and d > 0 else None for d in shape)


def normalize_signature(shape: Sequence[Union[int, str, None]], source: str) -> Tuple[Dim, ...]:
    """
    Turn an engine-reported input shape into ints, with None for dynamic dims.

    Raises ModelLoadError unless the signature is NCHW with 3 channels.
    """

    dims = output_dims(shape)
    if len(dims) != 4:
        raise ModelLoadError(f"{source}: expected a 4-D NCHW input, got {list(shape)}")
    if dims[1] not in (None, 3):
        raise ModelLoadError(f"{source}: expected 3 input channels, got {dims[1]}")
    if dims[0] not in (None, 1):
        raise ModelLoadError(f"{source}: expected batch size 1, got {dims[0]}")
    return dims


def check_input(blob: np.ndarray, expected: Sequence[Dim]) -> None:
    if not isinstance(blob, np.ndarray):
        raise InferenceError(f"Input tensor must be a NumPy array, got {type(blob).__name__}")
    if blob.ndim != len(expected):
        raise InferenceError(f"Input tensor must be {len(expected)}-D, got shape {blob.shape}")
    for got, want in zip(blob.shape, expected):
        if want is not None and got != want:
            raise InferenceError(f"Input tensor shape {blob.shape} does not match model input {tuple(expected)}")


class CallableBackend:
    """
    Adapts any `fn(blob) -> ndarray` into an engine.

    Handy for tests (known output tensors) and for runtimes without a
    dedicated backend.
    """

    def __init__(
        self,
        fn: Callable[[np.ndarray], np.ndarray],
        input_shape: Sequence[Union[int, str, None]] = (1, 3, 640, 640),
        name: str = "callable",
        output_shape: Optional[Sequence[Union[int, str, None]]] = None,
    ):
        self._fn = fn
        self.name = name
        self._input_shape = normalize_signature(input_shape, name)
        self._output_shape = output_dims(output_shape) if output_shape is not None else None

    @property
    def input_shape(self) -> Tuple[Dim, ...]:
        return self._input_shape

    @property
    def output_shape(self) -> Optional[Tuple[Dim, ...]]:
        return self._output_shape

    def run(self, blob: np.ndarray) -> np.ndarray:
        check_input(blob, self._input_shape)
        try:
            out = self._fn(blob)
        except InferenceError:
            raise
        except Exception as e:
            raise InferenceError(f"{self.name} failed: {e}") from e
        return np.asarray(out)
