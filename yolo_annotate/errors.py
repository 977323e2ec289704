from __future__ import annotations

from typing import Dict, Optional


class PipelineError(Exception):
    """
    Base class for failures raised by the annotation pipeline.

    Every error carries the `stage` that failed so hosts can report precisely
    where a request stopped.
    """

    stage: str = "pipeline"

    def __init__(self, message: str, *, stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if stage is not None:
            self.stage = stage

    def to_dict(self) -> Dict[str, str]:
        return {"error": type(self).__name__, "stage": self.stage, "message": self.message}

    def __str__(self) -> str:
        return f"[{self.stage}] {self.message}"


class DecodeError(PipelineError):
    """Upload bytes are not a readable image."""

    stage = "decode_image"


class ShapeError(PipelineError):
    """Resize or tensor dimensions are invalid."""

    stage = "preprocess"


class ModelLoadError(PipelineError):
    """Model is missing, corrupt or has an incompatible signature. Fatal at startup."""

    stage = "model_load"


class InferenceError(PipelineError):
    stage = "inference"


class EncodeError(PipelineError):
    stage = "render"
