"""
Error kinds raised by the generation pipeline.

Every failure inside a generation request is fatal to that request. Errors carry
the pipeline ``phase`` they were raised in so the caller can report it.
"""


class InferenceError(Exception):
    """Base class for all pipeline errors."""

    phase: str = "generation"

    def __init__(self, message: str, *, phase: str | None = None):
        super().__init__(message)
        if phase is not None:
            self.phase = phase

    def __str__(self) -> str:
        return f"[{self.phase}] {super().__str__()}"


class ArgumentError(InferenceError):
    """Malformed command-line input or request parameters."""

    phase = "arguments"


class ModelLoadError(InferenceError):
    phase = "model load"


class ContextCreateError(InferenceError):
    """The model could not allocate state for the requested capacity."""

    phase = "context"


class TokenizeError(InferenceError):
    phase = "tokenize"


class EncodeError(InferenceError):
    phase = "encode"


class DecodeError(InferenceError):
    phase = "decode"


class DetokenizeError(InferenceError):
    phase = "detokenize"


class SamplerInvariantError(InferenceError):
    """The sampler received a distribution it cannot select from."""

    phase = "sampling"
