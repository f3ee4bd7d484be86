__version__ = "0.1.0"

from .errors import InferenceError
from .generation import GenerationLoop, GenerationResult, TerminalState, generate
from .models import load_model
from .sampling import SamplerChain, SamplingParams, build_sampler_chain

__all__ = [
    "GenerationLoop",
    "GenerationResult",
    "InferenceError",
    "SamplerChain",
    "SamplingParams",
    "TerminalState",
    "build_sampler_chain",
    "generate",
    "load_model",
]
