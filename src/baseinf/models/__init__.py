from .base import Model, ModelState
from .decoder import TinyDecoder
from .hf import HFModel
from .loader import load_model, resolve_device
from .seq2seq import TinySeq2Seq
from .torch_model import TorchModel, load_checkpoint, save_checkpoint

__all__ = [
    "HFModel",
    "Model",
    "ModelState",
    "TinyDecoder",
    "TinySeq2Seq",
    "TorchModel",
    "load_checkpoint",
    "load_model",
    "resolve_device",
    "save_checkpoint",
]
