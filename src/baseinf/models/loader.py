import logging
from pathlib import Path

import torch

from baseinf.errors import ModelLoadError
from baseinf.models.base import Model
from baseinf.models.hf import HFModel
from baseinf.models.torch_model import load_checkpoint

logger = logging.getLogger(__name__)


def resolve_device(n_gpu_layers: int = 99, device: str = "auto") -> torch.device:
    """
    Picks the device a model is placed on.

    An explicit ``device`` wins. With ``"auto"``, any positive ``n_gpu_layers``
    offloads to CUDA when it is available; otherwise the model stays on the CPU.
    """
    if device != "auto":
        return torch.device(device)
    if n_gpu_layers > 0 and torch.cuda.is_available():
        return torch.device("cuda")
    return torch.device("cpu")


def load_model(path: str | Path, n_gpu_layers: int = 99, device: str = "auto") -> Model:
    """
    Load a model from ``path``.

    Supports:
    - Local directory with ``config.json`` (HuggingFace Transformers format)
    - A baseinf torch checkpoint file

    Raises:
        ModelLoadError: If nothing loadable is found at ``path`` or loading fails.
    """
    path = Path(path)
    if not path.exists():
        raise ModelLoadError(f"Unable to load model from {path}: no such file or directory")

    try:
        target = resolve_device(n_gpu_layers, device)
    except RuntimeError as e:
        raise ModelLoadError(f"Invalid device {device!r}: {e}") from e
    logger.info(f"Loading model from {path} on {target} (n_gpu_layers={n_gpu_layers})")

    if path.is_dir() and not (path / "config.json").exists():
        raise ModelLoadError(f"Unable to load model from {path}: directory has no config.json")

    try:
        if path.is_dir():
            model = HFModel.from_pretrained(path, device=target)
        else:
            model = load_checkpoint(path, device=target)
    except Exception as e:
        raise ModelLoadError(f"Unable to load model from {path}: {e}") from e

    logger.info("Model loaded successfully")
    return model
