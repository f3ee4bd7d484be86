"""
Adapter exposing the in-repo torch models through the engine's model contract.

Checkpoints are plain ``torch.save`` dictionaries::

    {"kind": "decoder" | "seq2seq", "config": {...}, "state_dict": {...}, "vocab": {...}}
"""

import logging
from pathlib import Path

import torch

from baseinf.core.kv_cache import KVCache
from baseinf.models.decoder import TinyDecoder
from baseinf.models.seq2seq import TinySeq2Seq
from baseinf.tokenization.char_vocab import CharVocabulary
from baseinf.tokenization.vocab import TOKEN_NULL

logger = logging.getLogger(__name__)

MODEL_KINDS: dict[str, type[TinyDecoder] | type[TinySeq2Seq]] = {
    "decoder": TinyDecoder,
    "seq2seq": TinySeq2Seq,
}


class TorchState:
    """KV caches (and encoder memory) of one request against a torch model."""

    def __init__(self, module: TinyDecoder | TinySeq2Seq, caches: list[KVCache], device: torch.device):
        self.module = module
        self.caches = caches
        self.device = device
        self.memory: torch.Tensor | None = None

    def _as_input(self, tokens: list[int]) -> torch.Tensor:
        return torch.tensor([tokens], dtype=torch.long, device=self.device)

    @torch.no_grad()
    def encode(self, tokens: list[int]) -> None:
        if not isinstance(self.module, TinySeq2Seq):
            raise RuntimeError("Model has no encoder")
        self.memory = self.module.encode(self._as_input(tokens))

    @torch.no_grad()
    def decode(self, tokens: list[int], start_pos: int) -> torch.Tensor:
        input_ids = self._as_input(tokens)
        if isinstance(self.module, TinySeq2Seq):
            if self.memory is None:
                raise RuntimeError("Encoder-decoder model must encode before decoding")
            logits = self.module(input_ids, self.memory, caches=self.caches, start_pos=start_pos)
        else:
            logits = self.module(input_ids, caches=self.caches, start_pos=start_pos)
        return logits[0, -1].float()

    def release(self) -> None:
        self.caches = []
        self.memory = None


class TorchModel:
    """
    A TinyDecoder or TinySeq2Seq paired with its character vocabulary.
    """

    def __init__(self, module: TinyDecoder | TinySeq2Seq, vocab: CharVocabulary, device: str | torch.device = "cpu"):
        if module.vocab_size != vocab.vocab_size:
            raise ValueError(f"Model vocab_size ({module.vocab_size}) does not match vocabulary ({vocab.vocab_size})")
        self.device = torch.device(device)
        self.module = module.to(self.device).eval()
        self.vocab = vocab

    @property
    def has_encoder(self) -> bool:
        return isinstance(self.module, TinySeq2Seq)

    @property
    def decoder_start_token(self) -> int:
        token = getattr(self.module, "decoder_start_token_id", None)
        return TOKEN_NULL if token is None else token

    @property
    def max_positions(self) -> int:
        return self.module.max_seq_len

    def new_state(self, capacity: int, max_batch_size: int) -> TorchState:
        if capacity > self.max_positions:
            raise ValueError(f"Requested capacity {capacity} exceeds the model's {self.max_positions} positions")
        if max_batch_size > capacity:
            raise ValueError(f"max_batch_size {max_batch_size} exceeds capacity {capacity}")

        num_layers = len(self.module.decoder_blocks if self.has_encoder else self.module.blocks)
        dtype = next(self.module.parameters()).dtype
        caches = KVCache.for_layers(
            num_layers, capacity, self.module.num_heads, self.module.head_dim, device=self.device, dtype=dtype
        )
        return TorchState(self.module, caches, self.device)

    def close(self) -> None:
        self.module = None

    def __enter__(self) -> "TorchModel":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def save_checkpoint(model: TorchModel, path: str | Path) -> None:
    kind = "seq2seq" if model.has_encoder else "decoder"
    torch.save(
        {
            "kind": kind,
            "config": model.module.get_config(),
            "state_dict": model.module.state_dict(),
            "vocab": model.vocab.to_dict(),
        },
        path,
    )


def load_checkpoint(path: str | Path, device: str | torch.device = "cpu") -> TorchModel:
    checkpoint = torch.load(path, map_location="cpu", weights_only=True)
    if not isinstance(checkpoint, dict) or "kind" not in checkpoint:
        raise ValueError(f"{path} is not a baseinf checkpoint")

    try:
        model_cls = MODEL_KINDS[checkpoint["kind"]]
    except KeyError:
        raise ValueError(f"Unknown model kind {checkpoint['kind']!r}; expected one of {list(MODEL_KINDS)}") from None

    module = model_cls(**checkpoint["config"])

    # Handle DDP prefix if present (e.g. "module.")
    state_dict = {k.removeprefix("module."): v for k, v in checkpoint["state_dict"].items()}
    module.load_state_dict(state_dict)

    vocab = CharVocabulary.from_dict(checkpoint["vocab"])
    logger.info(f"Loaded {checkpoint['kind']} checkpoint from {path} (vocab_size={vocab.vocab_size})")
    return TorchModel(module, vocab, device=device)
