"""
HuggingFace Transformers adapter.

Wraps a causal or sequence-to-sequence LM loaded from a local directory so it can
be driven by the generation loop.
"""

import logging
from pathlib import Path

import torch

from baseinf.tokenization.hf_vocab import HFVocabulary
from baseinf.tokenization.vocab import TOKEN_NULL

logger = logging.getLogger(__name__)

_MAX_POSITION_ATTRS = ("max_position_embeddings", "n_positions", "max_sequence_length")


class HFState:
    """Past key/values (and encoder outputs) of one request."""

    def __init__(self, model, device: torch.device):
        self.model = model
        self.device = device
        self.past_key_values = None
        self.encoder_outputs = None

    def _as_input(self, tokens: list[int]) -> torch.Tensor:
        return torch.tensor([tokens], dtype=torch.long, device=self.device)

    @torch.no_grad()
    def encode(self, tokens: list[int]) -> None:
        self.encoder_outputs = self.model.get_encoder()(input_ids=self._as_input(tokens), return_dict=True)

    @torch.no_grad()
    def decode(self, tokens: list[int], start_pos: int) -> torch.Tensor:
        input_ids = self._as_input(tokens)
        if self.model.config.is_encoder_decoder:
            if self.encoder_outputs is None:
                raise RuntimeError("Encoder-decoder model must encode before decoding")
            outputs = self.model(
                encoder_outputs=self.encoder_outputs,
                decoder_input_ids=input_ids,
                past_key_values=self.past_key_values,
                use_cache=True,
                return_dict=True,
            )
        else:
            outputs = self.model(
                input_ids=input_ids,
                past_key_values=self.past_key_values,
                use_cache=True,
                return_dict=True,
            )
        self.past_key_values = outputs.past_key_values
        return outputs.logits[0, -1].float()

    def release(self) -> None:
        self.past_key_values = None
        self.encoder_outputs = None


class HFModel:
    def __init__(self, model, vocab: HFVocabulary, device: str | torch.device = "cpu"):
        self.device = torch.device(device)
        self.model = model
        self.vocab = vocab

    @property
    def has_encoder(self) -> bool:
        return bool(getattr(self.model.config, "is_encoder_decoder", False))

    @property
    def decoder_start_token(self) -> int:
        token = getattr(self.model.config, "decoder_start_token_id", None)
        return TOKEN_NULL if token is None else token

    @property
    def max_positions(self) -> int | None:
        for attr in _MAX_POSITION_ATTRS:
            value = getattr(self.model.config, attr, None)
            if isinstance(value, int):
                return value
        return None

    def new_state(self, capacity: int, max_batch_size: int) -> HFState:
        limit = self.max_positions
        if limit is not None and capacity > limit:
            raise ValueError(f"Requested capacity {capacity} exceeds the model's {limit} positions")
        return HFState(self.model, self.device)

    def close(self) -> None:
        self.model = None
        if self.device.type == "cuda":
            torch.cuda.empty_cache()

    def __enter__(self) -> "HFModel":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @classmethod
    def from_pretrained(
        cls,
        model_dir: str | Path,
        device: str | torch.device = "cpu",
        dtype: torch.dtype | None = None,
    ) -> "HFModel":
        from transformers import AutoConfig, AutoModelForCausalLM, AutoModelForSeq2SeqLM

        model_dir = str(model_dir)
        config = AutoConfig.from_pretrained(model_dir)
        model_cls = AutoModelForSeq2SeqLM if getattr(config, "is_encoder_decoder", False) else AutoModelForCausalLM

        logger.info(f"Loading {model_cls.__name__} from {model_dir}")
        logger.info(f"Model type: {getattr(config, 'model_type', 'unknown')}")

        # Left to the checkpoint unless a dtype is requested
        kwargs = {} if dtype is None else {"dtype": dtype}
        model = model_cls.from_pretrained(model_dir, **kwargs)
        model.to(device)
        model.eval()

        eos = getattr(model.generation_config, "eos_token_id", None)
        eog_ids = eos if isinstance(eos, list) else [eos] if eos is not None else []
        vocab = HFVocabulary.from_pretrained(model_dir, eog_token_ids=eog_ids)
        return cls(model, vocab, device=device)
