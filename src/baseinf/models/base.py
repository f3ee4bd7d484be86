"""
Contract between the generation engine and a loaded model.

The engine never looks inside a model. It needs the vocabulary, the topology
flags, and per-request state exposing two computation entry points.
"""

from typing import Protocol

from torch import Tensor

from baseinf.tokenization.vocab import Vocabulary


class ModelState(Protocol):
    """Model-side recurrent state (KV cache, encoder memory) of one request."""

    def encode(self, tokens: list[int]) -> None:
        """Runs the encoder over ``tokens``. Only valid for encoder-decoder models."""
        ...

    def decode(self, tokens: list[int], start_pos: int) -> Tensor:
        """
        Runs the decoder over ``tokens`` placed at ``start_pos`` and returns the
        logits of the last position, shape [vocab_size].
        """
        ...

    def release(self) -> None: ...


class Model(Protocol):
    vocab: Vocabulary

    @property
    def has_encoder(self) -> bool: ...

    @property
    def decoder_start_token(self) -> int:
        """Decoder-start token id, or TOKEN_NULL if the model defines none."""
        ...

    def new_state(self, capacity: int, max_batch_size: int) -> ModelState:
        """
        Allocates state able to hold ``capacity`` positions. Raises if the model
        cannot provide it.
        """
        ...

    def close(self) -> None: ...
