"""
Batch construction.

A batch is the unit of work submitted to the model for one computation step. The
constructors here are pure: they never check bounds. Capacity validation is done
by the generation loop before a batch is submitted.
"""

from collections.abc import Sequence
from dataclasses import dataclass


@dataclass(frozen=True)
class Batch:
    """
    Tokens submitted together for one model step.

    Attributes:
        tokens (tuple[int, ...]): Token ids, in sequence order.
        start_pos (int | None): Position of the first token in the context. ``None``
            means the batch continues at the context's current cursor.
    """

    tokens: tuple[int, ...]
    start_pos: int | None = None

    @property
    def size(self) -> int:
        return len(self.tokens)


def make_batch(tokens: Sequence[int], start_pos: int | None = None) -> Batch:
    return Batch(tokens=tuple(int(t) for t in tokens), start_pos=start_pos)


def prefill_batch(tokens: Sequence[int]) -> Batch:
    """The initial batch covering the whole prompt."""
    return make_batch(tokens, start_pos=0)


def decoder_start_batch(token: int) -> Batch:
    """One-token batch that starts decoding after an encoder pass."""
    return make_batch([token], start_pos=0)


def next_token_batch(token: int, pos: int) -> Batch:
    """One-token batch carrying the most recently sampled token."""
    return make_batch([token], start_pos=pos)
