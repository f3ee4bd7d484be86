"""
Execution context: the model-side state of one generation request.

The context owns the KV cache sized to a fixed capacity and a position cursor
``n_pos`` that advances by the size of every decoded batch. Calls are blocking
and must not overlap on the same context.
"""

import contextlib
import logging
import time
from collections.abc import Iterator
from dataclasses import dataclass

from torch import Tensor

from baseinf.batch import Batch
from baseinf.errors import ContextCreateError, DecodeError, EncodeError, InferenceError
from baseinf.models.base import Model

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContextParams:
    """
    Attributes:
        capacity (int): Total positions the KV cache must hold.
        max_batch_size (int): Largest batch that may be submitted in one call.
    """

    capacity: int
    max_batch_size: int


@dataclass
class ContextPerf:
    """Timing counters. Multi-token batches count as prompt evaluation."""

    t_encode_ms: float = 0.0
    n_encode: int = 0
    t_p_eval_ms: float = 0.0
    n_p_eval: int = 0
    t_eval_ms: float = 0.0
    n_eval: int = 0

    def record_decode(self, n_tokens: int, elapsed_ms: float) -> None:
        if n_tokens > 1:
            self.t_p_eval_ms += elapsed_ms
            self.n_p_eval += n_tokens
        else:
            self.t_eval_ms += elapsed_ms
            self.n_eval += n_tokens

    def summary(self) -> list[str]:
        lines = []
        if self.n_encode:
            lines.append(_perf_line("encode time", self.t_encode_ms, self.n_encode, "tokens"))
        lines.append(_perf_line("prompt eval time", self.t_p_eval_ms, self.n_p_eval, "tokens"))
        lines.append(_perf_line("eval time", self.t_eval_ms, self.n_eval, "runs"))
        return lines


def _perf_line(label: str, t_ms: float, n: int, unit: str) -> str:
    per_token = t_ms / n if n else 0.0
    per_second = 1e3 * n / t_ms if t_ms > 0 else 0.0
    return (
        f"{label:>16} = {t_ms:10.2f} ms / {n:5d} {unit} "
        f"({per_token:8.2f} ms per token, {per_second:8.2f} tokens per second)"
    )


class ExecutionContext:
    """
    Holds a model's recurrent state for one request.

    Args:
        model (Model): The loaded model. It is only read, never modified.
        params (ContextParams): Capacity and maximum batch size.

    Raises:
        ContextCreateError: If the parameters are invalid or the model cannot
            allocate state of the requested capacity.
    """

    def __init__(self, model: Model, params: ContextParams):
        if params.capacity <= 0:
            raise ContextCreateError(f"Context capacity must be positive, got {params.capacity}")
        if not 0 < params.max_batch_size <= params.capacity:
            raise ContextCreateError(
                f"max_batch_size must be in [1, {params.capacity}], got {params.max_batch_size}"
            )

        try:
            self._state = model.new_state(params.capacity, params.max_batch_size)
        except InferenceError:
            raise
        except Exception as e:
            raise ContextCreateError(f"Failed to create context of {params.capacity} positions: {e}") from e

        self.model = model
        self.params = params
        self.n_pos = 0
        self.logits: Tensor | None = None
        self.perf = ContextPerf()
        self._busy = False
        self._closed = False
        logger.debug(f"Created context: capacity={params.capacity}, max_batch_size={params.max_batch_size}")

    @property
    def capacity(self) -> int:
        return self.params.capacity

    @property
    def closed(self) -> bool:
        return self._closed

    def fits(self, batch: Batch) -> bool:
        return self.n_pos + batch.size <= self.capacity

    def check_capacity(self, batch: Batch) -> None:
        """Raises DecodeError if ``batch`` would overflow the context."""
        if not self.fits(batch):
            raise DecodeError(
                f"Context overflow: {self.n_pos} positions used, batch of {batch.size} "
                f"exceeds capacity {self.capacity}"
            )

    def encode(self, batch: Batch) -> None:
        """Runs the encoder over ``batch``. Does not move the decoder cursor."""
        if not self.model.has_encoder:
            raise EncodeError("Model has no encoder")
        self._check_batch(batch, EncodeError)

        with self._call(EncodeError, f"Failed to encode batch of {batch.size} token(s)"):
            start = time.perf_counter()
            self._state.encode(list(batch.tokens))
            self.perf.t_encode_ms += (time.perf_counter() - start) * 1e3
            self.perf.n_encode += batch.size

    def decode(self, batch: Batch) -> Tensor:
        """
        Runs the decoder over ``batch`` and advances ``n_pos`` by its size.

        Returns:
            Tensor: Logits of the batch's last position, also kept in ``self.logits``.
        """
        self._check_batch(batch, DecodeError)
        if batch.start_pos is not None and batch.start_pos != self.n_pos:
            raise DecodeError(f"Batch starts at position {batch.start_pos}, context is at {self.n_pos}")
        self.check_capacity(batch)

        with self._call(DecodeError, f"Failed to decode batch of {batch.size} token(s) at position {self.n_pos}"):
            start = time.perf_counter()
            logits = self._state.decode(list(batch.tokens), self.n_pos)
            self.perf.record_decode(batch.size, (time.perf_counter() - start) * 1e3)

        self.logits = logits
        self.n_pos += batch.size
        return logits

    def close(self) -> None:
        """Releases the model state. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self.logits = None
        self._state.release()
        logger.debug(f"Released context after {self.n_pos} positions")

    def __enter__(self) -> "ExecutionContext":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _check_batch(self, batch: Batch, error: type[InferenceError]) -> None:
        if self._closed:
            raise error("Context is closed")
        if batch.size == 0:
            raise error("Cannot submit an empty batch")
        if batch.size > self.params.max_batch_size:
            raise error(f"Batch of {batch.size} tokens exceeds max_batch_size {self.params.max_batch_size}")

    @contextlib.contextmanager
    def _call(self, error: type[InferenceError], message: str) -> Iterator[None]:
        # One outstanding model call per context
        if self._busy:
            raise error("Context is already running a model call")
        self._busy = True
        try:
            yield
        except InferenceError:
            raise
        except Exception as e:
            raise error(f"{message}: {e}") from e
        finally:
            self._busy = False
