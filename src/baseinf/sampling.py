"""
Sampler chain: an ordered pipeline that reduces the last-position logits to one token.

A chain is zero or more logits processors (penalties, truncation, temperature)
followed by exactly one token selector. The default chain is a single greedy
(arg-max) selector, which is deterministic.
"""

import abc
import logging
import time
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass

import torch
from torch import Tensor

from baseinf.errors import SamplerInvariantError

logger = logging.getLogger(__name__)


class LogitsProcessor(abc.ABC):
    """A stage that rewrites the logits before selection."""

    @abc.abstractmethod
    def __call__(self, logits: Tensor, history: Sequence[int]) -> Tensor: ...


class TokenSelector(abc.ABC):
    """The final stage: picks one token id from the logits."""

    @abc.abstractmethod
    def select(self, logits: Tensor) -> int: ...


class RepetitionPenalty(LogitsProcessor):
    """Penalizes tokens seen in the last ``last_n`` accepted tokens (https://arxiv.org/abs/1909.05858)."""

    def __init__(self, penalty: float, last_n: int = 64):
        if penalty <= 0:
            raise ValueError(f"penalty must be positive, got {penalty}")
        self.penalty = penalty
        self.last_n = last_n

    def __call__(self, logits: Tensor, history: Sequence[int]) -> Tensor:
        recent = list(history)[-self.last_n :] if self.last_n > 0 else []
        if not recent or self.penalty == 1.0:
            return logits
        index = torch.tensor(sorted(set(recent)), device=logits.device)
        score = torch.gather(logits, 0, index)
        # If score < 0, multiply by penalty; if score > 0, divide by penalty
        score = torch.where(score < 0, score * self.penalty, score / self.penalty)
        return logits.scatter(0, index, score)


class TopK(LogitsProcessor):
    def __init__(self, k: int):
        if k <= 0:
            raise ValueError(f"k must be positive, got {k}")
        self.k = k

    def __call__(self, logits: Tensor, history: Sequence[int]) -> Tensor:
        v, _ = torch.topk(logits, min(self.k, logits.size(-1)))
        return logits.masked_fill(logits < v[-1], -float("inf"))


class TopP(LogitsProcessor):
    """Nucleus sampling: keep the smallest set of tokens whose probability reaches ``p``."""

    def __init__(self, p: float):
        if not 0.0 < p <= 1.0:
            raise ValueError(f"p must be in (0, 1], got {p}")
        self.p = p

    def __call__(self, logits: Tensor, history: Sequence[int]) -> Tensor:
        if self.p >= 1.0:
            return logits
        sorted_logits, sorted_indices = torch.sort(logits, descending=True)
        cumulative_probs = torch.cumsum(torch.softmax(sorted_logits, dim=-1), dim=-1)

        # Shift right so the first token above the threshold is kept too
        sorted_to_remove = cumulative_probs > self.p
        sorted_to_remove[1:] = sorted_to_remove[:-1].clone()
        sorted_to_remove[0] = False

        return logits.index_fill(0, sorted_indices[sorted_to_remove], -float("inf"))


class Temperature(LogitsProcessor):
    def __init__(self, temperature: float):
        if temperature <= 0:
            raise ValueError(f"temperature must be positive, got {temperature}")
        self.temperature = temperature

    def __call__(self, logits: Tensor, history: Sequence[int]) -> Tensor:
        return logits / self.temperature


class Greedy(TokenSelector):
    """Arg-max selection. Ties go to the lowest token id."""

    def select(self, logits: Tensor) -> int:
        # torch.argmax returns the first maximal index
        return int(torch.argmax(logits).item())


class Distribution(TokenSelector):
    """Samples from softmax(logits) with a seeded generator."""

    def __init__(self, seed: int = 299792458):
        self.seed = seed
        self._generator = torch.Generator().manual_seed(seed)

    def select(self, logits: Tensor) -> int:
        probs = torch.softmax(logits.float().cpu(), dim=-1)
        return int(torch.multinomial(probs, num_samples=1, generator=self._generator).item())


@dataclass
class SamplerPerf:
    t_sample_ms: float = 0.0
    n_sample: int = 0

    def summary(self) -> list[str]:
        per_run = self.t_sample_ms / self.n_sample if self.n_sample else 0.0
        per_second = 1e3 * self.n_sample / self.t_sample_ms if self.t_sample_ms > 0 else 0.0
        return [
            f"{'sampling time':>16} = {self.t_sample_ms:10.2f} ms / {self.n_sample:5d} runs "
            f"({per_run:8.2f} ms per token, {per_second:8.2f} tokens per second)"
        ]


class SamplerChain:
    """
    Processors applied in order, then a selector.

    Args:
        processors (Sequence[LogitsProcessor]): Logits rewriting stages.
        selector (TokenSelector | None): Final stage. Defaults to Greedy.
        history_size (int): How many accepted tokens are remembered for penalty stages.
    """

    def __init__(
        self,
        processors: Sequence[LogitsProcessor] = (),
        selector: TokenSelector | None = None,
        history_size: int = 1024,
    ):
        self.processors = list(processors)
        self.selector = selector or Greedy()
        self.history: deque[int] = deque(maxlen=history_size)
        self.perf = SamplerPerf()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def sample(self, logits: Tensor | None) -> int:
        """Returns exactly one token id for the given last-position logits."""
        start = time.perf_counter()
        _check_distribution(logits)

        scores = logits
        for processor in self.processors:
            scores = processor(scores, self.history)
        _check_distribution(scores)

        token = self.selector.select(scores)

        self.perf.t_sample_ms += (time.perf_counter() - start) * 1e3
        self.perf.n_sample += 1
        return token

    def accept(self, token: int) -> None:
        """Records a token as part of the sequence (prompt or generated)."""
        self.history.append(token)

    def close(self) -> None:
        self._closed = True
        self.history.clear()

    def __enter__(self) -> "SamplerChain":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        stages = [type(p).__name__ for p in self.processors] + [type(self.selector).__name__]
        return f"SamplerChain({' -> '.join(stages)})"


def _check_distribution(logits: Tensor | None) -> None:
    if logits is None:
        raise SamplerInvariantError("No logits available; decode must run before sampling")
    if logits.dim() != 1 or logits.numel() == 0:
        raise SamplerInvariantError(f"Expected a non-empty 1-D distribution, got shape {tuple(logits.shape)}")
    if torch.isnan(logits).any():
        raise SamplerInvariantError("Distribution contains NaN")
    if torch.isneginf(logits).all():
        raise SamplerInvariantError("Every token in the distribution is masked")


@dataclass(frozen=True)
class SamplingParams:
    """
    Attributes:
        temperature (float): 0 or less selects greedy (arg-max) decoding.
        top_k (int | None): Keep only the k most likely tokens.
        top_p (float | None): Nucleus threshold.
        repeat_penalty (float): 1.0 disables the repetition penalty.
        repeat_last_n (int): Window of recent tokens the penalty looks at.
        seed (int): Seed for the sampling generator.
    """

    temperature: float = 0.0
    top_k: int | None = None
    top_p: float | None = None
    repeat_penalty: float = 1.0
    repeat_last_n: int = 64
    seed: int = 299792458


def build_sampler_chain(params: SamplingParams | None = None) -> SamplerChain:
    params = params or SamplingParams()
    processors: list[LogitsProcessor] = []
    if params.repeat_penalty != 1.0:
        processors.append(RepetitionPenalty(params.repeat_penalty, params.repeat_last_n))

    if params.temperature <= 0:
        chain = SamplerChain(processors, Greedy())
    else:
        if params.top_k is not None:
            processors.append(TopK(params.top_k))
        if params.top_p is not None:
            processors.append(TopP(params.top_p))
        processors.append(Temperature(params.temperature))
        chain = SamplerChain(processors, Distribution(params.seed))

    logger.debug(f"Sampler chain: {chain!r}")
    return chain
