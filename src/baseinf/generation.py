"""
Generation loop.

Drives one request through ``Init -> Prefill -> (Encode -> DecoderStart ->)
Decode* -> {Stopped(EOG), Stopped(Budget), Failed}``. Text is streamed one
fragment per token (empty while a character is still incomplete): the prompt
echo first, then each sampled token. Fragments already yielded are never
retracted, even if a later step fails.
"""

import contextlib
import enum
import logging
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field

from baseinf.batch import Batch, decoder_start_batch, next_token_batch, prefill_batch
from baseinf.context import ContextParams, ExecutionContext
from baseinf.errors import ArgumentError, EncodeError, InferenceError, TokenizeError
from baseinf.models.base import Model
from baseinf.sampling import SamplerChain, build_sampler_chain
from baseinf.tokenization.vocab import TOKEN_NULL

logger = logging.getLogger(__name__)


class Phase(enum.Enum):
    INIT = "init"
    PREFILL = "prefill"
    ENCODE = "encode"
    DECODE = "decode"


class TerminalState(enum.Enum):
    STOPPED_EOG = "stopped_eog"
    STOPPED_BUDGET = "stopped_budget"
    FAILED = "failed"


@dataclass
class GenerationState:
    """Mutated only by the generation loop."""

    n_pos: int = 0
    n_decoded: int = 0
    stop: bool = False
    terminal: TerminalState | None = None
    error: InferenceError | None = None
    prompt_tokens: list[int] = field(default_factory=list)
    tokens: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class GenerationStats:
    """Counters over the Decode phase only."""

    n_decoded: int
    elapsed_s: float

    @property
    def tokens_per_second(self) -> float:
        return self.n_decoded / self.elapsed_s if self.elapsed_s > 0 else 0.0

    def summary(self) -> str:
        return "\n".join(
            [
                "=== Statistics ===",
                f"Tokens generated: {self.n_decoded}",
                f"Time: {self.elapsed_s:.2f} s",
                f"Speed: {self.tokens_per_second:.2f} tokens/s",
            ]
        )


@dataclass(frozen=True)
class GenerationResult:
    text: str
    prompt_tokens: list[int]
    tokens: list[int]
    n_decoded: int
    terminal: TerminalState
    stats: GenerationStats


class GenerationLoop:
    """
    Runs one generation request against a loaded model.

    The loop owns its ExecutionContext and SamplerChain for the duration of
    ``stream()`` and releases both (sampler first) on every exit path: end of
    generation, budget exhaustion, an error, or the caller closing the stream.

    Args:
        model (Model): Loaded model. Shared read-only; not released here.
        max_new_tokens (int): Generation budget.
        sampler_factory (Callable[[], SamplerChain] | None): Builds a fresh chain per
            run. Defaults to a greedy chain.
        add_special (bool): Let the vocabulary add its begin-of-sequence prefix.
        parse_special (bool): Map special-token markers in the prompt to their ids.
    """

    def __init__(
        self,
        model: Model,
        max_new_tokens: int,
        sampler_factory: Callable[[], SamplerChain] | None = None,
        add_special: bool = True,
        parse_special: bool = True,
    ):
        if max_new_tokens < 0:
            raise ArgumentError(f"max_new_tokens must be non-negative, got {max_new_tokens}")
        self.model = model
        self.max_new_tokens = max_new_tokens
        self.sampler_factory = sampler_factory or build_sampler_chain
        self.add_special = add_special
        self.parse_special = parse_special

        self.state = GenerationState()
        self.phase = Phase.INIT
        self.context: ExecutionContext | None = None
        self.sampler: SamplerChain | None = None
        self._t_start: float | None = None
        self._t_end: float | None = None

    @property
    def stats(self) -> GenerationStats:
        if self._t_start is None:
            return GenerationStats(self.state.n_decoded, 0.0)
        end = self._t_end if self._t_end is not None else time.perf_counter()
        return GenerationStats(self.state.n_decoded, end - self._t_start)

    def stream(self, prompt: str) -> Iterator[str]:
        """Yields the prompt echo, then one text fragment per generated token."""
        self.state = GenerationState()
        self._t_start = self._t_end = None

        with contextlib.ExitStack() as stack:
            try:
                yield from self._run(prompt, stack)
            except InferenceError as e:
                self.state.terminal = TerminalState.FAILED
                self.state.error = e
                self.state.stop = True
                logger.debug(f"Generation failed in {self.phase.value}: {e}")
                raise
            finally:
                if self._t_start is not None and self._t_end is None:
                    self._t_end = time.perf_counter()

    def _run(self, prompt: str, stack: contextlib.ExitStack) -> Iterator[str]:
        vocab = self.model.vocab
        state = self.state

        # Init
        self.phase = Phase.INIT
        prompt_tokens = vocab.tokenize(prompt, self.add_special, self.parse_special)
        if not prompt_tokens:
            raise TokenizeError("Prompt tokenizes to an empty sequence")
        state.prompt_tokens = list(prompt_tokens)
        n_prompt = len(prompt_tokens)
        logger.info(f"Tokenized into {n_prompt} tokens")
        vocab.begin_stream()

        params = ContextParams(capacity=n_prompt + self.max_new_tokens, max_batch_size=n_prompt)
        # Released in reverse order: sampler, then context
        self.context = stack.enter_context(ExecutionContext(self.model, params))
        self.sampler = stack.enter_context(self.sampler_factory())
        ctx, sampler = self.context, self.sampler

        # Prefill: echo the prompt before any model call
        self.phase = Phase.PREFILL
        batch = prefill_batch(prompt_tokens)
        for token in prompt_tokens:
            sampler.accept(token)
            yield vocab.token_to_piece(token)

        if self.model.has_encoder:
            self.phase = Phase.ENCODE
            ctx.encode(batch)
            batch = decoder_start_batch(self._decoder_start_token())

        # Budget counts decoder positions; a decoder-start batch is not charged to it
        budget_end = batch.size + self.max_new_tokens

        self.phase = Phase.DECODE
        self._t_start = time.perf_counter()
        while state.n_pos + batch.size < budget_end:
            step = self._step(batch)
            if step is None:
                state.terminal = TerminalState.STOPPED_EOG
                logger.info("End of generation")
                break
            batch, piece = step
            state.n_decoded += 1
            yield piece
        else:
            state.terminal = TerminalState.STOPPED_BUDGET
        state.stop = True
        self._t_end = time.perf_counter()

    def _step(self, batch: Batch) -> tuple[Batch, str] | None:
        """
        Decodes ``batch`` and samples one token.

        Returns:
            The next one-token batch and the sampled token's text, or None on end of generation.
        """
        ctx, sampler, vocab = self.context, self.sampler, self.model.vocab

        ctx.check_capacity(batch)
        ctx.decode(batch)
        self.state.n_pos += batch.size

        new_token = sampler.sample(ctx.logits)
        if vocab.is_eog(new_token):
            return None

        piece = vocab.token_to_piece(new_token)
        sampler.accept(new_token)
        self.state.tokens.append(new_token)
        return next_token_batch(new_token, self.state.n_pos), piece

    def _decoder_start_token(self) -> int:
        token = self.model.decoder_start_token
        if token == TOKEN_NULL:
            token = self.model.vocab.bos_token
        if token == TOKEN_NULL:
            raise EncodeError("Model has neither a decoder-start nor a begin-of-sequence token")
        return token


def generate(
    model: Model,
    prompt: str,
    max_new_tokens: int,
    sampler_factory: Callable[[], SamplerChain] | None = None,
    add_special: bool = True,
    parse_special: bool = True,
) -> GenerationResult:
    """
    Generate text from a prompt. Returns the echoed prompt followed by the generated text.
    """
    loop = GenerationLoop(
        model,
        max_new_tokens,
        sampler_factory=sampler_factory,
        add_special=add_special,
        parse_special=parse_special,
    )
    text = "".join(loop.stream(prompt))
    return GenerationResult(
        text=text,
        prompt_tokens=loop.state.prompt_tokens,
        tokens=loop.state.tokens,
        n_decoded=loop.state.n_decoded,
        terminal=loop.state.terminal,
        stats=loop.stats,
    )
