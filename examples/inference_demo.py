#!/usr/bin/env python3
"""Basic streaming inference example with a TinyDecoder."""

from baseinf import SamplingParams, build_sampler_chain, generate
from baseinf.generation import GenerationLoop
from baseinf.models import TinyDecoder, TorchModel
from baseinf.tokenization import CharVocabulary

# 1. Create a character vocabulary from a corpus
corpus = [
    "Hello world",
    "The quick brown fox jumps over the lazy dog",
    "This is a test of the language model",
]
vocab = CharVocabulary(corpus)

# 2. Initialize model (untrained, so the output is random)
module = TinyDecoder(
    vocab_size=vocab.vocab_size,
    hidden_size=64,
    num_layers=2,
    num_heads=4,
    max_seq_len=128,
)
model = TorchModel(module, vocab)

# 3. Greedy generation in one call
result = generate(model, "Hello", max_new_tokens=20)
print(f"Generated: {result.text!r}")
print(f"Stopped: {result.terminal.value}, {result.n_decoded} tokens")

# 4. Streaming with a sampling chain
loop = GenerationLoop(
    model,
    max_new_tokens=20,
    sampler_factory=lambda: build_sampler_chain(SamplingParams(temperature=0.8, top_k=10, seed=42)),
)
for piece in loop.stream("The quick"):
    print(piece, end="", flush=True)
print()
print(loop.stats.summary())
