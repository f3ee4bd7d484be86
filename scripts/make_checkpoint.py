#!/usr/bin/env python3
"""
Build a small baseinf checkpoint to try the CLI with.

Trains a TinyDecoder (or TinySeq2Seq) for next-character prediction on a toy
corpus and saves it in the format ``baseinf -m`` loads.

Usage:
    uv run scripts/make_checkpoint.py --output tiny.pt
    uv run scripts/make_checkpoint.py --kind seq2seq --epochs 50 --output s2s.pt
    baseinf -m tiny.pt -n 32 the quick
"""

import torch
import torch.nn as nn
import torch.optim as optim
import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn, TimeElapsedColumn

from baseinf.models import TinyDecoder, TinySeq2Seq, TorchModel, save_checkpoint
from baseinf.tokenization import CharVocabulary

app = typer.Typer(pretty_exceptions_show_locals=False)
console = Console()

CORPUS = [
    "hello world",
    "the quick brown fox jumps over the lazy dog",
    "Hello, my name is tiny and I like to talk",
]


def build_examples(vocab: CharVocabulary) -> list[list[int]]:
    # Each line becomes <BOS> text <EOS> so the model learns to stop
    return [vocab.tokenize(line) + [vocab.eos_token] for line in CORPUS]


def train_step(model: nn.Module, optimizer: optim.Optimizer, criterion: nn.Module, example: list[int]) -> float:
    tokens = torch.tensor([example])
    optimizer.zero_grad()
    if isinstance(model, TinySeq2Seq):
        # Learn to copy: the decoder reproduces the encoded line
        memory = model.encode(tokens[:, :-1])
        logits = model(tokens[:, :-1], memory)
    else:
        logits = model(tokens[:, :-1])
    loss = criterion(logits.reshape(-1, logits.size(-1)), tokens[:, 1:].reshape(-1))
    loss.backward()
    torch.nn.utils.clip_grad_norm_(model.parameters(), max_norm=1.0)
    optimizer.step()
    return loss.item()


@app.command()
def main(
    output: str = typer.Option("tiny.pt", help="Where to write the checkpoint"),
    kind: str = typer.Option("decoder", help="Model kind: 'decoder' or 'seq2seq'"),
    hidden_size: int = typer.Option(64, help="Model hidden size"),
    num_layers: int = typer.Option(2, help="Number of transformer layers (per stack)"),
    num_heads: int = typer.Option(4, help="Number of attention heads"),
    max_seq_len: int = typer.Option(256, help="Maximum sequence length"),
    epochs: int = typer.Option(200, help="Training passes over the corpus (0 keeps random weights)"),
    lr: float = typer.Option(3e-3, help="Learning rate"),
    seed: int = typer.Option(0, help="Random seed"),
):
    """
    Train a tiny model on a toy corpus and save a baseinf checkpoint.
    """
    torch.manual_seed(seed)
    vocab = CharVocabulary(CORPUS)
    if kind == "decoder":
        model = TinyDecoder(vocab.vocab_size, hidden_size, num_layers, num_heads, max_seq_len)
    elif kind == "seq2seq":
        model = TinySeq2Seq(
            vocab.vocab_size, hidden_size, num_layers, num_layers, num_heads, max_seq_len, vocab.bos_token
        )
    else:
        raise typer.BadParameter(f"Unknown kind {kind!r}", param_hint="--kind")

    console.print(f"Vocabulary size: [green]{vocab.vocab_size}[/green]")
    console.print(f"Parameters: [green]{sum(p.numel() for p in model.parameters()):,}[/green]")

    examples = build_examples(vocab)
    optimizer = optim.AdamW(model.parameters(), lr=lr)
    criterion = nn.CrossEntropyLoss()

    model.train()
    loss = float("nan")
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        task_id = progress.add_task("Training", total=epochs)
        for _ in range(epochs):
            loss = sum(train_step(model, optimizer, criterion, ex) for ex in examples) / len(examples)
            progress.update(task_id, advance=1, description=f"Training (loss {loss:.3f})")

    save_checkpoint(TorchModel(model, vocab), output)
    console.print(f"[bold green]Saved {kind} checkpoint to {output}[/bold green] (final loss {loss:.3f})")


if __name__ == "__main__":
    app()
