"""
Command-line driver.

Usage:
    baseinf -m <model> [-n tokens] [-ngl gpu_layers] [prompt words...]

Example:
    baseinf -m ./models/tiny.pt -n 50 Tell me a story

Everything after the first prompt word belongs to the prompt. Exit code is 0 on
success and 1 on any argument or pipeline failure.
"""

import contextlib
import functools
import logging
import sys

import click
import typer
from pydantic import ValidationError
from rich.console import Console

from baseinf.config import InferenceConfig
from baseinf.errors import ArgumentError, InferenceError
from baseinf.generation import GenerationLoop
from baseinf.models.loader import load_model
from baseinf.sampling import build_sampler_chain
from baseinf.utils.logging import setup_logging

logger = logging.getLogger(__name__)

app = typer.Typer(pretty_exceptions_show_locals=False, add_completion=False)
err_console = Console(stderr=True)


@app.command(context_settings={"allow_interspersed_args": False})
def main(
    prompt_words: list[str] | None = typer.Argument(
        None, metavar="[PROMPT]...", help="Text prompt (default: 'Hello, my name is')"
    ),
    model: str | None = typer.Option(None, "-m", "--model", help="Path to a model directory or checkpoint (required)"),
    n_predict: int | None = typer.Option(None, "-n", "--n-predict", help="Number of tokens to generate (default: 128)"),
    n_gpu_layers: int | None = typer.Option(
        None, "-ngl", "--n-gpu-layers", help="Number of layers to offload to the GPU (default: 99)"
    ),
    device: str | None = typer.Option(None, "--device", help="Device override (auto, cpu, cuda, cuda:1, ...)"),
    temperature: float | None = typer.Option(None, "--temp", help="Sampling temperature (0 = greedy)"),
    top_k: int | None = typer.Option(None, "--top-k", help="Top-k sampling"),
    top_p: float | None = typer.Option(None, "--top-p", help="Top-p (nucleus) sampling threshold"),
    repeat_penalty: float | None = typer.Option(None, "--repeat-penalty", help="Penalty for repeating tokens (1.0 = off)"),
    repeat_last_n: int | None = typer.Option(None, "--repeat-last-n", help="Window for the repeat penalty"),
    seed: int | None = typer.Option(None, "--seed", help="Random seed for sampling"),
    no_special: bool = typer.Option(False, "--no-special", help="Do not prepend the begin-of-sequence token"),
    log_level: str | None = typer.Option(None, "--log-level", help="Diagnostics level (default: WARNING)"),
    log_json: bool = typer.Option(False, "--log-json", help="Emit diagnostics as JSON lines"),
    no_perf: bool = typer.Option(False, "--no-perf", help="Do not print performance counters"),
):
    """
    Basic LLM inference: stream a greedy (or sampled) continuation of a prompt.
    """
    overrides = {
        "model_path": model,
        "prompt": " ".join(prompt_words) if prompt_words else None,
        "n_predict": n_predict,
        "n_gpu_layers": n_gpu_layers,
        "device": device,
        "temperature": temperature,
        "top_k": top_k,
        "top_p": top_p,
        "repeat_penalty": repeat_penalty,
        "repeat_last_n": repeat_last_n,
        "seed": seed,
        "log_level": log_level,
        "add_special": False if no_special else None,
        "log_json": True if log_json else None,
        "perf": False if no_perf else None,
    }

    try:
        try:
            config = InferenceConfig(**{k: v for k, v in overrides.items() if v is not None})
        except ValidationError as e:
            raise ArgumentError(_describe_validation_error(e)) from e
        run_inference(config)
    except InferenceError as e:
        err_console.print(f"Error: {e}", style="bold red", markup=False, highlight=False, soft_wrap=True)
        raise typer.Exit(code=1) from e


def run_inference(config: InferenceConfig) -> None:
    """Loads the model, streams the generation to stdout and prints statistics."""
    setup_logging(config.log_level, config.log_json)
    if not config.model_path:
        raise ArgumentError("Model path is required (-m <path>)")

    logger.info("=== LLM Inference Starting ===")
    logger.info(f"Model: {config.model_path}")
    logger.info(f'Prompt: "{config.prompt}"')
    logger.info(f"Tokens to generate: {config.n_predict}")
    logger.info(f"GPU layers: {config.n_gpu_layers}")

    with contextlib.ExitStack() as stack:
        model = load_model(config.model_path, n_gpu_layers=config.n_gpu_layers, device=config.device)
        stack.callback(model.close)

        loop = GenerationLoop(
            model,
            config.n_predict,
            sampler_factory=functools.partial(build_sampler_chain, config.sampling_params()),
            add_special=config.add_special,
            parse_special=config.parse_special,
        )
        for piece in loop.stream(config.prompt):
            print(piece, end="", flush=True)

        print("\n")
        print(loop.stats.summary(), flush=True)

        if config.perf:
            for line in loop.sampler.perf.summary() + loop.context.perf.summary():
                err_console.print(line, markup=False, highlight=False, soft_wrap=True)


def _describe_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        field = ".".join(str(loc) for loc in item["loc"])
        parts.append(f"{field}: {item['msg']}")
    return "Invalid arguments: " + "; ".join(parts)


def run(argv: list[str] | None = None) -> int:
    """Runs the CLI and returns its exit code. Usage errors map to 1."""
    command = typer.main.get_command(app)
    try:
        result = command.main(args=argv, prog_name="baseinf", standalone_mode=False)
    except click.ClickException as e:
        e.show()
        return 1
    except click.exceptions.Abort:
        err_console.print("Aborted!", markup=False)
        return 1
    return result if isinstance(result, int) else 0


def entrypoint() -> None:
    sys.exit(run())


if __name__ == "__main__":
    entrypoint()
