import statistics

import typer

from baseinf.generation import GenerationLoop
from baseinf.models import load_model
from baseinf.models.base import Model

app = typer.Typer(pretty_exceptions_show_locals=False)


def run_benchmark(model: Model, prompt: str, max_new_tokens: int, num_runs: int, warmup: int = 1):
    """Runs the greedy generation loop repeatedly and reports decode throughput."""
    print("--- Starting Benchmark ---")
    print(f"Prompt: {prompt}")
    print(f"Max New Tokens: {max_new_tokens}")
    print(f"Num Runs: {num_runs} (Warmup: {warmup})")

    print("Warming up...")
    for _ in range(warmup):
        for _ in GenerationLoop(model, max_new_tokens).stream(prompt):
            pass

    latencies = []
    tokens_per_second = []

    print("Benchmarking...")
    for i in range(num_runs):
        loop = GenerationLoop(model, max_new_tokens)
        for _ in loop.stream(prompt):
            pass
        stats = loop.stats

        latencies.append(stats.elapsed_s)
        tokens_per_second.append(stats.tokens_per_second)
        print(f"Run {i + 1}: {stats.elapsed_s:.4f}s, {stats.n_decoded} tokens, {stats.tokens_per_second:.2f} tokens/s")

    avg_latency = statistics.mean(latencies)
    avg_tps = statistics.mean(tokens_per_second)

    print("\n--- Results ---")
    print(f"Avg Latency: {avg_latency:.4f}s")
    print(f"Avg TPS: {avg_tps:.2f} tokens/s")

    return avg_latency, avg_tps


@app.command()
def main(
    model_path: str = typer.Option(..., "--model", "-m", help="Model directory or baseinf checkpoint"),
    prompt: str = typer.Option("hello world", help="Input prompt"),
    max_new_tokens: int = typer.Option(50, help="Number of tokens to generate"),
    runs: int = typer.Option(5, help="Number of benchmark runs"),
    device: str = typer.Option("auto", help="Device to use"),
):
    """
    LLM Inference Benchmark.
    """
    model = load_model(model_path, device=device)
    try:
        run_benchmark(model, prompt, max_new_tokens, runs)
    finally:
        model.close()


if __name__ == "__main__":
    app()
