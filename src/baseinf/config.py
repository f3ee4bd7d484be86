from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from baseinf.sampling import SamplingParams

DEFAULT_PROMPT = "Hello, my name is"


class InferenceConfig(BaseSettings):
    """
    Inference configuration. Every field can be set through a ``BASEINF_``
    environment variable; command-line flags override them.
    """

    # Request
    model_path: str | None = None  # Path to a HF model directory or a baseinf checkpoint
    prompt: str = DEFAULT_PROMPT
    n_predict: int = Field(128, ge=0)  # Max new tokens
    add_special: bool = True  # Prepend the vocabulary's begin-of-sequence token
    parse_special: bool = True  # Map special-token markers in the prompt

    # Placement
    n_gpu_layers: int = 99  # Offload hint passed to the model loader
    device: str = "auto"

    # Sampling (temperature 0 means greedy)
    temperature: float = Field(0.0, ge=0.0)
    top_k: int | None = Field(None, ge=1)
    top_p: float | None = Field(None, gt=0.0, le=1.0)
    repeat_penalty: float = Field(1.0, gt=0.0)
    repeat_last_n: int = Field(64, ge=0)
    seed: int = 299792458

    # Observability
    log_level: str = "WARNING"
    log_json: bool = False
    perf: bool = True  # Print performance counters after the statistics block

    model_config = SettingsConfigDict(env_prefix="BASEINF_", protected_namespaces=())

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    def sampling_params(self) -> SamplingParams:
        return SamplingParams(
            temperature=self.temperature,
            top_k=self.top_k,
            top_p=self.top_p,
            repeat_penalty=self.repeat_penalty,
            repeat_last_n=self.repeat_last_n,
            seed=self.seed,
        )
