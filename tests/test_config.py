import pytest
from pydantic import ValidationError

from baseinf.config import DEFAULT_PROMPT, InferenceConfig
from baseinf.sampling import SamplingParams


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in ("BASEINF_MODEL_PATH", "BASEINF_N_PREDICT", "BASEINF_TEMPERATURE", "BASEINF_LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)


@pytest.mark.quick
class TestInferenceConfig:
    def test_defaults(self):
        config = InferenceConfig()

        assert config.model_path is None
        assert config.prompt == DEFAULT_PROMPT
        assert config.n_predict == 128
        assert config.n_gpu_layers == 99
        assert config.temperature == 0.0
        assert config.log_level == "WARNING"
        assert config.perf is True

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("BASEINF_MODEL_PATH", "/models/tiny.pt")
        monkeypatch.setenv("BASEINF_N_PREDICT", "16")

        config = InferenceConfig()
        assert config.model_path == "/models/tiny.pt"
        assert config.n_predict == 16

    def test_arguments_beat_environment(self, monkeypatch):
        monkeypatch.setenv("BASEINF_N_PREDICT", "16")
        assert InferenceConfig(n_predict=4).n_predict == 4

    def test_log_level_normalized(self):
        assert InferenceConfig(log_level="debug").log_level == "DEBUG"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"n_predict": -1},
            {"temperature": -0.5},
            {"top_k": 0},
            {"top_p": 1.5},
            {"repeat_penalty": 0.0},
            {"log_level": "chatty"},
        ],
    )
    def test_invalid_values(self, overrides):
        with pytest.raises(ValidationError):
            InferenceConfig(**overrides)

    def test_sampling_params(self):
        config = InferenceConfig(temperature=0.7, top_k=20, seed=5)
        assert config.sampling_params() == SamplingParams(temperature=0.7, top_k=20, seed=5)
