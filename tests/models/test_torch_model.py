import pytest
import torch

from baseinf.models.decoder import TinyDecoder
from baseinf.models.torch_model import TorchModel, load_checkpoint, save_checkpoint
from baseinf.tokenization.vocab import TOKEN_NULL


@pytest.mark.quick
class TestTorchModel:
    def test_topology(self, torch_model, torch_seq2seq_model):
        assert not torch_model.has_encoder
        assert torch_seq2seq_model.has_encoder
        assert torch_model.decoder_start_token == TOKEN_NULL
        assert torch_model.max_positions == 64

    def test_vocab_size_mismatch(self, char_vocab):
        module = TinyDecoder(vocab_size=char_vocab.vocab_size + 1, hidden_size=8, num_heads=2)
        with pytest.raises(ValueError, match="vocab_size"):
            TorchModel(module, char_vocab)

    def test_new_state_allocates_layer_caches(self, torch_model):
        state = torch_model.new_state(capacity=16, max_batch_size=4)

        assert len(state.caches) == 2
        assert state.caches[0].capacity == 16

    def test_new_state_capacity_limit(self, torch_model):
        with pytest.raises(ValueError, match="exceeds"):
            torch_model.new_state(capacity=65, max_batch_size=4)
        with pytest.raises(ValueError, match="max_batch_size"):
            torch_model.new_state(capacity=4, max_batch_size=5)

    def test_decode_returns_last_position_logits(self, torch_model, char_vocab):
        state = torch_model.new_state(capacity=16, max_batch_size=8)
        tokens = char_vocab.tokenize("hello")
        logits = state.decode(tokens, start_pos=0)

        assert logits.shape == (char_vocab.vocab_size,)
        assert logits.dtype == torch.float32

        with torch.no_grad():
            expected = torch_model.module(torch.tensor([tokens]))[0, -1]
        assert torch.allclose(logits, expected, atol=1e-5)

    def test_decoder_only_state_cannot_encode(self, torch_model):
        state = torch_model.new_state(capacity=8, max_batch_size=2)
        with pytest.raises(RuntimeError, match="no encoder"):
            state.encode([1, 2])

    def test_seq2seq_requires_encode_first(self, torch_seq2seq_model, char_vocab):
        state = torch_seq2seq_model.new_state(capacity=8, max_batch_size=4)
        with pytest.raises(RuntimeError, match="encode before decoding"):
            state.decode([char_vocab.bos_token], start_pos=0)

        state.encode(char_vocab.tokenize("the"))
        assert state.decode([char_vocab.bos_token], start_pos=0).shape == (char_vocab.vocab_size,)

    def test_release_and_close(self, torch_model):
        state = torch_model.new_state(capacity=8, max_batch_size=2)
        state.release()
        assert state.caches == []

        with torch_model:
            pass
        assert torch_model.module is None


@pytest.mark.quick
class TestCheckpoint:
    def test_save_and_load(self, torch_model, tmp_path):
        path = tmp_path / "tiny.pt"
        save_checkpoint(torch_model, path)
        loaded = load_checkpoint(path)

        assert isinstance(loaded.module, TinyDecoder)
        assert loaded.vocab.chars == torch_model.vocab.chars
        for name, tensor in torch_model.module.state_dict().items():
            assert torch.equal(tensor, loaded.module.state_dict()[name])

    def test_seq2seq_checkpoint(self, torch_seq2seq_model, tmp_path):
        path = tmp_path / "s2s.pt"
        save_checkpoint(torch_seq2seq_model, path)

        assert load_checkpoint(path).has_encoder

    def test_ddp_prefix_stripped(self, torch_model, tmp_path):
        path = tmp_path / "ddp.pt"
        torch.save(
            {
                "kind": "decoder",
                "config": torch_model.module.get_config(),
                "state_dict": {f"module.{k}": v for k, v in torch_model.module.state_dict().items()},
                "vocab": torch_model.vocab.to_dict(),
            },
            path,
        )
        assert isinstance(load_checkpoint(path).module, TinyDecoder)

    def test_not_a_checkpoint(self, tmp_path):
        path = tmp_path / "weights.pt"
        torch.save({"model_state": {"w": torch.tensor([1.0])}}, path)
        with pytest.raises(ValueError, match="not a baseinf checkpoint"):
            load_checkpoint(path)

    def test_unknown_kind(self, torch_model, tmp_path):
        path = tmp_path / "odd.pt"
        torch.save({"kind": "mamba", "config": {}, "state_dict": {}, "vocab": torch_model.vocab.to_dict()}, path)
        with pytest.raises(ValueError, match="Unknown model kind"):
            load_checkpoint(path)
