import pytest
import torch

from baseinf.core.kv_cache import KVCache
from baseinf.models.seq2seq import TinySeq2Seq


def _decoder_caches(model, capacity):
    return KVCache.for_layers(len(model.blocks), capacity, model.num_heads, model.head_dim)


@pytest.mark.quick
class TestTinyDecoder:
    def test_forward_shape(self, tiny_decoder):
        input_ids = torch.randint(0, tiny_decoder.vocab_size, (2, 10))
        assert tiny_decoder(input_ids).shape == (2, 10, tiny_decoder.vocab_size)

    def test_config_roundtrip(self, tiny_decoder):
        config = tiny_decoder.get_config()
        rebuilt = type(tiny_decoder)(**config)

        assert rebuilt.get_config() == config
        assert tiny_decoder.head_dim == 8

    def test_positions_beyond_max_seq_len(self, tiny_decoder):
        with pytest.raises(ValueError, match="max_seq_len"):
            tiny_decoder(torch.zeros(1, 4, dtype=torch.long), start_pos=62)

    def test_cache_count_must_match_layers(self, tiny_decoder):
        caches = KVCache.for_layers(1, 8, tiny_decoder.num_heads, tiny_decoder.head_dim)
        with pytest.raises(ValueError, match="caches"):
            tiny_decoder(torch.zeros(1, 2, dtype=torch.long), caches=caches)

    def test_cached_decoding_matches_full_forward(self, tiny_decoder):
        tiny_decoder.eval()
        input_ids = torch.randint(0, tiny_decoder.vocab_size, (1, 8))
        caches = _decoder_caches(tiny_decoder, capacity=8)

        with torch.no_grad():
            full = tiny_decoder(input_ids)
            steps = [tiny_decoder(input_ids[:, :5], caches=caches, start_pos=0)]
            for pos in range(5, 8):
                steps.append(tiny_decoder(input_ids[:, pos : pos + 1], caches=caches, start_pos=pos))

        assert torch.allclose(full, torch.cat(steps, dim=1), atol=1e-5)


@pytest.mark.quick
class TestTinySeq2Seq:
    def test_encode_shape(self, tiny_seq2seq):
        memory = tiny_seq2seq.encode(torch.randint(0, tiny_seq2seq.vocab_size, (1, 7)))
        assert memory.shape == (1, 7, tiny_seq2seq.hidden_size)

    def test_encoder_is_bidirectional(self, tiny_seq2seq):
        tiny_seq2seq.eval()
        input_ids = torch.randint(0, tiny_seq2seq.vocab_size - 1, (1, 6))
        changed = input_ids.clone()
        changed[0, -1] = tiny_seq2seq.vocab_size - 1

        with torch.no_grad():
            first = tiny_seq2seq.encode(input_ids)
            second = tiny_seq2seq.encode(changed)

        # the first position sees the last one
        assert not torch.allclose(first[:, 0], second[:, 0])

    def test_cached_decoding_matches_full_forward(self, tiny_seq2seq):
        tiny_seq2seq.eval()
        source = torch.randint(0, tiny_seq2seq.vocab_size, (1, 5))
        target = torch.randint(0, tiny_seq2seq.vocab_size, (1, 4))
        caches = KVCache.for_layers(
            len(tiny_seq2seq.decoder_blocks), 4, tiny_seq2seq.num_heads, tiny_seq2seq.head_dim
        )

        with torch.no_grad():
            memory = tiny_seq2seq.encode(source)
            full = tiny_seq2seq(target, memory)
            steps = [
                tiny_seq2seq(target[:, pos : pos + 1], memory, caches=caches, start_pos=pos) for pos in range(4)
            ]

        assert torch.allclose(full, torch.cat(steps, dim=1), atol=1e-5)

    def test_config_includes_decoder_start(self, char_vocab):
        model = TinySeq2Seq(vocab_size=char_vocab.vocab_size, hidden_size=8, num_heads=2, decoder_start_token_id=3)
        assert model.get_config()["decoder_start_token_id"] == 3
