import pytest
import torch

from baseinf.core.kv_cache import KVCache


@pytest.fixture
def cache():
    return KVCache(capacity=8, num_heads=2, head_dim=4)


@pytest.mark.quick
class TestKVCache:
    def test_preallocated_buffers(self, cache):
        assert cache.k_cache.shape == (1, 2, 8, 4)
        assert cache.v_cache.shape == (1, 2, 8, 4)
        assert cache.seq_len == 0
        assert cache.device == torch.device("cpu")

    def test_update_returns_valid_region(self, cache):
        k, v = torch.randn(1, 2, 3, 4), torch.randn(1, 2, 3, 4)
        k_out, v_out = cache.update(k, v, start_pos=0)

        assert k_out.shape == (1, 2, 3, 4)
        assert torch.equal(k_out, k)
        assert torch.equal(v_out, v)
        assert cache.seq_len == 3

    def test_incremental_updates(self, cache):
        first = torch.randn(1, 2, 3, 4)
        step = torch.randn(1, 2, 1, 4)
        cache.update(first, first, start_pos=0)
        k_out, _ = cache.update(step, step, start_pos=3)

        assert k_out.shape == (1, 2, 4, 4)
        assert torch.equal(k_out[:, :, :3], first)
        assert torch.equal(k_out[:, :, 3:], step)

    def test_writes_in_place(self, cache):
        buffer = cache.k_cache
        cache.update(torch.ones(1, 2, 2, 4), torch.ones(1, 2, 2, 4), start_pos=0)

        assert cache.k_cache is buffer
        assert buffer[:, :, :2].eq(1).all()

    def test_non_contiguous_write(self, cache):
        with pytest.raises(ValueError, match="Non-contiguous"):
            cache.update(torch.ones(1, 2, 1, 4), torch.ones(1, 2, 1, 4), start_pos=2)

    def test_overflow(self, cache):
        cache.update(torch.ones(1, 2, 6, 4), torch.ones(1, 2, 6, 4), start_pos=0)
        with pytest.raises(ValueError, match="Cache overflow"):
            cache.update(torch.ones(1, 2, 3, 4), torch.ones(1, 2, 3, 4), start_pos=6)
        assert cache.seq_len == 6

    def test_reset(self, cache):
        cache.update(torch.ones(1, 2, 2, 4), torch.ones(1, 2, 2, 4), start_pos=0)
        cache.reset()

        assert cache.seq_len == 0
        cache.update(torch.ones(1, 2, 1, 4), torch.ones(1, 2, 1, 4), start_pos=0)

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            KVCache(capacity=0, num_heads=2, head_dim=4)

    def test_for_layers(self):
        caches = KVCache.for_layers(3, capacity=4, num_heads=2, head_dim=8, dtype=torch.float64)

        assert len(caches) == 3
        assert len({id(c) for c in caches}) == 3
        assert all(c.k_cache.dtype == torch.float64 for c in caches)
