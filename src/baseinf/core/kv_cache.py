"""
Pre-allocated Key-Value cache for single-sequence autoregressive decoding.

Buffers are sized once to the context capacity and written in place, so a decode
step never reallocates memory.
"""

from __future__ import annotations

import torch
from torch import Tensor


class KVCache:
    """Key-Value cache of one attention layer for a single sequence.

    Args:
        capacity: Number of positions the cache can hold.
        num_heads: Number of key-value heads.
        head_dim: Dimension of each attention head.
        device: Device to allocate buffers on.
        dtype: Data type for cache buffers.

    Example:
        >>> cache = KVCache(capacity=64, num_heads=4, head_dim=16)
        >>> k, v = cache.update(k_new, v_new, start_pos=0)  # views of positions [0, start_pos + S_new)
    """

    def __init__(
        self,
        capacity: int,
        num_heads: int,
        head_dim: int,
        device: torch.device | str | None = None,
        dtype: torch.dtype | None = None,
    ) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.num_heads = num_heads
        self.head_dim = head_dim

        # [1, N, S_max, D]
        self.k_cache = torch.zeros(1, num_heads, capacity, head_dim, device=device, dtype=dtype)
        self.v_cache = torch.zeros(1, num_heads, capacity, head_dim, device=device, dtype=dtype)
        self._seq_len = 0

    @property
    def seq_len(self) -> int:
        """Number of positions currently cached."""
        return self._seq_len

    @property
    def device(self) -> torch.device:
        return self.k_cache.device

    def update(self, k_new: Tensor, v_new: Tensor, start_pos: int) -> tuple[Tensor, Tensor]:
        """Write new keys/values at ``start_pos`` and return the valid cache region.

        Args:
            k_new: New key tensor of shape [1, N, S_new, D].
            v_new: New value tensor of shape [1, N, S_new, D].
            start_pos: Position of the first new token. Must equal the cached length.

        Returns:
            Tuple of (k, v) views of shape [1, N, start_pos + S_new, D].

        Raises:
            ValueError: If the write is not contiguous or would exceed capacity.
        """
        new_tokens = k_new.size(2)
        end = start_pos + new_tokens

        if start_pos != self._seq_len:
            raise ValueError(f"Non-contiguous cache write at {start_pos}, cache holds {self._seq_len} positions")
        if end > self.capacity:
            raise ValueError(f"Cache overflow: trying to cache {end} tokens, but capacity is {self.capacity}")

        self.k_cache[:, :, start_pos:end] = k_new
        self.v_cache[:, :, start_pos:end] = v_new
        self._seq_len = end

        return self.k_cache[:, :, :end], self.v_cache[:, :, :end]

    def reset(self) -> None:
        """Reset cache to empty state (does not deallocate memory)."""
        self._seq_len = 0

    @classmethod
    def for_layers(
        cls,
        num_layers: int,
        capacity: int,
        num_heads: int,
        head_dim: int,
        device: torch.device | str | None = None,
        dtype: torch.dtype | None = None,
    ) -> list[KVCache]:
        """Create one cache per transformer layer."""
        return [cls(capacity, num_heads, head_dim, device, dtype) for _ in range(num_layers)]
