import torch
import torch.nn.functional as F
from torch import Tensor, nn

from baseinf.core.kv_cache import KVCache


def _split_heads(x: Tensor, num_heads: int) -> Tensor:
    # [B, S, H] -> [B, N, S, D]
    batch_size, seq_len, hidden_size = x.size()
    return x.view(batch_size, seq_len, num_heads, hidden_size // num_heads).transpose(1, 2)


def _merge_heads(x: Tensor) -> Tensor:
    # [B, N, S, D] -> [B, S, H]
    batch_size, num_heads, seq_len, head_dim = x.size()
    return x.transpose(1, 2).reshape(batch_size, seq_len, num_heads * head_dim)


class MultiHeadAttention(nn.Module):
    """
    Multi-Head self-attention with an optional KV cache.

    Args:
        hidden_size (int): Total dimension of the model.
        num_heads (int): Number of attention heads. Must divide hidden_size.
        bias (bool): Whether to use bias in the QKV and output projections.
        is_causal (bool): Whether queries may only attend to earlier positions.
        device (torch.device | str | None): Target device for parameters.
        dtype (torch.dtype | None): Target data type for parameters.
    """

    def __init__(
        self,
        hidden_size: int,
        num_heads: int,
        bias: bool = True,
        is_causal: bool = True,
        device: torch.device | str | None = None,
        dtype: torch.dtype | None = None,
    ):
        super().__init__()
        if hidden_size % num_heads != 0:
            raise ValueError(f"hidden_size ({hidden_size}) must be divisible by num_heads ({num_heads})")

        factory_kwargs = {"device": device, "dtype": dtype}
        self.hidden_size = hidden_size
        self.num_heads = num_heads
        self.head_dim = hidden_size // num_heads
        self.is_causal = is_causal

        self.qkv_proj = nn.Linear(hidden_size, 3 * hidden_size, bias=bias, **factory_kwargs)
        self.out_proj = nn.Linear(hidden_size, hidden_size, bias=bias, **factory_kwargs)

    def forward(self, hidden_states: Tensor, cache: KVCache | None = None, start_pos: int = 0) -> Tensor:
        """
        Args:
            hidden_states (Tensor): Input of shape [B, S, H].
            cache (KVCache | None): Layer cache. When given, the new keys/values are
                written at ``start_pos`` and attention spans every cached position.
            start_pos (int): Position of the first input token in the sequence.

        Returns:
            Tensor: Output of shape [B, S, H].
        """
        seq_len = hidden_states.size(1)

        q, k, v = self.qkv_proj(hidden_states).split(self.hidden_size, dim=-1)
        q, k, v = (_split_heads(t, self.num_heads) for t in (q, k, v))

        if cache is not None:
            k, v = cache.update(k, v, start_pos)

        attn_mask = None
        if self.is_causal:
            # True = may attend. Query i sits at start_pos + i and sees keys at positions <= its own.
            q_pos = torch.arange(start_pos, start_pos + seq_len, device=q.device).unsqueeze(1)
            k_pos = torch.arange(k.size(2), device=q.device).unsqueeze(0)
            attn_mask = k_pos <= q_pos

        attn_output = F.scaled_dot_product_attention(q, k, v, attn_mask=attn_mask)
        return self.out_proj(_merge_heads(attn_output))


class CrossAttention(nn.Module):
    """
    Attention from decoder states (queries) to encoder memory (keys/values).
    """

    def __init__(
        self,
        hidden_size: int,
        num_heads: int,
        bias: bool = True,
        device: torch.device | str | None = None,
        dtype: torch.dtype | None = None,
    ):
        super().__init__()
        if hidden_size % num_heads != 0:
            raise ValueError(f"hidden_size ({hidden_size}) must be divisible by num_heads ({num_heads})")

        factory_kwargs = {"device": device, "dtype": dtype}
        self.hidden_size = hidden_size
        self.num_heads = num_heads

        self.q_proj = nn.Linear(hidden_size, hidden_size, bias=bias, **factory_kwargs)
        self.kv_proj = nn.Linear(hidden_size, 2 * hidden_size, bias=bias, **factory_kwargs)
        self.out_proj = nn.Linear(hidden_size, hidden_size, bias=bias, **factory_kwargs)

    def forward(self, hidden_states: Tensor, memory: Tensor) -> Tensor:
        q = _split_heads(self.q_proj(hidden_states), self.num_heads)
        k, v = self.kv_proj(memory).split(self.hidden_size, dim=-1)
        k, v = _split_heads(k, self.num_heads), _split_heads(v, self.num_heads)

        attn_output = F.scaled_dot_product_attention(q, k, v)
        return self.out_proj(_merge_heads(attn_output))
