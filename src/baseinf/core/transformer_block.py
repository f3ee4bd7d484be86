import torch
import torch.nn as nn
from torch import Tensor

from baseinf.core.attention import CrossAttention, MultiHeadAttention
from baseinf.core.kv_cache import KVCache


class TransformerBlock(nn.Module):
    """
    A Pre-LN Transformer block: self-attention, optional cross-attention over an
    encoder memory, and an MLP, each wrapped in a residual connection.
    """

    def __init__(
        self,
        hidden_size: int,
        num_heads: int,
        mlp_intermediate_size: int | None = None,
        norm_eps: float = 1e-5,
        is_causal: bool = True,
        cross_attention: bool = False,
        device: torch.device | str | None = None,
        dtype: torch.dtype | None = None,
    ):
        """
        Args:
            hidden_size (int): Dimensionality of the input and output.
            num_heads (int): Number of attention heads.
            mlp_intermediate_size (int, optional): Intermediate size for the MLP.
                                                   Defaults to 4 * hidden_size.
            norm_eps (float, default=1e-5): Epsilon for Layer Normalization.
            is_causal (bool, default=True): Causal self-attention (decoder) or full (encoder).
            cross_attention (bool, default=False): Add a cross-attention sublayer.
            device (torch.device | str | None, default=None): Target device.
            dtype (torch.dtype | None, default=None): Target data type.
        """
        super().__init__()
        factory_kwargs = {"device": device, "dtype": dtype}
        mlp_intermediate_size = mlp_intermediate_size or 4 * hidden_size

        self.norm1 = nn.LayerNorm(hidden_size, eps=norm_eps, **factory_kwargs)
        self.self_attn = MultiHeadAttention(hidden_size, num_heads, is_causal=is_causal, **factory_kwargs)

        self.cross_norm = None
        self.cross_attn = None
        if cross_attention:
            self.cross_norm = nn.LayerNorm(hidden_size, eps=norm_eps, **factory_kwargs)
            self.cross_attn = CrossAttention(hidden_size, num_heads, **factory_kwargs)

        self.norm2 = nn.LayerNorm(hidden_size, eps=norm_eps, **factory_kwargs)
        self.mlp = nn.Sequential(
            nn.Linear(hidden_size, mlp_intermediate_size, **factory_kwargs),
            nn.GELU(),
            nn.Linear(mlp_intermediate_size, hidden_size, **factory_kwargs),
        )

    def forward(
        self,
        hidden_states: Tensor,
        cache: KVCache | None = None,
        start_pos: int = 0,
        memory: Tensor | None = None,
    ) -> Tensor:
        hidden_states = hidden_states + self.self_attn(self.norm1(hidden_states), cache=cache, start_pos=start_pos)

        if self.cross_attn is not None:
            if memory is None:
                raise ValueError("Cross-attention block requires encoder memory")
            hidden_states = hidden_states + self.cross_attn(self.cross_norm(hidden_states), memory)

        return hidden_states + self.mlp(self.norm2(hidden_states))
