import torch
import torch.nn as nn

from baseinf.core.kv_cache import KVCache
from baseinf.core.transformer_block import TransformerBlock


class TinyDecoder(nn.Module):
    """
    A small decoder-only Transformer language model.

    Token and learned positional embeddings, a stack of causal Pre-LN Transformer
    blocks, a final LayerNorm and a language-modeling head. Supports incremental
    decoding through one KVCache per layer.
    """

    def __init__(
        self,
        vocab_size: int,
        hidden_size: int = 64,
        num_layers: int = 2,
        num_heads: int = 4,
        max_seq_len: int = 256,
        mlp_intermediate_size: int | None = None,
        norm_eps: float = 1e-5,
        device: torch.device | str | None = None,
        dtype: torch.dtype | None = None,
    ):
        """
        Args:
            vocab_size (int): Vocabulary size.
            hidden_size (int, default=64): Dimensionality of the model.
            num_layers (int, default=2): Number of TransformerBlock layers.
            num_heads (int, default=4): Number of attention heads per block.
            max_seq_len (int, default=256): Largest number of positions the model supports.
            mlp_intermediate_size (int, optional): Intermediate size of the MLPs. Defaults to 4 * hidden_size.
            norm_eps (float, default=1e-5): Epsilon for LayerNorms.
            device (torch.device | str | None, default=None): Target device.
            dtype (torch.dtype | None, default=None): Target data type.
        """
        super().__init__()
        factory_kwargs = {"device": device, "dtype": dtype}
        self.vocab_size = vocab_size
        self.hidden_size = hidden_size
        self.num_layers = num_layers
        self.num_heads = num_heads
        self.max_seq_len = max_seq_len
        self.mlp_intermediate_size = mlp_intermediate_size
        self.norm_eps = norm_eps

        self.token_embedding = nn.Embedding(vocab_size, hidden_size, **factory_kwargs)
        self.pos_embedding = nn.Embedding(max_seq_len, hidden_size, **factory_kwargs)
        self.blocks = nn.ModuleList(
            [
                TransformerBlock(
                    hidden_size,
                    num_heads,
                    mlp_intermediate_size=mlp_intermediate_size,
                    norm_eps=norm_eps,
                    is_causal=True,
                    **factory_kwargs,
                )
                for _ in range(num_layers)
            ]
        )
        self.final_norm = nn.LayerNorm(hidden_size, eps=norm_eps, **factory_kwargs)
        self.lm_head = nn.Linear(hidden_size, vocab_size, **factory_kwargs)

    @property
    def head_dim(self) -> int:
        return self.hidden_size // self.num_heads

    def get_config(self) -> dict:
        return {
            "vocab_size": self.vocab_size,
            "hidden_size": self.hidden_size,
            "num_layers": self.num_layers,
            "num_heads": self.num_heads,
            "max_seq_len": self.max_seq_len,
            "mlp_intermediate_size": self.mlp_intermediate_size,
            "norm_eps": self.norm_eps,
        }

    def embed(self, input_ids: torch.Tensor, start_pos: int) -> torch.Tensor:
        seq_len = input_ids.size(1)
        if start_pos + seq_len > self.max_seq_len:
            raise ValueError(f"Positions up to {start_pos + seq_len} exceed max_seq_len {self.max_seq_len}")
        positions = torch.arange(start_pos, start_pos + seq_len, device=input_ids.device)
        return self.token_embedding(input_ids) + self.pos_embedding(positions)

    def forward(
        self,
        input_ids: torch.Tensor,
        caches: list[KVCache] | None = None,
        start_pos: int = 0,
    ) -> torch.Tensor:
        """
        Args:
            input_ids (torch.Tensor): Token IDs of shape [B, S].
            caches (list[KVCache] | None): One cache per block for incremental decoding.
            start_pos (int): Position of the first input token.

        Returns:
            torch.Tensor: Logits of shape [B, S, vocab_size].
        """
        if caches is not None and len(caches) != len(self.blocks):
            raise ValueError(f"Expected {len(self.blocks)} caches, got {len(caches)}")

        hidden_states = self.embed(input_ids, start_pos)
        for i, block in enumerate(self.blocks):
            cache = caches[i] if caches is not None else None
            hidden_states = block(hidden_states, cache=cache, start_pos=start_pos)

        return self.lm_head(self.final_norm(hidden_states))
