import torch
import torch.nn as nn

from baseinf.core.kv_cache import KVCache
from baseinf.core.transformer_block import TransformerBlock


class TinySeq2Seq(nn.Module):
    """
    A small encoder-decoder Transformer.

    The encoder runs once over the prompt with full (non-causal) attention and
    produces a memory. The decoder is causal, cached, and cross-attends to that
    memory. Token and positional embeddings are shared by both stacks.
    """

    def __init__(
        self,
        vocab_size: int,
        hidden_size: int = 64,
        num_encoder_layers: int = 2,
        num_decoder_layers: int = 2,
        num_heads: int = 4,
        max_seq_len: int = 256,
        decoder_start_token_id: int | None = None,
        norm_eps: float = 1e-5,
        device: torch.device | str | None = None,
        dtype: torch.dtype | None = None,
    ):
        super().__init__()
        factory_kwargs = {"device": device, "dtype": dtype}
        self.vocab_size = vocab_size
        self.hidden_size = hidden_size
        self.num_encoder_layers = num_encoder_layers
        self.num_decoder_layers = num_decoder_layers
        self.num_heads = num_heads
        self.max_seq_len = max_seq_len
        self.decoder_start_token_id = decoder_start_token_id
        self.norm_eps = norm_eps

        self.token_embedding = nn.Embedding(vocab_size, hidden_size, **factory_kwargs)
        self.pos_embedding = nn.Embedding(max_seq_len, hidden_size, **factory_kwargs)

        self.encoder_blocks = nn.ModuleList(
            [
                TransformerBlock(hidden_size, num_heads, norm_eps=norm_eps, is_causal=False, **factory_kwargs)
                for _ in range(num_encoder_layers)
            ]
        )
        self.encoder_norm = nn.LayerNorm(hidden_size, eps=norm_eps, **factory_kwargs)

        self.decoder_blocks = nn.ModuleList(
            [
                TransformerBlock(
                    hidden_size,
                    num_heads,
                    norm_eps=norm_eps,
                    is_causal=True,
                    cross_attention=True,
                    **factory_kwargs,
                )
                for _ in range(num_decoder_layers)
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
            "num_encoder_layers": self.num_encoder_layers,
            "num_decoder_layers": self.num_decoder_layers,
            "num_heads": self.num_heads,
            "max_seq_len": self.max_seq_len,
            "decoder_start_token_id": self.decoder_start_token_id,
            "norm_eps": self.norm_eps,
        }

    def embed(self, input_ids: torch.Tensor, start_pos: int) -> torch.Tensor:
        seq_len = input_ids.size(1)
        if start_pos + seq_len > self.max_seq_len:
            raise ValueError(f"Positions up to {start_pos + seq_len} exceed max_seq_len {self.max_seq_len}")
        positions = torch.arange(start_pos, start_pos + seq_len, device=input_ids.device)
        return self.token_embedding(input_ids) + self.pos_embedding(positions)

    def encode(self, input_ids: torch.Tensor) -> torch.Tensor:
        """Encodes [B, S] token IDs into a memory of shape [B, S, H]."""
        hidden_states = self.embed(input_ids, 0)
        for block in self.encoder_blocks:
            hidden_states = block(hidden_states)
        return self.encoder_norm(hidden_states)

    def forward(
        self,
        input_ids: torch.Tensor,
        memory: torch.Tensor,
        caches: list[KVCache] | None = None,
        start_pos: int = 0,
    ) -> torch.Tensor:
        """
        Args:
            input_ids (torch.Tensor): Decoder token IDs of shape [B, S].
            memory (torch.Tensor): Encoder output of shape [B, S_enc, H].
            caches (list[KVCache] | None): One cache per decoder block.
            start_pos (int): Decoder position of the first input token.

        Returns:
            torch.Tensor: Logits of shape [B, S, vocab_size].
        """
        if caches is not None and len(caches) != len(self.decoder_blocks):
            raise ValueError(f"Expected {len(self.decoder_blocks)} caches, got {len(caches)}")

        hidden_states = self.embed(input_ids, start_pos)
        for i, block in enumerate(self.decoder_blocks):
            cache = caches[i] if caches is not None else None
            hidden_states = block(hidden_states, cache=cache, start_pos=start_pos, memory=memory)

        return self.lm_head(self.final_norm(hidden_states))
