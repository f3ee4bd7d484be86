from .attention import CrossAttention, MultiHeadAttention
from .kv_cache import KVCache
from .transformer_block import TransformerBlock

__all__ = [
    "CrossAttention",
    "KVCache",
    "MultiHeadAttention",
    "TransformerBlock",
]
