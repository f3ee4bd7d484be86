from .char_vocab import CharVocabulary
from .hf_vocab import HFVocabulary
from .vocab import MAX_PIECE_BYTES, TOKEN_NULL, Vocabulary

__all__ = ["CharVocabulary", "HFVocabulary", "MAX_PIECE_BYTES", "TOKEN_NULL", "Vocabulary"]
