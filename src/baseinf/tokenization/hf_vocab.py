from collections.abc import Iterable

from baseinf.errors import DetokenizeError, TokenizeError
from baseinf.tokenization.vocab import MAX_PIECE_BYTES, TOKEN_NULL

# What tokenizers render an incomplete UTF-8 sequence as
REPLACEMENT_CHAR = "\ufffd"


class _TextStream:
    """
    Incremental detokenizer.

    Byte-level tokenizers may split one character over several tokens, and
    SentencePiece tokenizers render a token's leading space only after a
    preceding token. Decoding each token on its own gets both wrong, so the
    stream decodes the pending tokens together with the last emitted ones and
    returns only the newly completed text.
    """

    def __init__(self, tokenizer):
        self._tokenizer = tokenizer
        # Tokens already rendered (kept as context), followed by pending ones
        self._ids: list[int] = []
        self._read_offset = 0

    def _decode(self, ids: list[int]) -> str:
        return self._tokenizer.decode(ids, skip_special_tokens=False, clean_up_tokenization_spaces=False)

    def push(self, token: int) -> str:
        """Adds ``token`` and returns the text it completes, possibly empty."""
        self._ids.append(token)
        prefix_text = self._decode(self._ids[: self._read_offset])
        new_text = self._decode(self._ids)
        if len(new_text) <= len(prefix_text) or new_text.endswith(REPLACEMENT_CHAR):
            return ""

        self._ids = self._ids[self._read_offset :]
        self._read_offset = len(self._ids)
        return new_text[len(prefix_text) :]


class HFVocabulary:
    """
    Wrapper for HuggingFace Transformers tokenizers.

    ``token_to_piece`` renders tokens as one continuous stream: a token that ends
    mid-character yields an empty piece and its text arrives with the token that
    completes it. Call ``begin_stream`` before rendering an unrelated sequence.
    """

    def __init__(
        self,
        tokenizer,
        eog_token_ids: Iterable[int] | None = None,
        max_piece_bytes: int = MAX_PIECE_BYTES,
    ):
        """
        Args:
            tokenizer: A ``transformers`` tokenizer instance.
            eog_token_ids: Extra end-of-generation ids (e.g. from the model's generation config).
                The tokenizer's own ``eos_token_id`` is always included.
            max_piece_bytes: Largest piece, in UTF-8 bytes, a single token may render to.
        """
        self._tokenizer = tokenizer
        self.max_piece_bytes = max_piece_bytes
        self._stream = _TextStream(tokenizer)

        ids = set(eog_token_ids or ())
        if tokenizer.eos_token_id is not None:
            ids.add(tokenizer.eos_token_id)
        self.eog_token_ids = frozenset(ids)

    @property
    def vocab_size(self) -> int:
        return len(self._tokenizer)

    @property
    def bos_token(self) -> int:
        bos = self._tokenizer.bos_token_id
        return TOKEN_NULL if bos is None else bos

    def tokenize(self, text: str, add_special: bool = True, parse_special: bool = True) -> list[int]:
        # Special-token markers in the text are split into plain text unless parse_special is set
        kwargs = {} if parse_special else {"split_special_tokens": True}
        try:
            return list(self._tokenizer.encode(text, add_special_tokens=add_special, **kwargs))
        except Exception as e:
            raise TokenizeError(f"Failed to tokenize the prompt: {e}") from e

    def begin_stream(self) -> None:
        self._stream = _TextStream(self._tokenizer)

    def token_to_piece(self, token: int) -> str:
        if not 0 <= token < self.vocab_size:
            raise DetokenizeError(f"Token id {token} out of range for vocabulary of size {self.vocab_size}.")
        try:
            piece = self._stream.push(token)
        except Exception as e:
            raise DetokenizeError(f"Failed to render token {token}: {e}") from e
        if len(piece.encode("utf-8")) > self.max_piece_bytes:
            raise DetokenizeError(f"Piece for token {token} exceeds {self.max_piece_bytes} bytes.")
        return piece

    def is_eog(self, token: int) -> bool:
        return token in self.eog_token_ids

    @classmethod
    def from_pretrained(cls, path: str, eog_token_ids: Iterable[int] | None = None) -> "HFVocabulary":
        from transformers import AutoTokenizer

        return cls(AutoTokenizer.from_pretrained(path), eog_token_ids=eog_token_ids)
