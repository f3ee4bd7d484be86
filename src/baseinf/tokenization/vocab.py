from typing import Protocol

# Sentinel for "no such token" (e.g. a model without a decoder-start token).
TOKEN_NULL = -1

# Largest piece, in UTF-8 bytes, a single token may render to.
MAX_PIECE_BYTES = 128


class Vocabulary(Protocol):
    """
    Text <-> token id mapping used by the generation loop.
    """

    vocab_size: int
    bos_token: int

    def tokenize(self, text: str, add_special: bool = True, parse_special: bool = True) -> list[int]:
        """Encodes ``text``. Raises TokenizeError if it cannot be encoded."""
        ...

    def begin_stream(self) -> None:
        """Drops text held back from a previous ``token_to_piece`` sequence."""
        ...

    def token_to_piece(self, token: int) -> str:
        """
        Renders the next token of the current stream. Raises DetokenizeError if it
        cannot be rendered.

        The piece may be empty when the token ends mid-character; the held-back
        text comes with the token that completes it.
        """
        ...

    def is_eog(self, token: int) -> bool:
        """Whether ``token`` marks the end of generation."""
        ...
