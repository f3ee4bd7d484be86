import re

from baseinf.errors import DetokenizeError, TokenizeError
from baseinf.tokenization.vocab import MAX_PIECE_BYTES


class CharVocabulary:
    """
    A character-level vocabulary with begin/end-of-sequence special tokens.

    The vocabulary is built from the unique characters of a corpus. The two special
    tokens are appended after the characters, so their ids are ``len(chars)`` and
    ``len(chars) + 1``. When ``parse_special`` is set, the literal markers
    ``<BOS>`` and ``<EOS>`` inside the text are mapped to the special tokens.
    """

    bos_text = "<BOS>"
    eos_text = "<EOS>"

    def __init__(self, corpus: list[str]):
        """
        Args:
            corpus (list[str]): Strings whose unique characters form the vocabulary.
        """
        if not isinstance(corpus, list):
            raise TypeError("Corpus must be a list of strings.")
        if not all(isinstance(s, str) for s in corpus):
            raise TypeError("All items in the corpus must be strings.")

        # Sort for consistent mapping
        self.chars: list[str] = sorted(set("".join(corpus)))
        self.stoi: dict[str, int] = {char: i for i, char in enumerate(self.chars)}
        self.itos: dict[int, str] = {i: char for i, char in enumerate(self.chars)}

        self.bos_token: int = len(self.chars)
        self.eos_token: int = len(self.chars) + 1
        self.itos[self.bos_token] = self.bos_text
        self.itos[self.eos_token] = self.eos_text
        self.vocab_size: int = len(self.chars) + 2

        self._special_re = re.compile(f"({re.escape(self.bos_text)}|{re.escape(self.eos_text)})")
        self._special_ids = {self.bos_text: self.bos_token, self.eos_text: self.eos_token}

    def tokenize(self, text: str, add_special: bool = True, parse_special: bool = True) -> list[int]:
        if not isinstance(text, str):
            raise TokenizeError(f"Input text must be a string, got {type(text).__name__}.")

        tokens: list[int] = [self.bos_token] if add_special else []
        parts = self._special_re.split(text) if parse_special else [text]
        for part in parts:
            if parse_special and part in self._special_ids:
                tokens.append(self._special_ids[part])
                continue
            for char in part:
                try:
                    tokens.append(self.stoi[char])
                except KeyError:
                    raise TokenizeError(
                        f"Character {char!r} not found in vocabulary. "
                        "Only characters present in the initial corpus can be encoded."
                    ) from None
        return tokens

    def begin_stream(self) -> None:
        # Every token is a whole character, nothing is held back
        pass

    def token_to_piece(self, token: int) -> str:
        try:
            piece = self.itos[token]
        except KeyError:
            raise DetokenizeError(f"Token id {token} not found in vocabulary of size {self.vocab_size}.") from None
        if len(piece.encode("utf-8")) > MAX_PIECE_BYTES:
            raise DetokenizeError(f"Piece for token {token} exceeds {MAX_PIECE_BYTES} bytes.")
        return piece

    def is_eog(self, token: int) -> bool:
        return token == self.eos_token

    def to_dict(self) -> dict:
        return {"type": "char", "chars": list(self.chars)}

    @classmethod
    def from_dict(cls, data: dict) -> "CharVocabulary":
        return cls(["".join(data["chars"])])
