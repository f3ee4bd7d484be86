import pytest
import torch

from baseinf.models.decoder import TinyDecoder
from baseinf.models.seq2seq import TinySeq2Seq
from baseinf.models.torch_model import TorchModel
from baseinf.tokenization.char_vocab import CharVocabulary

from tests.dummies import DummyModel

CORPUS = ["hello world", "the quick brown fox"]


@pytest.fixture
def dummy_model():
    """A scripted decoder-only model that never emits end-of-generation."""
    return DummyModel(next_tokens=[2, 3, 4, 5, 6, 7])


@pytest.fixture
def char_vocab():
    return CharVocabulary(CORPUS)


@pytest.fixture
def tiny_decoder(char_vocab):
    torch.manual_seed(0)
    return TinyDecoder(vocab_size=char_vocab.vocab_size, hidden_size=16, num_layers=2, num_heads=2, max_seq_len=64)


@pytest.fixture
def tiny_seq2seq(char_vocab):
    torch.manual_seed(0)
    return TinySeq2Seq(
        vocab_size=char_vocab.vocab_size,
        hidden_size=16,
        num_encoder_layers=1,
        num_decoder_layers=2,
        num_heads=2,
        max_seq_len=64,
    )


@pytest.fixture
def torch_model(tiny_decoder, char_vocab):
    return TorchModel(tiny_decoder, char_vocab)


@pytest.fixture
def torch_seq2seq_model(tiny_seq2seq, char_vocab):
    return TorchModel(tiny_seq2seq, char_vocab)
