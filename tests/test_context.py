import pytest
import torch

from baseinf.batch import make_batch, next_token_batch, prefill_batch
from baseinf.context import ContextParams, ContextPerf, ExecutionContext
from baseinf.errors import ContextCreateError, DecodeError, EncodeError

from tests.dummies import DummyModel


@pytest.fixture
def context(dummy_model):
    with ExecutionContext(dummy_model, ContextParams(capacity=8, max_batch_size=5)) as ctx:
        yield ctx


@pytest.mark.quick
class TestCreation:
    @pytest.mark.parametrize("capacity, max_batch_size", [(0, 1), (4, 0), (4, 5)])
    def test_invalid_params(self, dummy_model, capacity, max_batch_size):
        with pytest.raises(ContextCreateError):
            ExecutionContext(dummy_model, ContextParams(capacity, max_batch_size))
        assert dummy_model.events == []

    def test_model_refuses_capacity(self):
        model = DummyModel(max_positions=4)
        with pytest.raises(ContextCreateError, match="8 positions"):
            ExecutionContext(model, ContextParams(capacity=8, max_batch_size=2))

    def test_initial_state(self, context):
        assert context.n_pos == 0
        assert context.logits is None
        assert context.capacity == 8
        assert not context.closed


@pytest.mark.quick
class TestDecode:
    def test_decode_advances_cursor(self, context, dummy_model):
        logits = context.decode(prefill_batch([0, 2, 3]))

        assert context.n_pos == 3
        assert torch.equal(logits, context.logits)
        assert int(torch.argmax(logits)) == 2

        context.decode(next_token_batch(2, 3))
        assert context.n_pos == 4
        assert dummy_model.decode_calls()[-1] == ("decode", [2], 3)

    def test_batch_without_position_continues_at_cursor(self, context, dummy_model):
        context.decode(make_batch([0, 2]))
        context.decode(make_batch([3]))

        assert dummy_model.decode_calls()[-1] == ("decode", [3], 2)

    def test_position_mismatch(self, context):
        context.decode(prefill_batch([0, 2]))
        with pytest.raises(DecodeError, match="starts at position 5"):
            context.decode(next_token_batch(3, 5))

    def test_overflow_rejected_before_model_call(self, context, dummy_model):
        context.decode(prefill_batch([0, 2, 3, 4, 5]))
        context.decode(next_token_batch(2, 5))
        context.decode(next_token_batch(2, 6))
        context.decode(next_token_batch(2, 7))
        calls = len(dummy_model.decode_calls())

        assert not context.fits(next_token_batch(2, 8))
        with pytest.raises(DecodeError, match="Context overflow"):
            context.decode(next_token_batch(2, 8))
        assert len(dummy_model.decode_calls()) == calls
        assert context.n_pos == 8

    def test_batch_larger_than_max(self, context):
        with pytest.raises(DecodeError, match="max_batch_size"):
            context.decode(prefill_batch([0, 2, 3, 4, 5, 6]))

    def test_empty_batch(self, context):
        with pytest.raises(DecodeError, match="empty"):
            context.decode(prefill_batch([]))

    def test_model_failure_wrapped(self):
        model = DummyModel(fail_decode_at=0)
        ctx = ExecutionContext(model, ContextParams(capacity=4, max_batch_size=2))
        with pytest.raises(DecodeError, match="out of memory") as exc_info:
            ctx.decode(prefill_batch([0, 2]))

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert ctx.n_pos == 0
        assert ctx.logits is None

    def test_reentrant_call_rejected(self, context):
        context._busy = True
        with pytest.raises(DecodeError, match="already running"):
            context.decode(prefill_batch([0]))


@pytest.mark.quick
class TestEncode:
    def test_encode_requires_encoder(self, context):
        with pytest.raises(EncodeError, match="no encoder"):
            context.encode(prefill_batch([0, 2]))

    def test_encode_keeps_cursor(self):
        model = DummyModel(has_encoder=True)
        with ExecutionContext(model, ContextParams(capacity=6, max_batch_size=3)) as ctx:
            ctx.encode(prefill_batch([0, 2, 3]))

            assert ctx.n_pos == 0
            assert model.encode_calls() == [("encode", [0, 2, 3])]
            assert ctx.perf.n_encode == 3


@pytest.mark.quick
class TestRelease:
    def test_close_is_idempotent(self, dummy_model):
        ctx = ExecutionContext(dummy_model, ContextParams(capacity=4, max_batch_size=2))
        ctx.close()
        ctx.close()

        assert ctx.closed
        assert dummy_model.events.count(("release_state",)) == 1

    def test_closed_context_rejects_calls(self, dummy_model):
        ctx = ExecutionContext(dummy_model, ContextParams(capacity=4, max_batch_size=2))
        ctx.close()
        with pytest.raises(DecodeError, match="closed"):
            ctx.decode(prefill_batch([0]))


@pytest.mark.quick
class TestPerf:
    def test_prompt_and_eval_counted_separately(self):
        perf = ContextPerf()
        perf.record_decode(5, 10.0)
        perf.record_decode(1, 2.0)
        perf.record_decode(1, 2.0)

        assert (perf.n_p_eval, perf.t_p_eval_ms) == (5, 10.0)
        assert (perf.n_eval, perf.t_eval_ms) == (2, 4.0)

    def test_summary_lines(self):
        perf = ContextPerf(n_p_eval=5, t_p_eval_ms=10.0, n_eval=2, t_eval_ms=4.0)
        lines = perf.summary()

        assert len(lines) == 2
        assert "prompt eval time" in lines[0]
        assert "2.00 ms per token" in lines[0]
        assert "eval time" in lines[1]
        assert "500.00 tokens per second" in lines[1]

    def test_encode_line_only_when_used(self):
        assert len(ContextPerf(n_encode=3, t_encode_ms=1.0).summary()) == 3
