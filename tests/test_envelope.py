import time

from chat_relay import envelope as envelope_mod
from chat_relay.aggregate import AggregationState


def test_default_model_used_without_upstream_metadata():
    env = envelope_mod.build_envelope(AggregationState(parts=["hi"]))
    assert env.model == "@tx/deepseek-ai/deepseek-v3-0324"


def test_configured_default_model(monkeypatch):
    monkeypatch.setattr(envelope_mod.settings, "default_model", "local/fallback")
    env = envelope_mod.build_envelope(AggregationState())
    assert env.model == "local/fallback"


def test_upstream_model_wins_over_default():
    env = envelope_mod.build_envelope(AggregationState(model="deepseek-v3"), default_model="other")
    assert env.model == "deepseek-v3"


def test_envelope_shape_and_zero_usage():
    before = int(time.time())
    state = AggregationState(parts=["x" * 5000, "y" * 5000], finish_reason="length")
    out = envelope_mod.build_envelope(state).model_dump()
    assert out["object"] == "chat.completion"
    assert out["id"].startswith("chatcmpl-")
    assert before <= out["created"] <= int(time.time()) + 1
    assert out["choices"] == [
        {
            "index": 0,
            "message": {"role": "assistant", "content": "x" * 5000 + "y" * 5000},
            "finish_reason": "stop",
        }
    ]
    assert out["usage"] == {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}


def test_ids_are_unique():
    ids = {envelope_mod.build_envelope(AggregationState()).id for _ in range(50)}
    assert len(ids) == 50
