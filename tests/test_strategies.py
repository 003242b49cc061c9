from __future__ import annotations

import asyncio

import pytest

from vocab_voice.errors import AllStrategiesFailedError, EmptyPayloadError
from vocab_voice.pipeline.strategies import FallbackChain, Strategy


def _returning(value, calls, name):
    async def attempt(subject):
        calls.append(name)
        return value

    return attempt


def _raising(exc, calls, name):
    async def attempt(subject):
        calls.append(name)
        raise exc

    return attempt


def test_first_success_wins_and_later_strategies_are_skipped():
    calls = []
    chain = FallbackChain(
        [
            Strategy("a", _raising(RuntimeError("down"), calls, "a")),
            Strategy("b", _returning(b"audio", calls, "b")),
            Strategy("c", _returning(b"other", calls, "c")),
        ]
    )

    assert asyncio.run(chain.run("happy")) == ("b", b"audio")
    assert calls == ["a", "b"]
    assert chain.names == ["a", "b", "c"]


def test_rejected_result_counts_as_failure():
    calls = []
    chain = FallbackChain(
        [
            Strategy("empty", _returning(b"", calls, "empty")),
            Strategy("full", _returning(b"x", calls, "full")),
        ]
    )
    assert asyncio.run(chain.run("happy")) == ("full", b"x")


def test_all_failures_are_collected():
    calls = []
    chain = FallbackChain(
        [
            Strategy("a", _raising(RuntimeError("down"), calls, "a")),
            Strategy("b", _returning("", calls, "b")),
        ]
    )

    with pytest.raises(AllStrategiesFailedError) as excinfo:
        asyncio.run(chain.run("happy"))

    errors = excinfo.value.errors
    assert list(errors) == ["a", "b"]
    assert isinstance(errors["b"], EmptyPayloadError)


def test_empty_chain_fails():
    with pytest.raises(AllStrategiesFailedError, match="no strategies configured"):
        asyncio.run(FallbackChain([]).run("happy"))
