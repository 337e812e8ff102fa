"""
Shared fixtures for chainbuilder tests.
"""

import asyncio

import pytest

from chainbuilder import Outcome


@pytest.fixture
def ended():
    """
    Attach an ``end`` hook to a chain and return a future for its outcome.

    Immediately-started chains report only through ``end``, so tests await
    the returned future instead of ``run()``.
    """

    def attach(chain):
        future = asyncio.get_running_loop().create_future()

        def on_end(error, result):
            if not future.done():
                future.set_result(Outcome(error, result))

        chain.end(on_end)
        return future

    return attach


@pytest.fixture
def arithmetic():
    """Plain plus/times operations, one sync and one async."""

    def plus(ctx, number):
        return ctx.previous_result() + number

    async def times(ctx, factor):
        await asyncio.sleep(0)
        return ctx.previous_result() * factor

    return {"plus": plus, "times": times}
