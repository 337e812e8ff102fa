"""
Tests for chain construction, ordering and execution modes.
"""

import asyncio

import pytest

from chainbuilder import ChainStateError, Outcome, chainbuilder, operation


class TestChainFlow:
    """Calls execute in the order they were queued."""

    @pytest.mark.asyncio
    async def test_methods_become_chainable(self, ended):
        calls = []

        def test_one(ctx):
            calls.append("test-one")
            return "one"

        def test_two(ctx, arg):
            calls.append(f"test-two:{arg}")
            return "two"

        async def test_three(ctx):
            calls.append("test-three")
            return "three"

        my_chain = chainbuilder(
            methods={"test_one": test_one, "test_two": test_two, "test_three": test_three}
        )

        outcome = await ended(
            my_chain({})
            .test_two("FOO")
            .test_three()
            .test_one()
            .test_two("BAR")
            .test_one()
        )

        assert calls == ["test-two:FOO", "test-three", "test-one", "test-two:BAR", "test-one"]
        assert outcome.result == "one"
        assert outcome.error is None

    @pytest.mark.asyncio
    async def test_run_without_initial_value_keeps_order(self):
        calls = []

        def marker(label, result):
            def op(ctx, *args):
                calls.append(":".join([label, *args]))
                return result

            return op

        my_chain = chainbuilder(
            methods={
                "test_one": marker("test-one", "one"),
                "test_two": marker("test-two", "two"),
                "test_three": marker("test-three", "three"),
            }
        )
        received = []

        outcome = await (
            my_chain()
            .test_two("FOO")
            .test_three()
            .test_one()
            .run(callback=lambda error, result: received.append((error, result)))
        )

        assert calls == ["test-two:FOO", "test-three", "test-one"]
        assert outcome == Outcome(None, "one")
        assert received == [(None, "one")]

    @pytest.mark.asyncio
    async def test_previous_result_is_visible(self, ended):
        my_chain = chainbuilder(
            methods={
                "test_one": lambda ctx: "one",
                "test_two": lambda ctx: ctx.previous_result() + "two",
            }
        )

        outcome = await ended(my_chain({}).test_one().test_two())

        assert outcome.result == "onetwo"

    @pytest.mark.asyncio
    async def test_next_call_waits_for_previous(self, ended):
        release = asyncio.Event()
        calls = []

        async def slow(ctx):
            calls.append("slow-start")
            await release.wait()
            calls.append("slow-end")
            return "slow"

        def fast(ctx):
            calls.append("fast")
            return "fast"

        my_chain = chainbuilder(methods={"slow": slow, "fast": fast})
        chain = my_chain({}).slow().fast()
        await asyncio.sleep(0.01)

        assert calls == ["slow-start"]

        release.set()
        outcome = await ended(chain)

        assert calls == ["slow-start", "slow-end", "fast"]
        assert outcome.result == "fast"

    @pytest.mark.asyncio
    async def test_get_method_calls_other_operations(self, ended):
        def prefix(ctx, pre, word):
            return pre + word

        def in_prefix(ctx, word):
            return ctx.get_method("prefix")("in", word)

        my_chain = chainbuilder(methods={"prefix": prefix, "in_prefix": in_prefix})
        seen = []

        outcome = await ended(
            my_chain({})
            .prefix("con", "sequential")
            .tap(lambda error, result: seen.append(result))
            .in_prefix("satiable")
        )

        assert seen == ["consequential"]
        assert outcome.result == "insatiable"

    @pytest.mark.asyncio
    async def test_generic_call(self, arithmetic):
        my_chain = chainbuilder(methods=arithmetic)

        outcome = await my_chain().call("plus", 1).call("times", 10).run(1)

        assert outcome.result == 20


class TestExecutionModes:
    """Immediate start versus deferred ``run()``."""

    @pytest.mark.asyncio
    async def test_idle_until_run(self, arithmetic):
        calls = []

        def record(ctx):
            calls.append(ctx.previous_result())
            return ctx.skip()

        my_chain = chainbuilder(methods={**arithmetic, "record": record})
        chain = my_chain().times(3).plus(2).record()
        await asyncio.sleep(0.01)

        assert calls == []

        first = await chain.run(5)
        second = await chain.run(2)

        assert first.result == 17
        assert second.result == 8
        assert calls == [17, 8]

    @pytest.mark.asyncio
    async def test_none_starts_immediately(self, ended):
        calls = []

        def record(ctx):
            calls.append(ctx.previous_result())
            return "recorded"

        my_chain = chainbuilder(methods={"record": record})

        outcome = await ended(my_chain(None).record())

        assert calls == [None]
        assert outcome.result == "recorded"

    @pytest.mark.asyncio
    async def test_run_without_arguments(self):
        my_chain = chainbuilder(methods={})

        outcome = await my_chain().inject(1).run()

        assert outcome == Outcome(None, 1)

    @pytest.mark.asyncio
    async def test_run_callback_called_once(self, arithmetic):
        received = []
        my_chain = chainbuilder(methods=arithmetic)

        await my_chain().plus(1).run(1, lambda error, result: received.append((error, result)))

        assert received == [(None, 2)]

    @pytest.mark.asyncio
    async def test_async_run_callback(self, arithmetic):
        received = []

        async def callback(error, result):
            await asyncio.sleep(0)
            received.append(result)

        my_chain = chainbuilder(methods=arithmetic)
        await my_chain().plus(1).run(1, callback)

        assert received == [2]

    @pytest.mark.asyncio
    async def test_raising_run_callback_fails_future(self, arithmetic):
        def callback(error, result):
            raise RuntimeError("callback broke")

        my_chain = chainbuilder(methods=arithmetic)

        with pytest.raises(RuntimeError, match="callback broke"):
            await my_chain().plus(1).run(1, callback)

    @pytest.mark.asyncio
    async def test_concurrent_runs_are_independent(self, arithmetic):
        my_chain = chainbuilder(methods=arithmetic)
        chain = my_chain().times(2).plus(1).times(3)

        first, second = await asyncio.gather(chain.run(1), chain.run(10))

        assert first.result == 9
        assert second.result == 63

    @pytest.mark.asyncio
    async def test_clone_is_independent(self, arithmetic):
        my_chain = chainbuilder(methods=arithmetic)
        chain = my_chain().plus(1)
        clone = chain.clone().times(10)

        assert len(chain) == 1
        assert len(clone) == 2
        assert (await chain.run(1)).result == 2
        assert (await clone.run(1)).result == 20

    def test_immediate_chain_needs_running_loop(self):
        my_chain = chainbuilder(methods={})

        with pytest.raises(ChainStateError, match="running event loop"):
            my_chain(1)

    def test_repr_and_len(self, arithmetic):
        my_chain = chainbuilder(methods=arithmetic)
        chain = my_chain().plus(1).times(2)

        assert len(chain) == 2
        assert repr(chain) == "Chain(links=2)"
        assert "plus" in chain.method_names()
        assert "tap" in chain.method_names()


@operation(begin_subchain="map")
def begin_map(ctx):
    return ctx.skip()


@operation(end_subchain="map")
async def end_map(ctx, subchain):
    results = []
    for item in ctx.previous_result():
        outcome = await subchain.run(item)
        if outcome.error:
            return Outcome(outcome.error, None)
        results.append(outcome.result)
    return results


class TestSubchains:
    """Blocks between begin and end markers become sub-chains."""

    @pytest.fixture
    def map_chain(self, arithmetic):
        return chainbuilder(
            methods={
                **arithmetic,
                "begin_map": begin_map,
                "end_map": end_map,
                "append": lambda ctx, value: ctx.previous_result() + [value],
            }
        )

    @pytest.mark.asyncio
    async def test_map_block(self, map_chain, ended):
        outcome = await ended(
            map_chain([1, 2, 3])
            .begin_map()
                .plus(1)
                .times(2)
            .end_map()
        )

        assert outcome.result == [4, 6, 8]

    @pytest.mark.asyncio
    async def test_nested_blocks(self, map_chain):
        chain = (
            map_chain()
            .begin_map()
                .append(4)
                .begin_map()
                    .times(10)
                .end_map()
            .end_map()
        )

        outcome = await chain.run([[1], [2, 3]])

        assert outcome.result == [[10, 40], [20, 30, 40]]

    @pytest.mark.asyncio
    async def test_block_reruns_are_independent(self, map_chain):
        chain = map_chain().begin_map().plus(1).end_map()

        first = await chain.run([1, 2])
        second = await chain.run([10])

        assert first.result == [2, 3]
        assert second.result == [11]

    def test_block_calls_are_routed_into_subchain(self, map_chain):
        chain = map_chain().begin_map().plus(1).times(2).end_map()

        assert len(chain) == 2
        closing = chain._call_queue.descriptors[1]
        assert closing.method_name == "end_map"
        assert [d.method_name for d in closing.subchain.descriptors] == ["plus", "times"]

    def test_run_with_open_block_fails(self, map_chain):
        chain = map_chain().begin_map().begin_map()

        with pytest.raises(ChainStateError, match="open blocks: map,map"):
            chain.run([])

    def test_clone_with_open_block_fails(self, map_chain):
        chain = map_chain().begin_map()

        with pytest.raises(ChainStateError, match="Cannot clone while there are open blocks."):
            chain.clone()
