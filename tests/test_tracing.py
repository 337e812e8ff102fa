"""
Tests for EventTracer and the shipped trace handlers.
"""

import logging

import pytest

from chainbuilder import (
    CallableTraceHandler,
    EventTracer,
    LoggingTraceHandler,
    Outcome,
    TraceDetails,
    TraceEvent,
    TraceHandler,
    TraceRecorder,
    chainbuilder,
    operation,
)


@operation(begin_subchain="each")
def begin_each(ctx):
    return ctx.skip()


@operation(end_subchain="each")
async def end_each(ctx, subchain):
    results = []
    for item in ctx.previous_result():
        outcome = await subchain.run(item)
        if outcome.error:
            return Outcome(outcome.error, None)
        results.append(outcome.result)
    return results


@pytest.fixture
def recorder():
    return TraceRecorder()


@pytest.fixture
def traced_chain(recorder, arithmetic):
    return chainbuilder(
        methods={**arithmetic, "begin_each": begin_each, "end_each": end_each},
        trace_handlers=[recorder],
    )


class TestEventTracer:
    """Ids, depth and enablement."""

    def test_disabled_without_handlers(self):
        tracer = EventTracer()

        assert tracer.is_disabled
        assert tracer.chain_start(1) is None

    def test_plain_callables_are_adapted(self):
        events = []
        tracer = EventTracer([lambda event, details: events.append(event)])

        memo = tracer.chain_start("initial")

        assert isinstance(tracer.handlers[0], CallableTraceHandler)
        assert events == [TraceEvent.CHAIN_START]
        assert memo.depth == 0
        assert memo.instance_id == f"{tracer.tracer_id}-chain-0"

    def test_rejects_non_handlers(self):
        with pytest.raises(TypeError):
            EventTracer([42])

    @pytest.mark.asyncio
    async def test_simple_run_events(self, traced_chain, recorder):
        await traced_chain().plus(1).run(1)

        assert recorder.event_types() == [
            TraceEvent.CHAIN_START,
            TraceEvent.CALL_START,
            TraceEvent.CALL_END,
            TraceEvent.CHAIN_END,
        ]
        chain_start, call_start, call_end, chain_end = recorder.payloads()
        assert chain_start.initial_value == 1
        assert call_start.method_name == "plus"
        assert call_start.args == [1]
        assert call_start.evaluated_args == [1]
        assert call_start.operation.name == "plus"
        assert call_start.chain_instance_id == chain_start.instance_id
        assert call_end.instance_id == call_start.instance_id
        assert call_end.result == 2
        assert call_end.run_time_ms >= 0
        assert chain_end.instance_id == chain_start.instance_id
        assert chain_end.result == 2

    @pytest.mark.asyncio
    async def test_nesting_depths(self, traced_chain, recorder):
        chain = (
            traced_chain()
            .begin_each()
                .begin_each()
                    .plus(1)
                .end_each()
            .end_each()
        )

        outcome = await chain.run([[1]])

        assert outcome.result == [[2]]
        starts = [d for e, d in recorder.events if e == TraceEvent.CHAIN_START]
        ends = [d for e, d in recorder.events if e == TraceEvent.CHAIN_END]
        assert [d.depth for d in starts] == [0, 1, 2]
        assert sorted(d.depth for d in ends) == [0, 1, 2]
        assert starts[1].parent_chain_instance_id == starts[0].instance_id
        assert starts[2].parent_chain_instance_id == starts[1].instance_id

    @pytest.mark.asyncio
    async def test_chain_end_emitted_once_with_end_hook(self, traced_chain, recorder):
        await traced_chain().plus(1).end().run(1)

        assert recorder.event_types().count(TraceEvent.CHAIN_END) == 1
        assert TraceEvent.CALL_START in recorder.event_types()
        methods = [d.method_name for e, d in recorder.events if e == TraceEvent.CALL_START]
        assert methods == ["plus"]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_break_chain(self, arithmetic, caplog):
        class Broken(TraceHandler):
            def handle(self, event, details):
                raise RuntimeError("handler broke")

        my_chain = chainbuilder(methods=arithmetic, trace_handlers=[Broken()])

        with caplog.at_level(logging.WARNING, logger="chainbuilder"):
            outcome = await my_chain().plus(1).run(1)

        assert outcome.result == 2
        assert "Trace handler" in caplog.text

    @pytest.mark.asyncio
    async def test_call_end_carries_exec_stack(self, recorder):
        def explode(ctx):
            raise ValueError("exploded")

        my_chain = chainbuilder(
            methods={"explode": explode}, trace_handlers=[recorder], enable_stack=True
        )

        await my_chain().inject(1).explode().run()

        ends = [d for e, d in recorder.events if e == TraceEvent.CALL_END]
        assert ends[0].exec_stack is not None
        assert "in explode" in ends[1].exec_stack[0]
        assert not any("executor.py" in frame for frame in ends[1].exec_stack)

    @pytest.mark.asyncio
    async def test_no_exec_stack_without_stack_capture(self, traced_chain, recorder):
        await traced_chain().plus(1).run(1)

        ends = [d for e, d in recorder.events if e == TraceEvent.CALL_END]
        assert ends[0].exec_stack is None
        assert "exec_stack" not in ends[0].to_dict()


class TestTraceRecorder:
    """call_tree rebuilds nested runs."""

    @pytest.mark.asyncio
    async def test_call_tree(self, traced_chain, recorder):
        await traced_chain().plus(1).begin_each().times(2).end_each().run([1, 2])

        tree = recorder.call_tree()

        assert len(tree) == 1
        root = tree[0]
        assert [call["method_name"] for call in root["calls"]] == ["plus", "begin_each", "end_each"]
        assert root["calls"][0]["error"] is not None
        assert root["calls"][1]["skipped"]

    @pytest.mark.asyncio
    async def test_call_tree_nests_subchains_under_call(self, traced_chain, recorder):
        await traced_chain().begin_each().times(2).end_each().run([1, 2])

        root = recorder.call_tree()[0]
        end_each_call = root["calls"][1]

        assert root["result"] == [2, 4]
        assert [chain["initial_value"] for chain in end_each_call["chains"]] == [1, 2]
        assert [chain["result"] for chain in end_each_call["chains"]] == [2, 4]
        assert end_each_call["chains"][0]["calls"][0]["method_name"] == "times"

    def test_clear(self, recorder):
        recorder.handle(TraceEvent.CHAIN_START, TraceDetails(instance_id="x"))
        recorder.clear()

        assert recorder.events == []


class TestLoggingTraceHandler:
    """One log record per event."""

    @pytest.mark.asyncio
    async def test_logs_events(self, arithmetic, caplog):
        my_chain = chainbuilder(methods=arithmetic, trace_handlers=[LoggingTraceHandler()])

        with caplog.at_level(logging.DEBUG, logger="chainbuilder.trace"):
            await my_chain().plus(1).run(1)

        records = [r for r in caplog.records if r.name == "chainbuilder.trace"]
        assert len(records) == 4
        assert records[0].trace["initial_value"] == 1
        assert "call_start plus" in records[1].getMessage()
        assert records[2].trace["result"] == 2

    def test_respects_level(self, caplog):
        handler = LoggingTraceHandler(level=logging.DEBUG)

        with caplog.at_level(logging.INFO, logger="chainbuilder.trace"):
            handler.handle(TraceEvent.CHAIN_START, TraceDetails(instance_id="x"))

        assert caplog.records == []

    def test_to_dict_drops_empty_fields(self):
        details = TraceDetails(instance_id="x", depth=1, method_name="plus")

        assert details.to_dict() == {"instance_id": "x", "depth": 1, "method_name": "plus"}
