"""Unit tests for batchdispatch/core/orchestrator.py.

Tests the dispatch lifecycle end to end against fake inference endpoints.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from batchdispatch.config.settings import DispatchSettings
from batchdispatch.core.executor import Prompts, RetryPolicy
from batchdispatch.core.orchestrator import (
    BatchDispatcher,
    DispatchOptions,
    DispatchResult,
    merge_in_order,
    process_batched,
)
from batchdispatch.llm.errors import TokenBudgetExceededError
from batchdispatch.llm.model_limits import ModelLimits

FAST = DispatchSettings(
    concurrency=3,
    stagger_seconds=0,
    retry=RetryPolicy(max_retries=2, base_delay=0),
)

# input_budget = 6000, output_budget = 3200
SMALL_MODEL = ModelLimits(context_window=10_000, max_output=4_000)


def _limits(_model):
    return SMALL_MODEL


def _options(items, prompt_builder, id_parser, **kwargs):
    kwargs.setdefault("estimate_item_tokens", lambda _item: 2000)
    return DispatchOptions(
        items=items,
        model="test-model",
        build_prompts=prompt_builder,
        parse_result=id_parser,
        **kwargs,
    )


def _items(n):
    return [{"id": f"item-{i}"} for i in range(n)]


class TestDispatchResult:
    """Tests for DispatchResult helpers."""

    @pytest.mark.unit
    def test_partial_flags(self):
        result = DispatchResult(results={"a": 1}, failed_batches=1, total_batches=3)
        assert result.succeeded_batches == 2
        assert result.is_partial
        assert not result.is_complete

    @pytest.mark.unit
    def test_total_failure_is_not_partial(self):
        result = DispatchResult(failed_batches=2, total_batches=2)
        assert not result.is_partial


class TestMergeInOrder:
    """Tests for the default merge."""

    @pytest.mark.unit
    def test_later_overwrites_earlier(self):
        assert merge_in_order([{"a": 1, "b": 1}, {"b": 2}, {"c": 3}]) == {"a": 1, "b": 2, "c": 3}


class TestPlan:
    """Tests for BatchDispatcher.plan."""

    @pytest.mark.unit
    def test_budget_and_batches(self, prompt_builder, id_parser):
        dispatcher = BatchDispatcher(AsyncMock(), FAST, limits_resolver=_limits)
        plan = dispatcher.plan(_options(_items(6), prompt_builder, id_parser))

        assert plan.limits == SMALL_MODEL
        assert plan.budget.input_budget == 6000
        assert plan.budget.output_budget == 3200
        # "You label lines." is 16 characters
        assert plan.budget.system_overhead == 11
        assert [len(b) for b in plan.batches] == [2, 2, 2]

    @pytest.mark.unit
    def test_hard_cap_applies(self, prompt_builder, id_parser):
        dispatcher = BatchDispatcher(
            AsyncMock(), FAST, limits_resolver=lambda _m: ModelLimits(1_000_000, 65_536)
        )
        plan = dispatcher.plan(_options(_items(1), prompt_builder, id_parser))
        assert plan.budget.input_budget == 60_000
        assert plan.budget.output_budget == 52_428

    @pytest.mark.unit
    def test_default_output_estimate_is_300(self, prompt_builder, id_parser):
        dispatcher = BatchDispatcher(AsyncMock(), FAST, limits_resolver=_limits)
        options = _options(_items(25), prompt_builder, id_parser, estimate_item_tokens=lambda _i: 1)
        plan = dispatcher.plan(options)
        # 3200 // 300 = 10 items per batch
        assert [len(b) for b in plan.batches] == [10, 10, 5]

    @pytest.mark.unit
    def test_system_prompt_measured_once_on_first_item(self, id_parser):
        builder = MagicMock(return_value=Prompts(system="s", user="u"))
        dispatcher = BatchDispatcher(AsyncMock(), FAST, limits_resolver=_limits)
        items = _items(4)

        dispatcher.plan(_options(items, builder, id_parser))

        builder.assert_called_once_with([items[0]])

    @pytest.mark.unit
    def test_empty_items_plan_has_no_batches(self, id_parser):
        builder = MagicMock(return_value=Prompts(system="s", user="u"))
        dispatcher = BatchDispatcher(AsyncMock(), FAST, limits_resolver=_limits)

        plan = dispatcher.plan(_options([], builder, id_parser))

        assert plan.batches == []
        assert plan.limits == SMALL_MODEL
        assert plan.budget.input_budget == 6000
        builder.assert_not_called()


@pytest.mark.asyncio
class TestDispatch:
    """Tests for BatchDispatcher.dispatch."""

    async def test_empty_input_makes_no_calls(self, prompt_builder, id_parser, echo_inference):
        resolver = MagicMock(side_effect=_limits)
        dispatcher = BatchDispatcher(echo_inference, FAST, limits_resolver=resolver)

        result = await dispatcher.dispatch(_options([], prompt_builder, id_parser))

        assert result == DispatchResult(results={}, failed_batches=0, total_batches=0)
        echo_inference.assert_not_awaited()
        resolver.assert_not_called()

    async def test_all_batches_succeed(self, prompt_builder, id_parser, echo_inference):
        dispatcher = BatchDispatcher(echo_inference, FAST, limits_resolver=_limits)

        result = await dispatcher.dispatch(_options(_items(6), prompt_builder, id_parser))

        assert result.total_batches == 3
        assert result.failed_batches == 0
        assert result.results == {f"item-{i}": f"ok:item-{i}" for i in range(6)}
        assert echo_inference.await_count == 3

    async def test_failed_batch_is_isolated(self, prompt_builder, id_parser):
        async def flaky(system_prompt, user_prompt, options=None):
            if "item-2" in user_prompt:
                raise ConnectionError("upstream reset")
            return user_prompt

        call = AsyncMock(side_effect=flaky)
        dispatcher = BatchDispatcher(call, FAST, limits_resolver=_limits)

        result = await dispatcher.dispatch(_options(_items(6), prompt_builder, id_parser))

        assert result.failed_batches == 1
        assert result.total_batches == 3
        assert set(result.results) == {"item-0", "item-1", "item-4", "item-5"}
        # 1 + 3 + 1 attempts
        assert call.await_count == 5

    async def test_all_batches_fail(self, prompt_builder, id_parser):
        call = AsyncMock(side_effect=RuntimeError("down"))
        dispatcher = BatchDispatcher(call, FAST, limits_resolver=_limits)

        result = await dispatcher.dispatch(_options(_items(4), prompt_builder, id_parser))

        assert result.results == {}
        assert result.failed_batches == result.total_batches == 2

    async def test_oversized_single_item_budget_exceeded_not_retried(self, prompt_builder, id_parser):
        call = AsyncMock(side_effect=TokenBudgetExceededError("input too large"))
        dispatcher = BatchDispatcher(
            call, FAST, limits_resolver=lambda _m: ModelLimits(200_000, 8_192)
        )
        options = _options(_items(1), prompt_builder, id_parser, estimate_item_tokens=lambda _i: 100_000)

        result = await dispatcher.dispatch(options)

        assert result == DispatchResult(results={}, failed_batches=1, total_batches=1)
        assert call.await_count == 1

    async def test_single_batch_skips_custom_merge(self, prompt_builder, id_parser, echo_inference):
        merge = MagicMock(return_value={"merged": True})
        dispatcher = BatchDispatcher(echo_inference, FAST, limits_resolver=_limits)

        result = await dispatcher.dispatch(
            _options(_items(2), prompt_builder, id_parser, merge_results=merge)
        )

        merge.assert_not_called()
        assert result.results == {"item-0": "ok:item-0", "item-1": "ok:item-1"}
        assert result.total_batches == 1

    async def test_custom_merge_receives_successes_in_order(self, prompt_builder, id_parser, echo_inference):
        merge = MagicMock(side_effect=lambda maps: {"order": [next(iter(m)) for m in maps]})
        dispatcher = BatchDispatcher(echo_inference, FAST, limits_resolver=_limits)

        result = await dispatcher.dispatch(
            _options(_items(6), prompt_builder, id_parser, merge_results=merge)
        )

        assert result.results == {"order": ["item-0", "item-2", "item-4"]}

    async def test_collisions_resolved_by_submission_order(self, prompt_builder):
        async def slow_first(system_prompt, user_prompt, options=None):
            if "item-0" in user_prompt:
                await asyncio.sleep(0.05)
            return user_prompt

        def parse_to_shared_key(raw, batch):
            return {"shared": json.loads(raw)[0]}

        dispatcher = BatchDispatcher(AsyncMock(side_effect=slow_first), FAST, limits_resolver=_limits)
        result = await dispatcher.dispatch(_options(_items(4), prompt_builder, parse_to_shared_key))

        assert result.results == {"shared": "item-2"}

    async def test_fast_path_matches_multi_batch_results(self, prompt_builder, id_parser, echo_inference):
        items = _items(6)
        dispatcher = BatchDispatcher(echo_inference, FAST, limits_resolver=_limits)

        split = await dispatcher.dispatch(_options(items, prompt_builder, id_parser))
        single = await dispatcher.dispatch(
            _options(items, prompt_builder, id_parser, estimate_item_tokens=lambda _i: 1)
        )

        assert split.total_batches == 3
        assert single.total_batches == 1
        assert split.results == single.results

    async def test_inference_options_forwarded(self, prompt_builder, id_parser, echo_inference):
        options_token = object()
        dispatcher = BatchDispatcher(echo_inference, FAST, limits_resolver=_limits)

        await dispatcher.dispatch(
            _options(_items(4), prompt_builder, id_parser, inference_options=options_token)
        )

        assert all(c.args[2] is options_token for c in echo_inference.await_args_list)

    async def test_concurrency_limit(self, prompt_builder, id_parser):
        running = 0
        max_running = 0

        async def track(system_prompt, user_prompt, options=None):
            nonlocal running, max_running
            running += 1
            max_running = max(max_running, running)
            await asyncio.sleep(0.01)
            running -= 1
            return user_prompt

        settings = DispatchSettings(
            concurrency=2, stagger_seconds=0, retry=RetryPolicy(max_retries=0, base_delay=0)
        )
        dispatcher = BatchDispatcher(track, settings, limits_resolver=_limits)

        result = await dispatcher.dispatch(_options(_items(12), prompt_builder, id_parser))

        assert result.total_batches == 6
        assert max_running <= 2

    async def test_progress_messages_multi_batch(self, prompt_builder, id_parser):
        async def flaky(system_prompt, user_prompt, options=None):
            if "item-2" in user_prompt:
                raise RuntimeError("boom")
            return user_prompt

        events = []
        dispatcher = BatchDispatcher(flaky, FAST, limits_resolver=_limits)

        await dispatcher.dispatch(
            _options(
                _items(6),
                prompt_builder,
                id_parser,
                on_progress=lambda done, total, msg: events.append((done, total, msg)),
            )
        )

        messages = [msg for _, _, msg in events]
        for i in (1, 2, 3):
            assert f"Processing batch {i}/3..." in messages
        assert "Batch 1 done" in messages
        assert "Batch 3 done" in messages
        assert "Batch 2 done" not in messages
        assert events[-1] == (3, 3, "Done (1 of 3 batches failed)")

        done_counts = [done for done, _, msg in events if msg.endswith(" done")]
        assert sorted(done_counts) == [1, 2]
        assert all(total == 3 for _, total, _ in events)

    async def test_progress_messages_all_succeed(self, prompt_builder, id_parser, echo_inference):
        events = []
        dispatcher = BatchDispatcher(echo_inference, FAST, limits_resolver=_limits)

        await dispatcher.dispatch(
            _options(
                _items(4),
                prompt_builder,
                id_parser,
                on_progress=lambda done, total, msg: events.append((done, total, msg)),
            )
        )

        assert events[-1] == (2, 2, "Done (all batches succeeded)")

    async def test_progress_messages_single_batch(self, prompt_builder, id_parser, echo_inference):
        events = []
        dispatcher = BatchDispatcher(echo_inference, FAST, limits_resolver=_limits)

        await dispatcher.dispatch(
            _options(
                _items(1),
                prompt_builder,
                id_parser,
                on_progress=lambda done, total, msg: events.append((done, total, msg)),
            )
        )

        assert events == [(0, 1, "Processing (1/1)..."), (1, 1, "Done")]

    async def test_single_batch_failure_reports_failed(self, prompt_builder, id_parser):
        events = []
        dispatcher = BatchDispatcher(
            AsyncMock(side_effect=RuntimeError("down")), FAST, limits_resolver=_limits
        )

        result = await dispatcher.dispatch(
            _options(
                _items(1),
                prompt_builder,
                id_parser,
                on_progress=lambda done, total, msg: events.append((done, total, msg)),
            )
        )

        assert result.failed_batches == 1
        assert events[-1] == (1, 1, "Failed")

    async def test_progress_callback_errors_are_ignored(self, prompt_builder, id_parser, echo_inference):
        def broken(done, total, msg):
            raise ValueError("ui went away")

        dispatcher = BatchDispatcher(echo_inference, FAST, limits_resolver=_limits)
        result = await dispatcher.dispatch(
            _options(_items(6), prompt_builder, id_parser, on_progress=broken)
        )

        assert result.failed_batches == 0
        assert len(result.results) == 6

    async def test_errors_before_batching_propagate(self, id_parser, echo_inference):
        def broken_builder(batch):
            raise KeyError("template")

        dispatcher = BatchDispatcher(echo_inference, FAST, limits_resolver=_limits)

        with pytest.raises(KeyError):
            await dispatcher.dispatch(_options(_items(3), broken_builder, id_parser))
        echo_inference.assert_not_awaited()

    async def test_limits_resolution_errors_propagate(self, prompt_builder, id_parser, echo_inference):
        def resolver(_model):
            raise LookupError("no such model")

        dispatcher = BatchDispatcher(echo_inference, FAST, limits_resolver=resolver)

        with pytest.raises(LookupError):
            await dispatcher.dispatch(_options(_items(3), prompt_builder, id_parser))

    async def test_cancellation_propagates(self, prompt_builder, id_parser):
        started = asyncio.Event()

        async def hang(system_prompt, user_prompt, options=None):
            started.set()
            await asyncio.sleep(10)
            return user_prompt

        dispatcher = BatchDispatcher(hang, FAST, limits_resolver=_limits)
        task = asyncio.create_task(dispatcher.dispatch(_options(_items(6), prompt_builder, id_parser)))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

    async def test_stagger_spaces_launches(self, prompt_builder, id_parser):
        launch_times = []

        async def record(system_prompt, user_prompt, options=None):
            launch_times.append(asyncio.get_running_loop().time())
            return user_prompt

        settings = DispatchSettings(
            concurrency=3, stagger_seconds=0.05, retry=RetryPolicy(max_retries=0, base_delay=0)
        )
        dispatcher = BatchDispatcher(record, settings, limits_resolver=_limits)
        await dispatcher.dispatch(_options(_items(6), prompt_builder, id_parser))

        assert len(launch_times) == 3
        for earlier, later in zip(launch_times, launch_times[1:]):
            assert later - earlier >= 0.04


@pytest.mark.asyncio
class TestProcessBatched:
    """Tests for the process_batched convenience wrapper."""

    async def test_forwards_resolver(self, prompt_builder, id_parser, echo_inference):
        result = await process_batched(
            _options(_items(6), prompt_builder, id_parser),
            echo_inference,
            FAST,
            limits_resolver=_limits,
        )
        assert result.total_batches == 3
        assert len(result.results) == 6
