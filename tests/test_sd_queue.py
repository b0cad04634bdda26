"""
Poll loop behaviour of the queue-based Stable Diffusion provider.

Status and result calls are stubbed so the tests exercise only the
coordination: cadence, deadline, terminal states and fetch ordering.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from providers.base import Base64Image
from providers.errors import EmptyResult, ParseError, TaskFailed, TaskTimedOut, TransportError
from providers.sd_queue import QueueTaskRequest, StableDiffusionQueueProvider, TaskStatus
from requestmodels.models import GenerationParams, Prompt, ProviderSettings


def make_provider(poll_interval=0.05, poll_timeout=1.0):
    return StableDiffusionQueueProvider(
        ProviderSettings(url="http://sd.invalid/", poll_interval=poll_interval, poll_timeout=poll_timeout)
    )


# ─────────────────────────────────────────────────────
# Terminal states
# ─────────────────────────────────────────────────────


class TestPollTerminalStates:
    @pytest.mark.asyncio
    async def test_done_after_pending_fetches_results_once(self):
        provider = make_provider()
        status = AsyncMock(side_effect=[TaskStatus.PENDING, TaskStatus.PENDING, TaskStatus.DONE])
        polls_at_fetch = []

        async def fetch(task_id):
            polls_at_fetch.append(status.await_count)
            return Base64Image(image="aGVsbG8=")

        results = AsyncMock(side_effect=fetch)

        with patch.object(provider, "get_task_status", status), patch.object(provider, "get_task_results", results):
            image = await provider.poll_task("abc123")

        assert image.image == "aGVsbG8="
        assert status.await_count == 3
        results.assert_awaited_once_with("abc123")
        assert polls_at_fetch == [3]

    @pytest.mark.asyncio
    async def test_failed_never_fetches_results(self):
        provider = make_provider()
        status = AsyncMock(return_value=TaskStatus.FAILED)
        results = AsyncMock()

        with patch.object(provider, "get_task_status", status), patch.object(provider, "get_task_results", results):
            with pytest.raises(TaskFailed) as exc_info:
                await provider.poll_task("abc123")

        assert exc_info.value.status is TaskStatus.FAILED
        assert exc_info.value.task_id == "abc123"
        assert status.await_count == 1
        results.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_interrupted_is_a_failure(self):
        provider = make_provider()
        status = AsyncMock(side_effect=[TaskStatus.RUNNING, TaskStatus.INTERRUPTED])
        results = AsyncMock()

        with patch.object(provider, "get_task_status", status), patch.object(provider, "get_task_results", results):
            with pytest.raises(TaskFailed) as exc_info:
                await provider.poll_task("abc123")

        assert exc_info.value.status is TaskStatus.INTERRUPTED
        assert "interrupted" in str(exc_info.value)
        results.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_result_is_distinct_from_failure(self):
        provider = make_provider()
        status = AsyncMock(return_value=TaskStatus.DONE)
        results = AsyncMock(side_effect=EmptyResult("abc123", "http://sd.invalid/results"))

        with patch.object(provider, "get_task_status", status), patch.object(provider, "get_task_results", results):
            with pytest.raises(EmptyResult):
                await provider.poll_task("abc123")


# ─────────────────────────────────────────────────────
# Deadline and cadence
# ─────────────────────────────────────────────────────


class TestPollDeadline:
    @pytest.mark.asyncio
    async def test_always_running_times_out_within_one_interval(self):
        provider = make_provider(poll_interval=0.1, poll_timeout=0.3)
        status = AsyncMock(return_value=TaskStatus.RUNNING)
        results = AsyncMock()
        loop = asyncio.get_running_loop()

        with patch.object(provider, "get_task_status", status), patch.object(provider, "get_task_results", results):
            start = loop.time()
            with pytest.raises(TaskTimedOut) as exc_info:
                await provider.poll_task("abc123")
            elapsed = loop.time() - start

        assert 0.28 <= elapsed < 0.4 + 0.1
        assert exc_info.value.task_id == "abc123"
        assert exc_info.value.timeout == 0.3
        results.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_first_poll_is_immediate_then_one_per_interval(self):
        provider = make_provider(poll_interval=0.1, poll_timeout=0.35)
        status = AsyncMock(return_value=TaskStatus.PENDING)

        with patch.object(provider, "get_task_status", status):
            with pytest.raises(TaskTimedOut):
                await provider.poll_task("abc123")

        # Polls at t=0, 0.1, 0.2, 0.3
        assert status.await_count == 4

    @pytest.mark.asyncio
    async def test_deadline_covers_a_hanging_status_call(self):
        provider = make_provider(poll_interval=0.05, poll_timeout=0.2)

        async def hang(task_id):
            await asyncio.sleep(10)

        with patch.object(provider, "get_task_status", AsyncMock(side_effect=hang)):
            with pytest.raises(TaskTimedOut):
                await asyncio.wait_for(provider.poll_task("abc123"), timeout=2)


# ─────────────────────────────────────────────────────
# Errors abort the loop
# ─────────────────────────────────────────────────────


class TestPollErrors:
    @pytest.mark.asyncio
    async def test_transport_error_is_not_retried(self):
        provider = make_provider()
        status = AsyncMock(side_effect=TransportError("connection refused", url="http://sd.invalid"))

        with patch.object(provider, "get_task_status", status):
            with pytest.raises(TransportError):
                await provider.poll_task("abc123")

        assert status.await_count == 1

    @pytest.mark.asyncio
    async def test_parse_error_aborts_loop(self):
        provider = make_provider()
        status = AsyncMock(side_effect=[TaskStatus.PENDING, ParseError("bad body", url="http://sd.invalid")])

        with patch.object(provider, "get_task_status", status):
            with pytest.raises(ParseError):
                await provider.poll_task("abc123")

        assert status.await_count == 2


# ─────────────────────────────────────────────────────
# Submission
# ─────────────────────────────────────────────────────


class TestQueueTxt2Img:
    @pytest.mark.asyncio
    async def test_submits_then_polls_returned_task(self):
        provider = make_provider()
        start = AsyncMock(return_value="abc123")
        poll = AsyncMock(return_value=Base64Image(image="aGVsbG8="))

        with patch.object(provider, "start_task", start), patch.object(provider, "poll_task", poll):
            image = await provider.text_to_image(GenerationParams(prompt="a cat"))

        assert image.image == "aGVsbG8="
        request = start.await_args.args[0]
        assert isinstance(request, QueueTaskRequest)
        assert request.prompt == "a cat"
        poll.assert_awaited_once_with("abc123")

    def test_request_body_omits_absent_fields(self):
        params = GenerationParams(prompt=Prompt(base="a cat"), steps=6, width=512, height=768)
        payload = QueueTaskRequest.from_params(params).to_payload()

        assert payload["prompt"] == "a cat"
        assert payload["batch_size"] == 1
        assert payload["steps"] == 6
        assert payload["width"] == 512
        assert payload["height"] == 768
        assert payload["sampler_name"] == "UniPC"
        assert payload["cfg_scale"] == 2
        assert payload["script_name"] == ""
        for absent in ("negative_prompt", "seed", "checkpoint", "vae", "callback_url"):
            assert absent not in payload
        assert None not in payload.values()

    def test_request_body_carries_negative_prompt_and_checkpoint(self):
        params = GenerationParams(prompt=Prompt(base="a cat", negative="dogs"), model="sdxl.safetensors", seed=7)
        payload = QueueTaskRequest.from_params(params).to_payload()

        assert payload["negative_prompt"] == "dogs"
        assert payload["checkpoint"] == "sdxl.safetensors"
        assert payload["seed"] == 7


def test_status_terminal_classification():
    assert not TaskStatus.PENDING.is_terminal
    assert not TaskStatus.RUNNING.is_terminal
    assert TaskStatus.DONE.is_terminal and not TaskStatus.DONE.is_failure
    assert TaskStatus.FAILED.is_failure
    assert TaskStatus.INTERRUPTED.is_failure
