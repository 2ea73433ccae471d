"""Tests for the bounded-retry stage executor."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from appsynth.errors import (
    Aborted,
    MalformedResponse,
    MissingConfiguration,
    ProviderCallFailed,
    UnknownProvider,
)
from appsynth.services.build.cancellation import CancellationToken
from appsynth.services.build.step_executor import StepExecutor
from appsynth.services.provider_service import AIUsageResult

STAGE = "SYSTEM_INSTRUCTION_DESIGN"


def _usage():
    return AIUsageResult(provider="google", model="gemini-test")


def _router(*responses):
    router = MagicMock()
    router.call_with_fallback = AsyncMock(side_effect=list(responses))
    return router


def _resolver(text="Return STRICT JSON."):
    resolver = MagicMock()
    resolver.resolve = AsyncMock(return_value=text)
    return resolver


def _executor(router, resolver=None, token=None, **kw):
    kw.setdefault("sleep", AsyncMock())
    kw.setdefault("retry_delay", 1.5)
    kw.setdefault("max_attempts", 3)
    return StepExecutor(router, resolver or _resolver(), token or CancellationToken(), **kw)


@pytest.mark.asyncio
async def test_first_attempt_success_reports_debug():
    router = _router(('{"routes": []}', _usage()))
    on_error = AsyncMock()
    on_debug = AsyncMock()
    executor = _executor(router, on_error=on_error, on_debug=on_debug)

    result = await executor.run(STAGE, "make a page")

    assert result == {"routes": []}
    on_error.assert_not_awaited()
    log = on_debug.await_args.args[0]
    assert log["stage"] == STAGE
    assert log["provider"] == "google"
    assert log["model"] == "gemini-test"
    assert log["system_instruction"] == "Return STRICT JSON."
    assert log["prompt"] == "make a page"
    assert log["response"] == '{"routes": []}'
    assert router.call_with_fallback.await_args.kwargs["operation"] == STAGE


@pytest.mark.asyncio
async def test_retries_malformed_output_then_succeeds():
    router = _router(
        ("not json", _usage()),
        ProviderCallFailed("google", "503"),
        ('{"ok": true}', _usage()),
    )
    on_error = AsyncMock()
    sleep = AsyncMock()
    executor = _executor(router, on_error=on_error, sleep=sleep)

    assert await executor.run(STAGE, "p") == {"ok": True}

    assert router.call_with_fallback.await_count == 3
    assert [c.args[1] for c in on_error.await_args_list] == [2, 1]
    assert [c.args[0] for c in sleep.await_args_list] == [1.5, 1.5]


@pytest.mark.asyncio
async def test_exhausted_attempts_raise_last_error():
    router = _router(
        ("nope", _usage()),
        ("still nope", _usage()),
        ProviderCallFailed("google", "quota exceeded"),
    )
    on_error = AsyncMock()
    executor = _executor(router, on_error=on_error)

    with pytest.raises(ProviderCallFailed, match="quota exceeded"):
        await executor.run(STAGE, "p")

    # Observer fires between attempts, not after the last one
    assert on_error.await_count == 2
    assert [c.args[1] for c in on_error.await_args_list] == [2, 1]


@pytest.mark.asyncio
async def test_single_attempt_does_not_sleep():
    sleep = AsyncMock()
    executor = _executor(_router(("bad", _usage())), max_attempts=1, sleep=sleep)
    with pytest.raises(MalformedResponse):
        await executor.run(STAGE, "p")
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_missing_configuration_is_not_retried():
    router = _router(('{"ok": true}', _usage()))
    resolver = MagicMock()
    resolver.resolve = AsyncMock(side_effect=MissingConfiguration(STAGE))
    executor = _executor(router, resolver)

    with pytest.raises(MissingConfiguration):
        await executor.run(STAGE, "p")
    router.call_with_fallback.assert_not_awaited()


@pytest.mark.asyncio
async def test_unknown_provider_is_not_retried():
    router = _router(UnknownProvider("mistral"), ('{"ok": true}', _usage()))
    sleep = AsyncMock()
    on_error = AsyncMock()
    executor = _executor(router, sleep=sleep, on_error=on_error)

    with pytest.raises(UnknownProvider):
        await executor.run(STAGE, "p")
    assert router.call_with_fallback.await_count == 1
    sleep.assert_not_awaited()
    on_error.assert_not_awaited()


@pytest.mark.asyncio
async def test_cancelled_before_attempt():
    token = CancellationToken()
    token.cancel()
    router = _router(('{"ok": true}', _usage()))
    with pytest.raises(Aborted):
        await _executor(router, token=token).run(STAGE, "p")
    router.call_with_fallback.assert_not_awaited()


@pytest.mark.asyncio
async def test_result_arriving_after_cancel_is_discarded():
    token = CancellationToken()

    async def _call(*args, **kwargs):
        token.cancel("user stop")
        return '{"ok": true}', _usage()

    router = MagicMock()
    router.call_with_fallback = AsyncMock(side_effect=_call)
    on_debug = AsyncMock()

    with pytest.raises(Aborted, match="user stop"):
        await _executor(router, token=token, on_debug=on_debug).run(STAGE, "p")
    assert router.call_with_fallback.await_count == 1
    on_debug.assert_not_awaited()


@pytest.mark.asyncio
async def test_language_directive_prefixes_instruction():
    router = _router(('{"ok": true}', _usage()))
    executor = _executor(router, language_directive="OUTPUT LANGUAGE: Russian.")
    await executor.run(STAGE, "p")
    assert router.call_with_fallback.await_args.args[1] == "OUTPUT LANGUAGE: Russian.\n\nReturn STRICT JSON."


@pytest.mark.asyncio
async def test_images_only_sent_when_requested():
    router = _router(('{"a": 1}', _usage()), ('{"b": 2}', _usage()))
    executor = _executor(router, images=["data:image/png;base64,iVBORw0"])

    await executor.run(STAGE, "p")
    assert router.call_with_fallback.await_args_list[0].args[2] is None

    await executor.run(STAGE, "p", with_images=True)
    assert router.call_with_fallback.await_args_list[1].args[2] == ["data:image/png;base64,iVBORw0"]
