"""Tests for pact_sdk.context module."""

import asyncio
import os
import threading

from pact_sdk.config import PactConfig
from pact_sdk.context import PactContext, clear_context, get_context, set_context
from pact_sdk.modes import PactMode, RecordingMode


class TestPactContext:
    """Tests for PactContext."""

    def test_defaults(self):
        ctx = PactContext()
        assert ctx.mode == PactMode.DISABLED
        assert not ctx.is_enabled
        assert not ctx.is_recording
        assert not ctx.is_mocking

    def test_mode_flags(self):
        assert PactContext(mode=PactMode.RECORDING).is_recording
        assert PactContext(mode=PactMode.APPLY).is_mocking
        assert PactContext(mode=PactMode.MOCK).is_enabled

    def test_from_config(self):
        config = PactConfig({
            "mode": "record",
            "recording_mode": "new",
            "base_url": "https://tenant.example.com",
            "ignore": ["response.body.id"],
        })
        ctx = PactContext.from_config(config)
        assert ctx.mode == PactMode.RECORD
        assert ctx.recording_mode == RecordingMode.NEW
        assert ctx.base_url == "https://tenant.example.com"
        assert ctx.preprocessor == {"ignore": ["response.body.id"]}
        assert ctx.fail_on_missing_pacts is True


class TestContextStorage:
    """Tests for get/set/clear_context()."""

    def test_set_and_get(self):
        ctx = PactContext(mode=PactMode.MOCK)
        set_context(ctx)
        assert get_context() is ctx
        assert PactContext.get_current() is ctx

    def test_clear(self):
        set_context(PactContext(mode=PactMode.MOCK))
        clear_context()
        assert PactContext.get_current() is None

    def test_get_creates_from_environment(self, temp_dir):
        config_file = temp_dir / "pact.yaml"
        config_file.write_text("tenant: t200\n")
        os.environ["PACT_CONFIG"] = str(config_file)
        os.environ["PACT_MODE"] = "apply"
        ctx = get_context()
        assert ctx.mode == PactMode.APPLY
        assert ctx.tenant == "t200"
        assert get_context() is ctx

    def test_reset_token(self):
        outer = PactContext(mode=PactMode.RECORD)
        set_context(outer)
        token = PactContext.set_current(PactContext(mode=PactMode.MOCK))
        assert get_context().mode == PactMode.MOCK
        PactContext.reset_current(token)
        assert get_context() is outer

    def test_threads_isolated(self):
        set_context(PactContext(mode=PactMode.RECORD))
        seen = []

        def worker():
            seen.append(PactContext.get_current())

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()
        assert seen == [None]

    def test_tasks_isolated(self):
        async def task(mode):
            set_context(PactContext(mode=mode))
            await asyncio.sleep(0)
            return get_context().mode

        async def run_both():
            return await asyncio.gather(task(PactMode.RECORD), task(PactMode.MOCK))

        assert asyncio.run(run_both()) == [PactMode.RECORD, PactMode.MOCK]
