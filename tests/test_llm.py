"""Tests for the local LLM command runner."""

import pytest

from recipe_replay import llm


class TestRunLocalLlm:
    @pytest.mark.asyncio
    async def test_invokes_command_with_prompt_flag(self, monkeypatch):
        seen = {}

        class Completed:
            stdout = b"  `#search`\n"

        async def fake_run_process(command, check=True):
            seen["command"] = command
            return Completed()

        monkeypatch.setattr(llm.anyio, "run_process", fake_run_process)
        output = await llm.run_local_llm("find the box", "my-llm")
        assert output == "`#search`"
        assert seen["command"] == ["my-llm", "-p", "find the box"]

    @pytest.mark.asyncio
    async def test_missing_command_yields_empty_output(self):
        assert await llm.run_local_llm("hi", "recipe-replay-no-such-command") == ""

    @pytest.mark.asyncio
    async def test_failing_command_yields_empty_output(self):
        assert await llm.run_local_llm("hi", "false") == ""
