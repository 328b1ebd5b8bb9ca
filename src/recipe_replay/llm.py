"""Local LLM command runner.

The LLM is an external CLI (``claude`` by default) invoked as
``<command> -p <prompt>``. Failures are logged and reported as empty output so
callers can treat "no suggestion" and "LLM unavailable" the same way.
"""

import logging
from collections.abc import Awaitable, Callable

import anyio

from .config import settings

logger = logging.getLogger(__name__)

MAX_OUTPUT_BYTES = 4 * 1024 * 1024

PromptRunner = Callable[[str, str | None], Awaitable[str]]


async def run_local_llm(prompt: str, command: str | None = None) -> str:
    """Run the local LLM command and return its trimmed stdout ("" on failure)."""
    executable = command or settings.llm.command
    try:
        completed = await anyio.run_process([executable, "-p", prompt], check=True)
    except FileNotFoundError:
        logger.warning(f"LLM command not found: {executable}")
        return ""
    except Exception as e:
        logger.warning(f"LLM command failed ({executable}): {e}")
        return ""

    stdout = completed.stdout[:MAX_OUTPUT_BYTES]
    return stdout.decode("utf-8", errors="replace").strip()
