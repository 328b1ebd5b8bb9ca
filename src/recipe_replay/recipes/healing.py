"""Self-healing execution wrapped around the step runner.

When a browser step fails the engine tries, in order:

1. Guard relaxation: a ``url_is`` guard on the right host (or a text guard
   given a longer wait) is treated as satisfied and the step is retried once
   without guards.
2. Phase 1: selector rediscovery for click/fill steps via ``SelectorHealer``.
3. Phase 2: manual re-capture. The operator performs the step in the browser
   while events are captured; the captured events are classified into new
   steps which run immediately and replace the failed step. The rest of the
   original step list is abandoned for this run.

HTTP steps only get guard relaxation. Healing results are kept on the engine
(``selector_patches``, ``replacement``, ``stats``) and applied to a copy of
the recipe afterwards by the patcher.
"""

import logging
import sys
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

import anyio
from anyio import to_thread

from ..config import settings
from ..observability.progress import Progress
from ..result import Err, Ok, Result
from .capture import USER_EVENT_TYPES, EventCapture, RecordedEvent
from .classifier import events_to_steps
from .failures import StepFailure
from .healer import SelectorHealer
from .models import Guard, RecipeStep
from .runner import RunState, StepRunner
from .templates import TemplateContext, resolve_step_templates
from .validation import text_becomes_visible

logger = logging.getLogger(__name__)

EventClassifier = Callable[[list[RecordedEvent]], list[RecipeStep]]
OperatorGate = Callable[[str], Awaitable[None]]


@dataclass
class HealStats:
    phase1_healed: int = 0
    phase2_recaptured: int = 0
    guards_relaxed: int = 0

    @property
    def healed(self) -> bool:
        return self.phase1_healed > 0 or self.phase2_recaptured > 0


@dataclass
class Phase2Replacement:
    """New steps replacing the step that failed, in execution order."""

    replaced_step_id: str
    new_steps: list[RecipeStep] = field(default_factory=list)


class OneShotSignal:
    """A continuation signal that can be released exactly once."""

    def __init__(self) -> None:
        self._event = anyio.Event()

    def release(self) -> None:
        self._event.set()

    @property
    def released(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


def _wait_for_enter() -> None:
    sys.stdin.readline()


async def stdin_operator_gate(step_title: str) -> None:
    """Block until the operator presses Enter on stdin."""
    signal = OneShotSignal()

    async def read_enter() -> None:
        await to_thread.run_sync(_wait_for_enter, abandon_on_cancel=True)
        signal.release()

    async with anyio.create_task_group() as tg:
        tg.start_soon(read_enter)
        await signal.wait()
    logger.info(f"Operator released manual re-capture for: {step_title}")


def same_host(expected_url: str, actual_url: str | None) -> bool:
    if not actual_url:
        return False
    try:
        expected = urlparse(expected_url.rstrip("*")).hostname
        actual = urlparse(actual_url).hostname
    except ValueError:
        return False
    return bool(expected) and expected == actual


class SelfHealingEngine:
    """Runs steps and repairs failures instead of aborting."""

    def __init__(
        self,
        runner: StepRunner,
        *,
        healer: SelectorHealer | None = None,
        capture: EventCapture | None = None,
        classify: EventClassifier | None = None,
        operator_gate: OperatorGate | None = None,
        variables: Mapping[str, str] | None = None,
        progress: Progress | None = None,
    ):
        self.runner = runner
        self.healer = healer
        self.capture = capture
        self.classify = classify or events_to_steps
        self.operator_gate = operator_gate or stdin_operator_gate
        self.variables = dict(variables or {})
        self.progress = progress or runner.progress

        self.stats = HealStats()
        self.selector_patches: dict[str, list[str]] = {}
        self.replacement: Phase2Replacement | None = None
        self.captured_secrets: dict[str, str] = {}

    async def run(self, steps: list[RecipeStep] | tuple[RecipeStep, ...]) -> Result[RunState, StepFailure]:
        for step in steps:
            self.progress.step_start(step.id, step.title)
            outcome = await self.runner.execute(step)
            if isinstance(outcome, Ok):
                self.progress.step_ok(step.id)
                continue

            healed = await self._heal(step, outcome.error)
            if isinstance(healed, Err):
                return healed
            if healed.value:
                # Phase 2 replaced this step and everything after it for this run
                break
        return Ok(self.runner.state)

    async def _heal(self, step: RecipeStep, failure: StepFailure) -> Result[bool, StepFailure]:
        """Repair ``failure``; Ok(True) means the remaining steps are abandoned."""
        if failure.kind == "guard_failed" and await self._relax_guard(step, failure.guard):
            retry = await self.runner.execute(step, check_guards=False)
            if isinstance(retry, Ok):
                self.stats.guards_relaxed += 1
                self.progress.step_ok(step.id)
                return Ok(False)
            # relaxed guard, different failure: fall through to the later phases
            failure = retry.error

        self.progress.step_failed(step.id, failure.message)

        if step.mode == "http":
            return Err(failure)

        if step.action in ("click", "fill") and self.healer is not None:
            if await self._phase1(step):
                return Ok(False)

        return await self._phase2(step, failure)

    async def _relax_guard(self, step: RecipeStep, guard: Guard | None) -> bool:
        if guard is None:
            return False
        current_url = self.runner.current_url(step)

        if guard.type == "url_is":
            if same_host(guard.value, current_url):
                self.progress.guard_relaxed(guard.value, current_url or "")
                return True
            return False

        page = self.runner.page
        if guard.type == "text_visible" and step.mode == "pw" and page is not None:
            return await text_becomes_visible(page, guard.value, settings.runner.guard_heal_text_timeout_ms)
        return False

    async def _phase1(self, step: RecipeStep) -> bool:
        assert self.healer is not None
        page = self.runner.page
        if page is None:
            return False

        self.progress.phase1_start()
        result = await self.healer.heal(page, step)
        if result.healed:
            self.progress.phase1_success(result.strategy, result.new_selectors[0])
            patched = step.copy(selector_variants=[*result.new_selectors, *step.selector_variants])
            self.progress.step_start(step.id, step.title)
            retry = await self.runner.execute(patched, check_guards=False)
            if isinstance(retry, Ok):
                self.selector_patches[step.id] = list(result.new_selectors)
                self.stats.phase1_healed += 1
                self.progress.step_ok(step.id)
                return True
            self.progress.step_failed(step.id, retry.error.message)

        self.progress.phase1_failed()
        return False

    async def _phase2(self, step: RecipeStep, failure: StepFailure) -> Result[bool, StepFailure]:
        if self.capture is None or self.runner.page is None:
            return Err(self._healing_failed(step.id, "manual re-capture is not available", failure))

        self.progress.phase2_start(step.title)
        self.capture.arm()
        try:
            await self.operator_gate(step.title)
        finally:
            events = self.capture.disarm()
            self.captured_secrets.update(self.capture.secrets)

        if not events:
            return Err(self._healing_failed(step.id, "no user actions recorded", failure))

        user_events = [e for e in events if e.type in USER_EVENT_TYPES]
        new_steps = self.classify(user_events)
        if not new_steps:
            return Err(self._healing_failed(step.id, "captured actions produced no executable steps", failure))

        renumbered = [s.copy(id=f"{step.id}-healed-{index}") for index, s in enumerate(new_steps, start=1)]
        self.replacement = Phase2Replacement(replaced_step_id=step.id, new_steps=renumbered)
        self.stats.phase2_recaptured += 1
        self.progress.phase2_success(len(renumbered))

        context = TemplateContext(vars={**self.variables, **self.captured_secrets})
        for new_step in renumbered:
            self.progress.step_start(new_step.id, new_step.title)
            resolved = resolve_step_templates(new_step, context)
            if isinstance(resolved, Err):
                message = f"Re-recorded step {new_step.id} failed: {resolved.error.message}"
                self.progress.step_failed(new_step.id, message)
                return Err(StepFailure(kind="healing_failed", step_id=new_step.id, message=message, cause=failure))

            outcome = await self.runner.execute(resolved.value)
            if isinstance(outcome, Err):
                message = f"Re-recorded step {new_step.id} failed: {outcome.error.message}"
                self.progress.step_failed(new_step.id, outcome.error.message)
                return Err(StepFailure(kind="healing_failed", step_id=new_step.id, message=message, cause=outcome.error))
            self.progress.step_ok(new_step.id)

        return Ok(True)

    @staticmethod
    def _healing_failed(step_id: str, reason: str, cause: StepFailure) -> StepFailure:
        return StepFailure(
            kind="healing_failed",
            step_id=step_id,
            message=f"Healing failed for step {step_id}: {reason}",
            cause=cause,
        )

    def describe(self) -> dict[str, Any]:
        return {
            "phase1_healed": self.stats.phase1_healed,
            "phase2_recaptured": self.stats.phase2_recaptured,
            "guards_relaxed": self.stats.guards_relaxed,
            "patched_steps": sorted(self.selector_patches),
            "replaced_step": self.replacement.replaced_step_id if self.replacement else None,
        }
