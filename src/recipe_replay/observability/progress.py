"""Operator-facing progress reporting for replay runs.

Progress is separate from logging: it is what a person watching the run
sees (step start/ok/failed, healing prompts), written to stderr so that
stdout stays free for ``--json`` output.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

import typer

ProgressEventType = Literal["step_start", "step_ok", "step_failed", "info", "warn"]


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    type: ProgressEventType
    step_id: str | None = None
    title: str | None = None
    message: str | None = None


ProgressReporter = Callable[[ProgressEvent], None]


def null_reporter(event: ProgressEvent) -> None:
    return None


def stderr_reporter(event: ProgressEvent) -> None:
    if event.type == "step_start":
        typer.echo(f"  [{event.step_id}] {event.title}...", err=True, nl=False)
    elif event.type == "step_ok":
        typer.echo(" OK", err=True)
    elif event.type == "step_failed":
        typer.echo(f" FAILED\n    -> {event.message}", err=True)
    elif event.type == "warn":
        typer.secho(event.message or "", err=True, fg=typer.colors.YELLOW)
    else:
        typer.echo(event.message or "", err=True)


class Progress:
    """Thin helper turning engine milestones into progress events."""

    def __init__(self, reporter: ProgressReporter | None = None):
        self.reporter = reporter or null_reporter

    def step_start(self, step_id: str, title: str) -> None:
        self.reporter(ProgressEvent(type="step_start", step_id=step_id, title=title))

    def step_ok(self, step_id: str) -> None:
        self.reporter(ProgressEvent(type="step_ok", step_id=step_id))

    def step_failed(self, step_id: str, message: str) -> None:
        self.reporter(ProgressEvent(type="step_failed", step_id=step_id, message=message))

    def info(self, message: str) -> None:
        self.reporter(ProgressEvent(type="info", message=message))

    def warn(self, message: str) -> None:
        self.reporter(ProgressEvent(type="warn", message=message))

    def guard_relaxed(self, expected: str, actual: str) -> None:
        self.info(f"    -> [guard] URL differs but the host matches, continuing\n      expected: {expected}\n      actual:   {actual}")

    def phase1_start(self) -> None:
        self.info("    -> [auto-heal] searching for an alternative selector...")

    def phase1_asking_llm(self) -> None:
        self.info("    -> [auto-heal] asking the LLM for selector suggestions...")

    def phase1_success(self, strategy: str, selector: str) -> None:
        self.info(f"    -> [auto-heal] healed ({strategy})\n      new selector: {selector}")

    def phase1_failed(self) -> None:
        self.info("    -> [auto-heal] no alternative selector found")

    def phase2_start(self, title: str) -> None:
        lines = [
            "",
            "    +------------------------------------------+",
            "    |  Manual action required                  |",
            "    |                                          |",
            f"    |  Step: {title[:34].ljust(34)}|",
            "    |  Perform the step in the browser window. |",
            "    |  Press Enter when you are done.          |",
            "    +------------------------------------------+",
            "",
        ]
        self.warn("\n".join(lines))

    def phase2_success(self, step_count: int) -> None:
        self.info(f"    -> [manual heal] recorded {step_count} step(s); updating the recipe and continuing\n")

    def recipe_saved(self, name: str, version: int) -> None:
        self.info(f'\n  Recipe "{name}" updated to v{version}.')

    def heal_summary(self, phase1_healed: int, phase2_recaptured: int) -> None:
        self.info(f"  Healing summary: {phase1_healed} auto-fixed, {phase2_recaptured} re-recorded")
