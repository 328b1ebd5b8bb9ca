"""Typed failure values returned by the replay engine."""

from dataclasses import dataclass, field
from typing import Literal

from .models import Effect, Guard

TemplateErrorKind = Literal["invalid_day_offset", "unknown_template_variable"]
CliVarErrorKind = Literal["invalid_cli_var_format", "invalid_cli_var_key"]
PlanErrorKind = Literal["template", "validation", "secret_store", "invalid_recipe"]
StoreErrorKind = Literal["recipe_not_found", "recipe_parse_failed", "recipe_write_failed"]
StepFailureKind = Literal[
    "guard_failed",
    "effect_failed",
    "selector_not_found",
    "action_failed",
    "http_failed",
    "download_failed",
    "healing_failed",
]


@dataclass(frozen=True, slots=True)
class TemplateError:
    kind: TemplateErrorKind
    token: str
    field: str | None = None

    @property
    def message(self) -> str:
        if self.kind == "invalid_day_offset":
            text = f"Invalid day offset: {self.token}"
        else:
            text = f"Unknown template variable: {self.token}"
        return f"{text} (in {self.field})" if self.field else text


@dataclass(frozen=True, slots=True)
class CliVarError:
    kind: CliVarErrorKind
    raw: str

    @property
    def message(self) -> str:
        if self.kind == "invalid_cli_var_key":
            return f"Invalid --var key in: {self.raw}"
        return f"Invalid --var format: {self.raw}. Use --var key=value"


@dataclass(frozen=True, slots=True)
class VaultError:
    message: str
    recipe_id: str | None = None
    name: str | None = None


@dataclass(frozen=True, slots=True)
class PlanError:
    kind: PlanErrorKind
    message: str
    variable: str | None = None


@dataclass(frozen=True, slots=True)
class StepFailure:
    """Why a step could not complete.

    ``guard``/``effect`` carry the failing predicate and ``selectors`` every
    candidate that was attempted, so healing can act on the specific cause.
    """

    kind: StepFailureKind
    step_id: str
    message: str
    guard: Guard | None = None
    effect: Effect | None = None
    selectors: tuple[str, ...] = field(default_factory=tuple)
    cause: "StepFailure | None" = None

    def describe(self) -> str:
        return f"{self.step_id}: {self.message}"


@dataclass(frozen=True, slots=True)
class StoreError:
    kind: StoreErrorKind
    name: str
    detail: str = ""

    @property
    def message(self) -> str:
        if self.kind == "recipe_not_found":
            return f"Recipe not found: {self.name}"
        if self.kind == "recipe_parse_failed":
            return f"Recipe parse failed ({self.name}): {self.detail}"
        return f"Recipe write failed ({self.name}): {self.detail}"
