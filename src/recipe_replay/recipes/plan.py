"""Execution plan building.

Resolves every declared recipe variable through its resolver, validates the
values, then substitutes templates into each step. The resulting
``ExecutionPlan`` is an immutable snapshot; a plan that still lists
unresolved variables keeps the original steps and must not be executed.
"""

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType

from ..llm import PromptRunner, run_local_llm
from ..result import Err, Ok, Result
from ..vault import SecretVault
from .failures import PlanError
from .models import Recipe, RecipeStep, RecipeVariable, find_step_mode_violations
from .templates import (
    TemplateContext,
    collect_step_template_tokens,
    format_instant,
    is_builtin_token,
    resolve_step_templates,
    resolve_template,
)

logger = logging.getLogger(__name__)

DATE_VALUE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass(frozen=True)
class ExecutionPlan:
    now: str
    resolved_vars: Mapping[str, str]
    unresolved_vars: tuple[str, ...]
    warnings: tuple[str, ...]
    steps: tuple[RecipeStep, ...]

    @property
    def runnable(self) -> bool:
        return not self.unresolved_vars


def validate_variable_value(variable: RecipeVariable, value: str) -> PlanError | None:
    """Return a validation error for ``value`` or None when it is acceptable."""
    if variable.type == "date" and not DATE_VALUE_PATTERN.match(value):
        return PlanError(
            kind="validation",
            message=f"Variable {variable.name} must be date format YYYY-MM-DD",
            variable=variable.name,
        )

    if variable.pattern:
        try:
            matched = re.search(variable.pattern, value) is not None
        except re.error as e:
            return PlanError(
                kind="validation",
                message=f"Variable {variable.name} has an invalid pattern {variable.pattern!r}: {e}",
                variable=variable.name,
            )
        if not matched:
            return PlanError(
                kind="validation",
                message=f"Variable {variable.name} does not match pattern: {variable.pattern}",
                variable=variable.name,
            )
    return None


def pick_prompt_value(output: str) -> str:
    """First non-empty trimmed line of the prompt runner's output."""
    for line in output.splitlines():
        stripped = line.strip()
        if stripped:
            return stripped
    return ""


async def _resolve_variable(
    variable: RecipeVariable,
    recipe_id: str,
    resolved: Mapping[str, str],
    cli_vars: Mapping[str, str],
    now: datetime,
    vault: SecretVault | None,
    prompt_runner: PromptRunner,
    llm_command: str | None,
) -> Result[str | None, PlanError]:
    resolver = variable.resolver

    if resolver.kind == "cli":
        return Ok(cli_vars.get(resolver.key or variable.name))

    if resolver.kind == "builtin":
        rendered = resolve_template(f"{{{{{resolver.expr}}}}}", TemplateContext(vars=resolved, now=now))
        if isinstance(rendered, Err):
            return Err(PlanError(kind="template", message=rendered.error.message, variable=variable.name))
        return Ok(rendered.value)

    if resolver.kind == "secret":
        if vault is None:
            return Ok(None)
        loaded = await vault.load(recipe_id, variable.name)
        if isinstance(loaded, Err):
            return Err(PlanError(kind="secret_store", message=loaded.error.message, variable=variable.name))
        return Ok(loaded.value)

    prompt = resolve_template(resolver.prompt_template or "", TemplateContext(vars=resolved, now=now))
    if isinstance(prompt, Err):
        return Err(PlanError(kind="template", message=prompt.error.message, variable=variable.name))
    output = await prompt_runner(prompt.value, llm_command)
    value = pick_prompt_value(output)
    if not value:
        logger.info(f"Prompt for variable {variable.name} returned no value")
        return Ok(None)
    return Ok(value)


async def build_execution_plan(
    recipe: Recipe,
    *,
    cli_vars: Mapping[str, str] | None = None,
    now: datetime | None = None,
    vault: SecretVault | None = None,
    prompt_runner: PromptRunner | None = None,
    llm_command: str | None = None,
) -> Result[ExecutionPlan, PlanError]:
    """Resolve variables and templates for ``recipe``.

    Args:
        recipe: Recipe to plan (never mutated)
        cli_vars: Caller-supplied variable values (e.g. from ``--var``)
        now: Instant used for builtins; defaults to the current time
        vault: Store consulted for ``secret`` variables and updated afterwards
        prompt_runner: Callable used for ``prompted`` variables
        llm_command: Command passed through to the prompt runner

    Returns:
        Ok(ExecutionPlan), or Err(PlanError) for fatal problems (invalid
        recipe, validation failure, template error, secret store error).
    """
    now = now or datetime.now(timezone.utc)
    prompt_runner = prompt_runner or run_local_llm
    caller_values: dict[str, str] = dict(cli_vars or {})

    violations = find_step_mode_violations(recipe.steps)
    if violations:
        return Err(
            PlanError(
                kind="invalid_recipe",
                message=f"HTTP steps cannot perform browser actions: {', '.join(violations)}",
            )
        )

    resolved: dict[str, str] = dict(caller_values)
    warnings: list[str] = []
    unresolved: set[str] = set()

    for variable in recipe.variables:
        if variable.name in caller_values:
            error = validate_variable_value(variable, caller_values[variable.name])
            if error:
                return Err(error)
            continue

        outcome = await _resolve_variable(
            variable, recipe.id, resolved, caller_values, now, vault, prompt_runner, llm_command
        )
        if isinstance(outcome, Err):
            return outcome

        value = outcome.value if outcome.value is not None else variable.default_value
        if value is not None:
            error = validate_variable_value(variable, value)
            if error:
                return Err(error)
            resolved[variable.name] = value
            continue

        if variable.required:
            unresolved.add(variable.name)
            warnings.append(f"Required variable is unresolved: {variable.name}")

    if vault is not None:
        for variable in recipe.variables:
            if variable.resolver.kind != "secret" or variable.name not in resolved:
                continue
            saved = await vault.save(recipe.id, variable.name, resolved[variable.name])
            if isinstance(saved, Err):
                return Err(PlanError(kind="secret_store", message=saved.error.message, variable=variable.name))

    for token in collect_step_template_tokens(recipe.steps):
        if token not in resolved and not is_builtin_token(token):
            unresolved.add(token)

    steps: list[RecipeStep] = list(recipe.steps)
    if not unresolved:
        context = TemplateContext(vars=resolved, now=now)
        steps = []
        for step in recipe.steps:
            substituted = resolve_step_templates(step, context)
            if isinstance(substituted, Err):
                return Err(PlanError(kind="template", message=f"{step.id}: {substituted.error.message}"))
            steps.append(substituted.value)
    else:
        logger.info(f"Recipe {recipe.id} has unresolved variables: {sorted(unresolved)}")

    return Ok(
        ExecutionPlan(
            now=format_instant(now),
            resolved_vars=MappingProxyType(dict(resolved)),
            unresolved_vars=tuple(sorted(unresolved)),
            warnings=tuple(warnings),
            steps=tuple(steps),
        )
    )
