"""Applies healing results to a copy of a recipe for persistence."""

from collections.abc import Mapping
from datetime import datetime

from .healing import HealStats, Phase2Replacement
from .models import FallbackPlan, Recipe, RecipeStep, RecipeVariable, VariableResolver
from .templates import collect_step_template_tokens, is_builtin_token


def apply_healing(
    recipe: Recipe,
    *,
    selector_patches: Mapping[str, list[str]],
    replacement: Phase2Replacement | None,
    stats: HealStats,
    now: datetime | None = None,
) -> Recipe:
    """Return a new recipe with healing merged in; ``recipe`` is not modified.

    Patched selectors are prepended to the step's existing candidates. A
    Phase 2 replacement is spliced into the original step list in place of
    exactly the failed step, keeping every step after it. New template
    tokens introduced by re-captured credential inputs are declared as
    required ``secret`` variables.
    """
    steps: list[RecipeStep] = []
    for step in recipe.steps:
        if replacement is not None and step.id == replacement.replaced_step_id:
            steps.extend(s.copy() for s in replacement.new_steps)
            continue
        patch = selector_patches.get(step.id)
        if patch:
            kept = [s for s in step.selector_variants if s not in patch]
            steps.append(step.copy(selector_variants=[*patch, *kept]))
        else:
            steps.append(step.copy())

    variables = [
        RecipeVariable(
            name=v.name,
            resolver=VariableResolver(**vars(v.resolver)),
            type=v.type,
            pattern=v.pattern,
            default_value=v.default_value,
            required=v.required,
            description=v.description,
        )
        for v in recipe.variables
    ]
    if replacement is not None:
        declared = {v.name for v in variables}
        for token in sorted(collect_step_template_tokens(replacement.new_steps)):
            if token not in declared and not is_builtin_token(token):
                variables.append(RecipeVariable(name=token, resolver=VariableResolver(kind="secret"), required=True))
                declared.add(token)

    summary = f"Self-healed: {stats.phase1_healed} auto-fixed, {stats.phase2_recaptured} re-recorded."
    notes = f"{recipe.notes}\n{summary}" if recipe.notes else summary

    return Recipe(
        id=recipe.id,
        name=recipe.name,
        steps=steps,
        variables=variables,
        version=recipe.version + 1,
        source="healed",
        fallback=FallbackPlan.from_dict(recipe.fallback.to_dict()),
        notes=notes,
        download_dir=recipe.download_dir,
        schema_version=recipe.schema_version,
        created_at=recipe.created_at,
        updated_at=now or datetime.now(),
    )
