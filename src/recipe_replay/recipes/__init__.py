"""Recipes subsystem: models, planning, execution and self-healing.

A recipe is an ordered list of steps recorded from a user session. Each
run goes through two stages:

1. PLANNING: variables are resolved (caller values, built-in templates,
   the secret vault, local-LLM prompts) and templates are substituted into
   every step. A plan with unresolved variables is never executed.

2. EXECUTION: steps run in order on the browser (``pw``) or HTTP surface.
   With healing enabled, failing steps are repaired by guard relaxation,
   selector rediscovery (Phase 1) or manual re-capture (Phase 2), and the
   healed recipe is saved as a new version.
"""

from .failures import CliVarError, PlanError, StepFailure, StoreError, TemplateError, VaultError
from .models import (
    Effect,
    FallbackPlan,
    Guard,
    Recipe,
    RecipeStep,
    RecipeVariable,
    VariableResolver,
)
from .store import RecipeStore

__all__ = [
    "CliVarError",
    "Effect",
    "FallbackPlan",
    "Guard",
    "PlanError",
    "Recipe",
    "RecipeStep",
    "RecipeStore",
    "RecipeVariable",
    "StepFailure",
    "StoreError",
    "TemplateError",
    "VariableResolver",
    "VaultError",
]
