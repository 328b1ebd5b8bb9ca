"""Replay recorded web recipes across browser and HTTP surfaces, with self-healing."""

from .config import settings
from .exceptions import BrowserLaunchError, InvalidRecipeError, RecipeNotFoundError, RecipeReplayError, SecretStoreError
from .recipes.service import RunReport, ServiceError, list_recipes, plan_recipe, recipe_history, run_recipe

__all__ = [
    "settings",
    "run_recipe",
    "plan_recipe",
    "list_recipes",
    "recipe_history",
    "RunReport",
    "ServiceError",
    "RecipeReplayError",
    "RecipeNotFoundError",
    "InvalidRecipeError",
    "SecretStoreError",
    "BrowserLaunchError",
]
