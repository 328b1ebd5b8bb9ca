"""Custom exceptions for recipe-replay.

Engine code returns ``Ok``/``Err`` values; these exceptions are raised only at
the service and CLI boundary.
"""


class RecipeReplayError(Exception):
    """Base exception for recipe-replay errors."""

    pass


class RecipeNotFoundError(RecipeReplayError):
    """Raised when a recipe cannot be loaded from the store."""

    def __init__(self, name: str):
        super().__init__(f"Recipe not found: {name}")
        self.name = name


class InvalidRecipeError(RecipeReplayError):
    """Raised when a recipe definition violates step invariants."""

    pass


class SecretStoreError(RecipeReplayError):
    """Raised when the secret vault cannot be read or written."""

    pass


class BrowserLaunchError(RecipeReplayError):
    """Raised when the browser surface cannot be started."""

    pass
