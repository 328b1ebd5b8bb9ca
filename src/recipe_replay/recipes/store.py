"""Versioned recipe storage in YAML files.

The current version of each recipe lives at ``<slug>.yaml``. Replacing it with a
newer version (as healing does) first archives the file being replaced under
``history/<slug>.v<N>.yaml``, so earlier versions stay available for review.
"""

import logging
import os
import re
import shutil
import tempfile
from functools import partial
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml
from anyio import to_thread

from ..config import settings
from ..result import Err, Ok, Result
from .failures import StoreError
from .models import Recipe, validate_recipe_steps

logger = logging.getLogger(__name__)

HTTP_METHODS = frozenset({"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"})
HISTORY_DIR = "history"
MAX_SLUG_SUFFIX = 10_000

_HISTORY_NAME = re.compile(r"^(?P<slug>.+)\.v(?P<version>\d+)\.yaml$")


def recipe_slug(name: str) -> str:
    """Filesystem-safe file stem for a recipe name."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-")
    return slug or "recipe"


def check_storable(recipe: Recipe) -> None:
    """Raise ValueError when ``recipe`` must not be written to disk."""
    if not recipe.name.strip():
        raise ValueError("Recipe name must be non-empty")
    if recipe.version < 1:
        raise ValueError(f"Recipe version must be >= 1, got {recipe.version}")
    validate_recipe_steps(recipe)

    for step in recipe.steps:
        if step.mode != "http" or step.action != "fetch":
            continue
        if not step.url:
            raise ValueError(f"HTTP fetch step {step.id} requires a url")
        if step.method is not None and step.method.strip().upper() not in HTTP_METHODS:
            raise ValueError(f"Step {step.id} method must be one of {sorted(HTTP_METHODS)}, got {step.method!r}")
        # templated URLs are checked once resolved
        if "{{" not in step.url:
            scheme = urlparse(step.url).scheme
            if scheme not in ("http", "https"):
                raise ValueError(f"Step {step.id} url must be http(s), got scheme={scheme!r}")


def dump_recipe(recipe: Recipe) -> str:
    return yaml.safe_dump(recipe.to_dict(), default_flow_style=False, sort_keys=False, allow_unicode=True)


def parse_recipe(text: str, name: str = "<text>") -> Result[Recipe, StoreError]:
    """Parse and validate recipe YAML."""
    try:
        data: Any = yaml.safe_load(text)
    except yaml.YAMLError as e:
        return Err(StoreError(kind="recipe_parse_failed", name=name, detail=f"invalid YAML: {e}"))
    if not isinstance(data, dict) or not data:
        return Err(StoreError(kind="recipe_parse_failed", name=name, detail="expected a non-empty mapping"))

    try:
        recipe = Recipe.from_dict(data)
        validate_recipe_steps(recipe)
    except (KeyError, TypeError, ValueError) as e:
        return Err(StoreError(kind="recipe_parse_failed", name=name, detail=str(e) or type(e).__name__))
    return Ok(recipe)


def _write_atomically(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    handle = tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
    )
    tmp_path = Path(handle.name)
    try:
        with handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


class RecipeStore:
    """Recipes on disk, one YAML file per recipe plus archived versions."""

    def __init__(self, directory: str | Path | None = None):
        self.directory = Path(directory).expanduser() if directory else settings.get_recipes_dir()
        self.directory.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Recipes directory: {self.directory}")

    @property
    def history_dir(self) -> Path:
        return self.directory / HISTORY_DIR

    def path_for(self, name: str) -> Path:
        return self.directory / f"{recipe_slug(name)}.yaml"

    def _free_slug(self, slug: str) -> str:
        for n in range(1, MAX_SLUG_SUFFIX):
            candidate = slug if n == 1 else f"{slug}-{n}"
            if not (self.directory / f"{candidate}.yaml").exists():
                return candidate
        raise RuntimeError(f"No free recipe file name for {slug!r}")

    def _read(self, path: Path, name: str) -> Result[Recipe, StoreError]:
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return Err(StoreError(kind="recipe_not_found", name=name))
        except OSError as e:
            return Err(StoreError(kind="recipe_parse_failed", name=name, detail=str(e)))
        return parse_recipe(text, name)

    def load(self, name: str) -> Result[Recipe, StoreError]:
        """Load the current version of ``name``."""
        result = self._read(self.path_for(name), name)
        if isinstance(result, Err):
            logger.warning(result.error.message)
        else:
            logger.debug(f"Loaded recipe: {result.value.name} v{result.value.version}")
        return result

    async def load_async(self, name: str) -> Result[Recipe, StoreError]:
        return await to_thread.run_sync(self.load, name)

    def load_version(self, name: str, version: int) -> Result[Recipe, StoreError]:
        """Load an archived (or the current) version of ``name``."""
        archived = self.history_dir / f"{recipe_slug(name)}.v{version}.yaml"
        if archived.exists():
            return self._read(archived, name)
        current = self.load(name)
        if isinstance(current, Ok) and current.value.version != version:
            return Err(StoreError(kind="recipe_not_found", name=f"{name} v{version}"))
        return current

    def history(self, name: str) -> list[int]:
        """Archived version numbers of ``name``, oldest first."""
        slug = recipe_slug(name)
        versions = []
        for path in self.history_dir.glob(f"{slug}.v*.yaml"):
            match = _HISTORY_NAME.match(path.name)
            if match and match.group("slug") == slug:
                versions.append(int(match.group("version")))
        return sorted(versions)

    def save(self, recipe: Recipe, *, overwrite: bool = False) -> Path:
        """Write ``recipe`` and return its path.

        Without ``overwrite`` a name collision picks the next free ``-N`` suffix.
        With it, the existing file is replaced; when that file holds an older
        version it is archived first. ``recipe.name`` is set to the slug used.

        Raises:
            ValueError: If the recipe breaks storage invariants
            OSError: If the file cannot be written
        """
        slug = recipe_slug(recipe.name)
        if not overwrite:
            slug = self._free_slug(slug)
        recipe.name = slug
        check_storable(recipe)

        path = self.path_for(slug)
        if overwrite and path.exists():
            self._archive(path, slug, recipe.version)
        _write_atomically(path, dump_recipe(recipe))
        logger.info(f"Saved recipe: {recipe.name} v{recipe.version} to {path}")
        return path

    async def save_async(self, recipe: Recipe, *, overwrite: bool = False) -> Path:
        return await to_thread.run_sync(partial(self.save, recipe, overwrite=overwrite))

    def _archive(self, path: Path, slug: str, incoming_version: int) -> None:
        previous = self._read(path, slug)
        if isinstance(previous, Err) or previous.value.version >= incoming_version:
            return
        target = self.history_dir / f"{slug}.v{previous.value.version}.yaml"
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(path, target)
        logger.debug(f"Archived {slug} v{previous.value.version} to {target}")

    def list_all(self) -> list[Recipe]:
        """Current versions of all readable recipes, most recently updated first."""
        recipes = []
        for path in self.directory.glob("*.yaml"):
            result = self._read(path, path.stem)
            if isinstance(result, Err):
                logger.warning(f"Skipping {path.name}: {result.error.message}")
                continue
            recipes.append(result.value)
        recipes.sort(key=lambda r: r.name)
        recipes.sort(key=lambda r: r.updated_at.timestamp(), reverse=True)
        return recipes

    async def list_all_async(self) -> list[Recipe]:
        return await to_thread.run_sync(self.list_all)
