"""Secret storage for ``secret`` recipe variables.

Values are kept per recipe in a YAML file inside a private directory
(0700) with owner-only files (0600). An environment variable named
``RECIPE_REPLAY_SECRET_<RECIPE>_<NAME>`` overrides the stored value and is
never written to the vault file.
"""

import logging
import os
import re
import stat
from pathlib import Path
from typing import Protocol

import yaml
from anyio import to_thread

from .recipes.failures import VaultError
from .result import Err, Ok, Result

logger = logging.getLogger(__name__)

ENV_PREFIX = "RECIPE_REPLAY_SECRET_"


class SecretVault(Protocol):
    async def load(self, recipe_id: str, name: str) -> Result[str | None, VaultError]: ...

    async def save(self, recipe_id: str, name: str, value: str) -> Result[None, VaultError]: ...


def _env_key(recipe_id: str, name: str) -> str:
    def norm(part: str) -> str:
        return re.sub(r"[^A-Z0-9]+", "_", part.upper()).strip("_")

    return f"{ENV_PREFIX}{norm(recipe_id)}_{norm(name)}"


def _ensure_private_dir(path: Path) -> None:
    try:
        st = os.lstat(path)
    except FileNotFoundError:
        path.mkdir(parents=True, exist_ok=True, mode=0o700)
        if os.name != "nt":
            os.chmod(path, 0o700)
        return

    if stat.S_ISLNK(st.st_mode):
        raise OSError(f"Refusing to use symlink directory: {path}")
    if not stat.S_ISDIR(st.st_mode):
        raise OSError(f"Expected directory at {path}")
    if os.name != "nt":
        os.chmod(path, 0o700)


def _atomic_write_private(path: Path, payload: bytes) -> None:
    _ensure_private_dir(path.parent)

    tmp_path = path.parent / f".{path.name}.tmp.{os.getpid()}"
    fd = os.open(str(tmp_path), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        if os.name != "nt":
            os.chmod(path, 0o600)
    except BaseException:
        try:
            tmp_path.unlink(missing_ok=True)
        except OSError:
            pass
        raise


class FileSecretVault:
    """Stores secret variable values in owner-only YAML files."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory).expanduser()

    def _vault_path(self, recipe_id: str) -> Path:
        slug = re.sub(r"[^a-z0-9]+", "-", recipe_id.lower()).strip("-") or "recipe"
        return self.directory / f"{slug}.yaml"

    def _read(self, recipe_id: str) -> dict[str, str]:
        path = self._vault_path(recipe_id)
        if not path.exists():
            return {}
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"Vault file is not a mapping: {path}")
        return {str(k): str(v) for k, v in data.items()}

    def load_sync(self, recipe_id: str, name: str) -> Result[str | None, VaultError]:
        override = os.environ.get(_env_key(recipe_id, name))
        if override:
            return Ok(override)
        try:
            entries = self._read(recipe_id)
        except (OSError, ValueError, yaml.YAMLError) as e:
            return Err(VaultError(message=f"Secret vault read failed ({recipe_id}): {e}", recipe_id=recipe_id, name=name))
        return Ok(entries.get(name))

    def save_sync(self, recipe_id: str, name: str, value: str) -> Result[None, VaultError]:
        if os.environ.get(_env_key(recipe_id, name)) == value:
            logger.debug(f"Secret {name} for recipe {recipe_id} comes from the environment; not stored")
            return Ok(None)
        try:
            entries = self._read(recipe_id)
            if entries.get(name) == value:
                return Ok(None)
            entries[name] = value
            payload = yaml.safe_dump(entries, default_flow_style=False, sort_keys=True, allow_unicode=True)
            _atomic_write_private(self._vault_path(recipe_id), payload.encode("utf-8"))
        except (OSError, ValueError, yaml.YAMLError) as e:
            return Err(VaultError(message=f"Secret vault write failed ({recipe_id}): {e}", recipe_id=recipe_id, name=name))
        logger.debug(f"Stored secret {name} for recipe {recipe_id}")
        return Ok(None)

    async def load(self, recipe_id: str, name: str) -> Result[str | None, VaultError]:
        return await to_thread.run_sync(self.load_sync, recipe_id, name)

    async def save(self, recipe_id: str, name: str, value: str) -> Result[None, VaultError]:
        return await to_thread.run_sync(self.save_sync, recipe_id, name, value)
