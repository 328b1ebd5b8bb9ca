"""Download persistence: filename resolution and collision-safe writes."""

import logging
import mimetypes
import re
from pathlib import Path
from urllib.parse import unquote

from ..result import Err, Ok, Result

logger = logging.getLogger(__name__)

DOCUMENT_URL_PATTERN = re.compile(r"\.(?:pdf|docx?|xlsx?|csv|zip|tar\.gz)(?:\?|$)", re.IGNORECASE)

_FILENAME_STAR = re.compile(r"filename\*\s*=\s*([^;]+)", re.IGNORECASE)
_FILENAME_QUOTED = re.compile(r'filename\s*=\s*"([^"]*)"', re.IGNORECASE)
_FILENAME_BARE = re.compile(r"filename\s*=\s*([^;\s]+)", re.IGNORECASE)
_UNSAFE_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]')

# Extensions mimetypes does not map the way downloads are usually named.
_EXTENSION_OVERRIDES = {
    "text/csv": ".csv",
    "text/plain": ".txt",
    "application/octet-stream": ".bin",
    "application/json": ".json",
}


def looks_like_document(url: str) -> bool:
    return DOCUMENT_URL_PATTERN.search(url) is not None


def is_attachment(content_disposition: str | None) -> bool:
    return bool(content_disposition) and content_disposition.strip().lower().startswith("attachment")


def sanitize_filename(name: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", name).strip().strip(".")
    return cleaned or "download"


def filename_from_content_disposition(content_disposition: str | None) -> str | None:
    """Extract a filename, preferring RFC 5987 ``filename*`` over ``filename``."""
    if not content_disposition:
        return None

    star = _FILENAME_STAR.search(content_disposition)
    if star:
        raw = star.group(1).strip().strip('"')
        # charset'language'percent-encoded-value
        if "'" in raw:
            charset, _, rest = raw.partition("'")
            _, _, encoded = rest.partition("'")
            try:
                return unquote(encoded, encoding=charset or "utf-8", errors="strict")
            except (LookupError, UnicodeDecodeError):
                return unquote(encoded)
        return unquote(raw)

    quoted = _FILENAME_QUOTED.search(content_disposition)
    if quoted and quoted.group(1):
        return quoted.group(1)

    bare = _FILENAME_BARE.search(content_disposition)
    if bare:
        return bare.group(1).strip('"')
    return None


def extension_for_content_type(content_type: str | None) -> str:
    if not content_type:
        return ".bin"
    mime = content_type.split(";", 1)[0].strip().lower()
    if mime in _EXTENSION_OVERRIDES:
        return _EXTENSION_OVERRIDES[mime]
    return mimetypes.guess_extension(mime) or ".bin"


def resolve_download_filename(step_id: str, content_disposition: str | None, content_type: str | None) -> str:
    name = filename_from_content_disposition(content_disposition)
    if not name:
        name = f"{step_id}{extension_for_content_type(content_type)}"
    return sanitize_filename(name)


def _split_name(filename: str) -> tuple[str, str]:
    if filename.lower().endswith(".tar.gz"):
        return filename[: -len(".tar.gz")], ".tar.gz"
    path = Path(filename)
    return path.stem, path.suffix


def write_unique(directory: Path, filename: str, payload: bytes, max_attempts: int) -> Result[Path, str]:
    """Write ``payload`` under a name that does not exist yet.

    Tries ``name.ext``, then ``name-1.ext``, ``name-2.ext``, ... using an
    exclusive create so two writers never share a file.
    """
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        return Err(f"Failed to create download directory {directory}: {e}")
    stem, suffix = _split_name(filename)

    for attempt in range(max_attempts):
        candidate = directory / (filename if attempt == 0 else f"{stem}-{attempt}{suffix}")
        try:
            with candidate.open("xb") as f:
                f.write(payload)
        except FileExistsError:
            continue
        except OSError as e:
            return Err(f"Failed to write download {candidate}: {e}")
        logger.debug(f"Created download file: {candidate}")
        return Ok(candidate)

    return Err(f"No free filename for {filename} after {max_attempts} attempts")


def reserve_unique(directory: Path, filename: str, max_attempts: int) -> Result[Path, str]:
    """Create an empty placeholder file for a download saved by another writer."""
    return write_unique(directory, filename, b"", max_attempts)
