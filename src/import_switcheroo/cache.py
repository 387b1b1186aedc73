"""
Rewritten-Source Cache.

Stores the outcome of rewriting a file so that later loads of the same path
do not invoke the rewrite engine again. One file per entry lives in the cache
directory, named after the SHA-256 of the *resolved* source path.

An entry holds either the rewritten text or an empty sentinel. The sentinel
records "checked, nothing to rewrite", which is distinct from "never checked"
(no entry at all).
"""

import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict

from import_switcheroo.errors import ConfigurationError

logger = logging.getLogger(__name__)

EMPTY_SENTINEL = ""

PathLike = Union[str, "os.PathLike[str]"]


def resolve_path(path: PathLike) -> str:
  """Canonical form of a source path: absolute, symlinks resolved."""
  return os.path.realpath(os.fspath(path))


def path_hash(path: PathLike) -> str:
  """Cache key for a path. The path is resolved before hashing."""
  return hashlib.sha256(resolve_path(path).encode("utf-8")).hexdigest()


class CacheEntry(BaseModel):
  """A single cached rewrite outcome."""

  model_config = ConfigDict(frozen=True)

  path_hash: str
  content: str

  @property
  def is_unchanged(self) -> bool:
    """True if the entry is the "verified unchanged" sentinel."""
    return self.content == EMPTY_SENTINEL


class ContentCache:
  """
  Path-keyed store for rewritten source.

  If no directory is configured the cache is inert: `get` always misses and
  `put` does nothing.

  Args:
      directory: Where entries are stored. Created if missing.
      check_mtime: Treat entries older than their source file as misses.
  """

  def __init__(self, directory: Optional[PathLike] = None, check_mtime: bool = True):
    self.directory: Optional[Path] = Path(directory) if directory is not None else None
    self.check_mtime = check_mtime

    if self.directory is not None:
      self._prepare_directory(self.directory)

  @staticmethod
  def _prepare_directory(directory: Path) -> None:
    if directory.exists() and not directory.is_dir():
      raise ConfigurationError(f"Cache directory '{directory}' exists but is not a directory.", key="cache_directory")
    try:
      directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
      raise ConfigurationError(f"Cache directory '{directory}' cannot be created: {e}", key="cache_directory") from e
    if not os.access(directory, os.W_OK | os.X_OK):
      raise ConfigurationError(f"Cache directory '{directory}' is not writable.", key="cache_directory")

  @property
  def enabled(self) -> bool:
    return self.directory is not None

  def entry_path(self, path: PathLike) -> Optional[Path]:
    """Location of the entry file for `path`, or None when inert."""
    if self.directory is None:
      return None
    return self.directory / path_hash(path)

  def lookup(self, path: PathLike) -> Optional[CacheEntry]:
    """
    Retrieves the entry for `path`.

    Args:
        path: Source path, resolved before hashing.

    Returns:
        Optional[CacheEntry]: The entry, or None on a miss (including stale entries).
    """
    entry_file = self.entry_path(path)
    if entry_file is None:
      return None

    try:
      if self.check_mtime and self._is_stale(path, entry_file):
        logger.debug("Cache entry for %s is stale", path)
        return None
      with open(entry_file, encoding="utf-8", newline="") as f:
        content = f.read()
    except FileNotFoundError:
      return None
    except OSError as e:
      logger.debug("Unreadable cache entry %s: %s", entry_file, e)
      return None

    return CacheEntry(path_hash=entry_file.name, content=content)

  def get(self, path: PathLike) -> Optional[str]:
    """Returns the cached content (possibly the empty sentinel), or None."""
    entry = self.lookup(path)
    return entry.content if entry is not None else None

  def put(self, path: PathLike, content: str) -> None:
    """
    Stores `content` for `path`. Last write wins.

    Raises:
        ConfigurationError: If the cache directory became unusable.
    """
    entry_file = self.entry_path(path)
    if entry_file is None:
      return

    try:
      fd, tmp_name = tempfile.mkstemp(dir=str(self.directory), prefix=".tmp-")
      try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
          f.write(content)
        os.replace(tmp_name, entry_file)
      except BaseException:
        if os.path.exists(tmp_name):
          os.unlink(tmp_name)
        raise
    except OSError as e:
      raise ConfigurationError(f"Cannot write cache entry '{entry_file}': {e}", key="cache_directory") from e

  def mark_unchanged(self, path: PathLike) -> None:
    """Records that `path` was checked and needs no rewrite."""
    self.put(path, EMPTY_SENTINEL)

  def clear(self) -> int:
    """
    Deletes every entry.

    Returns:
        int: Number of entries removed.
    """
    if self.directory is None:
      return 0
    removed = 0
    for item in self.directory.iterdir():
      if item.is_file() and len(item.name) == 64:
        item.unlink()
        removed += 1
    return removed

  @staticmethod
  def _is_stale(path: PathLike, entry_file: Path) -> bool:
    try:
      source_mtime = os.stat(resolve_path(path)).st_mtime_ns
    except OSError:
      # Source vanished; let the caller surface that on its own read.
      return False
    return os.stat(entry_file).st_mtime_ns < source_mtime
