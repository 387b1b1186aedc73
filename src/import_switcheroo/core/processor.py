"""
Transform Processors.

A processor turns a file path into a `TransformOutcome` by consulting the
`ContentCache` and, on a miss, running the rewrite engine exactly once.

Two variants share that contract:

- `InProcessProcessor` runs the engine in the calling interpreter. It is the
  fastest option, but the engine shares memory and global state with the host:
  a misbehaving rule (or anything the engine imports) can leave the host in a
  corrupted state.
- `IsolatedProcessProcessor` runs the engine in a worker process through an
  isolation channel. Nothing leaks back into the host, at the price of one
  process round-trip per cache miss.
"""

import functools
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict

from import_switcheroo.cache import ContentCache, resolve_path
from import_switcheroo.config import SwitcherooConfig
from import_switcheroo.core.requests import OpenFlags
from import_switcheroo.engine.base import RewriteEngine
from import_switcheroo.errors import TransformError, WorkerError
from import_switcheroo.isolation import IsolationChannel, default_channel

logger = logging.getLogger(__name__)


class OutcomeStatus(str, Enum):
  UNCHANGED = "unchanged"
  REPLACED = "replaced"
  FAILED = "failed"


class TransformOutcome(BaseModel):
  """
  What happened to one file.

  Attributes:
      status: UNCHANGED, REPLACED or FAILED.
      content: Rewritten source (REPLACED only).
      error: Error description (FAILED only).
  """

  model_config = ConfigDict(frozen=True)

  status: OutcomeStatus
  content: Optional[str] = None
  error: Optional[str] = None

  @classmethod
  def unchanged(cls) -> "TransformOutcome":
    return cls(status=OutcomeStatus.UNCHANGED)

  @classmethod
  def replaced(cls, content: str) -> "TransformOutcome":
    return cls(status=OutcomeStatus.REPLACED, content=content)

  @classmethod
  def failed(cls, error: Union[BaseException, str]) -> "TransformOutcome":
    return cls(status=OutcomeStatus.FAILED, error=str(error))

  @property
  def is_replaced(self) -> bool:
    return self.status is OutcomeStatus.REPLACED

  @property
  def is_failed(self) -> bool:
    return self.status is OutcomeStatus.FAILED


def invoke_engine(engine: RewriteEngine, path: str) -> Optional[str]:
  """
  Runs the engine over one file.

  Module-level so that it can be shipped to a spawned worker.

  Returns:
      Optional[str]: The rewritten source, or None if nothing changed.

  Raises:
      TransformError: With every error the engine reported for the file.
  """
  try:
    result = engine.process_file(path)
  except TransformError:
    raise
  except Exception as e:  # noqa: BLE001 - engine failures are per-file errors
    raise TransformError(path, [f"{type(e).__name__}: {e}"]) from e

  if result.errors:
    raise TransformError(path, result.errors)
  return result.code if result.changed else None


class TransformProcessor(ABC):
  """
  Cache-fronted wrapper around a rewrite engine.

  Attributes:
      engine: The rewrite engine collaborator.
      cache: Where outcomes are remembered. Inert when not configured.
      invocations (int): How many times this processor ran the engine.
  """

  def __init__(self, engine: RewriteEngine, cache: Optional[ContentCache] = None):
    self.engine = engine
    self.cache = cache if cache is not None else ContentCache(None)
    self.invocations = 0

  def transform(self, path: str) -> TransformOutcome:
    """
    Rewrites `path`, or returns the cached outcome.

    Args:
        path: Any path to the file; it is resolved before use.

    Returns:
        TransformOutcome: UNCHANGED or REPLACED.

    Raises:
        TransformError: If the engine reported errors for the file.
        ConfigurationError: If the cache can no longer store entries.
    """
    resolved = resolve_path(path)

    entry = self.cache.lookup(resolved)
    if entry is not None:
      logger.debug("Cache hit for %s", resolved)
      return TransformOutcome.unchanged() if entry.is_unchanged else TransformOutcome.replaced(entry.content)

    self.invocations += 1
    content = self._process(resolved)

    if content is None:
      self.cache.mark_unchanged(resolved)
      return TransformOutcome.unchanged()

    self.cache.put(resolved, content)
    return TransformOutcome.replaced(content)

  @abstractmethod
  def _process(self, resolved: str) -> Optional[str]:
    """Runs the engine for a cache miss. Returns new content or None."""


class InProcessProcessor(TransformProcessor):
  """Runs the engine in the caller's interpreter. See module docstring for the shared-state risk."""

  def _process(self, resolved: str) -> Optional[str]:
    return invoke_engine(self.engine, resolved)


class IsolatedProcessProcessor(TransformProcessor):
  """
  Runs the engine in a worker process.

  Args:
      engine: The rewrite engine. Must be picklable when a spawn channel is used.
      cache: Optional content cache.
      channel: Isolation channel; defaults to fork where available.
  """

  def __init__(
    self,
    engine: RewriteEngine,
    cache: Optional[ContentCache] = None,
    channel: Optional[IsolationChannel] = None,
  ):
    super().__init__(engine, cache)
    self.channel = channel if channel is not None else default_channel()

  def _process(self, resolved: str) -> Optional[str]:
    try:
      return self.channel.run(functools.partial(invoke_engine, self.engine, resolved))
    except WorkerError as e:
      raise TransformError.from_report(resolved, e.message) from e


class ProcessorLoadHandler:
  """
  Load handler strategy backed by a processor.

  Serves the rewritten content for execution-loads, or None so that the
  interceptor falls through to the real file.
  """

  def __init__(self, processor: TransformProcessor):
    self.processor = processor

  def on_load(self, path: str, mode: str, flags: OpenFlags) -> Optional[str]:
    outcome = self.processor.transform(path)
    return outcome.content if outcome.is_replaced else None


def build_processor(
  config: SwitcherooConfig, engine: RewriteEngine, cache: Optional[ContentCache] = None
) -> TransformProcessor:
  """
  Selects the processor variant named by `config.isolation`.

  Args:
      config: Runtime configuration.
      engine: The engine to wrap.
      cache: Overrides the cache built from `config.cache_directory`.

  Returns:
      TransformProcessor: In-process for "inline", isolated otherwise.
  """
  if cache is None:
    cache = ContentCache(config.cache_directory, check_mtime=config.check_mtime)

  if config.isolation == "inline":
    return InProcessProcessor(engine, cache)

  channel = default_channel(config.isolation, liveness_interval=config.liveness_interval)
  return IsolatedProcessProcessor(engine, cache, channel)
