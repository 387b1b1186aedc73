"""
Exception Taxonomy.

All failures raised by import-switcheroo derive from `SwitcherooError`.

- `ChannelFatal`: the isolation channel itself broke (fork failed, the
  selector failed, the worker died without answering, or the frame was
  malformed). Aborts the in-flight load.
- `WorkerError`: the worker ran to completion but the callable raised.
- `TransformError`: the rewrite engine reported per-file errors. Downgraded
  to a `FallbackWarning` at the interceptor boundary.
- `ConfigurationError`: the configuration cannot be used (e.g. the cache
  directory is not writable).
"""

from typing import Iterable, List, Optional


class SwitcherooError(Exception):
  """Base class for all import-switcheroo errors."""


class ChannelFatal(SwitcherooError):
  """Unrecoverable failure of the process isolation channel."""


class WorkerError(SwitcherooError):
  """
  Raised in the parent when the isolated callable raised in the worker.

  Attributes:
      message (str): The decoded message reported by the worker.
  """

  def __init__(self, message: str):
    super().__init__(message)
    self.message = message


class TransformError(SwitcherooError):
  """
  One or more errors reported by the rewrite engine for a single file.

  Every sub-error is folded into one message so a single warning describes
  the whole failure.

  Attributes:
      path (str): The file that could not be processed.
      errors (List[str]): Individual error messages, in reporting order.
  """

  def __init__(self, path: str, errors: Iterable[str]):
    self.path = path
    self.errors: List[str] = [str(e) for e in errors] or ["Unknown Error"]
    super().__init__(self.header(path) + "\n".join(self.errors))

  @staticmethod
  def header(path: str) -> str:
    return f"File `{path}` could not be processed:\n"

  @classmethod
  def from_report(cls, path: str, message: str) -> "TransformError":
    """Rebuilds an error from its rendered message (e.g. one shipped back by a worker)."""
    prefix = cls.header(path)
    body = message[len(prefix) :] if message.startswith(prefix) else message
    return cls(path, body.splitlines())


class ConfigurationError(SwitcherooError):
  """The supplied configuration is unusable."""

  def __init__(self, message: str, key: Optional[str] = None):
    super().__init__(message)
    self.key = key


class FallbackWarning(UserWarning):
  """Emitted when a transform failed and the untransformed source was served."""
