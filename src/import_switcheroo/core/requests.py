"""
Load Request Models.

An `OpenRequest` describes one intercepted read. The interceptor answers it
with a `LoadedFile`: a readable stream plus the path that was actually
opened.
"""

import io
import os
from typing import IO

from pydantic import BaseModel, ConfigDict, Field


class OpenFlags(BaseModel):
  """
  Behavioural flags of a load request.

  Attributes:
      use_search_path: Resolve relative paths against the search locations.
      report_errors: Raise on failure instead of returning None.
      is_execution_load: The content will be executed as code.
  """

  model_config = ConfigDict(frozen=True)

  use_search_path: bool = False
  report_errors: bool = True
  is_execution_load: bool = False


EXECUTION_LOAD = OpenFlags(is_execution_load=True)


class OpenRequest(BaseModel):
  """One intercepted open. Immutable."""

  model_config = ConfigDict(frozen=True)

  path: str = Field(..., description="Path as passed by the caller.")
  mode: str = Field("rb", description="Mode as for the builtin open().")
  flags: OpenFlags = Field(default_factory=OpenFlags)

  @classmethod
  def for_execution(cls, path, mode: str = "rb", use_search_path: bool = False) -> "OpenRequest":
    """Builds an execution-load request."""
    return cls(
      path=os.fspath(path),
      mode=mode,
      flags=OpenFlags(use_search_path=use_search_path, is_execution_load=True),
    )

  @property
  def binary(self) -> bool:
    return "b" in self.mode


class LoadedFile:
  """
  Result of an intercepted open.

  Args:
      stream: Readable file object (real file or in-memory buffer).
      opened_path: The resolved path, reported identically whether or not the
          content was rewritten.
      transformed: True if `stream` serves rewritten content.
  """

  def __init__(self, stream: IO, opened_path: str, transformed: bool = False):
    self.stream = stream
    self.opened_path = opened_path
    self.transformed = transformed

  @classmethod
  def from_content(cls, content: str, opened_path: str, binary: bool) -> "LoadedFile":
    stream: IO = io.BytesIO(content.encode("utf-8")) if binary else io.StringIO(content)
    return cls(stream, opened_path, transformed=True)

  def read(self, size: int = -1):
    return self.stream.read(size)

  def close(self) -> None:
    self.stream.close()

  def __enter__(self) -> "LoadedFile":
    return self

  def __exit__(self, *exc_info) -> None:
    self.close()

  def __repr__(self) -> str:
    return f"LoadedFile(opened_path={self.opened_path!r}, transformed={self.transformed})"


def default_open(path: str, mode: str) -> IO:
  """The untransformed open."""
  return open(path, mode)


def describe(request: OpenRequest) -> str:
  """Short label for log messages."""
  kind = "execution-load" if request.flags.is_execution_load else "open"
  return f"{kind} {request.path!r} ({request.mode})"
