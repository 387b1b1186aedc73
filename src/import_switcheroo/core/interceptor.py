"""
Load Interceptor.

Hooks the import system so that module source is routed through a
`LoadHandler` before it is compiled. The interceptor owns one finder, placed
at the head of `sys.meta_path` while registered. The finder lets the regular
`PathFinder` resolve the module against `sys.path`, then swaps the spec's
`SourceFileLoader` for a `TransformingSourceLoader` whose source read is an
*execution-load* request.

Reentrancy: while the handler runs, the interceptor is suspended for the
current thread, so everything the handler imports or reads (including nested
execution-loads) reaches the real file system. Suspension is released on
every exit path.

Registration is reference counted. Each `register` returns a `Registration`
guard; the finder is only removed once the last guard is released, which
leaves `sys.meta_path` exactly as it was before the first registration.

Example:

.. code-block:: python

    interceptor = LoadInterceptor()
    with interceptor.register(ProcessorLoadHandler(processor)):
      import legacy_module  # source rewritten on the way in
"""

import builtins
import importlib
import importlib.abc
import importlib.machinery
import logging
import os
import sys
import threading
import types
import warnings
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, List, Optional, Protocol, Sequence

from rich.markup import escape

from import_switcheroo.core.processor import TransformOutcome
from import_switcheroo.core.requests import LoadedFile, OpenFlags, OpenRequest, default_open, describe
from import_switcheroo.errors import ChannelFatal, ConfigurationError, FallbackWarning
from import_switcheroo.utils.console import log_warning

logger = logging.getLogger(__name__)


class LoadHandler(Protocol):
  """Strategy invoked for every execution-load."""

  def on_load(self, path: str, mode: str, flags: OpenFlags) -> Optional[str]:
    """
    Args:
        path: The resolved path being loaded.
        mode: Open mode requested by the caller.
        flags: Request flags.

    Returns:
        Optional[str]: Replacement source, or None to serve the real file.
    """
    ...


class InterceptorState(str, Enum):
  UNREGISTERED = "unregistered"
  REGISTERED = "registered"
  SUSPENDED = "suspended"


class Registration:
  """
  Guard returned by `LoadInterceptor.register`.

  Releasing it undoes exactly one registration. Releasing twice is a no-op.
  Usable as a context manager.
  """

  def __init__(self, interceptor: "LoadInterceptor"):
    self.interceptor = interceptor
    self.released = False

  def release(self) -> bool:
    """
    Unregisters once.

    Returns:
        bool: True if the interceptor is no longer installed.
    """
    if self.released:
      return not self.interceptor.is_registered
    self.released = True
    return self.interceptor.unregister()

  def __enter__(self) -> "Registration":
    return self

  def __exit__(self, *exc_info) -> None:
    self.release()


class LoadInterceptor:
  """
  Reference-counted global load handler.

  Args:
      search_paths: Locations for resolving relative paths of requests with
          `use_search_path`. Defaults to the live `sys.path`.
      exclude_paths: Module files below these directories are never handed to
          the handler by the import hook.
  """

  def __init__(self, search_paths: Optional[Sequence[str]] = None, exclude_paths: Optional[Sequence] = None):
    self._search_paths = list(search_paths) if search_paths is not None else None
    self.exclude_paths: List[str] = [os.path.realpath(os.fspath(p)) for p in (exclude_paths or [])]
    self._handler: Optional[LoadHandler] = None
    self._ref_count = 0
    self._lock = threading.RLock()
    self._local = threading.local()
    self._finder = _InterceptingFinder(self)

  # --- Registration ---

  @property
  def is_registered(self) -> bool:
    return self._ref_count > 0

  @property
  def is_suspended(self) -> bool:
    return getattr(self._local, "depth", 0) > 0

  @property
  def state(self) -> InterceptorState:
    if not self.is_registered:
      return InterceptorState.UNREGISTERED
    if self.is_suspended:
      return InterceptorState.SUSPENDED
    return InterceptorState.REGISTERED

  @property
  def handler(self) -> Optional[LoadHandler]:
    return self._handler

  @property
  def finder(self) -> "_InterceptingFinder":
    return self._finder

  def register(self, on_load: LoadHandler) -> Registration:
    """
    Installs the interceptor with `on_load` as its handler.

    Nested calls only bump the reference count; the handler of the outermost
    registration stays in effect.

    Returns:
        Registration: Guard undoing this call.
    """
    with self._lock:
      if self._ref_count == 0:
        self._handler = on_load
        sys.meta_path.insert(0, self._finder)
        importlib.invalidate_caches()
        logger.debug("Load interceptor installed")
      elif on_load is not self._handler:
        logger.debug("Interceptor already registered; keeping the outer handler")
      self._ref_count += 1
    return Registration(self)

  def unregister(self) -> bool:
    """
    Undoes one registration.

    Returns:
        bool: True if the interceptor is no longer installed after this call.
    """
    with self._lock:
      if self._ref_count <= 0:
        return True
      self._ref_count -= 1
      if self._ref_count > 0:
        return False
      sys.meta_path[:] = [f for f in sys.meta_path if f is not self._finder]
      self._handler = None
      importlib.invalidate_caches()
      logger.debug("Load interceptor removed")
      return True

  @contextmanager
  def suspended(self) -> Iterator["LoadInterceptor"]:
    """Disables interception for the current thread for the duration of the block."""
    self._local.depth = getattr(self._local, "depth", 0) + 1
    try:
      yield self
    finally:
      self._local.depth -= 1

  # --- Request handling ---

  def resolve(self, request: OpenRequest) -> str:
    """
    Resolves the request path the way the default open would see it.

    Relative paths of search-path requests are looked up in the search
    locations first; otherwise (or when nothing matches) they resolve against
    the working directory.
    """
    path = request.path
    if request.flags.use_search_path and not os.path.isabs(path):
      locations = self._search_paths if self._search_paths is not None else sys.path
      for base in locations:
        candidate = os.path.join(base or os.getcwd(), path)
        if os.path.isfile(candidate):
          return os.path.abspath(candidate)
    return os.path.abspath(path)

  def is_excluded(self, path: str) -> bool:
    real = os.path.realpath(path)
    return any(real == p or real.startswith(p + os.sep) for p in self.exclude_paths)

  def open(self, request: OpenRequest) -> Optional[LoadedFile]:
    """
    Serves one load request.

    Execution-loads go through the handler while registered; everything else
    (and every handler failure) is served by the default open.

    Returns:
        Optional[LoadedFile]: None only when the default open failed and the
        request does not report errors.

    Raises:
        OSError: From the default open, when `report_errors` is set.
        ChannelFatal: If the handler's isolation channel broke.
        ConfigurationError: If the handler's cache became unusable.
    """
    with self._lock:
      resolved = self.resolve(request)

      if not request.flags.is_execution_load or self._handler is None or self.is_suspended:
        return self._default_open(request, resolved)

      # A missing file reports the open error only, not a failed transform too.
      if not os.path.isfile(resolved):
        return self._default_open(request, resolved)

      outcome = self._run_handler(request, resolved)
      if outcome.is_replaced:
        logger.debug("Serving rewritten source for %s", resolved)
        return LoadedFile.from_content(outcome.content, resolved, binary=request.binary)
      return self._default_open(request, resolved)

  def _run_handler(self, request: OpenRequest, resolved: str) -> TransformOutcome:
    handler = self._handler
    # Reporting stays suspended too: logging may import modules lazily.
    with self.suspended():
      try:
        content = handler.on_load(resolved, request.mode, request.flags)
        if content is not None and not isinstance(content, str):
          raise TypeError(f"Load handler returned {type(content).__name__}, expected str or None")
      except (ChannelFatal, ConfigurationError):
        raise
      except Exception as e:  # noqa: BLE001 - any other handler failure falls back to the real file
        outcome = TransformOutcome.failed(e)
        self._warn_fallback(resolved, outcome)
        return outcome

    if content is None:
      return TransformOutcome.unchanged()
    return TransformOutcome.replaced(content)

  @staticmethod
  def _warn_fallback(resolved: str, outcome: TransformOutcome) -> None:
    message = f"Serving untransformed source for {resolved}: {outcome.error}"
    warnings.warn(message, FallbackWarning, stacklevel=2)
    log_warning(escape(message))

  @staticmethod
  def _default_open(request: OpenRequest, resolved: str) -> Optional[LoadedFile]:
    try:
      stream = default_open(resolved, request.mode)
    except OSError as e:
      if request.flags.report_errors:
        raise
      logger.debug("Default %s failed: %s", describe(request), e)
      return None
    return LoadedFile(stream, resolved)

  def run_path(self, path: str, run_name: str = "__main__") -> dict:
    """
    Execution-loads a script and runs it in a fresh namespace.

    Args:
        path: Script location.
        run_name: Value of `__name__` inside the script.

    Returns:
        dict: The script's globals after execution.
    """
    loaded = self.open(OpenRequest.for_execution(path))
    with loaded:
      source = loaded.read()

    code = compile(source, loaded.opened_path, "exec", dont_inherit=True)
    module = types.ModuleType(run_name)
    module.__file__ = loaded.opened_path
    module.__builtins__ = builtins

    saved = sys.modules.get(run_name)
    sys.modules[run_name] = module
    try:
      exec(code, module.__dict__)
    finally:
      if saved is not None:
        sys.modules[run_name] = saved
      else:
        sys.modules.pop(run_name, None)
    return module.__dict__


class TransformingSourceLoader(importlib.machinery.SourceFileLoader):
  """
  Source loader whose module-source read is an execution-load.

  Bytecode caches are neither read nor written: a cached `.pyc` of the
  original source would bypass the rewrite, and a `.pyc` of rewritten source
  would outlive it.
  """

  def __init__(self, fullname: str, path: str, interceptor: LoadInterceptor):
    super().__init__(fullname, path)
    self.interceptor = interceptor

  def get_data(self, path: str) -> bytes:
    if path != self.path:
      return super().get_data(path)
    loaded = self.interceptor.open(OpenRequest.for_execution(path))
    with loaded:
      return loaded.read()

  def get_code(self, fullname: str) -> types.CodeType:
    source_path = self.get_filename(fullname)
    return self.source_to_code(self.get_data(source_path), source_path)


class _InterceptingFinder(importlib.abc.MetaPathFinder):
  """Meta path entry delegating resolution to `PathFinder` and wrapping source loaders."""

  def __init__(self, interceptor: LoadInterceptor):
    self.interceptor = interceptor

  def find_spec(self, fullname, path=None, target=None):
    interceptor = self.interceptor
    if not interceptor.is_registered or interceptor.is_suspended:
      return None

    spec = importlib.machinery.PathFinder.find_spec(fullname, path, target)
    if spec is None or spec.origin is None:
      return None
    if type(spec.loader) is not importlib.machinery.SourceFileLoader:
      return None
    if interceptor.is_excluded(spec.origin):
      return None

    spec.loader = TransformingSourceLoader(fullname, spec.origin, interceptor)
    return spec
