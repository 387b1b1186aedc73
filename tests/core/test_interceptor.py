"""
Tests for the load interceptor: registration, request routing, suspension
and fallback.
"""

import importlib
import shutil
import sys
import threading
import warnings

import pytest

from import_switcheroo.cache import ContentCache
from import_switcheroo.core.interceptor import InterceptorState, LoadInterceptor, TransformingSourceLoader
from import_switcheroo.core.processor import InProcessProcessor, ProcessorLoadHandler
from import_switcheroo.core.requests import OpenFlags, OpenRequest
from import_switcheroo.errors import ChannelFatal, ConfigurationError, FallbackWarning


class RecordingHandler:
  """Load handler double. `result` may be a string, None, or an exception to raise."""

  def __init__(self, result=None, interceptor=None):
    self.result = result
    self.interceptor = interceptor
    self.calls = []
    self.suspended_during_call = []

  def on_load(self, path, mode, flags):
    self.calls.append(path)
    if self.interceptor is not None:
      self.suspended_during_call.append(self.interceptor.is_suspended)
    if isinstance(self.result, BaseException):
      raise self.result
    if callable(self.result):
      return self.result(path)
    return self.result


@pytest.fixture
def interceptor():
  return LoadInterceptor()


@pytest.fixture
def script(tmp_path):
  path = tmp_path / "script.py"
  path.write_text("ORIGINAL = True\n")
  return path


def read(interceptor, request):
  loaded = interceptor.open(request)
  with loaded:
    return loaded.read()


def test_nested_registration_restores_meta_path(interceptor):
  """N registrations and N releases leave the import system as it was."""
  before = list(sys.meta_path)
  handler = RecordingHandler()

  registrations = [interceptor.register(handler) for _ in range(3)]
  assert sys.meta_path[0] is interceptor.finder
  assert sys.meta_path.count(interceptor.finder) == 1

  assert registrations[0].release() is False
  assert registrations[1].release() is False
  assert interceptor.is_registered
  assert registrations[2].release() is True

  assert sys.meta_path == before
  assert interceptor.state is InterceptorState.UNREGISTERED
  assert interceptor.handler is None


def test_release_is_idempotent(interceptor):
  outer = interceptor.register(RecordingHandler())
  inner = interceptor.register(RecordingHandler())
  inner.release()
  inner.release()
  assert interceptor.is_registered
  outer.release()
  assert not interceptor.is_registered


def test_unregister_when_not_registered(interceptor):
  assert interceptor.unregister() is True


def test_registration_as_context_manager(interceptor):
  with interceptor.register(RecordingHandler()):
    assert interceptor.state is InterceptorState.REGISTERED
  assert interceptor.finder not in sys.meta_path


def test_outer_handler_kept(interceptor, script):
  outer = RecordingHandler("OUTER = 1\n")
  with interceptor.register(outer):
    with interceptor.register(RecordingHandler("INNER = 1\n")):
      assert read(interceptor, OpenRequest.for_execution(script)) == b"OUTER = 1\n"


def test_execution_load_served_from_handler(interceptor, script):
  handler = RecordingHandler("REWRITTEN = True\n")
  with interceptor.register(handler):
    loaded = interceptor.open(OpenRequest.for_execution(script))
  with loaded:
    assert loaded.read() == b"REWRITTEN = True\n"
  assert loaded.transformed
  assert loaded.opened_path == str(script)
  assert handler.calls == [str(script)]


def test_text_mode_served_as_text(interceptor, script):
  with interceptor.register(RecordingHandler("REWRITTEN = True\n")):
    assert read(interceptor, OpenRequest.for_execution(script, mode="r")) == "REWRITTEN = True\n"


def test_handler_none_serves_real_file(interceptor, script):
  with interceptor.register(RecordingHandler(None)):
    loaded = interceptor.open(OpenRequest.for_execution(script))
  with loaded:
    assert loaded.read() == b"ORIGINAL = True\n"
  assert not loaded.transformed


def test_plain_open_bypasses_handler(interceptor, script):
  handler = RecordingHandler("NEVER\n")
  with interceptor.register(handler):
    assert read(interceptor, OpenRequest(path=str(script))) == b"ORIGINAL = True\n"
  assert handler.calls == []


def test_unregistered_interceptor_serves_real_file(interceptor, script):
  assert read(interceptor, OpenRequest.for_execution(script)) == b"ORIGINAL = True\n"


def test_handler_runs_suspended(interceptor, script, tmp_path):
  """Loads made from inside the handler reach the real file system."""
  nested = tmp_path / "nested.py"
  nested.write_text("NESTED = True\n")

  def rewrite(path):
    assert read(interceptor, OpenRequest.for_execution(nested)) == b"NESTED = True\n"
    return "OUTER = True\n"

  handler = RecordingHandler(rewrite, interceptor=interceptor)
  with interceptor.register(handler):
    assert read(interceptor, OpenRequest.for_execution(script)) == b"OUTER = True\n"
    assert not interceptor.is_suspended

  assert handler.calls == [str(script)]
  assert handler.suspended_during_call == [True]


def test_suspension_restored_after_failure(interceptor, script):
  with interceptor.register(RecordingHandler(RuntimeError("engine down"))):
    with pytest.warns(FallbackWarning):
      interceptor.open(OpenRequest.for_execution(script)).close()
    assert not interceptor.is_suspended
    assert interceptor.state is InterceptorState.REGISTERED


def test_suspended_context_manager_unwinds_on_exception(interceptor):
  with pytest.raises(ValueError):
    with interceptor.suspended():
      assert interceptor.is_suspended
      raise ValueError
  assert not interceptor.is_suspended


def test_suspension_is_per_thread(interceptor):
  seen = []
  with interceptor.suspended():
    worker = threading.Thread(target=lambda: seen.append(interceptor.is_suspended))
    worker.start()
    worker.join()
  assert seen == [False]


def test_handler_failure_falls_back_with_warning(interceptor, script, captured_console):
  """A failing transform still serves the untransformed source."""
  with interceptor.register(RecordingHandler(RuntimeError("cannot rewrite"))):
    with pytest.warns(FallbackWarning, match="cannot rewrite"):
      content = read(interceptor, OpenRequest.for_execution(script))
  assert content == b"ORIGINAL = True\n"
  assert "cannot rewrite" in captured_console.file.getvalue()


def test_non_string_handler_result_falls_back(interceptor, script):
  with interceptor.register(RecordingHandler(lambda path: b"bytes")):
    with pytest.warns(FallbackWarning, match="expected str or None"):
      assert read(interceptor, OpenRequest.for_execution(script)) == b"ORIGINAL = True\n"


def test_channel_fatal_propagates(interceptor, script):
  with interceptor.register(RecordingHandler(ChannelFatal("worker vanished"))):
    with pytest.raises(ChannelFatal):
      interceptor.open(OpenRequest.for_execution(script))
    assert not interceptor.is_suspended


def test_unusable_cache_propagates(interceptor, script, tmp_path, stub_engine_cls):
  """Losing the cache directory is a configuration problem, not a failed transform."""
  cache = ContentCache(tmp_path / "cache")
  shutil.rmtree(cache.directory)
  handler = ProcessorLoadHandler(InProcessProcessor(stub_engine_cls({"ORIGINAL": "REWRITTEN"}), cache))

  with interceptor.register(handler):
    with warnings.catch_warnings():
      warnings.simplefilter("error", FallbackWarning)
      with pytest.raises(ConfigurationError, match="Cannot write cache entry"):
        interceptor.open(OpenRequest.for_execution(script))
    assert not interceptor.is_suspended


def test_missing_file_raises(interceptor, tmp_path):
  with interceptor.register(RecordingHandler(None)):
    with pytest.raises(FileNotFoundError):
      interceptor.open(OpenRequest.for_execution(tmp_path / "missing.py"))
  assert not interceptor.is_suspended


def test_missing_file_skips_handler(interceptor, tmp_path):
  handler = RecordingHandler("REWRITTEN = True\n")
  with interceptor.register(handler):
    with warnings.catch_warnings():
      warnings.simplefilter("error", FallbackWarning)
      with pytest.raises(FileNotFoundError):
        interceptor.open(OpenRequest.for_execution(tmp_path / "missing.py"))
  assert handler.calls == []


def test_missing_file_silent_without_report_errors(interceptor, tmp_path):
  request = OpenRequest(path=str(tmp_path / "missing.py"), flags=OpenFlags(report_errors=False))
  assert interceptor.open(request) is None


def test_search_path_resolution(tmp_path):
  lib = tmp_path / "lib"
  lib.mkdir()
  (lib / "helper.py").write_text("HELPER = 1\n")
  interceptor = LoadInterceptor(search_paths=[str(tmp_path / "empty"), str(lib)])
  handler = RecordingHandler(None)

  with interceptor.register(handler):
    loaded = interceptor.open(OpenRequest.for_execution("helper.py", use_search_path=True))
  loaded.close()

  assert loaded.opened_path == str(lib / "helper.py")
  assert handler.calls == [str(lib / "helper.py")]


def test_import_goes_through_handler(interceptor, tmp_path):
  (tmp_path / "legacy_mod.py").write_text("VALUE = 1\n")
  sys.path.insert(0, str(tmp_path))
  handler = RecordingHandler(lambda path: "VALUE = 2\n" if path.endswith("legacy_mod.py") else None)

  with interceptor.register(handler):
    module = importlib.import_module("legacy_mod")

  assert module.VALUE == 2
  assert isinstance(module.__spec__.loader, TransformingSourceLoader)
  assert module.__file__ == str(tmp_path / "legacy_mod.py")


def test_import_of_package_module(interceptor, tmp_path):
  package = tmp_path / "legacy_pkg"
  package.mkdir()
  (package / "__init__.py").write_text("NAME = 'pkg'\n")
  (package / "sub.py").write_text("NAME = 'sub'\n")
  sys.path.insert(0, str(tmp_path))

  with interceptor.register(RecordingHandler(lambda path: "NAME = 'rewritten'\n")):
    sub = importlib.import_module("legacy_pkg.sub")

  assert sub.NAME == "rewritten"
  assert sys.modules["legacy_pkg"].NAME == "rewritten"


def test_excluded_paths_not_intercepted(tmp_path):
  vendored = tmp_path / "vendored"
  vendored.mkdir()
  (vendored / "vendored_mod.py").write_text("VALUE = 1\n")
  sys.path.insert(0, str(vendored))
  interceptor = LoadInterceptor(exclude_paths=[vendored])
  handler = RecordingHandler("VALUE = 2\n")

  with interceptor.register(handler):
    module = importlib.import_module("vendored_mod")

  assert module.VALUE == 1
  assert handler.calls == []


def test_import_failure_falls_back(interceptor, tmp_path):
  (tmp_path / "fragile_mod.py").write_text("VALUE = 'original'\n")
  sys.path.insert(0, str(tmp_path))

  with interceptor.register(RecordingHandler(RuntimeError("no luck"))):
    with pytest.warns(FallbackWarning):
      module = importlib.import_module("fragile_mod")

  assert module.VALUE == "original"


def test_run_path(interceptor, tmp_path):
  script = tmp_path / "main_script.py"
  script.write_text("RESULT = __name__\n")

  with interceptor.register(RecordingHandler(lambda path: "RESULT = 'rewritten ' + __name__\n")):
    namespace = interceptor.run_path(str(script))

  assert namespace["RESULT"] == "rewritten __main__"
  assert namespace["__file__"] == str(script)
  assert sys.modules["__main__"].__name__ == "__main__"
