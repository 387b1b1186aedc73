"""
Pytest Configuration and Fixtures.

Includes:
- Syspath patching for local imports.
- Import-system isolation: every test leaves `sys.meta_path`, `sys.path` and
  `sys.modules` the way it found them.
- A silent console so log output does not clutter the test run.
"""

import io
import sys
from pathlib import Path

import pytest
from rich.console import Console

# Add src to path so we can import 'import_switcheroo' without installing it
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from import_switcheroo.engine.base import RewriteResult  # noqa: E402
from import_switcheroo.utils.console import reset_console, set_console  # noqa: E402


@pytest.fixture(autouse=True)
def isolate_import_system(tmp_path_factory):
  """Restores the import machinery state mutated by interceptor tests."""
  meta_path = list(sys.meta_path)
  path = list(sys.path)
  modules = set(sys.modules)
  base_temp = str(tmp_path_factory.getbasetemp())
  yield
  sys.meta_path[:] = meta_path
  sys.path[:] = path
  # Modules written into tmp_path by a test must be re-imported by the next one.
  for name in set(sys.modules) - modules:
    origin = getattr(sys.modules.get(name), "__file__", None) or ""
    if origin.startswith(base_temp):
      sys.modules.pop(name, None)


@pytest.fixture
def captured_console():
  """Routes console and log output into a buffer; yields the Console."""
  buffer_console = Console(file=io.StringIO(), width=1000, force_terminal=False)
  set_console(buffer_console)
  yield buffer_console
  reset_console()


class StubEngine:
  """
  Engine double returning canned rewrites.

  Args:
      rewrites: Maps a substring of the source to its replacement.
      errors: Errors reported for every file.
  """

  def __init__(self, rewrites=None, errors=None):
    self.rewrites = rewrites or {}
    self.errors = errors or []
    self.calls = []

  def process_file(self, path: str) -> RewriteResult:
    self.calls.append(path)
    original = Path(path).read_text()
    code = original
    for old, new in self.rewrites.items():
      code = code.replace(old, new)
    return RewriteResult(path=path, code=code, changed=code != original, errors=list(self.errors))


@pytest.fixture
def stub_engine_cls():
  return StubEngine
