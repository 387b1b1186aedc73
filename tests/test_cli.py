"""
Tests for the command line interface.
"""

import pytest

from import_switcheroo import __version__
from import_switcheroo.cache import ContentCache
from import_switcheroo.cli.__main__ import main


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch, captured_console):
  """No pyproject.toml of the surrounding checkout leaks into the CLI."""
  (tmp_path / "pyproject.toml").write_text('[tool.import_switcheroo]\nisolation = "inline"\n')
  monkeypatch.chdir(tmp_path)
  return tmp_path


def test_version(capsys):
  with pytest.raises(SystemExit) as excinfo:
    main(["--version"])
  assert excinfo.value.code == 0
  assert __version__ in capsys.readouterr().out


def test_command_required():
  with pytest.raises(SystemExit) as excinfo:
    main([])
  assert excinfo.value.code == 2


def test_check_needed(captured_console):
  assert main(["check", "--source", "31200", "--target", "30800"]) == 0
  assert "rewrite needed" in captured_console.file.getvalue()
  assert "DOWN_TO_PY38" in captured_console.file.getvalue()


def test_check_compatible(captured_console):
  assert main(["check", "--source", "30812", "--target", "30801"]) == 0
  assert "no rewrite needed" in captured_console.file.getvalue()


def test_transform_prints_rewritten_source(tmp_path, capsys):
  source = tmp_path / "modern.py"
  source.write_text("def f(x: int | None): pass\n")

  assert main(["transform", str(source), "--source", "31200", "--target", "30800"]) == 0

  out = capsys.readouterr().out
  assert "def f(x: Optional[int]): pass" in out
  assert "from typing import Optional" in out


def test_transform_rule_selection(tmp_path, capsys):
  source = tmp_path / "modern.py"
  source.write_text("a: list[int] | None = None\n")
  assert main(["transform", str(source), "--source", "31200", "--target", "30800", "--rules", "pep604_unions"]) == 0
  assert "Optional[list[int]]" in capsys.readouterr().out


def test_transform_missing_file(tmp_path, captured_console):
  assert main(["transform", str(tmp_path / "nope.py")]) == 1
  assert "Input not found" in captured_console.file.getvalue()


def test_transform_syntax_error(tmp_path, captured_console):
  source = tmp_path / "broken.py"
  source.write_text("def broken(:\n")
  assert main(["transform", str(source), "--source", "31200", "--target", "30800"]) == 1
  assert "Syntax error" in captured_console.file.getvalue()


def test_transform_unknown_rule(tmp_path, captured_console):
  source = tmp_path / "modern.py"
  source.write_text("x = 1\n")
  assert main(["transform", str(source), "--source", "31200", "--target", "30800", "--rules", "bogus"]) == 1
  assert "Unknown rules" in captured_console.file.getvalue()


def test_run_executes_script_with_rewriting(tmp_path, capsys):
  (tmp_path / "helper_mod.py").write_text("def strip(s, p):\n    return s.removeprefix(p)\n")
  script = tmp_path / "app.py"
  script.write_text(
    "import sys\n"
    "import helper_mod\n"
    "print('args', sys.argv[1:])\n"
    "print('lowered', 'removeprefix' not in helper_mod.strip.__code__.co_names)\n"
    "print('name', __name__)\n"
  )

  code = main(["run", "--source", "31200", "--target", "30800", "--cache-dir", str(tmp_path / "c"), str(script)])

  out = capsys.readouterr().out
  assert code == 0
  assert "args []" in out
  assert "lowered True" in out
  assert "name __main__" in out


def test_run_passes_arguments_and_exit_code(tmp_path, capsys):
  script = tmp_path / "exits.py"
  script.write_text("import sys\nprint(sys.argv[1:])\nraise SystemExit(3)\n")

  code = main(["run", "--source", "31200", "--target", "30800", str(script), "one", "--two"])

  assert code == 3
  assert "['one', '--two']" in capsys.readouterr().out


def test_run_missing_script(tmp_path, captured_console):
  assert main(["run", str(tmp_path / "missing.py")]) == 1
  assert "Script not found" in captured_console.file.getvalue()


def test_cache_clear(tmp_path, captured_console):
  cache_dir = tmp_path / "cache"
  source = tmp_path / "mod.py"
  source.write_text("")
  ContentCache(cache_dir).put(source, "cached")

  assert main(["cache-clear", "--cache-dir", str(cache_dir)]) == 0
  assert "Removed 1 cache entries" in captured_console.file.getvalue()
  assert ContentCache(cache_dir).get(source) is None


def test_cache_clear_without_cache(captured_console):
  assert main(["cache-clear"]) == 0
  assert "No cache directory configured" in captured_console.file.getvalue()
