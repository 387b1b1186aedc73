"""
CLI Command Handlers.

Each handler takes already-parsed arguments and returns a process exit code.
Failures are reported through the console helpers rather than tracebacks.
"""

import sys
from pathlib import Path
from typing import List, Optional

from rich.markup import escape

from import_switcheroo.cache import ContentCache
from import_switcheroo.config import SwitcherooConfig
from import_switcheroo.core.activation import Switcheroo
from import_switcheroo.engine import CstRewriteEngine, EngineConfig
from import_switcheroo.errors import SwitcherooError
from import_switcheroo.utils.console import get_console, log_error, log_info, log_success
from import_switcheroo.versions import rule_set_name


def handle_check(source: Optional[int], target: Optional[int]) -> int:
  """
  Reports whether code written for `source` must be rewritten to run on `target`.

  Returns:
      int: 0 when the gate could be evaluated, 1 on configuration errors.
  """
  try:
    config = SwitcherooConfig.load(source_version=source, target_version=target)
  except SwitcherooError as e:
    log_error(escape(str(e)))
    return 1

  if config.transform_needed:
    log_info(
      f"[version]{config.source}[/version] -> [version]{config.target}[/version]: "
      f"rewrite needed ([rule]{rule_set_name(config.target_version)}[/rule])."
    )
  else:
    log_success(
      f"[version]{config.source}[/version] -> [version]{config.target}[/version]: compatible, no rewrite needed."
    )
  return 0


def handle_transform(path: Path, source: Optional[int], target: Optional[int], rules: Optional[List[str]]) -> int:
  """
  Prints the rewritten form of a single file to stdout.

  Returns:
      int: 0 on success, 1 if the file is missing or the engine reported errors.
  """
  if not path.exists():
    log_error(f"Input not found: {escape(str(path))}")
    return 1

  try:
    config = SwitcherooConfig.load(source_version=source, target_version=target, rules=rules)
    engine = CstRewriteEngine(
      EngineConfig(source_version=config.source_version, target_version=config.target_version, rules=config.rules)
    )
  except SwitcherooError as e:
    log_error(escape(str(e)))
    return 1

  result = engine.process_file(str(path))
  if result.has_errors:
    for error in result.errors:
      log_error(escape(error))
    return 1

  sys.stdout.write(result.code)
  if not result.changed:
    log_info(f"No rules applied to {escape(str(path))}.")
  return 0


def handle_run(
  script: Path,
  script_args: List[str],
  source: Optional[int],
  target: Optional[int],
  cache_dir: Optional[Path],
  isolation: Optional[str],
) -> int:
  """
  Executes `script` as ``__main__`` with import rewriting enabled.

  Returns:
      int: The script's exit code, or 1 if the pipeline could not start.
  """
  if not script.is_file():
    log_error(f"Script not found: {escape(str(script))}")
    return 1

  try:
    config = SwitcherooConfig.load(
      source_version=source, target_version=target, cache_directory=cache_dir, isolation=isolation
    )
  except SwitcherooError as e:
    log_error(escape(str(e)))
    return 1

  switcheroo = Switcheroo(config)
  saved_argv = sys.argv[:]
  saved_path = sys.path[:]
  sys.argv = [str(script), *script_args]
  sys.path.insert(0, str(script.resolve().parent))
  try:
    switcheroo.enable()
    switcheroo.interceptor.run_path(str(script))
  except SystemExit as e:
    if e.code is None:
      return 0
    return e.code if isinstance(e.code, int) else 1
  except SwitcherooError as e:
    with switcheroo.interceptor.suspended():
      log_error(escape(str(e)))
    return 1
  finally:
    switcheroo.disable()
    sys.argv = saved_argv
    sys.path[:] = saved_path
  return 0


def handle_cache_clear(cache_dir: Optional[Path]) -> int:
  """
  Deletes every entry in the configured cache directory.

  Returns:
      int: 0 on success (including "no cache configured"), 1 on errors.
  """
  try:
    config = SwitcherooConfig.load(cache_directory=cache_dir)
    if config.cache_directory is None:
      log_info("No cache directory configured.")
      return 0
    removed = ContentCache(config.cache_directory).clear()
  except (SwitcherooError, OSError) as e:
    log_error(escape(str(e)))
    return 1

  get_console().print(f"Removed {removed} cache entries from [path]{escape(str(config.cache_directory))}[/path].")
  return 0
