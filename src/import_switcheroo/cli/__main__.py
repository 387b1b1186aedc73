"""
Main Entry Point for the import-switcheroo CLI.

Handles argument parsing and dispatches to the handlers in
`import_switcheroo.cli.commands`.
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from import_switcheroo import __version__
from import_switcheroo.cli import commands
from import_switcheroo.config import ISOLATION_MODES


def _add_version_args(parser: argparse.ArgumentParser) -> None:
  parser.add_argument("--source", type=int, default=None, help="Source version id, e.g. 31200 (default: from toml)")
  parser.add_argument("--target", type=int, default=None, help="Target version id (default: running interpreter)")


def main(argv: Optional[List[str]] = None) -> int:
  """
  Main CLI entry point.

  Args:
      argv: Optional list of command line arguments (defaults to sys.argv).

  Returns:
      int: Exit code (0 for success, non-zero for failure).
  """
  parser = argparse.ArgumentParser(description="import-switcheroo: rewrite Python modules on import")
  parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

  subparsers = parser.add_subparsers(dest="command", required=True)

  # --- Command: CHECK ---
  cmd_check = subparsers.add_parser("check", help="Report whether source code needs rewriting for the target")
  _add_version_args(cmd_check)

  # --- Command: TRANSFORM ---
  cmd_tr = subparsers.add_parser("transform", help="Print the rewritten source of a file")
  cmd_tr.add_argument("path", type=Path, help="Python source file")
  _add_version_args(cmd_tr)
  cmd_tr.add_argument("--rules", nargs="+", default=None, help="Restrict to these rule names")

  # --- Command: RUN ---
  cmd_run = subparsers.add_parser(
    "run", help="Run a script with import rewriting enabled (options go before SCRIPT)"
  )
  cmd_run.add_argument("script", type=Path, help="Script to execute")
  cmd_run.add_argument("args", nargs=argparse.REMAINDER, help="Arguments passed to the script")
  _add_version_args(cmd_run)
  cmd_run.add_argument("--cache-dir", type=Path, default=None, help="Cache directory for rewritten sources")
  cmd_run.add_argument("--isolation", choices=ISOLATION_MODES, default=None, help="Where the engine runs")

  # --- Command: CACHE-CLEAR ---
  cmd_cc = subparsers.add_parser("cache-clear", help="Delete every cached rewrite")
  cmd_cc.add_argument("--cache-dir", type=Path, default=None, help="Cache directory (default: from toml)")

  args = parser.parse_args(argv)

  if args.command == "check":
    return commands.handle_check(args.source, args.target)

  elif args.command == "transform":
    return commands.handle_transform(args.path, args.source, args.target, args.rules)

  elif args.command == "run":
    return commands.handle_run(args.script, args.args, args.source, args.target, args.cache_dir, args.isolation)

  elif args.command == "cache-clear":
    return commands.handle_cache_clear(args.cache_dir)

  return 0


if __name__ == "__main__":
  sys.exit(main())
