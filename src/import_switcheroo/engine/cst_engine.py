"""
libcst-based Rewrite Engine.

Parses a file with the grammar of the *source* version, applies the selected
downgrade rules in order, then injects whatever imports the rules requested.
Formatting and comments survive untouched outside rewritten nodes, since
libcst round-trips source exactly.

Errors never escape `process_file`: parse failures and rule crashes are
collected into `RewriteResult.errors` so the caller can fold them into a
single report.
"""

import logging
from pathlib import Path
from typing import List, Type, Union

import libcst as cst
from libcst.codemod import CodemodContext
from libcst.codemod.visitors import AddImportsVisitor

from import_switcheroo.engine.base import EngineConfig, RewriteResult
from import_switcheroo.engine.rules import DowngradeRule, rules_for

logger = logging.getLogger(__name__)


class CstRewriteEngine:
  """
  Rewrites Python source for an older interpreter.

  Args:
      config: Source/target versions and optional rule selection.
  """

  def __init__(self, config: EngineConfig):
    self.config = config
    self.rules: List[Type[DowngradeRule]] = rules_for(config.source_version, config.target_version, config.rules)

  def _parser_config(self) -> cst.PartialParserConfig:
    version = f"{self.config.source.major}.{self.config.source.minor}"
    try:
      return cst.PartialParserConfig(python_version=version)
    except ValueError:
      logger.debug("libcst has no grammar for %s, using its default", version)
      return cst.PartialParserConfig()

  def process_source(self, source: Union[str, bytes], path: str = "<string>") -> RewriteResult:
    """
    Rewrites a source string.

    Args:
        source: Module text. Bytes are decoded honouring PEP 263 declarations.
        path: Reported in the result and in error messages.

    Returns:
        RewriteResult: The rewritten code, or the original plus errors.
    """
    try:
      tree = cst.parse_module(source, config=self._parser_config())
    except cst.ParserSyntaxError as e:
      return RewriteResult(
        path=path,
        code=source if isinstance(source, str) else "",
        errors=[f"Syntax error at line {e.raw_line}, column {e.raw_column}: {e.message}"],
      )

    original = tree.code
    if not self.rules:
      return RewriteResult(path=path, code=original)

    context = CodemodContext(filename=path)
    errors: List[str] = []
    for rule in self.rules:
      try:
        tree = rule(context).transform_module(tree)
      except Exception as e:  # noqa: BLE001 - reported per rule
        errors.append(f"Rule '{rule.name}' failed: {e}")

    if errors:
      return RewriteResult(path=path, code=original, errors=errors)

    try:
      tree = AddImportsVisitor(context).transform_module(tree)
    except Exception as e:  # noqa: BLE001
      return RewriteResult(path=path, code=original, errors=[f"Import injection failed: {e}"])

    code = tree.code
    return RewriteResult(path=path, code=code, changed=code != original)

  def process_file(self, path: str) -> RewriteResult:
    """
    Rewrites the file at `path`.

    Args:
        path: A resolved file system path.

    Returns:
        RewriteResult: See `process_source`.
    """
    try:
      data = Path(path).read_bytes()
    except OSError as e:
      return RewriteResult(path=path, errors=[f"Cannot read file: {e}"])

    logger.debug("Rewriting %s with %s", path, [r.name for r in self.rules])
    return self.process_source(data, path=path)
