"""
Source rewrite engine used behind the transform processors.
"""

from import_switcheroo.engine.base import EngineConfig, RewriteEngine, RewriteResult
from import_switcheroo.engine.cst_engine import CstRewriteEngine
from import_switcheroo.engine.rules import DowngradeRule, available_rules, register_rule, rules_for

__all__ = [
  "CstRewriteEngine",
  "DowngradeRule",
  "EngineConfig",
  "RewriteEngine",
  "RewriteResult",
  "available_rules",
  "register_rule",
  "rules_for",
]
