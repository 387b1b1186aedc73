"""
Rewrite Engine Contract.

The interception core only ever talks to an engine through `process_file`.
Everything else about the engine (grammar, rules, target version) travels in
an `EngineConfig` the core never interprets.
"""

from typing import List, Optional, Protocol

from pydantic import BaseModel, Field, model_validator

from import_switcheroo.versions import VersionDescriptor, rule_set_name


class RewriteResult(BaseModel):
  """
  Outcome of running the engine over one file.
  """

  path: str = Field(..., description="The file that was processed.")
  code: str = Field(default="", description="The rewritten source (or the original when unchanged).")
  changed: bool = Field(default=False, description="True if `code` differs from the file on disk.")
  errors: List[str] = Field(default_factory=list, description="Per-file errors reported by the engine.")

  @property
  def has_errors(self) -> bool:
    return len(self.errors) > 0


class EngineConfig(BaseModel):
  """
  Engine configuration.

  `rule_set` defaults to the downgrade set matching the target version
  (e.g. ``DOWN_TO_PY38``); `rules`, when given, restricts the engine to those
  rule names.
  """

  source_version: int = Field(..., ge=0, description="Version id the code is written for.")
  target_version: int = Field(..., ge=0, description="Version id that will execute the code.")
  rule_set: Optional[str] = Field(None, description="Opaque rule-set identifier.")
  rules: Optional[List[str]] = Field(None, description="Explicit rule selection by name.")

  @model_validator(mode="after")
  def _default_rule_set(self) -> "EngineConfig":
    if self.rule_set is None:
      self.rule_set = rule_set_name(self.target_version)
    return self

  @property
  def source(self) -> VersionDescriptor:
    return VersionDescriptor.from_version_id(self.source_version)

  @property
  def target(self) -> VersionDescriptor:
    return VersionDescriptor.from_version_id(self.target_version)


class RewriteEngine(Protocol):
  """Anything that can rewrite a source file."""

  def process_file(self, path: str) -> RewriteResult: ...
