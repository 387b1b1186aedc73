"""
Runtime Configuration Store.

Settings come from the ``[tool.import_switcheroo]`` table of the nearest
``pyproject.toml`` and can be overridden by keyword arguments (the CLI passes
its flags through here)::

    [tool.import_switcheroo]
    source_version = 31200
    cache_directory = ".switcheroo-cache"
    isolation = "fork"
"""

import sys
import sysconfig
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator

from import_switcheroo.errors import ConfigurationError
from import_switcheroo.versions import VersionDescriptor, is_transform_needed

if sys.version_info >= (3, 11):
  import tomllib
else:
  import tomli as tomllib

TOOL_SECTION = "import_switcheroo"
ISOLATION_MODES = ("inline", "auto", "fork", "spawn")


def _current_version_id() -> int:
  return VersionDescriptor.current().version_id


def default_exclude_paths() -> List[Path]:
  """The interpreter's own standard library never needs rewriting."""
  paths = []
  for key in ("stdlib", "platstdlib"):
    location = sysconfig.get_paths().get(key)
    if location:
      resolved = Path(location).resolve()
      if resolved not in paths:
        paths.append(resolved)
  return paths


class SwitcherooConfig(BaseModel):
  """
  Global configuration container for the interception pipeline.
  """

  source_version: int = Field(default_factory=_current_version_id, ge=0, description="Version id the code targets.")
  target_version: int = Field(default_factory=_current_version_id, ge=0, description="Version id running the code.")
  cache_directory: Optional[Path] = Field(None, description="Rewrite cache location. None disables caching.")
  check_mtime: bool = Field(True, description="Ignore cache entries older than their source file.")
  isolation: str = Field("auto", description="'inline', or the isolation channel: 'auto', 'fork', 'spawn'.")
  liveness_interval: float = Field(1.0, gt=0, description="Seconds between worker liveness checks.")
  rules: Optional[List[str]] = Field(None, description="Explicit rule selection. None means all applicable rules.")
  exclude_paths: List[Path] = Field(default_factory=default_exclude_paths, description="Never rewrite below these.")

  @field_validator("isolation")
  @classmethod
  def validate_isolation(cls, v: str) -> str:
    """
    Normalizes and checks the isolation mode.

    Raises:
        ValueError: If the mode is unknown.
    """
    v_clean = v.lower().strip()
    if v_clean not in ISOLATION_MODES:
      raise ValueError(f"Unknown isolation mode: '{v_clean}'. Supported modes: {list(ISOLATION_MODES)}")
    return v_clean

  @property
  def source(self) -> VersionDescriptor:
    return VersionDescriptor.from_version_id(self.source_version)

  @property
  def target(self) -> VersionDescriptor:
    return VersionDescriptor.from_version_id(self.target_version)

  @property
  def transform_needed(self) -> bool:
    return is_transform_needed(self.source_version, self.target_version)

  @classmethod
  def load(
    cls,
    source_version: Optional[int] = None,
    target_version: Optional[int] = None,
    cache_directory: Optional[Path] = None,
    isolation: Optional[str] = None,
    rules: Optional[List[str]] = None,
    search_path: Optional[Path] = None,
  ) -> "SwitcherooConfig":
    """
    Loads configuration from pyproject.toml and overrides with explicit arguments.

    Args:
        source_version (Optional[int]): Override for the source version id.
        target_version (Optional[int]): Override for the target version id.
        cache_directory (Optional[Path]): Override for the cache directory.
        isolation (Optional[str]): Override for the isolation mode.
        rules (Optional[List[str]]): Override for the rule selection.
        search_path (Optional[Path]): Directory to start searching for TOML config.

    Returns:
        SwitcherooConfig: The fully resolved configuration object.

    Raises:
        ConfigurationError: If the merged values fail validation.
    """
    start_dir = search_path or Path.cwd()
    toml_config, toml_dir = _load_toml_settings(start_dir)

    values: Dict[str, Any] = dict(toml_config)

    # Relative paths in the TOML file are relative to that file.
    if toml_dir is not None:
      if values.get("cache_directory"):
        values["cache_directory"] = (toml_dir / Path(values["cache_directory"])).resolve()
      if "exclude_paths" in values:
        values["exclude_paths"] = [(toml_dir / Path(p)).resolve() for p in values["exclude_paths"]]

    overrides = {
      "source_version": source_version,
      "target_version": target_version,
      "cache_directory": cache_directory,
      "isolation": isolation,
      "rules": rules,
    }
    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
      return cls(**values)
    except ValidationError as e:
      raise ConfigurationError(f"Invalid import-switcheroo configuration: {e}") from e


def _load_toml_settings(start_path: Path) -> Tuple[Dict[str, Any], Optional[Path]]:
  """
  Recursively searches parents for 'pyproject.toml' and extracts config.

  Args:
      start_path (Path): Directory to start search from.

  Returns:
      Tuple[Dict, Optional[Path]]: The config dict and the directory it was found in.
  """
  current = start_path.resolve()

  for parent in [current, *current.parents]:
    toml_path = parent / "pyproject.toml"
    if toml_path.exists() and toml_path.is_file():
      try:
        with open(toml_path, "rb") as f:
          data = tomllib.load(f)
      except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigurationError(f"Cannot read {toml_path}: {e}") from e

      section = data.get("tool", {}).get(TOOL_SECTION)
      if section is not None:
        return section, parent

  return {}, None
