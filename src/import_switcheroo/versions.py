"""
Interpreter Version Descriptors and the Compatibility Gate.

Versions are handled as integer ids in the form ``major * 10000 + minor * 100
+ patch`` (e.g. ``31012`` for Python 3.10.12). The *feature level* of a
version is its ``major.minor`` fingerprint with the patch zeroed
(``31000``). Two versions sharing a feature level are bidirectionally
compatible and need no source rewriting.
"""

import sys
from typing import Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


def major_from_version_id(version_id: int) -> int:
  """Returns the major component, e.g. ``3`` for ``31012``."""
  return version_id // 10000


def minor_from_version_id(version_id: int) -> int:
  """Returns the minor component, e.g. ``10`` for ``31012``."""
  return (version_id % 10000) // 100


def patch_from_version_id(version_id: int) -> int:
  """Returns the patch component, e.g. ``12`` for ``31012``."""
  return version_id % 100


def feature_level_from_version_id(version_id: int) -> int:
  """
  Returns the patch-insensitive feature level.

  Args:
      version_id (int): A version id, e.g. ``31012``.

  Returns:
      int: The feature level, e.g. ``31000``.
  """
  return 100 * ((version_id % 100000) // 100)


def version_id_from_info(info: Tuple[int, ...]) -> int:
  """
  Converts a ``sys.version_info`` style tuple into a version id.

  Args:
      info: At least ``(major, minor)``; a missing micro counts as zero.

  Returns:
      int: The version id.
  """
  major, minor = info[0], info[1]
  micro = info[2] if len(info) > 2 else 0
  return major * 10000 + minor * 100 + micro


class VersionDescriptor(BaseModel):
  """
  An interpreter version decomposed from its integer id.

  All components are derived from `version_id`; constructing a descriptor
  with only the id fills in the rest.
  """

  model_config = ConfigDict(frozen=True)

  version_id: int = Field(..., ge=0, description="Integer id, e.g. 30812 for 3.8.12.")
  major: int = 0
  minor: int = 0
  patch: int = 0
  feature_level: int = 0

  @model_validator(mode="before")
  @classmethod
  def _derive_components(cls, data):
    if isinstance(data, dict) and "version_id" in data:
      vid = data["version_id"]
      if isinstance(vid, int) and vid >= 0:
        data = {
          **data,
          "major": major_from_version_id(vid),
          "minor": minor_from_version_id(vid),
          "patch": patch_from_version_id(vid),
          "feature_level": feature_level_from_version_id(vid),
        }
    return data

  @classmethod
  def from_version_id(cls, version_id: int) -> "VersionDescriptor":
    """
    Builds a descriptor from an integer id.

    Raises:
        ValueError: If the id is negative.
    """
    if version_id < 0:
      raise ValueError(f"Version id must be non-negative, got {version_id}")
    return cls(version_id=version_id)

  @classmethod
  def current(cls) -> "VersionDescriptor":
    """Returns the descriptor of the running interpreter."""
    return cls(version_id=version_id_from_info(tuple(sys.version_info)))

  @property
  def major_minor(self) -> str:
    """Compact ``major.minor`` string, e.g. ``"38"`` for 3.8.12."""
    return f"{self.major}{self.minor}"

  def __str__(self) -> str:
    return f"{self.major}.{self.minor}.{self.patch}"

  def compare(self, other: "VersionDescriptor") -> int:
    """Three-way comparison of the full version ids."""
    return (self.version_id > other.version_id) - (self.version_id < other.version_id)

  def compare_major(self, other: "VersionDescriptor") -> int:
    """Three-way comparison of the major components only."""
    return (self.major > other.major) - (self.major < other.major)

  def compare_minor(self, other: "VersionDescriptor") -> int:
    """Three-way comparison of ``major.minor``."""
    by_major = self.compare_major(other)
    if by_major != 0:
      return by_major
    return (self.minor > other.minor) - (self.minor < other.minor)

  def is_bidirectionally_compatible_with(self, other: "VersionDescriptor") -> bool:
    """True if both versions share a feature level."""
    return self.feature_level == other.feature_level

  def is_backwards_compatible_with(self, other: "VersionDescriptor") -> bool:
    """
    True if code written for `other` runs on this version.

    Only the major component and patch ordering are considered; Python does
    not follow SemVer strictly, so this is a heuristic.
    """
    return self.compare_major(other) == 0 and self.patch >= other.patch

  def is_forward_compatible_with(self, other: "VersionDescriptor") -> bool:
    """Mirror of `is_backwards_compatible_with`."""
    return self.compare_major(other) == 0 and self.patch <= other.patch


VersionLike = Union[int, VersionDescriptor]


def as_descriptor(version: VersionLike) -> VersionDescriptor:
  """Coerces a version id or descriptor into a descriptor."""
  if isinstance(version, VersionDescriptor):
    return version
  return VersionDescriptor.from_version_id(version)


def is_transform_needed(source: VersionLike, target: VersionLike) -> bool:
  """
  Decides whether source written for `source` must be rewritten to run on `target`.

  Args:
      source: The version the code was written for.
      target: The version that will execute the code.

  Returns:
      bool: True unless both versions share a feature level.
  """
  return not as_descriptor(source).is_bidirectionally_compatible_with(as_descriptor(target))


def rule_set_name(target: VersionLike) -> str:
  """
  Names the downgrade rule-set matching a target version.

  The name is opaque to the interception core; it is forwarded to the rewrite
  engine as configuration.

  Returns:
      str: e.g. ``"DOWN_TO_PY38"``.
  """
  return f"DOWN_TO_PY{as_descriptor(target).major_minor}"
