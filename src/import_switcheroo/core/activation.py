"""
Bootstrap Facade.

Wires the whole pipeline from a `SwitcherooConfig`:

1. The compatibility gate decides whether any rewriting is needed.
2. If so, a `CstRewriteEngine` is configured with the downgrade rule-set for
   the target version.
3. The engine is wrapped in a processor (in-process or isolated) fronted by
   the content cache.
4. The processor is registered with a `LoadInterceptor` as its load handler.

Usage::

    from import_switcheroo import Switcheroo, SwitcherooConfig

    switcheroo = Switcheroo(SwitcherooConfig(source_version=31200))
    switcheroo.enable()
    import module_written_for_312
"""

from typing import Optional

from import_switcheroo.cache import ContentCache
from import_switcheroo.config import SwitcherooConfig
from import_switcheroo.core.interceptor import LoadInterceptor, Registration
from import_switcheroo.core.processor import ProcessorLoadHandler, TransformProcessor, build_processor
from import_switcheroo.engine import CstRewriteEngine, EngineConfig, RewriteEngine
from import_switcheroo.errors import ConfigurationError
from import_switcheroo.utils.console import log_info, log_success
from import_switcheroo.versions import is_transform_needed, rule_set_name


class Switcheroo:
  """
  Owns one interceptor registration built from configuration.

  Args:
      config: Runtime configuration. Loaded from pyproject.toml when omitted.
      engine: Overrides the default libcst engine.
      interceptor: Overrides the interceptor (tests, embedding hosts).
  """

  def __init__(
    self,
    config: Optional[SwitcherooConfig] = None,
    engine: Optional[RewriteEngine] = None,
    interceptor: Optional[LoadInterceptor] = None,
  ):
    self.config = config or SwitcherooConfig.load()
    self._engine = engine
    self.interceptor = interceptor or LoadInterceptor(exclude_paths=self.config.exclude_paths)
    self.processor: Optional[TransformProcessor] = None
    self.registration: Optional[Registration] = None

  def is_needed(self) -> bool:
    """True unless source and target share a feature level."""
    return is_transform_needed(self.config.source_version, self.config.target_version)

  def build_engine(self) -> RewriteEngine:
    if self._engine is None:
      self._engine = CstRewriteEngine(
        EngineConfig(
          source_version=self.config.source_version,
          target_version=self.config.target_version,
          rule_set=rule_set_name(self.config.target_version),
          rules=self.config.rules,
        )
      )
    return self._engine

  def build_processor(self) -> TransformProcessor:
    if self.processor is None:
      cache = ContentCache(self.config.cache_directory, check_mtime=self.config.check_mtime)
      self.processor = build_processor(self.config, self.build_engine(), cache)
    return self.processor

  def enable(self) -> Optional[Registration]:
    """
    Starts rewriting imports.

    Returns:
        Optional[Registration]: The registration guard, or None when the gate
        found the versions compatible (nothing is installed then).
    """
    if self.registration is not None and not self.registration.released:
      return self.registration

    if not self.is_needed():
      log_info(f"Python {self.config.target} runs {self.config.source} code as is; interception not needed.")
      return None

    handler = ProcessorLoadHandler(self.build_processor())
    self.registration = self.interceptor.register(handler)
    with self.interceptor.suspended():
      log_success(
        f"Rewriting imports from {self.config.source} to {self.config.target} "
        f"([rule]{rule_set_name(self.config.target_version)}[/rule], isolation={self.config.isolation})."
      )
    return self.registration

  def disable(self) -> bool:
    """
    Releases the registration made by `enable`.

    Returns:
        bool: True if the interceptor is no longer installed.
    """
    if self.registration is None:
      return True
    result = self.registration.release()
    self.registration = None
    return result


_DEFAULT: Optional[Switcheroo] = None


def enable(config: Optional[SwitcherooConfig] = None, **overrides) -> Optional[Registration]:
  """
  Enables the process-wide default pipeline.

  Args:
      config: Explicit configuration. Otherwise loaded via `SwitcherooConfig.load(**overrides)`.

  Returns:
      Optional[Registration]: See `Switcheroo.enable`.

  Raises:
      ConfigurationError: If the default pipeline is already enabled with a
          different configuration.
  """
  global _DEFAULT
  if _DEFAULT is None:
    _DEFAULT = Switcheroo(config or SwitcherooConfig.load(**overrides))
  elif config is not None or overrides:
    requested = config or SwitcherooConfig.load(**overrides)
    if requested != _DEFAULT.config:
      raise ConfigurationError(
        "import-switcheroo is already enabled with a different configuration; call disable() first."
      )
  return _DEFAULT.enable()


def disable() -> bool:
  """Disables the process-wide default pipeline, if any."""
  global _DEFAULT
  if _DEFAULT is None:
    return True
  result = _DEFAULT.disable()
  _DEFAULT = None
  return result
