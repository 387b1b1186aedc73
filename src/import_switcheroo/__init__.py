"""
import-switcheroo Package.

Rewrites Python modules on import so that code written for a newer
interpreter runs on the one actually executing it.

Usage
-----

Enable from configuration
^^^^^^^^^^^^^^^^^^^^^^^^^

.. code-block:: python

    import import_switcheroo

    # Reads [tool.import_switcheroo] from the nearest pyproject.toml.
    import_switcheroo.enable(source_version=31200, cache_directory=".cache")
    import module_written_for_312

Explicit wiring
^^^^^^^^^^^^^^^

.. code-block:: python

    from import_switcheroo import (
      CstRewriteEngine, EngineConfig, InProcessProcessor, LoadInterceptor, ProcessorLoadHandler,
    )

    engine = CstRewriteEngine(EngineConfig(source_version=31200, target_version=30800))
    interceptor = LoadInterceptor()
    with interceptor.register(ProcessorLoadHandler(InProcessProcessor(engine))):
      import module_written_for_312
"""

from import_switcheroo.cache import ContentCache
from import_switcheroo.config import SwitcherooConfig
from import_switcheroo.core.activation import Switcheroo, disable, enable
from import_switcheroo.core.interceptor import LoadHandler, LoadInterceptor, Registration
from import_switcheroo.core.processor import (
  InProcessProcessor,
  IsolatedProcessProcessor,
  ProcessorLoadHandler,
  TransformOutcome,
  TransformProcessor,
)
from import_switcheroo.core.requests import LoadedFile, OpenFlags, OpenRequest
from import_switcheroo.engine import CstRewriteEngine, EngineConfig, RewriteResult
from import_switcheroo.errors import (
  ChannelFatal,
  ConfigurationError,
  FallbackWarning,
  SwitcherooError,
  TransformError,
  WorkerError,
)
from import_switcheroo.isolation import ProcessIsolationChannel, SpawnIsolationChannel
from import_switcheroo.versions import VersionDescriptor, is_transform_needed

__version__ = "0.0.1"

__all__ = [
  "ChannelFatal",
  "ConfigurationError",
  "ContentCache",
  "CstRewriteEngine",
  "EngineConfig",
  "FallbackWarning",
  "InProcessProcessor",
  "IsolatedProcessProcessor",
  "LoadHandler",
  "LoadInterceptor",
  "LoadedFile",
  "OpenFlags",
  "OpenRequest",
  "ProcessIsolationChannel",
  "ProcessorLoadHandler",
  "Registration",
  "RewriteResult",
  "SpawnIsolationChannel",
  "Switcheroo",
  "SwitcherooConfig",
  "SwitcherooError",
  "TransformError",
  "TransformOutcome",
  "TransformProcessor",
  "VersionDescriptor",
  "WorkerError",
  "__version__",
  "disable",
  "enable",
  "is_transform_needed",
]
