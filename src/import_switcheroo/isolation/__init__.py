"""
Process Isolation.

Runs a callable in a separate OS process and ships its `str`/None result (or
error message) back over a framed byte stream.
"""

import os
from typing import Callable, Optional, Protocol, Union

from import_switcheroo.errors import ConfigurationError
from import_switcheroo.isolation.fork import ProcessIsolationChannel, WorkerHandle
from import_switcheroo.isolation.polling import DEFAULT_LIVENESS_INTERVAL
from import_switcheroo.isolation.protocol import DELIMITER, ChannelAction, ChannelMessage
from import_switcheroo.isolation.spawn import SpawnIsolationChannel


class IsolationChannel(Protocol):
  """Anything able to run a callable in another process."""

  kind: str

  def run(self, fn: Callable[[], Optional[str]]) -> Optional[str]: ...


def default_channel(
  kind: str = "auto", liveness_interval: float = DEFAULT_LIVENESS_INTERVAL
) -> Union[ProcessIsolationChannel, SpawnIsolationChannel]:
  """
  Builds an isolation channel.

  Args:
      kind: "fork", "spawn", or "auto" (fork where available).
      liveness_interval: Seconds between worker liveness checks.

  Raises:
      ConfigurationError: For an unknown kind, or "fork" on a platform without it.
  """
  if kind == "auto":
    kind = "fork" if hasattr(os, "fork") else "spawn"
  if kind == "fork":
    if not hasattr(os, "fork"):
      raise ConfigurationError("Fork isolation requested but os.fork() is unavailable.", key="isolation")
    return ProcessIsolationChannel(liveness_interval=liveness_interval)
  if kind == "spawn":
    return SpawnIsolationChannel(liveness_interval=liveness_interval)
  raise ConfigurationError(f"Unknown isolation channel '{kind}'.", key="isolation")


__all__ = [
  "ChannelAction",
  "ChannelMessage",
  "DELIMITER",
  "IsolationChannel",
  "ProcessIsolationChannel",
  "SpawnIsolationChannel",
  "WorkerHandle",
  "default_channel",
]
