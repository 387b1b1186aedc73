"""
Fork-based Process Isolation Channel.

Runs a callable in a forked worker so that nothing it does (module imports,
monkey-patching, global registries) leaks back into the calling process. The
worker reports back through one end of a `socket.socketpair` using the framed
protocol in `import_switcheroo.isolation.protocol`.

Lifecycle of a single `run`:

1. Create the socket pair, fork, and close the end each side does not own.
2. The worker executes the callable, writes one frame and `os._exit`s.
3. The parent polls its end with a liveness interval until a full frame
   arrives, or the worker is found dead without one.
4. The parent reaps the worker with a blocking `waitpid` and closes its end.
5. The frame is decoded into a return value or a `WorkerError`.

No step is retried.
"""

import logging
import os
import signal
import socket
import sys
from typing import Callable, Optional

from import_switcheroo.errors import ChannelFatal
from import_switcheroo.isolation.polling import DEFAULT_LIVENESS_INTERVAL, collect_frame
from import_switcheroo.isolation.protocol import BUFFER_SIZE, ChannelMessage, execute

logger = logging.getLogger(__name__)


def flush_std_streams() -> None:
  """Flushes stdio so buffered output is not duplicated into (or lost by) the worker."""
  for stream in (sys.stdout, sys.stderr):
    try:
      if stream is not None:
        stream.flush()
    except (OSError, ValueError):
      pass


class WorkerHandle:
  """
  A forked worker and the parent's end of its channel.

  The response can be consumed exactly once. The process is reaped by `wait`
  (blocking) or `poll_exit` (non-blocking); after that `exit_status` is set.
  """

  def __init__(self, pid: int, endpoint: socket.socket):
    self.pid = pid
    self.endpoint = endpoint
    self.exit_status: Optional[int] = None
    self._consumed = False

  @property
  def reaped(self) -> bool:
    return self.exit_status is not None

  def poll_exit(self) -> bool:
    """Non-blocking check whether the worker has terminated; reaps it if so."""
    if self.reaped:
      return True
    try:
      pid, status = os.waitpid(self.pid, os.WNOHANG)
    except ChildProcessError:
      self.exit_status = -1
      return True
    if pid == 0:
      return False
    self.exit_status = os.waitstatus_to_exitcode(status)
    return True

  def wait(self) -> int:
    """Blocks until the worker terminates and returns its exit status."""
    if not self.reaped:
      try:
        _, status = os.waitpid(self.pid, 0)
        self.exit_status = os.waitstatus_to_exitcode(status)
      except ChildProcessError:
        self.exit_status = -1
    return self.exit_status

  def kill(self) -> None:
    if self.reaped:
      return
    try:
      os.kill(self.pid, signal.SIGKILL)
    except ProcessLookupError:
      pass

  def close(self) -> None:
    self.endpoint.close()

  def read_response(self, liveness_interval: float = DEFAULT_LIVENESS_INTERVAL) -> bytes:
    """
    Reads the worker's single frame.

    Raises:
        ChannelFatal: If called twice, or if the worker dies without answering.
    """
    if self._consumed:
      raise ChannelFatal(f"Response of worker {self.pid} was already consumed")
    self._consumed = True

    self.endpoint.setblocking(False)
    return collect_frame(
      self.endpoint,
      read=lambda: self.endpoint.recv(BUFFER_SIZE),
      has_exited=self.poll_exit,
      exit_status=lambda: self.exit_status,
      label=f"pid {self.pid}",
      liveness_interval=liveness_interval,
    )


class ProcessIsolationChannel:
  """
  Executes callables in a forked worker process.

  Args:
      liveness_interval: Seconds between checks that the worker is still alive
          while waiting for its answer.
  """

  kind = "fork"

  def __init__(self, liveness_interval: float = DEFAULT_LIVENESS_INTERVAL):
    if not hasattr(os, "fork"):
      raise ChannelFatal("os.fork() is not available on this platform; use SpawnIsolationChannel")
    self.liveness_interval = liveness_interval

  def run(self, fn: Callable[[], Optional[str]]) -> Optional[str]:
    """
    Runs `fn` in a worker and returns what it returned.

    Args:
        fn: Must return a `str` or None.

    Returns:
        Optional[str]: The worker's result.

    Raises:
        WorkerError: If `fn` raised (or returned an unsupported type) in the worker.
        ChannelFatal: If the channel broke.
    """
    handle = self._fork(fn)
    answered = False
    try:
      frame = handle.read_response(self.liveness_interval)
      answered = True
    finally:
      if not answered:
        handle.kill()
      status = handle.wait()
      handle.close()
      logger.debug("Worker %d exited with status %s", handle.pid, status)

    return ChannelMessage.decode(frame).result()

  def _fork(self, fn: Callable[[], Optional[str]]) -> WorkerHandle:
    parent_end, child_end = socket.socketpair()
    flush_std_streams()
    try:
      pid = os.fork()
    except OSError as e:
      parent_end.close()
      child_end.close()
      raise ChannelFatal(f"Failed to fork process: {e}") from e

    if pid == 0:
      parent_end.close()
      _worker_main(fn, child_end)

    child_end.close()
    return WorkerHandle(pid, parent_end)


def _worker_main(fn: Callable[[], Optional[str]], endpoint: socket.socket) -> None:
  """Body of the forked worker. Never returns."""
  status = 1
  try:
    data = execute(fn).encode()
    try:
      endpoint.sendall(data)
      status = 0
    except OSError:
      pass
    finally:
      endpoint.close()
  finally:
    flush_std_streams()
    os._exit(status)
