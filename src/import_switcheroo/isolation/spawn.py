"""
Spawn-based Process Isolation Channel.

Fallback for platforms without `os.fork`. A fresh interpreter is started with
this module as its entry point; the callable is pickled onto its stdin and the
answer comes back on its stdout using the same framed protocol as the fork
channel. The callable must therefore be picklable (module-level functions,
`functools.partial` objects over picklable arguments, ...).
"""

import logging
import os
import pickle
import subprocess
import sys
from typing import Callable, Optional

from import_switcheroo.errors import ChannelFatal
from import_switcheroo.isolation.polling import DEFAULT_LIVENESS_INTERVAL, collect_frame
from import_switcheroo.isolation.protocol import BUFFER_SIZE, ChannelMessage, execute

logger = logging.getLogger(__name__)

WORKER_COMMAND = "import sys; from import_switcheroo.isolation.spawn import main; sys.exit(main())"


def _worker_env() -> dict:
  """Environment for the worker: the parent's import path, so pickled references resolve."""
  env = dict(os.environ)
  paths = [p for p in sys.path if p]
  if env.get("PYTHONPATH"):
    paths.append(env["PYTHONPATH"])
  env["PYTHONPATH"] = os.pathsep.join(paths)
  return env


class SpawnIsolationChannel:
  """
  Executes picklable callables in a freshly spawned interpreter.

  Args:
      liveness_interval: Seconds between liveness checks of the worker.
      python: Interpreter used for the worker. Defaults to `sys.executable`.
  """

  kind = "spawn"

  def __init__(self, liveness_interval: float = DEFAULT_LIVENESS_INTERVAL, python: Optional[str] = None):
    self.liveness_interval = liveness_interval
    self.python = python or sys.executable

  def run(self, fn: Callable[[], Optional[str]]) -> Optional[str]:
    """
    Runs `fn` in a worker interpreter and returns what it returned.

    Raises:
        WorkerError: If `fn` raised in the worker.
        ChannelFatal: If `fn` cannot be pickled, the worker cannot be started,
            or it exits without a complete answer.
    """
    try:
      request = pickle.dumps(fn)
    except (pickle.PicklingError, TypeError, AttributeError) as e:
      raise ChannelFatal(f"Callable cannot be sent to a spawned worker: {e}") from e

    try:
      proc = subprocess.Popen(
        [self.python, "-c", WORKER_COMMAND],
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        env=_worker_env(),
      )
    except OSError as e:
      raise ChannelFatal(f"Failed to spawn worker: {e}") from e

    answered = False
    try:
      try:
        proc.stdin.write(request)
        proc.stdin.close()
      except BrokenPipeError:
        # The worker died before reading; collect_frame reports it.
        pass

      fd = proc.stdout.fileno()
      os.set_blocking(fd, False)
      frame = collect_frame(
        fd,
        read=lambda: os.read(fd, BUFFER_SIZE),
        has_exited=lambda: proc.poll() is not None,
        exit_status=lambda: proc.returncode,
        label=f"pid {proc.pid}",
        liveness_interval=self.liveness_interval,
      )
      answered = True
    finally:
      if not answered and proc.poll() is None:
        proc.kill()
      proc.wait()
      proc.stdout.close()
      logger.debug("Spawned worker %d exited with status %s", proc.pid, proc.returncode)

    return ChannelMessage.decode(frame).result()


def main() -> int:
  """Worker entry point: unpickle the callable from stdin, answer on stdout."""
  # Anything the callable prints must not corrupt the frame, so the real
  # stdout is kept aside and fd 1 is pointed at stderr.
  channel = os.fdopen(os.dup(sys.stdout.fileno()), "wb")
  os.dup2(sys.stderr.fileno(), sys.stdout.fileno())

  def run() -> Optional[str]:
    fn = pickle.loads(sys.stdin.buffer.read())
    return fn()

  data = execute(run).encode()
  try:
    channel.write(data)
    channel.flush()
  except OSError:
    return 1
  finally:
    channel.close()
  return 0

