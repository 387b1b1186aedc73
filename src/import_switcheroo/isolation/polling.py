"""
Parent-side read loop shared by the isolation channels.

The loop waits on the channel endpoint with a bounded timeout. The timeout is
a liveness re-check interval, not an overall deadline: whenever it elapses
without data, the worker is checked for an early exit.
"""

import logging
import selectors
from typing import Callable, Optional

from import_switcheroo.errors import ChannelFatal
from import_switcheroo.isolation.protocol import FrameBuffer

logger = logging.getLogger(__name__)

DEFAULT_LIVENESS_INTERVAL = 1.0


def drain(read: Callable[[], bytes], buffer: FrameBuffer) -> bool:
  """
  Reads every byte currently available from a non-blocking source.

  Args:
      read: Performs one non-blocking read; returns b"" at end of stream and
          raises BlockingIOError when nothing is pending.
      buffer: Receives the bytes.

  Returns:
      bool: True if the end of the stream was reached before a full frame.
  """
  while not buffer.complete:
    try:
      chunk = read()
    except BlockingIOError:
      return False
    if not chunk:
      return True
    buffer.feed(chunk)
  return False


def collect_frame(
  source,
  read: Callable[[], bytes],
  has_exited: Callable[[], bool],
  exit_status: Callable[[], Optional[int]],
  label: str,
  liveness_interval: float = DEFAULT_LIVENESS_INTERVAL,
) -> bytes:
  """
  Blocks until one complete frame has been read from `source`.

  Args:
      source: A selectable object (socket or file descriptor) in non-blocking mode.
      read: One non-blocking read from `source`.
      has_exited: Non-blocking check whether the worker terminated.
      exit_status: The worker's exit status once it terminated.
      label: Human readable worker description for error messages.
      liveness_interval: Seconds between liveness re-checks.

  Returns:
      bytes: The frame, delimiter stripped.

  Raises:
      ChannelFatal: If selection fails or the worker exits without a full frame.
  """
  buffer = FrameBuffer()
  selector = selectors.DefaultSelector()
  try:
    selector.register(source, selectors.EVENT_READ)
    while not buffer.complete:
      try:
        events = selector.select(timeout=liveness_interval)
      except (OSError, ValueError) as e:
        raise ChannelFatal(f"select() failed while waiting for {label}: {e}") from e

      if events:
        if drain(read, buffer):
          raise ChannelFatal(_early_exit_message(label, exit_status, len(buffer)))
        continue

      if has_exited():
        # The frame may have landed between the timeout and the exit check.
        drain(read, buffer)
        if not buffer.complete:
          raise ChannelFatal(_early_exit_message(label, exit_status, len(buffer)))
      else:
        logger.debug("Still waiting for %s (%d bytes buffered)", label, len(buffer))
  finally:
    selector.close()

  return buffer.frame or b""


def _early_exit_message(label: str, exit_status: Callable[[], Optional[int]], buffered: int) -> str:
  status = exit_status()
  return (
    f"Child process ({label}) exited too early: status {status}, "
    f"{buffered} bytes received without a complete frame"
  )
