"""
Framed Message Protocol for the Isolation Channel.

A worker answers with exactly one frame::

    <action>,<payload><DELIMITER>

where ``action`` is one of ``return``, ``void`` or ``throw`` and ``payload``
is base64 (or the literal ``null`` for ``void``). Base64 output never
contains a newline or underscore, so the delimiter cannot occur inside a
payload.

Both the fork and the spawn channels share this module: the worker side uses
`execute` + `ChannelMessage.encode`, the parent side feeds raw bytes into a
`FrameBuffer` and decodes the captured frame.
"""

import base64
import binascii
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict

from import_switcheroo.errors import ChannelFatal, WorkerError

DELIMITER = b"\n__SWITCHEROO_FORK_END_DELIMITER__\n"
UNKNOWN_ERROR = "Unknown Error"
BUFFER_SIZE = 4096


class ChannelAction(str, Enum):
  RETURN = "return"
  VOID = "void"
  THROW = "throw"


class ChannelMessage(BaseModel):
  """
  A single worker response.

  Attributes:
      action: What the callable did.
      payload: Raw (decoded) bytes of the result or error message; None for VOID.
  """

  model_config = ConfigDict(frozen=True)

  action: ChannelAction
  payload: Optional[bytes] = None

  @classmethod
  def returned(cls, value: str) -> "ChannelMessage":
    return cls(action=ChannelAction.RETURN, payload=value.encode("utf-8"))

  @classmethod
  def void(cls) -> "ChannelMessage":
    return cls(action=ChannelAction.VOID)

  @classmethod
  def thrown(cls, error: BaseException) -> "ChannelMessage":
    try:
      message = str(error)
    except Exception:  # noqa: BLE001 - a broken __str__ must not kill the frame
      message = UNKNOWN_ERROR
    return cls(action=ChannelAction.THROW, payload=message.encode("utf-8", errors="replace"))

  def encode(self) -> bytes:
    """
    Serializes the message into a complete frame, delimiter included.

    Returns:
        bytes: The wire representation.
    """
    if self.action is ChannelAction.VOID:
      body = b"null"
    else:
      body = base64.b64encode(self.payload or b"")
    return self.action.value.encode("ascii") + b"," + body + DELIMITER

  @classmethod
  def decode(cls, frame: bytes) -> "ChannelMessage":
    """
    Parses a frame with the delimiter already stripped.

    Raises:
        ChannelFatal: On an unknown action or a corrupt payload.
    """
    action_raw, sep, body = frame.partition(b",")
    if not sep:
      raise ChannelFatal(f"Malformed frame: missing separator in {frame[:64]!r}")

    try:
      action = ChannelAction(action_raw.decode("ascii"))
    except (UnicodeDecodeError, ValueError) as e:
      raise ChannelFatal(f"Invalid action {action_raw[:32]!r}") from e

    if action is ChannelAction.VOID:
      return cls(action=action)

    try:
      payload = base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as e:
      raise ChannelFatal(f"Corrupt {action.value} payload") from e
    return cls(action=action, payload=payload)

  def result(self) -> Optional[str]:
    """
    Converts the message into the channel's return value.

    Returns:
        Optional[str]: The returned string, or None for VOID.

    Raises:
        WorkerError: For THROW messages.
    """
    if self.action is ChannelAction.RETURN:
      return (self.payload or b"").decode("utf-8")
    if self.action is ChannelAction.VOID:
      return None
    raise WorkerError((self.payload or b"").decode("utf-8", errors="replace") or UNKNOWN_ERROR)


def execute(fn: Callable[[], Optional[str]]) -> ChannelMessage:
  """
  Runs `fn` on the worker side and captures its outcome as a message.

  Only `str` and `None` results are representable; anything else is reported
  as a thrown TypeError.
  """
  try:
    result = fn()
    if result is None:
      return ChannelMessage.void()
    if not isinstance(result, str):
      raise TypeError(f"Result must be a string, got {type(result).__name__}")
    return ChannelMessage.returned(result)
  except Exception as e:  # noqa: BLE001 - every failure is shipped to the parent
    return ChannelMessage.thrown(e)


class FrameBuffer:
  """
  Accumulates bytes from the channel until the delimiter shows up.

  Reads may split the delimiter across chunks, so the search restarts a
  delimiter's length before the previous end of the buffer.
  """

  def __init__(self) -> None:
    self._data = bytearray()
    self._scanned = 0
    self.frame: Optional[bytes] = None

  @property
  def complete(self) -> bool:
    return self.frame is not None

  def __len__(self) -> int:
    return len(self._data)

  def feed(self, chunk: bytes) -> bool:
    """
    Appends a chunk and scans for the delimiter.

    Returns:
        bool: True once a full frame has been captured.
    """
    if self.frame is not None:
      return True
    self._data.extend(chunk)
    start = max(0, self._scanned - len(DELIMITER) + 1)
    position = self._data.find(DELIMITER, start)
    self._scanned = len(self._data)
    if position != -1:
      self.frame = bytes(self._data[:position])
      del self._data[:]
    return self.frame is not None
