"""
Tests for the framed worker protocol.
"""

import base64

import pytest

from import_switcheroo.errors import ChannelFatal, WorkerError
from import_switcheroo.isolation.protocol import (
  DELIMITER,
  ChannelAction,
  ChannelMessage,
  FrameBuffer,
  execute,
)


def test_return_frame_layout():
  frame = ChannelMessage.returned("hello").encode()
  assert frame == b"return," + base64.b64encode(b"hello") + DELIMITER


def test_void_frame_layout():
  assert ChannelMessage.void().encode() == b"void,null" + DELIMITER


def test_decode_return():
  message = ChannelMessage.decode(b"return," + base64.b64encode("héllo".encode("utf-8")))
  assert message.action is ChannelAction.RETURN
  assert message.result() == "héllo"


def test_decode_void():
  assert ChannelMessage.decode(b"void,null").result() is None


def test_throw_raises_worker_error():
  frame = ChannelMessage.thrown(ValueError("boom")).encode()[: -len(DELIMITER)]
  with pytest.raises(WorkerError) as excinfo:
    ChannelMessage.decode(frame).result()
  assert excinfo.value.message == "boom"


def test_empty_error_message_becomes_unknown():
  frame = ChannelMessage.thrown(RuntimeError()).encode()[: -len(DELIMITER)]
  with pytest.raises(WorkerError, match="Unknown Error"):
    ChannelMessage.decode(frame).result()


@pytest.mark.parametrize("frame", [b"explode,aGk=", b"no separator", b"return,***not base64***"])
def test_malformed_frames_are_fatal(frame):
  with pytest.raises(ChannelFatal):
    ChannelMessage.decode(frame)


def test_execute_captures_outcomes():
  assert execute(lambda: "ok").result() == "ok"
  assert execute(lambda: None).action is ChannelAction.VOID


def test_execute_rejects_non_string_result():
  message = execute(lambda: 42)
  assert message.action is ChannelAction.THROW
  with pytest.raises(WorkerError, match="Result must be a string"):
    message.result()


def test_buffer_finds_delimiter_split_across_chunks():
  """The delimiter may arrive in pieces."""
  wire = ChannelMessage.returned("payload").encode()
  cut = len(wire) - len(DELIMITER) // 2
  buffer = FrameBuffer()
  assert buffer.feed(wire[:cut]) is False
  assert buffer.feed(wire[cut:]) is True
  assert ChannelMessage.decode(buffer.frame).result() == "payload"


def test_buffer_byte_by_byte():
  wire = ChannelMessage.returned("x" * 100).encode()
  buffer = FrameBuffer()
  for i in range(len(wire)):
    buffer.feed(wire[i : i + 1])
  assert buffer.complete
  assert ChannelMessage.decode(buffer.frame).result() == "x" * 100


def test_buffer_ignores_trailing_bytes():
  buffer = FrameBuffer()
  buffer.feed(b"void,null" + DELIMITER + b"garbage")
  assert buffer.frame == b"void,null"
