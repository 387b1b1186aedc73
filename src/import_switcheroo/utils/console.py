"""
Logging Output.

import-switcheroo runs inside arbitrary host programs, often while the host is
still importing its own modules. Everything the package reports therefore
goes through the ``import_switcheroo`` logger (never the root logger), whose
single `RichHandler` renders onto a swappable Rich console.

Modules log debug traces with ``logging.getLogger(__name__)``; user-facing
messages use the ``log_*`` helpers below, which accept Rich markup.

Attributes:
    router (_ConsoleRouter): Owns the active console and the package handler.
"""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

# Between INFO and WARNING.
SUCCESS_LEVEL_NUM = 25
logging.addLevelName(SUCCESS_LEVEL_NUM, "SUCCESS")

PACKAGE_LOGGER = "import_switcheroo"

THEME = Theme(
  {
    "logging.level.success": "green",
    "path": "bold blue",
    "rule": "magenta",
    "version": "cyan",
  }
)


class _ConsoleRouter:
  """
  Keeps the package logger's Rich handler attached to the active console.

  Swapping the console replaces the handler instead of adding a second one, so
  records are never rendered twice.
  """

  def __init__(self) -> None:
    self.console: Console = self._default_console()
    self.handler: Optional[RichHandler] = None
    self._attach()

  @staticmethod
  def _default_console() -> Console:
    return Console(theme=THEME, stderr=True)

  def route_to(self, console: Console) -> None:
    self.console = console
    self._attach()

  def reset(self) -> None:
    self.route_to(self._default_console())

  def _attach(self) -> None:
    logger = logging.getLogger(PACKAGE_LOGGER)
    if self.handler is not None:
      logger.removeHandler(self.handler)

    self.handler = RichHandler(
      console=self.console,
      show_time=False,
      show_path=False,
      markup=True,
      rich_tracebacks=True,
    )
    logger.addHandler(self.handler)
    # Respect a level chosen by the host application.
    if logger.level == logging.NOTSET:
      logger.setLevel(logging.INFO)


router = _ConsoleRouter()

_logger = logging.getLogger(PACKAGE_LOGGER)


def set_console(console: Console) -> None:
  """
  Sends all package output to `console`.

  Args:
      console (Console): E.g. a console writing into a file or a buffer.
  """
  router.route_to(console)


def reset_console() -> None:
  """Goes back to a fresh standard error console."""
  router.reset()


def get_console() -> Console:
  return router.console


def log_info(msg: str) -> None:
  """
  Logs an informational message.

  Args:
      msg (str): Message text, may contain Rich markup such as ``[path]``.
  """
  _logger.info(msg)


def log_success(msg: str) -> None:
  """Logs at the custom SUCCESS level."""
  _logger.log(SUCCESS_LEVEL_NUM, msg)


def log_warning(msg: str) -> None:
  _logger.warning(msg)


def log_error(msg: str) -> None:
  _logger.error(msg)
