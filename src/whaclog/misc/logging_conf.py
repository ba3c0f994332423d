from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, ClassVar, Final, Literal, cast, override

from rich.errors import MarkupError
from rich.traceback import Traceback

from .utils import cerr, cout

if TYPE_CHECKING:
    type LogLvl = Literal[10, 20, 30, 40, 50]


LOG_ABBREV_2_LVL: Final[dict[str, LogLvl]] = {
    "DBG": logging.DEBUG,
    "INF": logging.INFO,
    "WRN": logging.WARNING,
    "ERR": logging.ERROR,
    "CRT": logging.CRITICAL,
}


LOG_LVL_2_COLOR: Final = {
    logging.DEBUG: "green",
    logging.INFO: "cyan",
    logging.WARNING: "yellow",
    logging.ERROR: "red",
    logging.CRITICAL: "bold red",
}

# Chatty third-party loggers, capped at this level unless we log below it
_LIB_LOGGERS: Final = ("uvicorn.access", "paho", "httpx")
_LIB_MIN_LVL: Final = logging.INFO

# Width of the logger-name column
_NAME_WIDTH: Final = 9


class _GameLogHandler(logging.Handler):
    """Prints records through Rich consoles (stdout below WARNING, stderr otherwise).

    Format: [LVL] (HH:MM:SS) name :: message
    """

    LVL_2_ABBREV: ClassVar = {v: k for k, v in LOG_ABBREV_2_LVL.items()}

    @override
    def __init__(self) -> None:
        super().__init__()
        self._stdout = cout
        self._stderr = cerr

    @override
    def emit(self, record: logging.LogRecord) -> None:
        fmted = _GameLogHandler._fmt_msg(record.getMessage(), cast("LogLvl", record.levelno), record.name)
        if fmted is None:
            self.handleError(record)
            return

        cons = self._stderr if record.levelno >= logging.WARNING else self._stdout
        try:
            cons.print(fmted)
        except MarkupError:
            # Message text (e.g. a raw log payload) is not valid markup
            cons.print(fmted, markup=False)

        if record.exc_info and record.exc_info[1] is not None:
            exc_type, exc, tb = record.exc_info
            cons.print(Traceback.from_exception(exc_type, exc, tb))  # type: ignore[arg-type]

    @classmethod
    def _fmt_msg(cls, msg: str, lvlno: LogLvl, name: str) -> str | None:
        try:
            color = LOG_LVL_2_COLOR[lvlno]
            lvl_abbrev = cls.LVL_2_ABBREV[lvlno]
        except KeyError:
            return None

        time_str = time.strftime("%X")
        msg = f"[{color}]{msg}[/]" if lvlno >= logging.WARNING else msg
        return f"[dim][{color}][{lvl_abbrev}][/] [white]({time_str})[/] {name[:_NAME_WIDTH]:<{_NAME_WIDTH}} ::[/] {msg}"


def init_logging(lvl: LogLvl) -> None:
    """Route all logging (ours, uvicorn's, paho's) through the Rich handler.

    Args:
        lvl: Base logging level
    """
    logging.basicConfig(level=lvl, handlers=[_GameLogHandler()], force=True)

    for name in _LIB_LOGGERS:
        logging.getLogger(name).setLevel(max(lvl, _LIB_MIN_LVL))
