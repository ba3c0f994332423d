from __future__ import annotations

from argparse import ArgumentParser, ArgumentTypeError, Namespace
from pathlib import Path
from typing import TYPE_CHECKING, cast

from rich_argparse import RichHelpFormatter

from whaclog import __prog__
from whaclog.events import Settings

from .logging_conf import LOG_ABBREV_2_LVL, LOG_LVL_2_COLOR

if TYPE_CHECKING:
    from .logging_conf import LogLvl

_DEFAULTS = Settings()


def _range(val: str) -> tuple[int, int]:
    """Parse `MIN,MAX` (or a single value for both)."""
    lo, _, hi = val.partition(",")
    try:
        return int(lo), int(hi or lo)
    except ValueError as e:
        msg = f"expected MIN,MAX integers, got {val!r}"
        raise ArgumentTypeError(msg) from e


def _grid(val: str) -> tuple[int, int]:
    rows, sep, cols = val.lower().partition("x")
    try:
        return int(rows), int(cols if sep else rows)
    except ValueError as e:
        msg = f"expected ROWSxCOLS, got {val!r}"
        raise ArgumentTypeError(msg) from e


def _fmt_range(r: tuple[int, int]) -> str:
    return f"{r[0]},{r[1]}"


def _mk_parser() -> ArgumentParser:
    RichHelpFormatter.usage_markup = True
    RichHelpFormatter.styles.update(
        {
            "argparse.args": "cyan",
            "argparse.groups": "green bold",
            "argparse.metavar": "dim cyan",
            "argparse.usage": "dim cyan",
            "argparse.prog": "cyan bold",
        },
    )

    parser = ArgumentParser(
        prog=__prog__,
        description="Whac-A-Mole session logs: simulate, decode, analyse, ingest",
        formatter_class=RichHelpFormatter,
    )

    log_lvl_choices = ", ".join(
        f"[{clr}]{abbr}[/]" for abbr, clr in zip(LOG_ABBREV_2_LVL, LOG_LVL_2_COLOR.values(), strict=True)
    )
    parser.add_argument(
        "-l",
        "--log-level",
        type=str,
        default="INF",
        help=f"base logging level (default: [yellow]INF[/])\t[{log_lvl_choices}]",
        choices=LOG_ABBREV_2_LVL,
        dest="log_level",
        metavar="L",
    )

    sub = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    # simulate
    sim = sub.add_parser("simulate", help="play a session with a bot", formatter_class=RichHelpFormatter)
    arg = sim.add_argument
    arg(
        "-g",
        "--grid",
        type=_grid,
        default=(_DEFAULTS.rows, _DEFAULTS.cols),
        help=f"board size (default: [yellow]{_DEFAULTS.rows}x{_DEFAULTS.cols}[/])",
        metavar="RxC",
    )
    arg(
        "-d",
        "--duration",
        type=int,
        default=_DEFAULTS.duration_ms,
        help=f"session length in ms (default: [yellow]{_DEFAULTS.duration_ms}[/])",
        dest="duration_ms",
        metavar="MS",
    )
    arg(
        "--mole-up",
        type=_range,
        default=_DEFAULTS.mole_up_ms,
        help=f"mole visible time range in ms (default: [yellow]{_fmt_range(_DEFAULTS.mole_up_ms)}[/])",
        dest="mole_up_ms",
        metavar="MIN,MAX",
    )
    arg(
        "--idle-gap",
        type=_range,
        default=_DEFAULTS.idle_gap_ms,
        help=f"gap between moles in ms (default: [yellow]{_fmt_range(_DEFAULTS.idle_gap_ms)}[/])",
        dest="idle_gap_ms",
        metavar="MIN,MAX",
    )
    arg("-s", "--seed", type=int, default=None, help="random seed (virtual-time runs are reproducible)")
    arg("--hit-rate", type=float, default=0.75, help="bot hit chance (default: [yellow]0.75[/])", metavar="P")
    arg("--realtime", action="store_true", help="play in wall-clock time instead of virtual time")
    arg("-o", "--output", type=Path, default=None, help="write the log to a file", metavar="FILE")
    arg("--publish", action="store_true", help="publish the log over MQTT ([cyan]MQTT_BROKER[/]/[cyan]MQTT_PORT[/])")

    # decode
    dec = sub.add_parser("decode", help="decode a log file to JSON", formatter_class=RichHelpFormatter)
    dec.add_argument("file", type=Path, help="log file", metavar="FILE")
    dec.add_argument("--indent", type=int, default=2, help="JSON indent (default: [yellow]2[/])", metavar="N")

    # stats
    stats = sub.add_parser("stats", help="replay stats of a log file", formatter_class=RichHelpFormatter)
    stats.add_argument("file", type=Path, help="log file", metavar="FILE")

    # serve
    sub.add_parser(
        "serve",
        help="run the ingestion API (+ MQTT subscriber when configured)",
        formatter_class=RichHelpFormatter,
    )

    return parser


def get_cli_args(argv: list[str] | None = None) -> Namespace:
    """Create parser & return parsed arguments (log level resolved to its number)."""

    parser = _mk_parser()
    args = parser.parse_args(argv)
    args.log_level = cast("LogLvl", LOG_ABBREV_2_LVL[args.log_level])
    return args


def settings_from_args(args: Namespace) -> Settings:
    rows, cols = args.grid
    return Settings(
        rows=rows,
        cols=cols,
        duration_ms=args.duration_ms,
        mole_up_ms=args.mole_up_ms,
        idle_gap_ms=args.idle_gap_ms,
    )
