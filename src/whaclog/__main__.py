"""
whaclog entry point.

Commands:
    simulate -> bot plays a session, log printed / written / published
    decode   -> log file to JSON document
    stats    -> replay stats of a log file
    serve    -> ingestion API (uvicorn) + MQTT subscriber when configured

Architecture (serve):
    MQTT whac/+/log --> handle_message() --> LogStore (games/*.log, *.json, leaderboard)
    HTTP POST /sessions ----------------^
"""

from __future__ import annotations

import contextlib
import json
import logging
import sys
import threading
from functools import partial
from typing import TYPE_CHECKING

import uvicorn
from rich.table import Table

from .analysis import summarize
from .app import create_app
from .codec import decode, encode_event
from .events import InvalidSettings
from .misc import cerr, cout, get_cli_args, init_logging, load_env, print_plain
from .misc.argparser import settings_from_args
from .models import to_document
from .mqtt import LOG_TOPICS, handle_message, publish_log, subscribe
from .simulate import BotProfile, simulate
from .storage import LogStore

if TYPE_CHECKING:
    from argparse import Namespace

    from .events import Event

_log = logging.getLogger("main")


def _print_event(event: Event) -> None:
    print_plain(encode_event(event))


def cmd_simulate(args: Namespace) -> int:
    env = load_env(need_mqtt=True) if args.publish else None

    try:
        settings = settings_from_args(args)
        log = simulate(
            settings,
            seed=args.seed,
            profile=BotProfile(hit_chance=args.hit_rate),
            realtime=args.realtime,
            listener=_print_event if args.realtime else None,
        )
    except InvalidSettings as e:
        for problem in e.problems:
            cerr.print(f"[bold bright_red]invalid settings:[/] {problem}")
        return 2

    if args.output is not None:
        args.output.write_text(log.text())
        _log.info("Log written to [bright_green]%s[/]", args.output)
    elif not args.realtime:
        print_plain(log.text(), end="")

    if env is not None and env.mqtt_enabled:
        game_id = log.events[0].game_id
        publish_log(env.mqtt_broker, env.mqtt_port, game_id, log.lines)  # type: ignore[arg-type]
        _log.info("Published %s to [bright_magenta]%s:%d[/]", game_id, env.mqtt_broker, env.mqtt_port)

    return 0


def cmd_decode(args: Namespace) -> int:
    doc = to_document(decode(args.file.read_text()))
    cout.print_json(json.dumps(doc.to_json()), indent=args.indent)
    return 0


def cmd_stats(args: Namespace) -> int:
    summary = summarize(to_document(decode(args.file.read_text())))

    table = Table(title=f"game {summary['gameId']}")
    for col in ("cell", "shows", "hits", "misses"):
        table.add_column(col, justify="right" if col != "cell" else "left")
    for c in summary["cells"]:
        table.add_row(f"r{c['row']}c{c['col']} (#{c['index']})", str(c["shows"]), str(c["hits"]), str(c["misses"]))
    cout.print(table)

    def pct(v: float | None) -> str:
        return "n/a" if v is None else f"{v:.0%}"

    reaction = summary["mean_reaction_ms"]
    cout.print(
        f"final score [bold]{summary['final_score']}[/] in {summary['duration_s']:.3f}s | "
        f"hits {summary['hits']} misses {summary['misses']} shows {summary['shows']} | "
        f"accuracy {pct(summary['accuracy'])} hit rate {pct(summary['hit_rate'])} | "
        f"mean reaction {'n/a' if reaction is None else f'{reaction:.0f} ms'}",
        soft_wrap=True,
    )
    if summary["unknown"]:
        cout.print(f"[yellow]{summary['unknown']} unrecognised line(s)[/]")
    return 0


def cmd_serve(args: Namespace) -> int:
    """Start the API server.

    1. Open the store (creates DATA_DIR/games)
    2. Subscribe to whac/+/log when MQTT is configured
    3. Launch FastAPI via uvicorn
    """
    _ = args
    env = load_env(need_app_port=True)
    store = LogStore(env.data_dir)

    if env.mqtt_enabled:
        client = subscribe(env.mqtt_broker, env.mqtt_port, LOG_TOPICS, partial(handle_message, store))  # type: ignore[arg-type]
        # Daemon thread auto-terminates when main exits
        threading.Thread(target=client.loop_forever, daemon=True).start()
    else:
        _log.info("MQTT not configured, HTTP ingestion only")

    uvicorn.run(create_app(store), host="0.0.0.0", port=env.app_port, log_config=None)  # noqa: S104  # type: ignore[arg-type]
    return 0


COMMANDS = {
    "simulate": cmd_simulate,
    "decode": cmd_decode,
    "stats": cmd_stats,
    "serve": cmd_serve,
}


def main() -> None:
    args = get_cli_args()
    init_logging(args.log_level)

    with contextlib.suppress(KeyboardInterrupt):
        sys.exit(COMMANDS[args.command](args))


if __name__ == "__main__":
    main()
