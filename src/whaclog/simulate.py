"""
Headless game simulator - a bot plays sessions against the state machine.

The bot reacts to each SHOW: it goes for the mole after a reaction delay,
clicks a wrong cell, or lets the mole time out. Slow reactions land after
the mole is gone and are logged as MISS, like a late click in the browser.

Runs in virtual time (instant, deterministic for a given seed) or in real
time on timer threads.
"""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Final

from .events import SessionEnd, Show
from .recorder import EventLog
from .scheduler import ManualScheduler, ThreadingScheduler
from .session import Game, utc_now

if TYPE_CHECKING:
    from collections.abc import Callable

    from .events import Event, Settings

# Extra wall time allowed for a real-time session to wind down (seconds)
REALTIME_GRACE_S: Final = 5


@dataclass(frozen=True)
class BotProfile:
    hit_chance: float = 0.75                   # goes for the visible mole
    wrong_cell_chance: float = 0.5             # otherwise: clicks another cell (else does nothing)
    reaction_ms: tuple[int, int] = (250, 700)  # delay between SHOW and click


class Bot:
    """Simulated player attached to a `Game` as a listener."""

    def __init__(self, game: Game, profile: BotProfile | None = None, rng: random.Random | None = None) -> None:
        self.game = game
        self.profile = profile or BotProfile()
        self.rng = rng or random.Random()
        self.clicks = 0
        self._log = logging.getLogger("Bot")
        game.add_listener(self.on_event)

    def on_event(self, event: Event) -> None:
        if not isinstance(event, Show):
            return

        cells = self.game.session.settings.cells if self.game.session else 1
        roll = self.rng.random()
        p = self.profile

        if roll < p.hit_chance:
            target = event.cell.index
        elif roll < p.hit_chance + (1 - p.hit_chance) * p.wrong_cell_chance:
            target = self._other_cell(event.cell.index, cells)
        else:
            self._log.debug("Letting mole at #%d time out", event.cell.index)
            return

        delay = self.rng.randint(*p.reaction_ms)
        pos = (self.rng.random(), self.rng.random())
        self.game.scheduler.call_later(delay, lambda: self._click(target, pos))

    def _click(self, target: int, pos: tuple[float, float]) -> None:
        self.clicks += 1
        self.game.activate(target, pos)

    def _other_cell(self, index: int, cells: int) -> int:
        if cells < 2:  # noqa: PLR2004
            return index
        other = self.rng.randint(0, cells - 2)
        return other + 1 if other >= index else other


def simulate(
    settings: Settings,
    *,
    seed: int | None = None,
    profile: BotProfile | None = None,
    realtime: bool = False,
    listener: Callable[[Event], None] | None = None,
) -> EventLog:
    """Play one full session with a bot and return its log.

    Args:
        settings: Session settings

    Keyword Args:
        seed: Seed for game and bot randomness (virtual-time runs are reproducible)
        profile: Bot behaviour
        realtime: Run on timer threads in wall-clock time instead of virtual time
        listener: Extra callback for each event (e.g. live printing)
    """
    log = EventLog()
    done = threading.Event()

    def on_event(event: Event) -> None:
        log.record(event)
        if listener is not None:
            listener(event)
        if isinstance(event, SessionEnd):
            done.set()

    game_rng = random.Random(seed)
    bot_rng = random.Random(None if seed is None else seed + 1)

    if realtime:
        game = Game(scheduler=ThreadingScheduler(), rng=game_rng, listener=on_event)
        Bot(game, profile, bot_rng)
        game.start(settings)
        if not done.wait(timeout=settings.duration_ms / 1000 + REALTIME_GRACE_S):
            game.end()
        return log

    scheduler = ManualScheduler()
    base = utc_now()
    game = Game(
        scheduler=scheduler,
        rng=game_rng,
        wall_clock=lambda: base + timedelta(milliseconds=scheduler.now_ms()),
        listener=on_event,
    )
    Bot(game, profile, bot_rng)
    game.start(settings)
    scheduler.run_until_idle()
    return log
