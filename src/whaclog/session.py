"""
Whac-A-Mole session state machine.

Session lifecycle:
    NOT_STARTED -> RUNNING -> ENDED

Mole lifecycle (at most one mole up at any time):
    next-mole timer -> SHOW -> HIT    (activate() on the visible mole)
                            -> HIDE   (auto-hide timer)
                    -> next-mole timer (idle gap) -> ...

Timers:
    - session-end deadline, armed once per session
    - exactly one of next-mole / auto-hide while a session runs

Every timer callback captures the generation of the session that armed it.
A callback whose generation no longer matches (session ended or replaced) is
a no-op, whether or not its cancellation won the race.

Thread Safety:
    All transitions run under one re-entrant lock, so `activate()` and a
    firing auto-hide timer never interleave.
"""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Final

from .events import (
    CellRef,
    Hide,
    Hit,
    Miss,
    RelPos,
    SessionEnd,
    SessionStart,
    Settings,
    Show,
    validate_settings,
)
from .grid import label
from .scheduler import ThreadingScheduler

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from logging import Logger

    from .events import Event
    from .scheduler import Scheduler, Timer

    type Listener = Callable[[Event], None]

# Delay before the first mole of a session (not drawn from the idle gap)
FIRST_MOLE_DELAY_MS: Final = 100

# Largest random suffix of a game id (4 hex digits)
GAME_ID_SUFFIX_MAX: Final = 0xFFFE

NO_CELL: Final = -1


class SessionState(StrEnum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    ENDED = "ended"


@dataclass
class MoleSlot:
    """The single mole slot of the board."""

    index: int = NO_CELL   # visible cell, NO_CELL when hidden
    scored: bool = False   # already hit (prevents double scoring)

    @property
    def visible(self) -> bool:
        return self.index != NO_CELL


@dataclass
class Session:
    """State of one play-through, owned by a `Game`."""

    game_id: str
    settings: Settings
    generation: int
    origin_ms: int                       # scheduler clock at session start
    score: int = 0
    state: SessionState = SessionState.RUNNING
    mole: MoleSlot = field(default_factory=MoleSlot)
    prev_index: int = NO_CELL            # last cell a mole appeared in
    end_timer: Timer | None = None
    mole_timer: Timer | None = None      # next-mole or auto-hide, never both
    events: list[Event] = field(default_factory=list)


def utc_now() -> datetime:
    return datetime.now(UTC)


def new_game_id(now: datetime, rng: random.Random) -> str:
    """Return a k-sortable id: YYYYMMDD-HHMMSS-mmm-xxxx (local time + random hex)."""
    local = now.astimezone()
    return f"{local:%Y%m%d-%H%M%S}-{local.microsecond // 1000:03d}-{rng.randint(0, GAME_ID_SUFFIX_MAX):04x}"


class Game:
    """
    Drives sessions and emits their events.

    Collaborators are injected so sessions can run in virtual time:
        scheduler  -> millisecond clock + timers
        rng        -> every random draw (cells, mole-up time, idle gap, id suffix)
        wall_clock -> event timestamps
        listeners  -> called with each event as it is emitted
    """

    scheduler: Scheduler
    rng: random.Random
    wall_clock: Callable[[], datetime]
    session: Session | None

    _log: Logger
    _listeners: list[Listener]
    _lock: threading.RLock
    _generation: int

    def __init__(
        self,
        *,
        scheduler: Scheduler | None = None,
        rng: random.Random | None = None,
        wall_clock: Callable[[], datetime] | None = None,
        listener: Listener | None = None,
    ) -> None:
        self.scheduler = scheduler or ThreadingScheduler()
        self.rng = rng or random.Random()
        self.wall_clock = wall_clock or utc_now
        self.session = None

        self._log = logging.getLogger("Game")
        self._listeners = [listener] if listener is not None else []
        self._lock = threading.RLock()
        self._generation = 0

    # ==================== Public API ====================

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    @property
    def state(self) -> SessionState:
        return SessionState.NOT_STARTED if self.session is None else self.session.state

    @property
    def score(self) -> int:
        return 0 if self.session is None else self.session.score

    @property
    def game_id(self) -> str | None:
        return None if self.session is None else self.session.game_id

    @property
    def events(self) -> list[Event]:
        """Events of the current session, in emission order."""
        with self._lock:
            return [] if self.session is None else list(self.session.events)

    @property
    def visible_cell(self) -> int | None:
        with self._lock:
            if self.session is None or not self.session.mole.visible:
                return None
            return self.session.mole.index

    def start(self, settings: Settings, *, force: bool = False) -> SessionStart | None:
        """Start a new session.

        Args:
            settings: Session settings

        Keyword Args:
            force: End a running session first instead of ignoring the request

        Returns:
            The SESSION_START event, or None if a session is already running

        Raises:
            InvalidSettings: Settings violate a constraint (nothing changes)
        """
        validate_settings(settings)

        with self._lock:
            if self.state is SessionState.RUNNING:
                if not force:
                    self._log.warning("Session %s already running, start ignored", self.game_id)
                    return None
                self._log.info("Force-resetting session %s", self.game_id)
                self.end()

            self._generation += 1
            self.session = Session(
                game_id=new_game_id(self.wall_clock(), self.rng),
                settings=settings,
                generation=self._generation,
                origin_ms=self.scheduler.now_ms(),
            )
            self._log.info(
                "Session [bright_green]%s[/] started (%dx%d, %d ms)",
                self.session.game_id,
                settings.rows,
                settings.cols,
                settings.duration_ms,
            )

            event = SessionStart(**self._common(), settings=settings)
            self.session.end_timer = self._call_later(settings.duration_ms, self.end)
            self.session.mole_timer = self._call_later(FIRST_MOLE_DELAY_MS, self._show_random_mole)

            self._emit(event)
            return event

    def activate(self, cell_index: int, pos: RelPos | Sequence[float] = (0.5, 0.5)) -> Hit | Miss | None:
        """Register a player action on a cell.

        Args:
            cell_index: 0-based cell index
            pos: Position inside the cell, each axis in [0, 1] (clamped)

        Returns:
            HIT or MISS event, or None when the action is stale (no running
            session, or cell outside the board)
        """
        with self._lock:
            sess = self.session
            if sess is None or sess.state is not SessionState.RUNNING:
                self._log.debug("Ignoring action on #%s: no running session", cell_index)
                return None

            if not (0 <= cell_index < sess.settings.cells):
                self._log.debug("Ignoring action on #%s: outside the board", cell_index)
                return None

            rel = RelPos.clamped(pos.x, pos.y) if isinstance(pos, RelPos) else RelPos.clamped(*pos)
            cell = CellRef.at(cell_index, sess.settings.cols)

            if sess.mole.index != cell_index or sess.mole.scored:
                miss = Miss(**self._common(), cell=cell, pos=rel)
                self._emit(miss)
                return miss

            sess.mole.scored = True
            sess.score += 1
            self._cancel_mole_timer()
            sess.mole = MoleSlot()

            hit = Hit(**self._common(), cell=cell, pos=rel, score=sess.score)
            self._emit(hit)
            self._schedule_next_mole()
            return hit

    def end(self) -> SessionEnd | None:
        """End the running session (also fired by the session deadline).

        Returns:
            The SESSION_END event, or None if no session is running
        """
        with self._lock:
            sess = self.session
            if sess is None or sess.state is not SessionState.RUNNING:
                return None

            if sess.end_timer is not None:
                sess.end_timer.cancel()
                sess.end_timer = None
            self._cancel_mole_timer()

            # A mole still up is closed implicitly by SESSION_END
            sess.mole = MoleSlot()
            sess.state = SessionState.ENDED

            event = SessionEnd(**self._common(), final_score=sess.score)
            self._emit(event)
            self._log.info("Session [bright_green]%s[/] ended, final score %d", sess.game_id, sess.score)
            return event

    # ==================== Mole Lifecycle ====================

    def _show_random_mole(self) -> None:
        sess = self._running()
        cells = sess.settings.cells

        idx = self.rng.randint(0, cells - 1)
        while cells > 1 and idx == sess.prev_index:
            idx = self.rng.randint(0, cells - 1)

        sess.prev_index = idx
        sess.mole = MoleSlot(index=idx)
        cell = CellRef.at(idx, sess.settings.cols)
        self._emit(Show(**self._common(), cell=cell))

        up_ms = self.rng.randint(*sess.settings.mole_up_ms)
        sess.mole_timer = self._call_later(up_ms, lambda: self._auto_hide(idx))

    def _auto_hide(self, idx: int) -> None:
        sess = self._running()
        if sess.mole.index != idx or sess.mole.scored:
            return

        sess.mole_timer = None
        sess.mole = MoleSlot()
        self._emit(Hide(**self._common(), cell=CellRef.at(idx, sess.settings.cols)))
        self._schedule_next_mole()

    def _schedule_next_mole(self) -> None:
        sess = self._running()
        gap_ms = self.rng.randint(*sess.settings.idle_gap_ms)
        sess.mole_timer = self._call_later(gap_ms, self._show_random_mole)

    # ==================== Utility Methods ====================

    def _running(self) -> Session:
        assert self.session is not None
        return self.session

    def _call_later(self, delay_ms: int, action: Callable[[], None]) -> Timer:
        """Arm a timer that only acts if its session is still the running one."""

        generation = self._running().generation

        def fire() -> None:
            with self._lock:
                sess = self.session
                if sess is None or sess.generation != generation or sess.state is not SessionState.RUNNING:
                    self._log.debug("Dropping stale timer of generation %d", generation)
                    return
                action()

        return self.scheduler.call_later(delay_ms, fire)

    def _cancel_mole_timer(self) -> None:
        sess = self._running()
        if sess.mole_timer is not None:
            sess.mole_timer.cancel()
            sess.mole_timer = None

    def _common(self) -> dict:
        sess = self._running()
        elapsed_ms = max(0, self.scheduler.now_ms() - sess.origin_ms)
        ts = self.wall_clock()
        # Millisecond precision, as kept in the log
        ts = ts.replace(microsecond=ts.microsecond // 1000 * 1000)
        return {"ts": ts, "t_rel_s": elapsed_ms / 1000, "game_id": sess.game_id}

    def _emit(self, event: Event) -> None:
        sess = self._running()
        sess.events.append(event)

        cell = getattr(event, "cell", None)
        where = f" @ {label(cell.row, cell.col)}" if cell is not None else ""
        self._log.debug("[%s] %s%s (t=%.3fs)", sess.game_id, event.type, where, event.t_rel_s)

        # A failing listener must not leave the session half-transitioned
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                self._log.exception("Listener failed on %s event", event.type)
