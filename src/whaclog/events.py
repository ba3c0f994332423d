"""
Event data model shared by the session state machine and the log codec.

Every event carries the wall-clock timestamp it was emitted at, the time
relative to session start (seconds) and the session (game) id. Variants:

    SessionStart -> settings
    SessionEnd   -> final score
    Show / Hide  -> cell
    Hit          -> cell, position within cell, running score
    Miss         -> cell, position within cell
    Unknown      -> raw payload (decoder only)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, ClassVar, Final

from .grid import cell_count, to_row_col

if TYPE_CHECKING:
    from datetime import datetime

# Decimal places kept for relative time and in-cell positions
TIME_DECIMALS: Final = 3
POS_DECIMALS: Final = 3


class EventType(StrEnum):
    """Event kinds. Values are the names used on the wire and in JSON."""

    SESSION_START = "GAME_START"
    SESSION_END = "GAME_END"
    SHOW = "SHOW"
    HIDE = "HIDE"
    HIT = "HIT"
    MISS = "MISS"
    UNKNOWN = "UNKNOWN"


class InvalidSettings(ValueError):
    """Raised when session settings violate a constraint."""

    def __init__(self, problems: list[str]) -> None:
        self.problems = problems
        super().__init__("; ".join(problems))


@dataclass(frozen=True)
class Settings:
    """Session settings, fixed for the lifetime of a session.

    Defaults are those of the browser game.
    """

    rows: int = 4
    cols: int = 4
    duration_ms: int = 30_000
    mole_up_ms: tuple[int, int] = (650, 1200)   # how long a mole stays up
    idle_gap_ms: tuple[int, int] = (220, 500)   # gap before the next mole

    @property
    def cells(self) -> int:
        return cell_count(self.rows, self.cols)


@dataclass(frozen=True)
class PartialSettings:
    """Settings recovered from a log where some fields are missing (None)."""

    rows: int | None = None
    cols: int | None = None
    duration_ms: int | None = None
    mole_up_ms: tuple[int, int] | None = None
    idle_gap_ms: tuple[int, int] | None = None


def _is_int(val: object) -> bool:
    return isinstance(val, int) and not isinstance(val, bool)


def _is_range(val: object) -> bool:
    return isinstance(val, tuple) and len(val) == 2 and all(_is_int(v) for v in val)  # noqa: PLR2004


def validate_settings(settings: Settings | PartialSettings) -> Settings:
    """Check every settings constraint.

    Returns:
        The settings, narrowed to `Settings`

    Raises:
        InvalidSettings: Listing every violated constraint
    """
    if not isinstance(settings, Settings):
        raise InvalidSettings(["settings are incomplete"])

    problems: list[str] = []

    for name in ("rows", "cols"):
        val = getattr(settings, name)
        if not _is_int(val) or val < 1:
            problems.append(f"{name} must be an integer >= 1 (got {val!r})")

    if not _is_int(settings.duration_ms) or settings.duration_ms <= 0:
        problems.append(f"duration_ms must be > 0 (got {settings.duration_ms!r})")

    up = settings.mole_up_ms
    if not _is_range(up) or not (0 < up[0] <= up[1]):
        problems.append(f"mole_up_ms must satisfy 0 < min <= max (got {up!r})")

    gap = settings.idle_gap_ms
    if not _is_range(gap) or not (0 <= gap[0] <= gap[1]):
        problems.append(f"idle_gap_ms must satisfy 0 <= min <= max (got {gap!r})")

    if problems:
        raise InvalidSettings(problems)

    return settings


@dataclass(frozen=True)
class CellRef:
    row: int
    col: int
    index: int

    @classmethod
    def at(cls, index: int, cols: int) -> CellRef:
        row_col = to_row_col(index, cols)
        if row_col is None:
            msg = f"invalid cell index {index} for {cols} columns"
            raise ValueError(msg)
        return cls(row=row_col[0], col=row_col[1], index=index)


@dataclass(frozen=True)
class RelPos:
    """Position inside a cell, each axis in [0, 1]."""

    x: float
    y: float

    @classmethod
    def clamped(cls, x: float, y: float) -> RelPos:
        """Clamp to [0, 1] and quantize to the precision kept in the log."""

        def clamp(v: float) -> float:
            return round(max(0.0, min(1.0, float(v))), POS_DECIMALS)

        return cls(x=clamp(x), y=clamp(y))


@dataclass(frozen=True)
class _Event:
    ts: datetime
    t_rel_s: float
    game_id: str


@dataclass(frozen=True)
class SessionStart(_Event):
    type: ClassVar = EventType.SESSION_START
    settings: Settings | PartialSettings


@dataclass(frozen=True)
class SessionEnd(_Event):
    type: ClassVar = EventType.SESSION_END
    final_score: int


@dataclass(frozen=True)
class Show(_Event):
    type: ClassVar = EventType.SHOW
    cell: CellRef


@dataclass(frozen=True)
class Hide(_Event):
    type: ClassVar = EventType.HIDE
    cell: CellRef


@dataclass(frozen=True)
class Hit(_Event):
    type: ClassVar = EventType.HIT
    cell: CellRef
    pos: RelPos
    score: int


@dataclass(frozen=True)
class Miss(_Event):
    type: ClassVar = EventType.MISS
    cell: CellRef
    pos: RelPos


@dataclass(frozen=True)
class Unknown(_Event):
    type: ClassVar = EventType.UNKNOWN
    raw: str


type Event = SessionStart | SessionEnd | Show | Hide | Hit | Miss | Unknown
