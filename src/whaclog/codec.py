"""
Event log codec.

One event per line:

    <ISO-8601 ts> | <t_rel>s | gameId=<id> | <payload>

Payloads:

    GAME_START | settings={grid=RxC,duration_ms=D,mole_up_ms=[U0,U1],idle_gap_ms=[G0,G1]}
    GAME_END | final_score=N
    SHOW  @ r<row>c<col> (#<index>)
    HIDE  @ r<row>c<col> (#<index>)
    HIT   @ r<row>c<col> (#<index>) | pos_rel=(X,Y) | score=N
    MISS  @ r<row>c<col> (#<index>) | pos_rel=(X,Y)

Decoding is lenient:
    - a line without the outer four-field shape is skipped
    - a payload with a known keyword but a malformed body, or an unknown
      keyword, becomes an `Unknown` event carrying the payload verbatim
    - missing settings fields decode to None (`PartialSettings`)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Final

from .events import (
    POS_DECIMALS,
    TIME_DECIMALS,
    CellRef,
    EventType,
    Hide,
    Hit,
    Miss,
    PartialSettings,
    RelPos,
    SessionEnd,
    SessionStart,
    Settings,
    Show,
    Unknown,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from .events import Event

SEP: Final = " | "
GAME_ID_KEY: Final = "gameId="
KEYWORD_WIDTH: Final = 5   # SHOW/HIDE/HIT/MISS are padded so "@" lines up

_log = logging.getLogger("Codec")


# ==================== Encoder ====================


def format_ts(ts: datetime) -> str:
    """ISO-8601 in UTC, millisecond precision, `Z` suffix. Naive values are taken as UTC."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_settings(settings: Settings | PartialSettings) -> str:
    """Render a settings block. Unknown fields of partial settings are left out."""
    fields: list[str] = []
    if settings.rows is not None and settings.cols is not None:
        fields.append(f"grid={settings.rows}x{settings.cols}")
    if settings.duration_ms is not None:
        fields.append(f"duration_ms={settings.duration_ms}")
    if settings.mole_up_ms is not None:
        fields.append(f"mole_up_ms=[{settings.mole_up_ms[0]},{settings.mole_up_ms[1]}]")
    if settings.idle_gap_ms is not None:
        fields.append(f"idle_gap_ms=[{settings.idle_gap_ms[0]},{settings.idle_gap_ms[1]}]")
    return "settings={" + ",".join(fields) + "}"


def _fmt_cell(kind: EventType, cell: CellRef) -> str:
    return f"{kind.value:<{KEYWORD_WIDTH}} @ r{cell.row}c{cell.col} (#{cell.index})"


def _fmt_pos(pos: RelPos) -> str:
    return f"pos_rel=({pos.x:.{POS_DECIMALS}f},{pos.y:.{POS_DECIMALS}f})"


def encode_payload(event: Event) -> str:
    match event:
        case SessionStart(settings=settings):
            return f"{event.type.value}{SEP}{format_settings(settings)}"
        case SessionEnd(final_score=score):
            return f"{event.type.value}{SEP}final_score={score}"
        case Show(cell=cell) | Hide(cell=cell):
            return _fmt_cell(event.type, cell)
        case Hit(cell=cell, pos=pos, score=score):
            return f"{_fmt_cell(event.type, cell)}{SEP}{_fmt_pos(pos)}{SEP}score={score}"
        case Miss(cell=cell, pos=pos):
            return f"{_fmt_cell(event.type, cell)}{SEP}{_fmt_pos(pos)}"
        case Unknown(raw=raw):
            return raw

    msg = f"cannot encode {event!r}"
    raise TypeError(msg)


def encode_event(event: Event) -> str:
    """Encode one event as one log line (no trailing newline)."""
    return SEP.join(
        (
            format_ts(event.ts),
            f"{event.t_rel_s:.{TIME_DECIMALS}f}s",
            f"{GAME_ID_KEY}{event.game_id}",
            encode_payload(event),
        ),
    )


def encode(events: Iterable[Event]) -> str:
    """Encode events as newline-terminated log text."""
    return "".join(f"{encode_event(e)}\n" for e in events)


# ==================== Decoder ====================


class _Mismatch(Exception):
    """Input does not follow the grammar at the cursor."""


class _Cursor:
    """Recursive-descent helper over a single string."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0

    def at_end(self) -> bool:
        return self.pos >= len(self.text)

    def skip_ws(self) -> None:
        while not self.at_end() and self.text[self.pos].isspace():
            self.pos += 1

    def accept(self, literal: str) -> bool:
        if self.text.startswith(literal, self.pos):
            self.pos += len(literal)
            return True
        return False

    def expect(self, literal: str) -> None:
        if not self.accept(literal):
            raise _Mismatch(literal)

    def expect_end(self) -> None:
        self.skip_ws()
        if not self.at_end():
            raise _Mismatch("end of input")

    def _span(self, pred: Callable[[str], bool]) -> str:
        start = self.pos
        while not self.at_end() and pred(self.text[self.pos]):
            self.pos += 1
        return self.text[start : self.pos]

    def word(self) -> str:
        return self._span(lambda ch: ch.isascii() and (ch.isalpha() or ch == "_"))

    def integer(self) -> int:
        digits = self._span(lambda ch: "0" <= ch <= "9")
        if not digits:
            raise _Mismatch("integer")
        return int(digits)

    def decimal(self) -> float:
        start = self.pos
        self.integer()
        if self.accept("."):
            self.integer()
        return float(self.text[start : self.pos])

    def sep(self) -> None:
        """Field separator: `|` with optional surrounding whitespace."""
        self.skip_ws()
        self.expect("|")
        self.skip_ws()


def _parse_ts(raw: str) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return None


def _parse_rel(raw: str) -> float | None:
    cur = _Cursor(raw)
    try:
        value = cur.decimal()
        cur.expect("s")
        cur.expect_end()
    except _Mismatch:
        return None
    return value


def _parse_game_id(raw: str) -> str | None:
    if not raw.startswith(GAME_ID_KEY):
        return None
    game_id = raw.removeprefix(GAME_ID_KEY)
    if not game_id or any(ch.isspace() for ch in game_id):
        return None
    return game_id


def _parse_cell(cur: _Cursor) -> CellRef:
    cur.skip_ws()
    cur.expect("@")
    cur.skip_ws()
    cur.expect("r")
    row = cur.integer()
    cur.expect("c")
    col = cur.integer()
    cur.skip_ws()
    cur.expect("(#")
    index = cur.integer()
    cur.expect(")")
    return CellRef(row=row, col=col, index=index)


def _parse_pos(cur: _Cursor) -> RelPos:
    cur.expect("pos_rel=(")
    cur.skip_ws()
    x = cur.decimal()
    cur.skip_ws()
    cur.expect(",")
    cur.skip_ws()
    y = cur.decimal()
    cur.skip_ws()
    cur.expect(")")
    return RelPos(x=x, y=y)


def _parse_range(raw: str) -> tuple[int, int] | None:
    cur = _Cursor(raw)
    try:
        cur.expect("[")
        lo = cur.integer()
        cur.expect(",")
        hi = cur.integer()
        cur.expect("]")
        cur.expect_end()
    except _Mismatch:
        return None
    return lo, hi


def _parse_int(raw: str) -> int | None:
    cur = _Cursor(raw)
    try:
        value = cur.integer()
        cur.expect_end()
    except _Mismatch:
        return None
    return value


def _parse_grid(raw: str) -> tuple[int, int] | None:
    cur = _Cursor(raw)
    try:
        rows = cur.integer()
        cur.expect("x")
        cols = cur.integer()
        cur.expect_end()
    except _Mismatch:
        return None
    return rows, cols


def _split_fields(body: str) -> dict[str, str]:
    """Split `k=v,k=v` on commas outside brackets. Items without `=` are ignored."""
    items: list[str] = []
    depth = 0
    start = 0
    for i, ch in enumerate(body):
        if ch == "[":
            depth += 1
        elif ch == "]":
            depth = max(0, depth - 1)
        elif ch == "," and depth == 0:
            items.append(body[start:i])
            start = i + 1
    items.append(body[start:])

    fields: dict[str, str] = {}
    for item in items:
        key, eq, value = item.partition("=")
        if eq:
            fields.setdefault(key.strip(), value.strip())
    return fields


def _parse_settings(cur: _Cursor) -> Settings | PartialSettings:
    cur.expect("settings={")
    end = cur.text.find("}", cur.pos)
    if end < 0:
        raise _Mismatch("}")
    fields = _split_fields(cur.text[cur.pos : end])
    cur.pos = end + 1

    grid = _parse_grid(fields["grid"]) if "grid" in fields else None
    partial = PartialSettings(
        rows=grid[0] if grid else None,
        cols=grid[1] if grid else None,
        duration_ms=_parse_int(fields["duration_ms"]) if "duration_ms" in fields else None,
        mole_up_ms=_parse_range(fields["mole_up_ms"]) if "mole_up_ms" in fields else None,
        idle_gap_ms=_parse_range(fields["idle_gap_ms"]) if "idle_gap_ms" in fields else None,
    )

    if None in (partial.rows, partial.cols, partial.duration_ms, partial.mole_up_ms, partial.idle_gap_ms):
        return partial

    return Settings(
        rows=partial.rows,  # type: ignore[arg-type]
        cols=partial.cols,  # type: ignore[arg-type]
        duration_ms=partial.duration_ms,  # type: ignore[arg-type]
        mole_up_ms=partial.mole_up_ms,  # type: ignore[arg-type]
        idle_gap_ms=partial.idle_gap_ms,  # type: ignore[arg-type]
    )


def _game_start(cur: _Cursor, common: dict) -> Event:
    cur.sep()
    settings = _parse_settings(cur)
    cur.expect_end()
    return SessionStart(**common, settings=settings)


def _game_end(cur: _Cursor, common: dict) -> Event:
    cur.sep()
    cur.expect("final_score=")
    score = cur.integer()
    cur.expect_end()
    return SessionEnd(**common, final_score=score)


def _show(cur: _Cursor, common: dict) -> Event:
    cell = _parse_cell(cur)
    cur.expect_end()
    return Show(**common, cell=cell)


def _hide(cur: _Cursor, common: dict) -> Event:
    cell = _parse_cell(cur)
    cur.expect_end()
    return Hide(**common, cell=cell)


def _hit(cur: _Cursor, common: dict) -> Event:
    cell = _parse_cell(cur)
    cur.sep()
    pos = _parse_pos(cur)
    cur.sep()
    cur.expect("score=")
    score = cur.integer()
    cur.expect_end()
    return Hit(**common, cell=cell, pos=pos, score=score)


def _miss(cur: _Cursor, common: dict) -> Event:
    cell = _parse_cell(cur)
    cur.sep()
    pos = _parse_pos(cur)
    cur.expect_end()
    return Miss(**common, cell=cell, pos=pos)


PAYLOAD_PARSERS: Final[dict[str, Callable[[_Cursor, dict], Event]]] = {
    EventType.SESSION_START.value: _game_start,
    EventType.SESSION_END.value: _game_end,
    EventType.SHOW.value: _show,
    EventType.HIDE.value: _hide,
    EventType.HIT.value: _hit,
    EventType.MISS.value: _miss,
}


def parse_payload(payload: str, *, ts: datetime, t_rel_s: float, game_id: str) -> Event:
    """Parse a payload. Never fails: unparseable payloads become `Unknown`."""
    common = {"ts": ts, "t_rel_s": t_rel_s, "game_id": game_id}
    cur = _Cursor(payload)
    parser = PAYLOAD_PARSERS.get(cur.word())

    if parser is not None:
        try:
            return parser(cur, common)
        except _Mismatch as e:
            _log.debug("Malformed payload (expected %s at %d): %s", e, cur.pos, payload)

    return Unknown(**common, raw=payload)


def parse_line(line: str) -> Event | None:
    """Parse one log line.

    Returns:
        Decoded event (possibly `Unknown`), or None if the line does not have
        the outer `ts | t_rel | gameId | payload` shape
    """
    parts = line.split("|", 3)
    if len(parts) != 4:  # noqa: PLR2004
        return None

    ts_raw, rel_raw, id_raw, payload = (p.strip() for p in parts)
    ts = _parse_ts(ts_raw)
    t_rel_s = _parse_rel(rel_raw)
    game_id = _parse_game_id(id_raw)
    if ts is None or t_rel_s is None or game_id is None:
        return None

    return parse_payload(payload, ts=ts, t_rel_s=t_rel_s, game_id=game_id)


@dataclass
class DecodedLog:
    """Result of decoding a single-session log."""

    game_id: str | None = None
    settings: Settings | PartialSettings | None = None
    events: list[Event] = field(default_factory=list)

    @property
    def unknown(self) -> list[Unknown]:
        return [e for e in self.events if isinstance(e, Unknown)]


def decode(text: str) -> DecodedLog:
    """Decode log text (LF or CRLF separated, no other line breaks) into events, in line order."""
    out = DecodedLog()
    for lineno, raw in enumerate(text.replace("\r\n", "\n").split("\n"), start=1):
        line = raw.strip()
        if not line:
            continue

        event = parse_line(line)
        if event is None:
            _log.debug("Skipping line %d (not a log line): %s", lineno, line)
            continue

        if out.game_id is None:
            out.game_id = event.game_id
        if out.settings is None and isinstance(event, SessionStart):
            out.settings = event.settings
        out.events.append(event)

    return out
