"""Replay analysis: the data the dashboard derives from a decoded game.

    - events ordered by relative time
    - final score (GAME_END, else last HIT, else 0)
    - score step series
    - per-cell shows / hits / misses (heatmap)
    - reaction times (SHOW -> HIT on the same cell)
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Final

from .events import EventType
from .grid import cell_count, to_index, to_row_col

if TYPE_CHECKING:
    from .models import EventDoc, GameDocument
    from .types import ScorePoint, Summary

# Largest board a heatmap is built for (grids come from untrusted logs)
MAX_HEATMAP_CELLS: Final = 4096

_log = logging.getLogger("Analysis")


@dataclass
class CellStats:
    index: int
    row: int
    col: int
    shows: int = 0
    hits: int = 0
    misses: int = 0


def sorted_events(events: list[EventDoc]) -> list[EventDoc]:
    """Stable sort by relative time (the decoder keeps line order)."""
    return sorted(events, key=lambda e: e.t_rel_s)


def final_score(events: list[EventDoc]) -> int:
    for e in reversed(events):
        if e.type is EventType.SESSION_END and e.final_score is not None:
            return e.final_score

    for e in reversed(events):
        if e.type is EventType.HIT and e.score is not None:
            return e.score

    return 0


def score_series(events: list[EventDoc], duration_s: float) -> list[ScorePoint]:
    """Step series of the score: starts at (0, 0), one point per HIT, closed at `duration_s`."""
    points: list[ScorePoint] = [{"t": 0.0, "s": 0}]
    for e in events:
        if e.type is EventType.HIT and e.score is not None:
            points.append({"t": e.t_rel_s, "s": e.score})

    if points[-1]["t"] < duration_s:
        points.append({"t": duration_s, "s": final_score(events)})
    return points


def cell_stats(events: list[EventDoc], rows: int, cols: int) -> list[CellStats]:
    """Per-cell counters. Events referring to cells outside the board are ignored.

    Boards larger than `MAX_HEATMAP_CELLS` get no counters (empty list).
    """
    cells: list[CellStats] = []
    if cell_count(rows, cols) > MAX_HEATMAP_CELLS:
        _log.warning("Board %dx%d too large for a heatmap, skipped", rows, cols)
        return cells

    for i in range(cell_count(rows, cols)):
        row, col = to_row_col(i, cols)  # type: ignore[misc]
        cells.append(CellStats(index=i, row=row, col=col))

    for e in events:
        if e.cell is None:
            continue

        idx: int | None = e.cell.index
        if not (0 <= e.cell.index < len(cells)):
            idx = to_index(e.cell.row, e.cell.col, cols, rows)
        if idx is None:
            continue

        cell = cells[idx]
        match e.type:
            case EventType.SHOW:
                cell.shows += 1
            case EventType.HIT:
                cell.hits += 1
                cell.shows = max(cell.shows, 1)
            case EventType.MISS:
                cell.misses += 1

    return cells


def reaction_times_ms(events: list[EventDoc]) -> list[int]:
    """Milliseconds from each SHOW to the HIT that scored it."""
    shown_at: dict[int, float] = {}
    out: list[int] = []
    for e in events:
        if e.cell is None:
            continue
        if e.type is EventType.SHOW:
            shown_at[e.cell.index] = e.t_rel_s
        elif e.type is EventType.HIT and e.cell.index in shown_at:
            out.append(round((e.t_rel_s - shown_at.pop(e.cell.index)) * 1000))
        elif e.type is EventType.HIDE:
            shown_at.pop(e.cell.index, None)
    return out


def _board_size(doc: GameDocument) -> tuple[int, int]:
    if doc.settings is not None and doc.settings.grid.rows and doc.settings.grid.cols:
        return doc.settings.grid.rows, doc.settings.grid.cols

    # No usable settings: smallest board covering every referenced cell
    cells = [e.cell for e in doc.events if e.cell is not None]
    return max((c.row for c in cells), default=0), max((c.col for c in cells), default=0)


def _duration_s(doc: GameDocument, events: list[EventDoc]) -> float:
    if doc.settings is not None and doc.settings.duration_ms is not None:
        return doc.settings.duration_ms / 1000
    return max((e.t_rel_s for e in events), default=0.0)


def summarize(doc: GameDocument) -> Summary:
    events = sorted_events(doc.events)
    rows, cols = _board_size(doc)
    duration = _duration_s(doc, events)

    def count(kind: EventType) -> int:
        return sum(1 for e in events if e.type is kind)

    hits = count(EventType.HIT)
    misses = count(EventType.MISS)
    shows = count(EventType.SHOW)
    reactions = reaction_times_ms(events)

    return {
        "gameId": doc.game_id,
        "rows": rows,
        "cols": cols,
        "duration_s": duration,
        "final_score": final_score(events),
        "shows": shows,
        "hides": count(EventType.HIDE),
        "hits": hits,
        "misses": misses,
        "unknown": count(EventType.UNKNOWN),
        "accuracy": hits / (hits + misses) if hits + misses else None,
        "hit_rate": hits / shows if shows else None,
        "mean_reaction_ms": sum(reactions) / len(reactions) if reactions else None,
        "score_series": score_series(events, duration),
        "cells": [asdict(c) for c in cell_stats(events, rows, cols)],  # type: ignore[typeddict-item]
    }
