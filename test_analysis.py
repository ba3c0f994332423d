from pathlib import Path

import pytest

from whaclog.analysis import (
    MAX_HEATMAP_CELLS,
    cell_stats,
    final_score,
    reaction_times_ms,
    score_series,
    sorted_events,
    summarize,
)
from whaclog.codec import decode
from whaclog.events import EventType
from whaclog.models import to_document

FIXTURE = Path(__file__).parent / "fixtures" / "20250909-202300-172-6e68.log"


def make_doc(text=None):
    return to_document(decode(FIXTURE.read_text() if text is None else text))


def test_summary_of_fixture():
    summary = summarize(make_doc())

    assert summary["gameId"] == "20250909-202300-172-6e68"
    assert (summary["rows"], summary["cols"]) == (4, 4)
    assert summary["duration_s"] == 10.0
    assert summary["final_score"] == 7
    assert summary["shows"] == 11
    assert summary["hides"] == 3
    assert summary["hits"] == 7
    assert summary["misses"] == 2
    assert summary["unknown"] == 0
    assert summary["accuracy"] == pytest.approx(7 / 9)
    assert summary["hit_rate"] == pytest.approx(7 / 11)
    assert summary["mean_reaction_ms"] == pytest.approx(3306 / 7)


def test_score_series_steps():
    doc = make_doc()
    series = score_series(sorted_events(doc.events), 10.0)

    assert series[0] == {"t": 0.0, "s": 0}
    assert [p["s"] for p in series] == [0, 1, 2, 3, 4, 5, 6, 7, 7]
    assert series[1]["t"] == 0.612
    assert series[-1] == {"t": 10.0, "s": 7}


def test_cell_heatmap():
    doc = make_doc()
    cells = cell_stats(doc.events, 4, 4)

    assert len(cells) == 16
    by_index = {c.index: c for c in cells}
    # r2c2: shown, hit, and a stray click later on
    assert (by_index[5].shows, by_index[5].hits, by_index[5].misses) == (1, 1, 1)
    # r4c1: only a wrong click
    assert (by_index[12].row, by_index[12].col) == (4, 1)
    assert (by_index[12].shows, by_index[12].hits, by_index[12].misses) == (0, 0, 1)
    # r1c1: shown and timed out
    assert (by_index[0].shows, by_index[0].hits) == (1, 0)
    assert sum(c.hits for c in cells) == 7


def test_reaction_times():
    doc = make_doc()
    assert reaction_times_ms(doc.events) == [512, 597, 458, 419, 479, 404, 437]


def test_final_score_falls_back_to_last_hit_then_zero():
    lines = FIXTURE.read_text().splitlines()
    without_end = make_doc("\n".join(lines[:-1]))
    assert final_score(without_end.events) == 7

    only_start = make_doc(lines[0])
    assert final_score(only_start.events) == 0
    assert summarize(only_start)["accuracy"] is None


def test_hit_implies_a_show_and_out_of_board_cells_are_ignored():
    text = "\n".join(
        [
            "2025-09-09T18:23:00.172Z | 0.500s | gameId=g | HIT   @ r1c2 (#1) | pos_rel=(0.500,0.500) | score=1",
            "2025-09-09T18:23:00.272Z | 0.600s | gameId=g | MISS  @ r9c9 (#80) | pos_rel=(0.500,0.500)",
        ],
    )
    cells = cell_stats(make_doc(text).events, 2, 2)

    assert (cells[1].shows, cells[1].hits) == (1, 1)
    assert sum(c.misses for c in cells) == 0


def test_board_inferred_when_settings_missing():
    text = "\n".join(
        [
            "2025-09-09T18:23:00.172Z | 0.100s | gameId=g | SHOW  @ r3c2 (#7)",
            "2025-09-09T18:23:00.972Z | 0.900s | gameId=g | HIDE  @ r3c2 (#7)",
        ],
    )
    summary = summarize(make_doc(text))

    assert (summary["rows"], summary["cols"]) == (3, 2)
    assert summary["duration_s"] == 0.9
    assert summary["cells"][5]["shows"] == 1


def test_events_sorted_by_relative_time():
    text = "\n".join(
        [
            "2025-09-09T18:23:00.972Z | 0.900s | gameId=g | HIDE  @ r1c1 (#0)",
            "2025-09-09T18:23:00.172Z | 0.100s | gameId=g | SHOW  @ r1c1 (#0)",
        ],
    )
    events = sorted_events(make_doc(text).events)
    assert [e.type for e in events] == [EventType.SHOW, EventType.HIDE]


def test_oversized_boards_get_no_heatmap():
    huge_settings = "\n".join(
        [
            "2025-09-09T18:23:00.172Z | 0.000s | gameId=g | GAME_START | "
            "settings={grid=3000x3000,duration_ms=10000,mole_up_ms=[650,1200],idle_gap_ms=[220,500]}",
            "2025-09-09T18:23:00.272Z | 0.100s | gameId=g | SHOW  @ r1c1 (#0)",
            "2025-09-09T18:23:00.772Z | 0.600s | gameId=g | HIT   @ r1c1 (#0) | pos_rel=(0.500,0.500) | score=1",
        ],
    )
    summary = summarize(make_doc(huge_settings))
    assert (summary["rows"], summary["cols"]) == (3000, 3000)
    assert summary["cells"] == []
    assert summary["hits"] == 1
    assert summary["mean_reaction_ms"] == 500

    # No settings: board inferred from a far-away cell
    huge_cell = "2025-09-09T18:23:00.172Z | 0.100s | gameId=g | SHOW  @ r999999999c9 (#0)"
    summary = summarize(make_doc(huge_cell))
    assert summary["rows"] == 999999999
    assert summary["cells"] == []


def test_heatmap_cap_is_inclusive():
    assert len(cell_stats([], 64, MAX_HEATMAP_CELLS // 64)) == MAX_HEATMAP_CELLS
    assert cell_stats([], 64, MAX_HEATMAP_CELLS // 64 + 1) == []
