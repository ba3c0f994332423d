import random
import re
from datetime import UTC, datetime, timedelta

import pytest

from whaclog.events import Hide, Hit, InvalidSettings, Miss, RelPos, SessionEnd, SessionStart, Settings, Show
from whaclog.recorder import EventLog
from whaclog.scheduler import ManualScheduler
from whaclog.session import FIRST_MOLE_DELAY_MS, Game, SessionState
from whaclog.simulate import simulate

BASE_TS = datetime(2025, 9, 9, 18, 23, 0, 172000, tzinfo=UTC)


def make_game(seed=1):
    sched = ManualScheduler()
    log = EventLog()
    game = Game(
        scheduler=sched,
        rng=random.Random(seed),
        wall_clock=lambda: BASE_TS + timedelta(milliseconds=sched.now_ms()),
        listener=log,
    )
    return game, sched, log


def start_and_show(game, sched, settings=None):
    game.start(settings or Settings())
    sched.advance(FIRST_MOLE_DELAY_MS)
    assert game.visible_cell is not None
    return game.visible_cell


def assert_sequence_invariants(events, settings):
    assert isinstance(events[0], SessionStart)
    assert sum(isinstance(e, SessionStart) for e in events) == 1
    assert sum(isinstance(e, SessionEnd) for e in events) <= 1
    if any(isinstance(e, SessionEnd) for e in events):
        assert isinstance(events[-1], SessionEnd)

    assert len({e.game_id for e in events}) == 1
    rel = [e.t_rel_s for e in events]
    assert rel == sorted(rel)

    open_cell = None
    last_show = None
    scores = []
    for e in events:
        match e:
            case Show(cell=cell):
                assert open_cell is None, "SHOW while another mole is up"
                open_cell = cell.index
                last_show = e
            case Hide(cell=cell):
                assert open_cell == cell.index
                low, high = settings.mole_up_ms
                assert low <= round((e.t_rel_s - last_show.t_rel_s) * 1000) <= high
                open_cell = None
            case Hit(cell=cell, score=score):
                assert open_cell == cell.index
                open_cell = None
                scores.append(score)
            case Miss(pos=pos):
                assert 0 <= pos.x <= 1
                assert 0 <= pos.y <= 1

    assert scores == list(range(1, len(scores) + 1))
    if isinstance(events[-1], SessionEnd):
        assert events[-1].final_score == (scores[-1] if scores else 0)


def test_start_then_end_emits_start_and_end_only():
    game, sched, log = make_game()
    start = game.start(Settings())
    end = game.end()

    assert isinstance(start, SessionStart)
    assert start.settings == Settings()
    assert start.t_rel_s == 0
    assert isinstance(end, SessionEnd)
    assert end.final_score == 0
    assert log.events == [start, end]
    assert game.state is SessionState.ENDED

    # Cancelled timers never fire
    sched.run_until_idle()
    assert log.events == [start, end]


def test_game_id_format():
    game, _, _ = make_game()
    game.start(Settings())
    assert re.fullmatch(r"\d{8}-\d{6}-\d{3}-[0-9a-f]{4}", game.game_id)


def test_invalid_settings_raise_and_change_nothing():
    game, sched, log = make_game()
    bad = Settings(rows=0, duration_ms=0, mole_up_ms=(900, 100), idle_gap_ms=(-1, 5))

    with pytest.raises(InvalidSettings) as exc:
        game.start(bad)

    assert len(exc.value.problems) == 4
    assert game.state is SessionState.NOT_STARTED
    assert log.events == []
    assert sched.pending == 0


def test_invalid_settings_leave_running_session_untouched():
    game, _, log = make_game()
    game.start(Settings())
    before = log.events

    with pytest.raises(InvalidSettings):
        game.start(Settings(cols=-2), force=True)

    assert game.state is SessionState.RUNNING
    assert log.events == before


def test_first_mole_after_warm_up():
    game, sched, log = make_game()
    game.start(Settings())

    sched.advance(FIRST_MOLE_DELAY_MS - 1)
    assert game.visible_cell is None

    sched.advance(1)
    show = log.events[-1]
    assert isinstance(show, Show)
    assert show.t_rel_s == 0.1
    assert game.visible_cell == show.cell.index
    assert 0 <= show.cell.index < 16


def test_hit_scores_and_clears_slot():
    game, sched, log = make_game()
    idx = start_and_show(game, sched)

    hit = game.activate(idx, (0.25, 0.75))

    assert isinstance(hit, Hit)
    assert hit.score == 1
    assert hit.cell.index == idx
    assert (hit.pos.x, hit.pos.y) == (0.25, 0.75)
    assert game.score == 1
    assert game.visible_cell is None
    assert log.events[-1] is hit


def test_second_click_on_scored_mole_is_a_miss():
    game, sched, _ = make_game()
    idx = start_and_show(game, sched)

    game.activate(idx)
    again = game.activate(idx)

    assert isinstance(again, Miss)
    assert game.score == 1


def test_wrong_cell_is_a_miss_without_state_change():
    game, sched, _ = make_game()
    idx = start_and_show(game, sched)

    miss = game.activate((idx + 1) % 16, (1.7, -0.2))

    assert isinstance(miss, Miss)
    assert (miss.pos.x, miss.pos.y) == (1.0, 0.0)
    assert game.score == 0
    assert game.visible_cell == idx


def test_position_is_quantized():
    game, sched, _ = make_game()
    idx = start_and_show(game, sched)

    hit = game.activate(idx, (0.123456, 0.98765))
    assert (hit.pos.x, hit.pos.y) == (0.123, 0.988)


def test_actions_outside_a_running_session_are_ignored():
    game, sched, log = make_game()
    assert game.activate(0) is None

    idx = start_and_show(game, sched)
    assert game.activate(16) is None
    assert game.activate(-1) is None

    game.end()
    count = len(log.events)
    assert game.activate(idx) is None
    assert game.end() is None
    assert len(log.events) == count


def test_mole_auto_hides_within_up_range():
    game, sched, log = make_game()
    idx = start_and_show(game, sched)
    show = log.events[-1]

    # Next deadline is the auto-hide (session end is much later)
    sched.advance_to(sched.next_deadline())
    hide = log.events[-1]

    assert isinstance(hide, Hide)
    assert hide.cell == show.cell
    assert game.visible_cell is None
    assert 650 <= round((hide.t_rel_s - show.t_rel_s) * 1000) <= 1200
    assert idx == hide.cell.index


def test_session_ends_at_deadline():
    game, sched, log = make_game()
    game.start(Settings(duration_ms=3000))
    sched.run_until_idle()

    end = log.events[-1]
    assert isinstance(end, SessionEnd)
    assert end.t_rel_s == 3.0
    assert game.state is SessionState.ENDED
    assert sched.pending == 0


def test_moles_never_repeat_a_cell_back_to_back():
    game, sched, log = make_game(seed=3)
    game.start(Settings(rows=2, cols=1))
    sched.run_until_idle()

    shows = [e.cell.index for e in log.events if isinstance(e, Show)]
    assert len(shows) > 10
    assert all(a != b for a, b in zip(shows, shows[1:], strict=False))


def test_single_cell_board_keeps_showing_the_same_cell():
    game, sched, log = make_game()
    game.start(Settings(rows=1, cols=1, duration_ms=5000))
    sched.run_until_idle()

    shows = [e for e in log.events if isinstance(e, Show)]
    assert len(shows) > 1
    assert all(e.cell.index == 0 for e in shows)
    assert isinstance(log.events[-1], SessionEnd)


def test_start_while_running_is_ignored():
    game, _, log = make_game()
    first = game.start(Settings())

    assert game.start(Settings(rows=2, cols=2)) is None
    assert game.session.settings == Settings()
    assert log.events == [first]


def test_forced_restart_ends_old_session_and_drops_its_timers():
    game, sched, log = make_game()
    old = game.start(Settings())
    new = game.start(Settings(rows=2, cols=2), force=True)

    assert isinstance(new, SessionStart)
    assert isinstance(log.events[1], SessionEnd)
    assert log.events[1].game_id == old.game_id
    assert game.session.generation == 2
    assert game.events == [new]

    # Only the new session's first mole appears
    sched.advance(FIRST_MOLE_DELAY_MS)
    shows = [e for e in log.events if isinstance(e, Show)]
    assert len(shows) == 1
    assert shows[0].game_id == new.game_id
    assert shows[0].cell.index < 4


def test_stale_timer_is_a_no_op_even_if_not_cancelled():
    game, sched, log = make_game()
    game.start(Settings())
    sess = game.session

    # Lose the cancellation handle; the generation check still protects the new session
    sess.mole_timer = None
    game.start(Settings(), force=True)
    sched.advance(FIRST_MOLE_DELAY_MS)

    shows = [e for e in log.events if isinstance(e, Show)]
    assert len(shows) == 1
    assert shows[0].game_id == game.game_id


def test_events_are_returned_to_the_caller_and_listeners():
    game, sched, log = make_game()
    seen = []
    game.add_listener(seen.append)
    start_and_show(game, sched)

    assert seen == log.events == game.events
    assert len(log.lines) == 2
    assert log.tail(1) == log.lines[-1:]


def test_simulated_sessions_satisfy_invariants():
    for seed in range(5):
        settings = Settings(duration_ms=10_000)
        log = simulate(settings, seed=seed)
        events = log.events

        assert isinstance(events[-1], SessionEnd)
        assert all(e.t_rel_s <= 10 for e in events)
        assert any(isinstance(e, Hit) for e in events)
        assert_sequence_invariants(events, settings)


def test_simulation_is_reproducible_for_a_seed():
    a = simulate(Settings(duration_ms=5000), seed=42)
    b = simulate(Settings(duration_ms=5000), seed=42)
    assert [type(e) for e in a.events] == [type(e) for e in b.events]
    assert [e.t_rel_s for e in a.events] == [e.t_rel_s for e in b.events]


def test_failing_listener_does_not_stall_the_session():
    game, sched, log = make_game()

    def broken(event):
        msg = f"cannot handle {event.type}"
        raise RuntimeError(msg)

    game.add_listener(broken)

    assert isinstance(game.start(Settings(duration_ms=5000)), SessionStart)
    # Session deadline and first mole are both armed
    assert sched.pending == 2

    sched.advance(FIRST_MOLE_DELAY_MS)
    hit = game.activate(game.visible_cell)
    assert isinstance(hit, Hit)
    # Next mole is scheduled after the hit
    assert sched.pending == 2

    sched.run_until_idle()
    assert sum(isinstance(e, Show) for e in log.events) > 1
    assert any(isinstance(e, Hide) for e in log.events)
    assert isinstance(log.events[-1], SessionEnd)
    assert game.start(Settings()) is not None


def test_position_accepts_any_pair():
    game, sched, _ = make_game()
    idx = start_and_show(game, sched)

    miss = game.activate((idx + 1) % 16, [0.3, 0.4])
    hit = game.activate(idx, RelPos(0.6, 1.5))

    assert (miss.pos.x, miss.pos.y) == (0.3, 0.4)
    assert (hit.pos.x, hit.pos.y) == (0.6, 1.0)
