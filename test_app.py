from pathlib import Path

from fastapi.testclient import TestClient

from whaclog.app import create_app
from whaclog.storage import LogStore

FIXTURE = Path(__file__).parent / "fixtures" / "20250909-202300-172-6e68.log"
GAME_ID = "20250909-202300-172-6e68"


def make_client(tmp_path):
    store = LogStore(tmp_path)
    return TestClient(create_app(store)), store


def test_health(tmp_path):
    client, _ = make_client(tmp_path)
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True}


def test_post_session_returns_document(tmp_path):
    client, store = make_client(tmp_path)
    resp = client.post("/sessions", json={"lines": FIXTURE.read_text().splitlines()})

    assert resp.status_code == 200
    body = resp.json()
    assert body["gameId"] == GAME_ID
    assert body["settings"] == {
        "grid": {"rows": 4, "cols": 4},
        "duration_ms": 10000,
        "mole_up_ms": [650, 1200],
        "idle_gap_ms": [220, 500],
    }
    first, hit, last = body["events"][0], body["events"][2], body["events"][-1]
    assert first["type"] == "GAME_START"
    assert hit == {
        "ts": hit["ts"],
        "t_rel_s": 0.612,
        "type": "HIT",
        "cell": {"row": 2, "col": 3, "index": 6},
        "pos_rel": {"x": 0.512, "y": 0.433},
        "score": 1,
    }
    assert last["type"] == "GAME_END"
    assert last["final_score"] == 7
    assert "cell" not in last
    assert store.list_games() == [GAME_ID]


def test_post_session_rejects_bad_batches(tmp_path):
    client, _ = make_client(tmp_path)
    assert client.post("/sessions", json={"lines": ["garbage text"]}).status_code == 400
    assert client.post("/sessions", json={"lines": []}).status_code == 422
    assert client.post("/sessions", json={"nope": 1}).status_code == 422


def test_read_endpoints(tmp_path):
    client, _ = make_client(tmp_path)
    client.post("/sessions", json={"lines": FIXTURE.read_text().splitlines()})

    assert client.get("/sessions").json() == [GAME_ID]
    assert client.get(f"/sessions/{GAME_ID}").json()["gameId"] == GAME_ID

    log = client.get(f"/sessions/{GAME_ID}/log")
    assert log.status_code == 200
    assert log.text == FIXTURE.read_text()

    stats = client.get(f"/sessions/{GAME_ID}/stats").json()
    assert stats["final_score"] == 7
    assert stats["hits"] == 7
    assert len(stats["cells"]) == 16

    board = client.get("/leaderboard").json()
    assert [e["score"] for e in board] == [7]


def test_unknown_game_is_404(tmp_path):
    client, _ = make_client(tmp_path)
    assert client.get("/sessions/missing").status_code == 404
    assert client.get("/sessions/missing/log").status_code == 404
    assert client.get("/sessions/missing/stats").status_code == 404
