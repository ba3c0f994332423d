"""
Ingestion sink: persists finished session logs and keeps a leaderboard.

Layout under the data directory:

    games/<gameId>.log    raw log text, as submitted
    games/<gameId>.json   decoded game document
    leaderboard.json      top scores

Resubmitting a session overwrites its files and adds another leaderboard
entry; sessions are not deduplicated.

Thread Safety:
    All writes and leaderboard access are serialized by one lock (the MQTT
    subscriber thread and API handlers share a store).
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

from .codec import decode
from .events import EventType
from .models import GameDocument, to_document

if TYPE_CHECKING:
    from collections.abc import Iterable
    from logging import Logger

# Keep only top N scores
MAX_ENTRIES: Final = 5

_ID_CHARS: Final = frozenset("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-_.")


class IngestError(ValueError):
    """Submitted log cannot be stored."""


@dataclass
class LeaderboardEntry:
    """Single leaderboard entry with score, game, and timestamp."""

    score: int
    game_id: str
    timestamp: int  # Unix timestamp (ms) of GAME_END


def is_safe_id(game_id: str) -> bool:
    """True if `game_id` can be used as a file name inside the store."""
    return bool(game_id) and not game_id.startswith(".") and all(ch in _ID_CHARS for ch in game_id)


class LogStore:
    """JSON-file store for decoded sessions."""

    data_dir: Path
    games_dir: Path
    leaderboard_file: Path

    _log: Logger
    _lock: threading.Lock
    _leaderboard: list[LeaderboardEntry]

    def __init__(self, data_dir: Path | str) -> None:
        self.data_dir = Path(data_dir)
        self.games_dir = self.data_dir / "games"
        self.leaderboard_file = self.data_dir / "leaderboard.json"

        self._log = logging.getLogger("LogStore")
        self._lock = threading.Lock()
        self._leaderboard = []

        self.games_dir.mkdir(parents=True, exist_ok=True)
        self.load()

    def load(self) -> None:
        """Load leaderboard from disk (empty if the file doesn't exist)."""
        if not self.leaderboard_file.exists():
            return
        data = json.loads(self.leaderboard_file.read_text())
        with self._lock:
            self._leaderboard = [LeaderboardEntry(**e) for e in data]

    # ==================== Ingestion ====================

    def ingest(self, lines: Iterable[str]) -> GameDocument:
        """Decode and persist a batch of log lines for one session.

        Raises:
            IngestError: No line carries a usable game id
        """
        text = "".join(line.rstrip("\r\n") + "\n" for line in lines)
        decoded = decode(text)

        if decoded.game_id is None:
            msg = "no valid log line found"
            raise IngestError(msg)

        if not is_safe_id(decoded.game_id):
            msg = f"game id not usable as a key: {decoded.game_id!r}"
            raise IngestError(msg)

        doc = to_document(decoded)
        game_id = decoded.game_id

        with self._lock:
            (self.games_dir / f"{game_id}.log").write_text(text)
            (self.games_dir / f"{game_id}.json").write_text(doc.model_dump_json(by_alias=True, indent=2))

            ends = doc.of_type(EventType.SESSION_END)
            if ends and ends[-1].final_score is not None:
                end = ends[-1]
                self._add_entry(game_id, end.final_score, round(end.ts.timestamp() * 1000))

        self._log.info(
            "Stored game [bright_green]%s[/] (%d events, %d unknown)",
            game_id,
            len(decoded.events),
            len(decoded.unknown),
        )
        return doc

    # ==================== Queries ====================

    def list_games(self) -> list[str]:
        """Stored game ids, oldest first (ids are time-ordered)."""
        return sorted(p.stem for p in self.games_dir.glob("*.json"))

    def get_document(self, game_id: str) -> GameDocument | None:
        path = self._path(game_id, ".json")
        if path is None or not path.exists():
            return None
        return GameDocument.model_validate_json(path.read_text())

    def get_log(self, game_id: str) -> str | None:
        path = self._path(game_id, ".log")
        if path is None or not path.exists():
            return None
        return path.read_text()

    def leaderboard(self) -> list[dict[str, Any]]:
        """Return leaderboard as list of dicts (for JSON serialization)."""
        with self._lock:
            return [asdict(e) for e in self._leaderboard]

    # ==================== Utility Methods ====================

    def _path(self, game_id: str, suffix: str) -> Path | None:
        if not is_safe_id(game_id):
            return None
        return self.games_dir / f"{game_id}{suffix}"

    def _add_entry(self, game_id: str, score: int, timestamp: int) -> None:
        """Add score entry keeping sorted order and max size. Caller holds the lock."""
        self._leaderboard.append(LeaderboardEntry(score=score, game_id=game_id, timestamp=timestamp))
        self._leaderboard.sort(key=lambda e: e.score, reverse=True)
        del self._leaderboard[MAX_ENTRIES:]  # Keep only top N
        self.leaderboard_file.write_text(json.dumps([asdict(e) for e in self._leaderboard], indent=2))
