"""FastAPI REST API for whaclog.

Provides endpoints for:
    - Ingesting finished session logs (one batch of lines per session)
    - Reading decoded game documents and raw logs
    - Replay stats (score series, per-cell heatmap) and the leaderboard

Logs can also arrive over MQTT (see mqtt.py); both paths go through the
same `LogStore`.
"""

from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse

from . import __version__
from .analysis import summarize
from .models import GameDocument, LogBatch
from .storage import IngestError, LogStore
from .types import StatusOk, Summary


def create_app(store: LogStore) -> FastAPI:
    """Build the API around a store."""

    app = FastAPI(title="whaclog", version=__version__)

    def _document(game_id: str) -> GameDocument:
        doc = store.get_document(game_id)
        if doc is None:
            raise HTTPException(status_code=404, detail=f"Unknown game: {game_id}")
        return doc

    @app.get("/health")
    async def health() -> StatusOk:
        return {"ok": True}

    @app.post("/sessions")
    async def post_session(batch: LogBatch) -> dict[str, Any]:
        """Decode and store a finished session log; returns the decoded document."""
        try:
            doc = store.ingest(batch.lines)
        except IngestError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        return doc.to_json()

    @app.get("/sessions")
    async def get_sessions() -> list[str]:
        """Return stored game ids, oldest first."""
        return store.list_games()

    @app.get("/sessions/{game_id}")
    async def get_session(game_id: str) -> dict[str, Any]:
        """Return decoded document (the dashboard's input)."""
        return _document(game_id).to_json()

    @app.get("/sessions/{game_id}/log", response_class=PlainTextResponse)
    async def get_session_log(game_id: str) -> str:
        """Return raw log text as submitted."""
        text = store.get_log(game_id)
        if text is None:
            raise HTTPException(status_code=404, detail=f"Unknown game: {game_id}")
        return text

    @app.get("/sessions/{game_id}/stats")
    async def get_session_stats(game_id: str) -> Summary:
        """Return replay stats derived from the decoded document."""
        return summarize(_document(game_id))

    @app.get("/leaderboard")
    async def get_leaderboard() -> list[dict[str, Any]]:
        """Return top scores (persisted to disk, survives restart)."""
        return store.leaderboard()

    return app
