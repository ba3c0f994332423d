"""
Decoded game document, the JSON contract consumed by the replay dashboard:

    {"gameId": ..., "settings": {...} | null, "events": [{"ts", "t_rel_s", "type", ...}]}

Variant fields an event does not carry are left out of its JSON. Unknown
settings fields are kept as explicit nulls.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, SerializerFunctionWrapHandler, model_serializer

from .events import EventType, Hit, Miss, SessionEnd, SessionStart, Unknown

if TYPE_CHECKING:
    from .codec import DecodedLog
    from .events import Event, PartialSettings, Settings


class GridDoc(BaseModel):
    rows: int | None = Field(default=None, ge=0)
    cols: int | None = Field(default=None, ge=0)


class SettingsDoc(BaseModel):
    """Settings as recovered from GAME_START (None = not present in the log)."""

    grid: GridDoc = Field(default_factory=GridDoc)
    duration_ms: int | None = Field(default=None, ge=0)
    mole_up_ms: tuple[int, int] | None = None
    idle_gap_ms: tuple[int, int] | None = None

    @classmethod
    def from_settings(cls, settings: Settings | PartialSettings) -> SettingsDoc:
        return cls(
            grid=GridDoc(rows=settings.rows, cols=settings.cols),
            duration_ms=settings.duration_ms,
            mole_up_ms=settings.mole_up_ms,
            idle_gap_ms=settings.idle_gap_ms,
        )

    @property
    def complete(self) -> bool:
        return None not in (self.grid.rows, self.grid.cols, self.duration_ms, self.mole_up_ms, self.idle_gap_ms)


class CellDoc(BaseModel):
    row: int
    col: int
    index: int


class PosDoc(BaseModel):
    x: float
    y: float


class EventDoc(BaseModel):
    """Single decoded event."""

    model_config = ConfigDict(extra="ignore")  # Allow newer producers to add fields.

    ts: datetime
    t_rel_s: float = Field(ge=0)
    type: EventType
    cell: CellDoc | None = None
    pos_rel: PosDoc | None = None
    score: int | None = Field(default=None, ge=0)
    final_score: int | None = Field(default=None, ge=0)
    settings: SettingsDoc | None = None
    raw: str | None = None

    @model_serializer(mode="wrap")
    def drop_absent(self, handler: SerializerFunctionWrapHandler) -> dict[str, Any]:
        return {k: v for k, v in handler(self).items() if v is not None}

    @classmethod
    def from_event(cls, event: Event) -> EventDoc:
        doc: dict[str, Any] = {"ts": event.ts, "t_rel_s": event.t_rel_s, "type": event.type}

        cell = getattr(event, "cell", None)
        if cell is not None:
            doc["cell"] = CellDoc(row=cell.row, col=cell.col, index=cell.index)

        match event:
            case SessionStart(settings=settings):
                doc["settings"] = SettingsDoc.from_settings(settings)
            case SessionEnd(final_score=final_score):
                doc["final_score"] = final_score
            case Hit(pos=pos, score=score):
                doc["pos_rel"] = PosDoc(x=pos.x, y=pos.y)
                doc["score"] = score
            case Miss(pos=pos):
                doc["pos_rel"] = PosDoc(x=pos.x, y=pos.y)
            case Unknown(raw=raw):
                doc["raw"] = raw

        return cls(**doc)


class GameDocument(BaseModel):
    """A whole decoded session."""

    model_config = ConfigDict(populate_by_name=True)

    game_id: str | None = Field(default=None, alias="gameId")
    settings: SettingsDoc | None = None
    events: list[EventDoc] = Field(default_factory=list)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def of_type(self, *types: EventType) -> list[EventDoc]:
        return [e for e in self.events if e.type in types]


def to_document(decoded: DecodedLog) -> GameDocument:
    return GameDocument(
        game_id=decoded.game_id,
        settings=SettingsDoc.from_settings(decoded.settings) if decoded.settings is not None else None,
        events=[EventDoc.from_event(e) for e in decoded.events],
    )


class LogBatch(BaseModel):
    """Batch of formatted log lines for one session (HTTP body / MQTT payload)."""

    model_config = ConfigDict(extra="ignore")

    lines: list[str] = Field(min_length=1)
