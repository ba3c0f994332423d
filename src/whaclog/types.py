from typing import TypedDict


class StatusOk(TypedDict):
    ok: bool


class ScorePoint(TypedDict):
    t: float
    s: int


class CellJson(TypedDict):
    index: int
    row: int
    col: int
    shows: int
    hits: int
    misses: int


Summary = TypedDict(
    "Summary",
    {
        "gameId": str | None,
        "rows": int,
        "cols": int,
        "duration_s": float,
        "final_score": int,
        "shows": int,
        "hides": int,
        "hits": int,
        "misses": int,
        "unknown": int,
        "accuracy": float | None,
        "hit_rate": float | None,
        "mean_reaction_ms": float | None,
        "score_series": list[ScorePoint],
        "cells": list[CellJson],
    },
)
