from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from app.core.config import settings
from app.core.logger import get_logger
from app.core.timeutils import format_ru_date
from app.data.mappers import status_emoji, status_priority

log = get_logger("services.aggregator")

ALL_KEY = "all"
SNAPSHOT_PREFIX = "central_predictions"


def snapshot_key(sport: str) -> str:
    return f"{SNAPSHOT_PREFIX}:{sport}"


ALL_SNAPSHOT_KEY = snapshot_key(ALL_KEY)


@dataclass
class MergeResult:
    sport: str
    stored: int
    appended_to_all: int
    pruned_from_all: int = 0


def composite_id(sport: str, native_id) -> str:
    return f"{sport}-{native_id}"


def build_prediction(sport: str, game: dict) -> dict:
    home = ((game.get("teams") or {}).get("home") or {}).get("name") or ""
    away = ((game.get("teams") or {}).get("away") or {}).get("name") or ""
    status = dict(game.get("status") or {})
    status["emoji"] = status_emoji(status)
    scores = game.get("scores") or {"home": None, "away": None}

    prediction = dict(game)
    prediction.update(
        {
            "id": composite_id(sport, game.get("id")),
            "sport": sport,
            "eventName": (game.get("league") or {}).get("name") or "",
            "teams": f"{home} vs {away}",
            "date": format_ru_date(game["timestamp"], settings.display_timezone),
            "status": status,
            "scores": scores,
            "prediction": None,
        }
    )
    if scores.get("home") is not None and scores.get("away") is not None:
        prediction["score"] = f"{scores['home']} - {scores['away']}"
    return prediction


def sort_for_presentation(items: Iterable[dict]) -> list[dict]:
    """Live first, then not started/TBD, then everything else; kickoff ascending within a tier."""
    return sorted(
        items,
        key=lambda p: (status_priority((p.get("status") or {}).get("short")), int(p.get("timestamp") or 0)),
    )


async def read_snapshot(store, sport: str) -> list[dict]:
    items = await store.get(snapshot_key(sport))
    return items if isinstance(items, list) else []


async def reset_all_snapshot(store) -> None:
    await store.put_persistent(ALL_SNAPSHOT_KEY, [])


async def merge_sport_games(store, sport: str, games: list[dict], *, prune_on_empty: Optional[bool] = None) -> MergeResult:
    """Replace the sport snapshot and append unseen predictions to the cross-sport one."""
    if prune_on_empty is None:
        prune_on_empty = bool(settings.prune_all_on_empty_fetch)
    if not games:
        await store.put_persistent(snapshot_key(sport), [])
        pruned = 0
        if prune_on_empty:
            current = await read_snapshot(store, ALL_KEY)
            kept = [p for p in current if p.get("sport") != sport]
            pruned = len(current) - len(kept)
            if pruned:
                await store.put_persistent(ALL_SNAPSHOT_KEY, kept)
        log.info("aggregator empty sport=%s pruned_from_all=%s", sport, pruned)
        return MergeResult(sport=sport, stored=0, appended_to_all=0, pruned_from_all=pruned)

    predictions = [build_prediction(sport, g) for g in games]
    await store.put_persistent(snapshot_key(sport), predictions)

    current = await read_snapshot(store, ALL_KEY)
    seen = {p.get("id") for p in current}
    fresh: list[dict] = []
    for p in predictions:
        if p["id"] in seen:
            continue
        seen.add(p["id"])
        fresh.append(p)
    if fresh:
        await store.put_persistent(ALL_SNAPSHOT_KEY, current + fresh)
    log.info("aggregator merged sport=%s stored=%s appended_to_all=%s", sport, len(predictions), len(fresh))
    return MergeResult(sport=sport, stored=len(predictions), appended_to_all=len(fresh))
