"""Vendor payload -> canonical Game records.

API-Sports ships two payload families: football nests kickoff/status under
``fixture`` with results in ``score.fulltime``, while hockey and basketball
carry those fields at the top level with results in ``scores``. Nothing
outside this module looks at vendor fields.
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable, Iterable, Optional

from app.core.timeutils import ensure_aware_utc, format_local_time, from_timestamp
from app.data.sports import FAMILY_FIXTURE, FAMILY_GAME

FINISHED_STATUSES = frozenset({"FT", "AET", "PEN", "AOT", "AP", "Finished"})
LIVE_STATUSES = frozenset(
    {"1H", "HT", "2H", "ET", "BT", "P", "LIVE", "INTR", "INT", "P1", "P2", "P3", "OT", "PT", "Q1", "Q2", "Q3", "Q4"}
)
SCHEDULED_STATUSES = frozenset({"NS", "TBD"})

EMOJI_LIVE = "\U0001F534"
EMOJI_FINISHED = "\U0001F3C1"
EMOJI_PENDING = "⏳"


def status_priority(short_status: Optional[str]) -> int:
    code = short_status or ""
    if code in LIVE_STATUSES:
        return 1
    if code in SCHEDULED_STATUSES:
        return 2
    return 3


def status_emoji(status: Optional[dict]) -> str:
    code = (status or {}).get("short") or ""
    if code in LIVE_STATUSES:
        return EMOJI_LIVE
    if code in FINISHED_STATUSES:
        return EMOJI_FINISHED
    return EMOJI_PENDING


def score_value(raw) -> Optional[int]:
    # Basketball reports per-quarter objects; the total is what counts.
    if isinstance(raw, dict):
        raw = raw.get("total")
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def compute_winner(short_status: Optional[str], scores: Optional[dict]) -> Optional[str]:
    if (short_status or "") not in FINISHED_STATUSES or not scores:
        return None
    home = scores.get("home")
    away = scores.get("away")
    if home is None or away is None:
        return None
    if home > away:
        return "home"
    if away > home:
        return "away"
    return "draw"


def _parse_iso(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return ensure_aware_utc(datetime.fromisoformat(str(raw).replace("Z", "+00:00")))
    except ValueError:
        return None


def _timestamp(raw_ts, raw_date: Optional[str]) -> Optional[int]:
    if raw_ts is not None:
        try:
            return int(raw_ts)
        except (TypeError, ValueError):
            pass
    parsed = _parse_iso(raw_date)
    return int(parsed.timestamp()) if parsed is not None else None


def _calendar_date(raw_date: Optional[str], ts: int) -> str:
    raw = str(raw_date or "")
    if len(raw) >= 10 and raw[4] == "-" and raw[7] == "-":
        return raw[:10]
    return from_timestamp(ts).date().isoformat()


def _team(raw: Optional[dict]) -> dict:
    raw = raw or {}
    return {"id": raw.get("id"), "name": raw.get("name") or "", "logo": raw.get("logo")}


def _status(raw: Optional[dict]) -> dict:
    raw = raw or {}
    return {"long": raw.get("long") or "", "short": raw.get("short") or ""}


def _game(
    *,
    native_id,
    raw_date: Optional[str],
    raw_ts,
    tz: Optional[str],
    status: Optional[dict],
    league: dict,
    teams: Optional[dict],
    scores: dict,
    tz_name: Optional[str],
) -> Optional[dict]:
    ts = _timestamp(raw_ts, raw_date)
    if native_id is None or ts is None:
        return None
    teams = teams or {}
    game = {
        "id": native_id,
        "date": _calendar_date(raw_date, ts),
        "time": format_local_time(ts, tz_name),
        "timestamp": ts,
        "timezone": tz or "UTC",
        "status": _status(status),
        "league": league,
        "teams": {"home": _team(teams.get("home")), "away": _team(teams.get("away"))},
        "scores": scores,
    }
    winner = compute_winner(game["status"]["short"], scores)
    if winner is not None:
        game["winner"] = winner
    return game


def _normalize_fixture(item: dict, tz_name: Optional[str]) -> Optional[dict]:
    fixture = item.get("fixture") or {}
    league = item.get("league") or {}
    score = item.get("score") or {}
    fulltime = score.get("fulltime") or {}
    goals = item.get("goals") or {}
    home = score_value(fulltime.get("home"))
    away = score_value(fulltime.get("away"))
    # Live fixtures have no fulltime yet; the running score lives in goals.
    if home is None and away is None:
        home = score_value(goals.get("home"))
        away = score_value(goals.get("away"))
    return _game(
        native_id=fixture.get("id", item.get("id")),
        raw_date=fixture.get("date"),
        raw_ts=fixture.get("timestamp"),
        tz=fixture.get("timezone"),
        status=fixture.get("status"),
        league={
            "id": league.get("id"),
            "name": league.get("name") or "",
            "country": league.get("country"),
            "logo": league.get("logo"),
            "season": league.get("season"),
        },
        teams=item.get("teams"),
        scores={"home": home, "away": away},
        tz_name=tz_name,
    )


def _normalize_game(item: dict, tz_name: Optional[str]) -> Optional[dict]:
    league = item.get("league") or {}
    country = league.get("country")
    if not country:
        country = (item.get("country") or {}).get("name")
    scores = item.get("scores") or {}
    return _game(
        native_id=item.get("id"),
        raw_date=item.get("date"),
        raw_ts=item.get("timestamp"),
        tz=item.get("timezone"),
        status=item.get("status"),
        league={
            "id": league.get("id"),
            "name": league.get("name") or "",
            "country": country,
            "logo": league.get("logo"),
            "season": league.get("season"),
        },
        teams=item.get("teams"),
        scores={"home": score_value(scores.get("home")), "away": score_value(scores.get("away"))},
        tz_name=tz_name,
    )


NORMALIZERS: dict[str, Callable[[dict, Optional[str]], Optional[dict]]] = {
    FAMILY_FIXTURE: _normalize_fixture,
    FAMILY_GAME: _normalize_game,
}


def normalize_item(family: str, item: dict, *, tz_name: Optional[str] = None) -> Optional[dict]:
    try:
        normalizer = NORMALIZERS[family]
    except KeyError:
        raise ValueError(f"unknown payload family: {family!r}") from None
    if not isinstance(item, dict):
        return None
    return normalizer(item, tz_name)


def normalize_games(
    family: str,
    items: Iterable[dict],
    *,
    since_ts: Optional[int] = None,
    tz_name: Optional[str] = None,
) -> list[dict]:
    """Normalize, drop games before ``since_ts`` and sort by kickoff."""
    games: list[dict] = []
    for item in items or []:
        game = normalize_item(family, item, tz_name=tz_name)
        if game is None:
            continue
        if since_ts is not None and game["timestamp"] < since_ts:
            continue
        games.append(game)
    games.sort(key=lambda g: g["timestamp"])
    return games
