from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from app.core.timeutils import utc_day_start
from app.data.sports import get_endpoint


def _kickoff(day_start: datetime, hour: int, minute: int = 0) -> tuple[str, int]:
    ko = day_start + timedelta(hours=hour, minutes=minute)
    return ko.isoformat(), int(ko.timestamp())


def _fixture(fid, day_start, hour, minute, status, league, home, away, goals):
    iso, ts = _kickoff(day_start, hour, minute)
    return {
        "fixture": {"id": fid, "date": iso, "timestamp": ts, "timezone": "UTC", "status": status},
        "league": league,
        "teams": {"home": home, "away": away},
        "goals": {"home": goals[0], "away": goals[1]},
        "score": {"fulltime": {"home": goals[0], "away": goals[1]}},
    }


def _game(gid, day_start, hour, minute, status, league, country, home, away, scores):
    iso, ts = _kickoff(day_start, hour, minute)
    return {
        "id": gid,
        "date": iso,
        "time": f"{hour:02d}:{minute:02d}",
        "timestamp": ts,
        "timezone": "UTC",
        "status": status,
        "league": league,
        "country": {"name": country},
        "teams": {"home": home, "away": away},
        "scores": {"home": scores[0], "away": scores[1]},
    }


def _response_items(sport: str, day_start: datetime, season) -> list[dict]:
    ns = {"long": "Not Started", "short": "NS"}
    ft = {"long": "Match Finished", "short": "FT"}
    if sport == "football":
        return [
            _fixture(
                1001, day_start, 19, 0, ns,
                {"id": 39, "name": "Premier League", "country": "England", "logo": "", "season": season},
                {"id": 40, "name": "Manchester City"}, {"id": 42, "name": "Liverpool"},
                (None, None),
            ),
            _fixture(
                1002, day_start, 16, 0, ft,
                {"id": 140, "name": "La Liga", "country": "Spain", "logo": "", "season": season},
                {"id": 529, "name": "Real Madrid"}, {"id": 530, "name": "Barcelona"},
                (2, 1),
            ),
        ]
    if sport == "hockey":
        return [
            _game(
                2001, day_start, 18, 30, ns, {"id": 35, "name": "KHL", "logo": "", "season": season}, "Russia",
                {"id": 198, "name": "CSKA Moscow"}, {"id": 199, "name": "SKA St. Petersburg"},
                (None, None),
            ),
            _game(
                2002, day_start, 23, 0, ns, {"id": 57, "name": "NHL", "logo": "", "season": season}, "USA",
                {"id": 701, "name": "Toronto Maple Leafs"}, {"id": 702, "name": "Boston Bruins"},
                (None, None),
            ),
        ]
    if sport == "basketball":
        return [
            _game(
                3001, day_start, 18, 45, ns, {"id": 120, "name": "Euroleague", "logo": "", "season": season}, "Europe",
                {"id": 204, "name": "Anadolu Efes"}, {"id": 205, "name": "Real Madrid"},
                ({"total": None}, {"total": None}),
            ),
            _game(
                3002, day_start, 17, 0, ft, {"id": 120, "name": "Euroleague", "logo": "", "season": season}, "Europe",
                {"id": 206, "name": "Olympiacos"}, {"id": 207, "name": "FC Barcelona"},
                ({"total": 84}, {"total": 79}),
            ),
        ]
    if sport == "nba":
        return [
            _game(
                4001, day_start, 21, 0, ns, {"id": 12, "name": "NBA", "logo": "", "season": season}, "USA",
                {"id": 15, "name": "Los Angeles Lakers"}, {"id": 16, "name": "Los Angeles Clippers"},
                ({"total": None}, {"total": None}),
            ),
            _game(
                4002, day_start, 22, 0, ns, {"id": 12, "name": "NBA", "logo": "", "season": season}, "USA",
                {"id": 11, "name": "Golden State Warriors"}, {"id": 24, "name": "Phoenix Suns"},
                ({"total": None}, {"total": None}),
            ),
        ]
    return []


def generate_mock_payload(sport: str, now: Optional[datetime] = None) -> dict:
    """Vendor-shaped envelope with a fixed two-game set anchored to today (UTC)."""
    endpoint = get_endpoint(sport)
    day_start = utc_day_start(now)
    items = _response_items(endpoint.sport, day_start, endpoint.season)
    return {
        "get": endpoint.path.lstrip("/"),
        "parameters": {k: str(v) for k, v in endpoint.params.items()},
        "errors": [],
        "results": len(items),
        "response": items,
    }
