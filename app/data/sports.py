from __future__ import annotations

from dataclasses import dataclass

from app.core.config import settings

FAMILY_FIXTURE = "fixture"
FAMILY_GAME = "game"

# Round-robin order of the sync job.
SPORTS_TO_PROCESS: tuple[str, ...] = ("football", "hockey", "basketball", "nba")

AUTH_HEADER = "x-apisports-key"


@dataclass(frozen=True)
class SportEndpoint:
    sport: str
    family: str
    host: str
    path: str
    league_id: int
    season: int | str
    auth_header: str = AUTH_HEADER

    @property
    def params(self) -> dict:
        return {"league": self.league_id, "season": self.season, "timezone": "UTC"}

    @property
    def label(self) -> str:
        return f"{self.host}{self.path}"


def get_endpoint(sport: str) -> SportEndpoint:
    """Endpoint descriptor for one sport, resolved from current settings."""
    key = (sport or "").strip().lower()
    if key == "football":
        return SportEndpoint(
            sport=key,
            family=FAMILY_FIXTURE,
            host=settings.football_api_host,
            path="/fixtures",
            league_id=int(settings.football_league_id),
            season=int(settings.season),
        )
    if key == "hockey":
        return SportEndpoint(
            sport=key,
            family=FAMILY_GAME,
            host=settings.hockey_api_host,
            path="/games",
            league_id=int(settings.hockey_league_id),
            season=int(settings.season),
        )
    if key in {"basketball", "nba"}:
        league_id = settings.nba_league_id if key == "nba" else settings.basketball_league_id
        return SportEndpoint(
            sport=key,
            family=FAMILY_GAME,
            host=settings.basketball_api_host,
            path="/games",
            league_id=int(league_id),
            season=settings.basketball_season,
        )
    raise ValueError(f"unknown sport: {sport!r}")


def is_known_sport(sport: str | None) -> bool:
    return (sport or "").strip().lower() in SPORTS_TO_PROCESS
