import asyncio

from app.services.aggregator import (
    ALL_SNAPSHOT_KEY,
    build_prediction,
    merge_sport_games,
    read_snapshot,
    snapshot_key,
    sort_for_presentation,
)

BASE_TS = 1_730_800_800  # 2024-11-05T10:00:00Z


def _game(gid, short="NS", ts=BASE_TS, scores=(None, None), league="NHL"):
    game = {
        "id": gid,
        "date": "2024-11-05",
        "time": "13:00",
        "timestamp": ts,
        "timezone": "UTC",
        "status": {"long": "x", "short": short},
        "league": {"id": 57, "name": league, "country": "USA", "logo": None, "season": 2024},
        "teams": {"home": {"id": 1, "name": "Home"}, "away": {"id": 2, "name": "Away"}},
        "scores": {"home": scores[0], "away": scores[1]},
    }
    if short == "FT" and None not in scores:
        game["winner"] = "home" if scores[0] > scores[1] else ("away" if scores[1] > scores[0] else "draw")
    return game


def test_build_prediction_shapes_record():
    pred = build_prediction("hockey", _game(77, short="FT", scores=(4, 2)))

    assert pred["id"] == "hockey-77"
    assert pred["sport"] == "hockey"
    assert pred["eventName"] == "NHL"
    assert pred["teams"] == "Home vs Away"
    assert pred["date"] == "05.11.2024"
    assert pred["status"]["emoji"] == "\U0001F3C1"
    assert pred["status"]["short"] == "FT"
    assert pred["prediction"] is None
    assert pred["score"] == "4 - 2"
    assert pred["winner"] == "home"
    assert pred["timestamp"] == BASE_TS


def test_build_prediction_without_scores_has_no_score_string():
    pred = build_prediction("nba", _game(5))
    assert "score" not in pred
    assert "winner" not in pred
    assert pred["status"]["emoji"] == "⏳"


def test_merge_twice_is_idempotent_for_all(store):
    games = [_game(1), _game(2, ts=BASE_TS + 60)]

    async def _run():
        await merge_sport_games(store, "hockey", games)
        once = await read_snapshot(store, "all")
        second = await merge_sport_games(store, "hockey", games)
        twice = await read_snapshot(store, "all")
        return once, twice, second

    once, twice, second = asyncio.run(_run())
    assert [p["id"] for p in once] == ["hockey-1", "hockey-2"]
    assert twice == once
    assert second.appended_to_all == 0
    assert second.stored == 2


def test_merge_appends_other_sports_without_reordering(store):
    async def _run():
        await merge_sport_games(store, "hockey", [_game(1, ts=BASE_TS + 500)])
        await merge_sport_games(store, "nba", [_game(1, ts=BASE_TS)])
        return await read_snapshot(store, "all")

    items = asyncio.run(_run())
    assert [p["id"] for p in items] == ["hockey-1", "nba-1"]


def test_sport_snapshot_is_replaced_wholesale(store):
    async def _run():
        await merge_sport_games(store, "nba", [_game(1), _game(2)])
        await merge_sport_games(store, "nba", [_game(3)])
        return await read_snapshot(store, "nba"), await read_snapshot(store, "all")

    sport_items, all_items = asyncio.run(_run())
    assert [p["id"] for p in sport_items] == ["nba-3"]
    assert [p["id"] for p in all_items] == ["nba-1", "nba-2", "nba-3"]


def test_empty_fetch_clears_sport_snapshot_only(store):
    async def _run():
        await merge_sport_games(store, "hockey", [_game(1)])
        result = await merge_sport_games(store, "hockey", [])
        return result, await store.get(snapshot_key("hockey")), await store.get(ALL_SNAPSHOT_KEY)

    result, sport_items, all_items = asyncio.run(_run())
    assert sport_items == []
    assert [p["id"] for p in all_items] == ["hockey-1"]
    assert result.pruned_from_all == 0


def test_empty_fetch_can_prune_stale_all_entries(store):
    async def _run():
        await merge_sport_games(store, "hockey", [_game(1)])
        await merge_sport_games(store, "nba", [_game(9)])
        result = await merge_sport_games(store, "hockey", [], prune_on_empty=True)
        return result, await read_snapshot(store, "all")

    result, all_items = asyncio.run(_run())
    assert result.pruned_from_all == 1
    assert [p["id"] for p in all_items] == ["nba-9"]


def test_duplicate_ids_within_one_fetch_are_appended_once(store):
    asyncio.run(merge_sport_games(store, "football", [_game(1), _game(1)]))
    assert [p["id"] for p in asyncio.run(read_snapshot(store, "all"))] == ["football-1"]


def test_read_snapshot_defaults_to_empty(store):
    assert asyncio.run(read_snapshot(store, "football")) == []


def test_presentation_order_live_then_scheduled_then_rest():
    fixture_set = [
        build_prediction("football", _game(1, short="FT", ts=BASE_TS - 7200, scores=(1, 0))),
        build_prediction("football", _game(2, short="NS", ts=BASE_TS + 3600)),
        build_prediction("football", _game(3, short="2H", ts=BASE_TS - 3000, scores=(0, 0))),
        build_prediction("football", _game(4, short="TBD", ts=BASE_TS + 600)),
        build_prediction("football", _game(5, short="1H", ts=BASE_TS - 600, scores=(1, 1))),
    ]

    ordered = sort_for_presentation(fixture_set)
    assert [p["id"] for p in ordered] == [
        "football-3",
        "football-5",
        "football-4",
        "football-2",
        "football-1",
    ]


def test_late_kickoff_date_matches_display_time(monkeypatch):
    from app.core.config import settings
    from app.core.timeutils import format_local_time

    monkeypatch.setattr(settings, "display_timezone", "Europe/Moscow")
    late = BASE_TS + 12 * 3600 + 1800  # 2024-11-05T22:30:00Z

    pred = build_prediction("hockey", _game(9, ts=late))

    assert format_local_time(late, "Europe/Moscow") == "01:30"
    assert pred["date"] == "06.11.2024"
