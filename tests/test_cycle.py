import asyncio
from datetime import datetime, timezone

import pytest

from app.data.sports import SPORTS_TO_PROCESS
from app.services.aggregator import ALL_SNAPSHOT_KEY
from app.services.cycle import (
    CYCLE_COMPLETED_KEY,
    JOB_STATE_KEY,
    LAST_SUCCESSFUL_RUN_KEY,
    CycleScheduler,
)

NOW = datetime(2024, 11, 5, 12, 0, tzinfo=timezone.utc)


def test_initial_state_starts_a_fresh_cycle(store):
    async def _run():
        await store.put_persistent(ALL_SNAPSHOT_KEY, [{"id": "football-1"}])
        scheduler = CycleScheduler(store)
        step = await scheduler.begin_step()
        return step, await store.get_persistent(ALL_SNAPSHOT_KEY), await store.get_persistent(CYCLE_COMPLETED_KEY)

    step, all_items, flag = asyncio.run(_run())
    assert step.index == 0
    assert step.sport == SPORTS_TO_PROCESS[0]
    assert step.cycle_started is True
    assert all_items == []
    assert flag == "false"


def test_full_cycle_returns_cursor_to_start_and_sets_flag(store):
    async def _run():
        scheduler = CycleScheduler(store)
        wraps = []
        sports = []
        for _ in range(scheduler.size):
            step = await scheduler.begin_step()
            sports.append(step.sport)
            wraps.append(await scheduler.advance(now=NOW))
        return scheduler, wraps, sports

    scheduler, wraps, sports = asyncio.run(_run())
    assert sports == list(SPORTS_TO_PROCESS)
    assert wraps == [False, False, False, True]
    assert asyncio.run(scheduler.current_index()) == 0
    assert asyncio.run(scheduler.is_cycle_completed()) is True
    assert asyncio.run(store.get_persistent(LAST_SUCCESSFUL_RUN_KEY)) == "2024-11-05T12:00:00Z"


def test_all_snapshot_is_not_reset_mid_cycle(store):
    async def _run():
        scheduler = CycleScheduler(store)
        await scheduler.begin_step()
        await scheduler.advance()
        await store.put_persistent(ALL_SNAPSHOT_KEY, [{"id": "football-1"}])
        step = await scheduler.begin_step()
        return step, await store.get_persistent(ALL_SNAPSHOT_KEY)

    step, all_items = asyncio.run(_run())
    assert step.index == 1
    assert step.cycle_started is False
    assert all_items == [{"id": "football-1"}]


def test_index_zero_with_unfinished_cycle_keeps_all(store):
    async def _run():
        await store.put_persistent(CYCLE_COMPLETED_KEY, "false")
        await store.put_persistent(ALL_SNAPSHOT_KEY, [{"id": "hockey-1"}])
        step = await CycleScheduler(store).begin_step()
        return step, await store.get_persistent(ALL_SNAPSHOT_KEY)

    step, all_items = asyncio.run(_run())
    assert step.cycle_started is False
    assert all_items == [{"id": "hockey-1"}]


@pytest.mark.parametrize("raw", [{"nextSportIndex": 9}, {"nextSportIndex": -1}, {"nextSportIndex": "x"}, "garbage"])
def test_corrupt_cursor_restarts_at_zero(store, raw):
    asyncio.run(store.put_persistent(JOB_STATE_KEY, raw))
    assert asyncio.run(CycleScheduler(store).current_index()) == 0


def test_state_reports_cursor(store):
    async def _run():
        scheduler = CycleScheduler(store)
        await scheduler.begin_step()
        await scheduler.advance()
        return await scheduler.state()

    state = asyncio.run(_run())
    assert state["nextSportIndex"] == 1
    assert state["sport"] == SPORTS_TO_PROCESS[1]
    assert state["cycleCompleted"] is False


def test_empty_sports_list_is_rejected(store):
    with pytest.raises(ValueError):
        CycleScheduler(store, ())
